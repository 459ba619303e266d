import pytest

from guess_escrow.ledger.commitment import compute_commitment
from guess_escrow.ledger.event_manager import MemoryStore
from guess_escrow.ledger.game import GuessingGame
from guess_escrow.ledger.transfers import InMemoryTransfer

ADMIN = "0x1111111111111111111111111111111111111111"
ALICE = "0x2222222222222222222222222222222222222222"
BOB = "0x3333333333333333333333333333333333333333"
CAROL = "0x4444444444444444444444444444444444444444"
DAVE = "0x5555555555555555555555555555555555555555"

SALT = bytes(range(32))
OTHER_SALT = bytes(range(1, 33))
SECRET = 7


@pytest.fixture
def transfer():
    return InMemoryTransfer(gas_limit=2300)


@pytest.fixture
def store():
    return MemoryStore(feed_capacity=200)


@pytest.fixture
def game(transfer, store):
    return GuessingGame(transfer, max_participants_per_value=10, store=store)


@pytest.fixture
def initialized_game(game):
    game.initialize(ADMIN)
    return game


@pytest.fixture
def open_game(initialized_game):
    """Initialized ledger committed to SECRET with SALT, accepting stakes."""
    initialized_game.set_commitment(ADMIN, compute_commitment(SECRET, SALT))
    return initialized_game
