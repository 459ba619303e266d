import pytest

from guess_escrow.ledger.errors import InvalidAmount, ParticipantLimitReached
from guess_escrow.ledger.stakes import StakeLedger

from conftest import ALICE, BOB, CAROL, DAVE


def test_totals_equal_sum_of_stakes_after_any_sequence():
    ledger = StakeLedger()
    sequence = [(7, ALICE, 10), (7, BOB, 5), (3, ALICE, 2), (7, ALICE, 1), (3, CAROL, 9), (7, BOB, 4)]
    for value, participant, amount in sequence:
        ledger.add_stake(value, participant, amount)
        for guess in (3, 7):
            stakes = sum(ledger.stake_of(guess, p) for p in ledger.participants_of(guess))
            assert stakes == ledger.total_for(guess)

    assert ledger.stake_of(7, ALICE) == 11
    assert ledger.total_for(7) == 20
    assert ledger.total_for(3) == 11


def test_participant_listed_once_in_first_stake_order():
    ledger = StakeLedger()
    ledger.add_stake(5, BOB, 1)
    ledger.add_stake(5, ALICE, 1)
    ledger.add_stake(5, BOB, 3)
    ledger.add_stake(6, ALICE, 1)

    assert ledger.participants_of(5) == [BOB, ALICE]
    assert ledger.participants_of(6) == [ALICE]
    assert ledger.participants_of(9) == []


def test_participants_of_returns_a_copy():
    ledger = StakeLedger()
    ledger.add_stake(5, BOB, 1)
    ledger.participants_of(5).append(ALICE)
    assert ledger.participants_of(5) == [BOB]


@pytest.mark.parametrize("amount", [0, -5, True, 1.5, "10"])
def test_non_positive_or_non_integer_amount_rejected(amount):
    ledger = StakeLedger()
    with pytest.raises(InvalidAmount):
        ledger.add_stake(1, ALICE, amount)
    assert ledger.participants_of(1) == []
    assert ledger.total_for(1) == 0


def test_participant_ceiling_rejects_only_new_participants():
    ledger = StakeLedger(max_participants_per_value=2)
    ledger.add_stake(9, ALICE, 1)
    ledger.add_stake(9, BOB, 1)

    with pytest.raises(ParticipantLimitReached):
        ledger.add_stake(9, CAROL, 1)

    # existing participants may top up, other guesses are unaffected
    assert ledger.add_stake(9, ALICE, 4) == 5
    ledger.add_stake(10, CAROL, 1)
    ledger.add_stake(10, DAVE, 1)
    assert ledger.participants_of(9) == [ALICE, BOB]
    assert ledger.total_for(9) == 6


def test_ceiling_must_be_positive():
    with pytest.raises(ValueError):
        StakeLedger(max_participants_per_value=0)


def test_clear_stake_zeroes_record_and_keeps_total():
    ledger = StakeLedger()
    ledger.add_stake(7, ALICE, 30)
    ledger.add_stake(7, BOB, 10)

    assert ledger.clear_stake(7, ALICE) == 30
    assert ledger.stake_of(7, ALICE) == 0
    assert ledger.clear_stake(7, ALICE) == 0
    assert ledger.clear_stake(7, CAROL) == 0
    assert ledger.total_for(7) == 40
    assert ledger.participants_of(7) == [ALICE, BOB]


def test_snapshot_omits_empty_guesses():
    ledger = StakeLedger()
    ledger.add_stake(7, ALICE, 3)
    ledger.stake_of(8, ALICE)
    stakes, participants, totals = ledger.snapshot()
    assert stakes == {7: {ALICE: 3}}
    assert participants == {7: [ALICE]}
    assert totals == {7: 3}
