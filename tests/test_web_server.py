import asyncio
import itertools

import pytest

pytest.importorskip("httpx", reason="httpx is required for the FastAPI test client")

from eth_account import Account
from fastapi.testclient import TestClient

from guess_escrow.auth import sign_request
from guess_escrow.ledger.audit import ReportSigner
from guess_escrow.ledger.commitment import compute_commitment
from guess_escrow.ledger.errors import TransferInFlight
from guess_escrow.ledger.event_manager import MemoryStore
from guess_escrow.ledger.game import GuessingGame
from guess_escrow.ledger.transfers import InMemoryTransfer
from guess_escrow.web_server import LedgerWebServer

from conftest import OTHER_SALT, SALT, SECRET

ADMIN_KEY = "0x" + "a1" * 32
ALICE_KEY = "0x" + "b2" * 32
BOB_KEY = "0x" + "c3" * 32
MALLORY_KEY = "0x" + "d4" * 32

ADMIN = Account.from_key(ADMIN_KEY).address
ALICE = Account.from_key(ALICE_KEY).address
BOB = Account.from_key(BOB_KEY).address
MALLORY = Account.from_key(MALLORY_KEY).address

_nonces = itertools.count()


def _signed(client, key, path, operation, payload=None, nonce=None, **headers):
    nonce = nonce or f"nonce-{next(_nonces)}"
    headers.update({"X-Nonce": nonce, "X-Signature": sign_request(key, operation, payload, nonce)})
    return client.post(path, json=payload, headers=headers)


@pytest.fixture
def signer():
    return ReportSigner()


@pytest.fixture
def api(signer):
    transfer = InMemoryTransfer()
    game = GuessingGame(transfer, store=MemoryStore(), signer=signer)
    server = LedgerWebServer({}, game)
    client = TestClient(server.app)
    client.transfer = transfer
    client.game = game
    return client


def _open_round(client):
    assert _signed(client, ADMIN_KEY, "/api/initialize", "initialize").status_code == 200
    commitment = "0x" + compute_commitment(SECRET, SALT).hex()
    response = _signed(client, ADMIN_KEY, "/api/commitment", "set_commitment", {"commitment": commitment})
    assert response.status_code == 200
    assert response.json()["phase"] == "ACCEPTING_STAKES"


def test_full_round_over_http(api, signer):
    _open_round(api)

    response = _signed(api, ALICE_KEY, "/api/stakes", "place_stake", {"value": 7, "amount": 100})
    assert response.status_code == 200
    assert response.json()["pot"] == 100
    _signed(api, BOB_KEY, "/api/stakes", "place_stake", {"value": 3, "amount": 50})

    participants = api.get("/api/participants/7").json()
    assert participants["participants"] == [ALICE]
    assert participants["total"] == 100

    response = _signed(api, ADMIN_KEY, "/api/reveal", "reveal", {"secret": SECRET, "salt": "0x" + SALT.hex()})
    assert response.status_code == 200
    body = response.json()
    assert body["phase"] == "SETTLED"
    assert body["settlement"]["payouts"][0]["share"] == 150
    assert api.transfer.balance_of(ALICE) == 150

    signed = api.get("/api/settlement/report").json()
    assert signed["report"]["pool"] == 150
    assert signer.verify(signed["report"], signed["signature"])

    state = api.get("/api/state").json()
    assert state["phase"] == "SETTLED"
    assert state["revealed_value"] == SECRET

    types = [item["type"] for item in api.get("/api/activities").json()["activities"]]
    assert types[0] == "settled"
    assert "stake_placed" in types


@pytest.mark.parametrize("path, operation, payload, key, status, code", [
    ("/api/commitment", "set_commitment", {"commitment": "0x" + "11" * 32}, ALICE_KEY, 403, "not_administrator"),
    ("/api/stakes", "place_stake", {"value": 7, "amount": 0}, ALICE_KEY, 422, "invalid_amount"),
    ("/api/reveal", "reveal", {"secret": SECRET, "salt": "0x" + OTHER_SALT.hex()}, ADMIN_KEY, 400,
     "commitment_mismatch"),
    ("/api/withdraw", "withdraw", None, ALICE_KEY, 409, "nothing_to_withdraw"),
    ("/api/recover", "recover_unclaimed", None, ADMIN_KEY, 409, "wrong_phase"),
    ("/api/initialize", "initialize", None, ALICE_KEY, 409, "already_initialized"),
])
def test_ledger_errors_map_to_status_codes(api, path, operation, payload, key, status, code):
    _open_round(api)
    response = _signed(api, key, path, operation, payload)
    assert response.status_code == status
    assert response.json()["detail"]["error"] == code


def test_transfer_failure_maps_to_bad_gateway(api):
    _open_round(api)
    api.transfer.reject(ALICE)
    _signed(api, ALICE_KEY, "/api/stakes", "place_stake", {"value": 7, "amount": 10})
    _signed(api, ADMIN_KEY, "/api/reveal", "reveal", {"secret": SECRET, "salt": SALT.hex()})
    assert api.get(f"/api/pending/{ALICE}").json()["pending"] == 10

    response = _signed(api, ALICE_KEY, "/api/withdraw", "withdraw")
    assert response.status_code == 502
    assert response.json()["detail"]["retryable"] is True

    api.transfer.reject(ALICE, rejecting=False)
    response = _signed(api, ALICE_KEY, "/api/withdraw", "withdraw")
    assert response.json() == {"status": "withdrawn", "amount": 10}


def test_claimed_administrator_header_is_not_trusted(api):
    _open_round(api)
    _signed(api, ALICE_KEY, "/api/stakes", "place_stake", {"value": 1, "amount": 1000})
    _signed(api, MALLORY_KEY, "/api/stakes", "place_stake", {"value": 9, "amount": 1})

    # Mallory signs with her own key but claims to be the administrator
    response = _signed(api, MALLORY_KEY, "/api/reveal", "reveal", {"secret": 9, "salt": SALT.hex()},
                       **{"X-Caller-Address": ADMIN})
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "invalid_signature"

    # Without the claim her signature still only proves her own address
    response = _signed(api, MALLORY_KEY, "/api/reveal", "reveal", {"secret": 9, "salt": SALT.hex()})
    assert response.status_code == 403
    assert api.transfer.balance_of(MALLORY) == 0
    assert api.game.revealed is False


def test_header_alone_does_not_authenticate(api):
    response = api.post("/api/initialize", headers={"X-Caller-Address": ADMIN})
    assert response.status_code == 401
    assert api.game.initialized is False


def test_signature_over_different_body_is_rejected(api):
    _open_round(api)
    nonce = "tampered"
    signature = sign_request(ALICE_KEY, "place_stake", {"value": 7, "amount": 1}, nonce)
    response = api.post("/api/stakes", json={"value": 7, "amount": 1000},
                        headers={"X-Nonce": nonce, "X-Signature": signature, "X-Caller-Address": ALICE})
    assert response.status_code == 401
    assert api.game.total_for(7) == 0


def test_replayed_request_is_rejected(api):
    _open_round(api)
    payload = {"value": 7, "amount": 5}
    assert _signed(api, ALICE_KEY, "/api/stakes", "place_stake", payload, nonce="once").status_code == 200

    response = _signed(api, ALICE_KEY, "/api/stakes", "place_stake", payload, nonce="once")
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "nonce_reused"
    assert api.game.stake_of(7, ALICE) == 5


def test_garbage_signature_is_rejected(api):
    response = api.post("/api/initialize", headers={"X-Nonce": "n", "X-Signature": "0xdeadbeef"})
    assert response.status_code == 401


def test_participants_path_limited_to_one_byte(api):
    assert api.get("/api/participants/256").status_code == 422


def test_report_missing_before_settlement(api):
    assert api.get("/api/settlement/report").status_code == 404


def test_health_reports_phase(api):
    body = api.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["components"]["ledger"] == "AWAITING_COMMITMENT"


def test_websocket_sends_snapshot(api):
    _open_round(api)
    with api.websocket_connect("/ws/ledger") as websocket:
        message = websocket.receive_json()
    assert message["type"] == "snapshot"
    assert message["payload"]["state"]["phase"] == "ACCEPTING_STAKES"
    assert message["payload"]["live_feed"][0]["type"] == "commitment_set"


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def test_locking_views_run_off_the_event_loop(api):
    _open_round(api)
    _signed(api, ALICE_KEY, "/api/stakes", "place_stake", {"value": 7, "amount": 100})

    game = api.game
    calls = []
    for name in ("snapshot", "participants_of", "stake_of", "total_for"):
        original = getattr(game, name)

        def recorder(*args, _original=original, _name=name, **kwargs):
            calls.append((_name, _on_event_loop()))
            return _original(*args, **kwargs)

        setattr(game, name, recorder)

    api.get("/api/state")
    api.get("/api/participants/7")
    with api.websocket_connect("/ws/ledger") as websocket:
        websocket.receive_json()

    assert {name for name, _ in calls} == {"snapshot", "participants_of", "stake_of", "total_for"}
    assert not any(on_loop for _, on_loop in calls)


class StuckTransfer(InMemoryTransfer):
    """Hands the value off but never learns whether it arrived."""

    stuck = False

    def send(self, recipient, amount):
        if self.stuck:
            raise TransferInFlight("no receipt", tx_hash="0x" + "ab" * 32, recipient=recipient, amount=amount)
        return super().send(recipient, amount)


def test_unconfirmed_withdrawal_maps_to_gateway_timeout():
    transfer = StuckTransfer()
    game = GuessingGame(transfer, store=MemoryStore())
    client = TestClient(LedgerWebServer({}, game).app)
    _open_round(client)
    transfer.reject(ALICE)
    _signed(client, ALICE_KEY, "/api/stakes", "place_stake", {"value": 7, "amount": 10})
    _signed(client, ADMIN_KEY, "/api/reveal", "reveal", {"secret": SECRET, "salt": SALT.hex()})

    transfer.reject(ALICE, rejecting=False)
    transfer.stuck = True
    response = _signed(client, ALICE_KEY, "/api/withdraw", "withdraw")

    assert response.status_code == 504
    assert response.json()["detail"]["details"]["tx_hash"] == "0x" + "ab" * 32
    assert client.get(f"/api/pending/{ALICE}").json()["pending"] == 0
    assert client.get("/api/state").json()["in_flight"][0]["purpose"] == "withdrawal"
