import json

from guess_escrow.utils.config import get_config_value, get_int, load_config, save_config


def test_file_values_layer_over_defaults(tmp_path):
    path = tmp_path / "ledger.conf"
    path.write_text(json.dumps({"ledger": {"max_participants_per_value": 3}, "server": {"port": 9000}}))

    config = load_config(str(path))

    assert config["ledger"]["max_participants_per_value"] == 3
    assert config["ledger"]["transfer_gas_limit"] == 2300
    assert config["server"]["port"] == 9000


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = load_config(str(tmp_path / "absent.conf"))
    assert config["ledger"]["transfer_backend"] == "memory"
    assert config["blockchain"]["chain_id"] == 31337


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "ledger.conf"
    path.write_text(json.dumps({"ledger": {"max_participants_per_value": 3}}))
    monkeypatch.setenv("LEDGER_MAX_PARTICIPANTS_PER_VALUE", "7")
    monkeypatch.setenv("BLOCKCHAIN_RPC_URL", "http://node:8545")

    config = load_config(str(path))

    assert get_int(config, "ledger.max_participants_per_value", 500) == 7
    assert config["blockchain"]["rpc_url"] == "http://node:8545"


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "custom.conf"
    path.write_text(json.dumps({"server": {"host": "127.0.0.1"}}))
    monkeypatch.setenv("GUESS_ESCROW_CONFIG", str(path))

    assert load_config()["server"]["host"] == "127.0.0.1"


def test_get_config_value_walks_dotted_paths():
    config = {"ledger": {"transfer_backend": "web3"}}
    assert get_config_value(config, "ledger.transfer_backend") == "web3"
    assert get_config_value(config, "ledger.missing", "fallback") == "fallback"
    assert get_config_value(config, "ledger.transfer_backend.deeper") is None


def test_get_int_rejects_garbage():
    config = {"ledger": {"transfer_gas_limit": "lots"}}
    assert get_int(config, "ledger.transfer_gas_limit", 2300) == 2300


def test_save_config_writes_json(tmp_path):
    target = tmp_path / "nested" / "ledger.conf"
    written = save_config({"ledger": {"feed_capacity": 5}}, str(target))

    assert written == target
    assert load_config(str(target))["ledger"]["feed_capacity"] == 5
