import json

from guess_escrow.tools.commitment import main

SALT_HEX = "0x" + bytes(range(32)).hex()


def _generate(capsys, secret):
    assert main(["generate", str(secret), "--salt", SALT_HEX, "--json"]) == 0
    return json.loads(capsys.readouterr().out)


def test_generate_then_verify(capsys):
    result = _generate(capsys, 42)
    assert result["salt"] == SALT_HEX

    assert main(["verify", result["commitment"], "42", SALT_HEX]) == 0
    assert "match" in capsys.readouterr().out


def test_verify_wrong_secret(capsys):
    result = _generate(capsys, 42)
    assert main(["verify", result["commitment"], "43", SALT_HEX]) == 1


def test_generate_random_salt(capsys):
    assert main(["generate", "9", "--json"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert len(bytes.fromhex(result["salt"][2:])) == 32


def test_bad_salt_reports_validation_error(capsys):
    assert main(["generate", "1", "--salt", "0x12"]) == 2
    assert "32 bytes" in capsys.readouterr().err


def test_out_of_range_secret(capsys):
    assert main(["generate", "256", "--salt", SALT_HEX]) == 2
