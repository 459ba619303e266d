import logging

from guess_escrow.utils.logger import _handlers, get_logger


def test_console_only_without_log_file():
    handlers = _handlers("")
    assert [type(h) for h in handlers] == [logging.StreamHandler]


def test_log_file_adds_file_sink(tmp_path):
    target = tmp_path / "logs" / "ledger.log"
    handlers = _handlers(str(target))
    try:
        assert isinstance(handlers[-1], logging.FileHandler)
        assert target.parent.is_dir()
    finally:
        for handler in handlers:
            handler.close()


def test_get_logger_returns_named_logger():
    assert get_logger("guess_escrow.test").name == "guess_escrow.test"
