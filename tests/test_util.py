import pytest
from loguru import logger

from redeem_classifiers import util
from redeem_classifiers.util import format_time, setup_logger, timer, write_logfile


@pytest.mark.parametrize(
    "seconds, expected",
    [
        (5.5, "5.50 seconds"),
        (65, "1 minutes, 5.00 seconds"),
        (3725, "1 hours, 2 minutes, 5.00 seconds"),
        (90061, "1 days, 1 hours, 1 minutes, 1.00 seconds"),
    ],
)
def test_format_time(seconds, expected):
    assert format_time(seconds) == expected


def test_write_logfile(tmpdir):
    path = tmpdir.join("rescore.log").strpath

    handler_id = write_logfile("INFO", path, log_header="redeem-classifiers\n")
    logger.info("round 1 finished")
    with timer("test block"):
        pass
    logger.debug("not written")
    logger.remove(handler_id)

    with open(path) as f:
        content = f.read()
    assert content.startswith("redeem-classifiers\n")
    assert "round 1 finished" in content
    assert "Time needed for test block" in content
    assert "not written" not in content


def test_setup_logger_once(monkeypatch):
    monkeypatch.setattr(util, "_LOGGER_INITIALIZED", False)

    header = setup_logger("INFO")

    assert header.startswith("redeem-classifiers v")
    assert setup_logger("INFO") is None
