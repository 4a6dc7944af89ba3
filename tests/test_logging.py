"""Tests for chime/logging.py"""

import logging

from chime.logging import setup_logging


def test_setup_logging_writes_dated_file(tmp_path):
    logger = setup_logging(log_dir=tmp_path / "logs")
    logging.getLogger("chime.scheduler.engine").info("hello from the engine")
    for handler in logger.handlers:
        handler.flush()

    [log_file] = list((tmp_path / "logs").glob("chime_*.log"))
    text = log_file.read_text(encoding="utf-8")
    assert "hello from the engine" in text
    assert "chime.scheduler.engine" in text


def test_setup_logging_replaces_handlers(tmp_path):
    setup_logging(log_dir=tmp_path)
    logger = setup_logging(log_dir=tmp_path)
    assert len(logger.handlers) == 2
