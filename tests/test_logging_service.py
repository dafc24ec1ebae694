"""Tests for context-tagged logging."""

from __future__ import annotations

import logging

import pytest

from tichat_push.app.services.logging_service import (
    ExecutionContext,
    get_logger,
    read_server_logs,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_records_are_tagged_with_context(tmp_path, restore_root_logger):
    setup_logging(level=logging.INFO, logs_dir=tmp_path)
    logger = get_logger("tichat_push.test")

    logger.info("from the page")
    with ExecutionContext("agent"):
        logger.info("from the agent")
    logger.info("page again")

    lines = read_server_logs(logs_dir=tmp_path, tail=3)
    assert "| page  |" in lines[0] and "from the page" in lines[0]
    assert "| agent |" in lines[1] and "from the agent" in lines[1]
    assert "| page  |" in lines[2]


def test_missing_log_file(tmp_path):
    assert read_server_logs(logs_dir=tmp_path) == []
