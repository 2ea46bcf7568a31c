import logging

import pytest

from api.logging_setup import get_user_message, log_exception, resolve_level
from engine.errors import UnknownNodeError


def test_resolve_level_from_name_and_env(monkeypatch):
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(logging.WARNING) == logging.WARNING
    monkeypatch.setenv("MECHNET_LOG_LEVEL", "ERROR")
    assert resolve_level() == logging.ERROR


def test_resolve_level_rejects_unknown_names():
    with pytest.raises(ValueError):
        resolve_level("chatty")


def test_user_messages():
    assert get_user_message(UnknownNodeError(["x"])) == "Unknown node id(s): x"
    assert get_user_message(ValueError("bad tier")) == "bad tier"
    assert get_user_message(RuntimeError("boom")) == "Unexpected error: boom"


def test_log_exception_includes_context(caplog):
    logger = logging.getLogger("mechnet.test")
    with caplog.at_level(logging.WARNING, logger="mechnet.test"):
        message = log_exception(logger, UnknownNodeError(["x"]), level=logging.WARNING)
    assert message == "Unknown node id(s): x"
    assert "{'node_ids': ['x']}" in caplog.records[0].getMessage()
