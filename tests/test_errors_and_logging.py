from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

import pytest

from warden.core.errors import AccountLockedError, ConfigError, TokenError, ValidationError
from warden.core.logger import setup_logging


def test_error_to_dict_redacts_context():
    e = ConfigError("bad config", secret="s3cr3t", path="/x")
    d = e.to_dict()
    assert d["code"] == "config_error"
    assert d["recoverable"] is False
    assert d["context"] == {"secret": "***REDACTED***", "path": "/x"}
    assert str(e) == "bad config"


def test_typed_error_fields():
    assert ValidationError("nope", reasons=["a", "b"]).reasons == ["a", "b"]
    assert AccountLockedError(123.0).locked_until == 123.0
    assert TokenError("idle-timeout").reason == "idle-timeout"
    with pytest.raises(ValueError):
        TokenError("weird")


def test_setup_logging_is_idempotent(tmp_path):
    logger = setup_logging(str(tmp_path), "debug")
    setup_logging(str(tmp_path), "debug")
    assert logger.level == logging.DEBUG
    assert sum(isinstance(h, RotatingFileHandler) for h in logger.handlers) == 1
    logger.getChild("access").info("hello file")
    for h in logger.handlers:
        h.flush()
    assert "hello file" in (tmp_path / "warden.log").read_text(encoding="utf-8")
