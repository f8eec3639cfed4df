from __future__ import annotations

import logging

import pytest

from warden.core.config.models import WardenConfig
from warden.core.security_core import SecurityCore
from warden.core.store import JsonDirBackend, SecurityStore

from .helpers.fakes import FakeClock, FakeUserDirectory


TEST_SECRET = "test-session-secret-0123456789abcdef0123"


@pytest.fixture(autouse=True)
def _no_env_secret(monkeypatch):
    monkeypatch.delenv("WARDEN_SESSION_SECRET", raising=False)


@pytest.fixture(autouse=True)
def _reset_warden_logger():
    yield
    logger = logging.getLogger("warden")
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users():
    return FakeUserDirectory(
        users=[
            {"id": "u1", "email": "root@example.com", "role": "super_admin"},
            {"id": "u2", "email": "mod@example.com", "role": "moderator"},
        ]
    )


@pytest.fixture
def cfg():
    c = WardenConfig.in_memory()
    c.session.secret = TEST_SECRET
    return c


@pytest.fixture
def core(cfg, clock, users):
    """Isolated core over a MemoryBackend and a fake clock."""
    return SecurityCore(cfg, users=users, now=clock.time)


@pytest.fixture
def durable_core(tmp_path, cfg, clock, users):
    c = cfg.model_copy(deep=True)
    c.storage.state_dir = str(tmp_path / "state")
    c.backup.key_path = str(tmp_path / "secure" / "backup.key")
    c.backup.export_dir = str(tmp_path / "exports")
    return SecurityCore(c, users=users, now=clock.time)


@pytest.fixture
def json_store(tmp_path):
    return SecurityStore(JsonDirBackend(str(tmp_path / "state")))
