from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from contextlib import ExitStack, contextmanager
from typing import Any, Dict, Iterator, Optional, Protocol

from warden.core.errors import ConfigError


NAMESPACES = (
    "access-policy",
    "attempts",
    "backup-config",
    "backups",
    "events",
    "lockouts",
    "origin-failures",
    "password-policy",
    "second-factor",
)


class StateBackend(Protocol):
    durable: bool

    def load(self, namespace: str) -> Optional[Any]: ...

    def save(self, namespace: str, value: Any) -> None: ...


class MemoryBackend:
    """Process-local backend. Nothing survives a restart."""

    durable = False

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def load(self, namespace: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(namespace))

    def save(self, namespace: str, value: Any) -> None:
        self._data[namespace] = copy.deepcopy(value)


class JsonDirBackend:
    """
    One JSON document per namespace under `root`:
    - <root>/<namespace>.json   {"namespace": ..., "value": ...}

    Writes go to a temp file in the same directory and are swapped in with os.replace.
    """

    durable = True

    def __init__(self, root: str):
        self.root = root
        os.makedirs(root, exist_ok=True)

    def path(self, namespace: str) -> str:
        return os.path.join(self.root, f"{namespace}.json")

    def load(self, namespace: str) -> Optional[Any]:
        p = self.path(namespace)
        if not os.path.exists(p):
            return None
        try:
            with open(p, "r", encoding="utf-8") as f:
                obj = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"State file is corrupt: {os.path.basename(p)}", path=p, error=str(e)) from e
        if not isinstance(obj, dict) or obj.get("namespace") != namespace:
            raise ConfigError(f"State file has an unexpected shape: {os.path.basename(p)}", path=p)
        return obj.get("value")

    def save(self, namespace: str, value: Any) -> None:
        fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=self.root)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"namespace": namespace, "value": value}, f, indent=2, ensure_ascii=False, sort_keys=True)
                f.write("\n")
            os.replace(tmp, self.path(namespace))
        finally:
            try:
                if os.path.exists(tmp):
                    os.remove(tmp)
            except OSError:
                pass


class SecurityStore:
    """
    Explicit state container shared by the gate, audit log, policy engine and vault.

    Each namespace has its own re-entrant lock. `locked()` takes several of them in
    sorted order so that two callers asking for overlapping sets cannot deadlock.
    """

    def __init__(self, backend: Optional[StateBackend] = None):
        self.backend: StateBackend = backend or MemoryBackend()
        self._locks: Dict[str, threading.RLock] = {ns: threading.RLock() for ns in NAMESPACES}
        self._cache: Dict[str, Any] = {}

    @property
    def durable(self) -> bool:
        return bool(getattr(self.backend, "durable", False))

    def _check(self, namespace: str) -> None:
        if namespace not in self._locks:
            raise KeyError(f"Unknown state namespace: {namespace!r}")

    @contextmanager
    def locked(self, *namespaces: str) -> Iterator[None]:
        names = sorted(set(namespaces))
        for ns in names:
            self._check(ns)
        with ExitStack() as stack:
            for ns in names:
                stack.enter_context(self._locks[ns])
            yield

    def read(self, namespace: str, default: Any = None) -> Any:
        self._check(namespace)
        with self._locks[namespace]:
            if namespace not in self._cache:
                self._cache[namespace] = self.backend.load(namespace)
            value = self._cache[namespace]
            if value is None:
                return copy.deepcopy(default)
            return copy.deepcopy(value)

    def write(self, namespace: str, value: Any) -> None:
        self._check(namespace)
        with self._locks[namespace]:
            self.backend.save(namespace, value)
            self._cache[namespace] = copy.deepcopy(value)

    def write_many(self, values: Dict[str, Any]) -> None:
        """Replace several namespaces while holding all of their locks."""
        with self.locked(*values.keys()):
            for ns in sorted(values):
                self.write(ns, values[ns])
