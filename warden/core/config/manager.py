from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from warden.core.config.models import WardenConfig
from warden.core.errors import ConfigError


CONFIG_FILENAME = "warden.json"


def atomic_write_json(path: str, data: Dict[str, Any]) -> None:
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
        os.replace(tmp, path)
    finally:
        try:
            if os.path.exists(tmp):
                os.remove(tmp)
        except OSError:
            pass


class ConfigManager:
    """
    Loads `<root>/config/warden.json`.

    A missing file is created with defaults. Relative paths inside the config
    (state_dir, log_dir, key_path, export_dir) are resolved against `root`.
    """

    def __init__(self, root: str = ".", *, logger: Optional[logging.Logger] = None, read_only: bool = False):
        self.root = root
        self.logger = logger or logging.getLogger("warden.config")
        self.read_only = read_only
        self._cfg: Optional[WardenConfig] = None

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def path(self) -> str:
        return os.path.join(self.config_dir, CONFIG_FILENAME)

    def load(self) -> WardenConfig:
        raw = self._read_raw()
        try:
            cfg = WardenConfig.model_validate(raw)
        except PydanticValidationError as e:
            failures = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ConfigError(f"{CONFIG_FILENAME} invalid: " + "; ".join(failures), path=self.path, failures=failures) from e
        self._cfg = self._resolve_paths(cfg)
        return self._cfg

    def get(self) -> WardenConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def save(self, cfg: WardenConfig) -> None:
        if self.read_only:
            raise ConfigError("Config manager is read-only.", path=self.path)
        atomic_write_json(self.path, cfg.model_dump(mode="json"))
        self._cfg = self._resolve_paths(cfg)

    # ---- internals ----
    def _read_raw(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            defaults = WardenConfig().model_dump(mode="json")
            self.logger.warning("Missing config %s; creating defaults.", CONFIG_FILENAME)
            if not self.read_only:
                atomic_write_json(self.path, defaults)
            return defaults
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                obj = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{CONFIG_FILENAME} is not valid JSON: {e}", path=self.path) from e
        if not isinstance(obj, dict):
            raise ConfigError(f"{CONFIG_FILENAME} must contain a JSON object.", path=self.path)
        return obj

    def _abs(self, p: Optional[str]) -> Optional[str]:
        if p is None or os.path.isabs(p):
            return p
        return os.path.join(self.root, p)

    def _resolve_paths(self, cfg: WardenConfig) -> WardenConfig:
        cfg = cfg.model_copy(deep=True)
        cfg.storage.state_dir = self._abs(cfg.storage.state_dir)
        cfg.logging.log_dir = self._abs(cfg.logging.log_dir)
        cfg.backup.key_path = self._abs(cfg.backup.key_path) or cfg.backup.key_path
        cfg.backup.export_dir = self._abs(cfg.backup.export_dir) or cfg.backup.export_dir
        return cfg
