from __future__ import annotations

from warden.core.config.manager import ConfigManager
from warden.core.config.models import WardenConfig

__all__ = ["ConfigManager", "WardenConfig"]
