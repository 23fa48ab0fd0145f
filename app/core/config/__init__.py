from __future__ import annotations

from .settings import Settings, load_settings, settings

__all__ = ["Settings", "load_settings", "settings"]
