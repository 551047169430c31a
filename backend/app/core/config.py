"""
Configuration entry point.

Modules import ``settings`` from here; the implementation lives in
``app.core.settings``.
"""
from app.core.settings import Settings, get_settings, settings

__all__ = ["Settings", "get_settings", "settings"]
