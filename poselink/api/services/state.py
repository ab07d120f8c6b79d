"""In-process state for settings and the bridge engine.

FastAPI routes use this module to access (and hot-reconfigure) the singleton
`BridgeEngine` instance.
"""

from __future__ import annotations

from threading import RLock

from poselink.api.services.engine import BridgeEngine
from poselink.core.config.settings import PoseLinkSettings, load_settings, settings_to_dict

_settings: PoseLinkSettings | None = None
_engine: BridgeEngine | None = None
_lock = RLock()


def get_settings() -> PoseLinkSettings:
    """Return cached settings, loading them on first use."""

    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
    return _settings


def reload_settings(data: dict | None = None) -> PoseLinkSettings:
    """Update settings and push them to the running engine.

    Args:
        data: Optional patch merged into the current settings. Without a patch
            the settings are reloaded from YAML and the environment.
    """

    global _settings
    with _lock:
        if data:
            _settings = PoseLinkSettings(**{**settings_to_dict(get_settings()), **data})
        else:
            _settings = load_settings()
        if _engine:
            _engine.apply_settings(_settings)
    return _settings


def get_engine() -> BridgeEngine:
    """Return the singleton engine instance, creating and starting it if needed."""

    global _engine
    with _lock:
        if _engine is None:
            _engine = BridgeEngine(get_settings())
            _engine.start()
    return _engine


def stop_engine() -> None:
    """Stop and discard the singleton engine instance (if present)."""

    global _engine
    with _lock:
        if _engine is not None:
            _engine.stop()
            _engine = None
