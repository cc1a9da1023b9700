"""Process-wide settings and the single pose camera engine.

Only one `CameraEngine` may own the camera device, so every route goes
through the accessors here. A config update rebuilds the engine so new
models and overlay options take effect on the next frame.
"""

from __future__ import annotations

from threading import RLock

from posecam.api.services.engine import CameraEngine
from posecam.core.config.settings import PoseCamSettings, load_settings, settings_to_dict

_settings: PoseCamSettings | None = None
_engine: CameraEngine | None = None
_lock = RLock()


def get_settings() -> PoseCamSettings:
    """Return cached settings, loading them on first use."""

    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
    return _settings


def reload_settings(data: dict | None = None) -> PoseCamSettings:
    """Re-read the config file, apply `data` on top and rebuild the engine.

    A running engine is stopped (camera released, detection worker joined)
    before the replacement opens the device again.
    """

    global _settings, _engine
    with _lock:
        base = load_settings()
        if data:
            _settings = PoseCamSettings(**{**settings_to_dict(base), **data})
        else:
            _settings = base
        if _engine:
            _engine.stop()
            _engine = CameraEngine(_settings)
            _engine.start()
    return _settings


def get_engine() -> CameraEngine:
    """Return the singleton engine instance, creating and starting it if needed."""

    global _engine
    with _lock:
        if _engine is None:
            _engine = CameraEngine(get_settings())
            _engine.start()
    return _engine


def stop_engine() -> None:
    """Stop and discard the singleton engine instance (if present)."""

    global _engine
    with _lock:
        if _engine is not None:
            _engine.stop()
            _engine = None


def engine_status() -> tuple[bool, str | None]:
    """(running, last_error) of the current engine, without creating one."""

    with _lock:
        if _engine is None:
            return False, None
        return bool(_engine.running), _engine.last_error
