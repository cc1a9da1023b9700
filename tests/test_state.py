from __future__ import annotations

import pytest

import posecam.api.services.state as state
from posecam.core.config.settings import PoseCamSettings


class DummyEngine:
    def __init__(self, settings: PoseCamSettings):
        self.settings = settings
        self.started = 0
        self.stopped = 0

    def start(self):
        self.started += 1

    def stop(self):
        self.stopped += 1


@pytest.fixture(autouse=True)
def _reset_state():
    state._settings = None
    state._engine = None
    yield
    state._settings = None
    state._engine = None


def test_get_settings_initializes_once(monkeypatch: pytest.MonkeyPatch):
    calls = {"n": 0}

    def _load():
        calls["n"] += 1
        return PoseCamSettings(min_confidence=0.6)

    monkeypatch.setattr(state, "load_settings", _load)

    assert state.get_settings().min_confidence == 0.6
    assert state.get_settings().min_confidence == 0.6
    assert calls["n"] == 1


def test_get_engine_creates_and_starts_once(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(state, "CameraEngine", DummyEngine)
    monkeypatch.setattr(state, "load_settings", PoseCamSettings)

    engine = state.get_engine()
    assert state.get_engine() is engine
    assert engine.started == 1


def test_reload_settings_recreates_engine_when_running(monkeypatch: pytest.MonkeyPatch):
    state._settings = PoseCamSettings()
    old_engine = DummyEngine(state._settings)
    state._engine = old_engine

    monkeypatch.setattr(state, "CameraEngine", DummyEngine)
    monkeypatch.setattr(state, "load_settings", PoseCamSettings)

    updated = state.reload_settings({"draw_body_joints": True})
    assert updated.draw_body_joints is True
    assert old_engine.stopped == 1
    assert state._engine is not old_engine
    assert state._engine.started == 1
    assert state._engine.settings.draw_body_joints is True


def test_stop_engine_stops_and_clears_engine():
    old_engine = DummyEngine(PoseCamSettings())
    state._engine = old_engine
    state.stop_engine()
    assert old_engine.stopped == 1
    assert state._engine is None


def test_engine_status_does_not_create_an_engine():
    assert state.engine_status() == (False, None)
    assert state._engine is None


def test_engine_status_reflects_running_engine():
    engine = DummyEngine(PoseCamSettings())
    engine.running = True
    engine.last_error = None
    state._engine = engine
    assert state.engine_status() == (True, None)
