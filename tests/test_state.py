from __future__ import annotations

import pytest

import poselink.api.services.state as state
from poselink.core.config.settings import PoseLinkSettings


class DummyEngine:
    def __init__(self, settings: PoseLinkSettings):
        self.settings = settings
        self.started = 0
        self.stopped = 0
        self.applied: list[PoseLinkSettings] = []

    def start(self):
        self.started += 1

    def stop(self):
        self.stopped += 1

    def apply_settings(self, settings: PoseLinkSettings):
        self.applied.append(settings)


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
        return PoseLinkSettings(receive_port=6000)

    monkeypatch.setattr(state, "load_settings", _load)

    assert state.get_settings().receive_port == 6000
    assert state.get_settings().receive_port == 6000
    assert calls["n"] == 1


def test_reload_settings_hot_applies_without_restart():
    state._settings = PoseLinkSettings(beta=0.1)
    engine = DummyEngine(state._settings)
    state._engine = engine

    updated = state.reload_settings({"min_cutoff": 2.0})
    assert updated.min_cutoff == 2.0
    assert updated.beta == 0.1
    assert state._engine is engine
    assert engine.stopped == 0
    assert engine.applied == [updated]


def test_reload_without_patch_reads_config(monkeypatch: pytest.MonkeyPatch):
    state._settings = PoseLinkSettings(beta=0.1)
    monkeypatch.setattr(state, "load_settings", lambda: PoseLinkSettings(beta=0.7))
    assert state.reload_settings().beta == 0.7


def test_get_and_stop_engine(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(state, "BridgeEngine", DummyEngine)
    monkeypatch.setattr(state, "load_settings", lambda: PoseLinkSettings())

    engine = state.get_engine()
    assert state.get_engine() is engine
    assert engine.started == 1

    state.stop_engine()
    assert engine.stopped == 1
    assert state._engine is None
