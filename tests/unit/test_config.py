from __future__ import annotations

import json

import pytest

from reindexkit import SchedulerConfig, SchedulingMisuseError

pytestmark = [pytest.mark.unit]


def test_defaults_and_derived_seconds():
    cfg = SchedulerConfig()
    assert cfg.delay_ms == 50
    assert cfg.propagate_parents_default is True
    assert cfg.cooldown_window_ms == 0
    assert cfg.adaptive_cooldown_min_ms == 1
    assert cfg.delay_sec == pytest.approx(0.05)


@pytest.mark.parametrize(
    "field,value",
    [("delay_ms", -1), ("cooldown_window_ms", 1.5), ("retry_delay_ms", 0), ("adaptive_cooldown_min_ms", True)],
)
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(SchedulingMisuseError):
        SchedulerConfig(**{field: value})


def test_load_applies_file_then_env_then_overrides(tmp_path, monkeypatch):
    path = tmp_path / "reindex.json"
    path.write_text(json.dumps({"delay_ms": 10, "cooldown_window_ms": 5, "delay_sec": 99}), encoding="utf-8")
    monkeypatch.setenv("REINDEXKIT_COOLDOWN_WINDOW_MS", "7")
    monkeypatch.setenv("REINDEXKIT_PROPAGATE_PARENTS", "0")

    cfg = SchedulerConfig.load(path, overrides={"adaptive_cooldown_min_ms": 2})

    assert cfg.delay_ms == 10
    assert cfg.delay_sec == pytest.approx(0.01)
    assert cfg.cooldown_window_ms == 7
    assert cfg.propagate_parents_default is False
    assert cfg.adaptive_cooldown_min_ms == 2


def test_load_missing_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("REINDEXKIT_DELAY_MS", raising=False)
    cfg = SchedulerConfig.load(tmp_path / "absent.json")
    assert cfg.delay_ms == 50


def test_load_ignores_unknown_keys(monkeypatch):
    cfg = SchedulerConfig.load(overrides={"delay_ms": 3, "kafka_bootstrap": "x"})
    assert cfg.delay_ms == 3


def test_load_rejects_malformed_env(monkeypatch):
    monkeypatch.setenv("REINDEXKIT_DELAY_MS", "soon")
    with pytest.raises(SchedulingMisuseError):
        SchedulerConfig.load()
