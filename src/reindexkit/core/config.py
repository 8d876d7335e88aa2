from __future__ import annotations

"""
reindexkit.core.config
======================

Strongly-typed scheduler configuration.
- No external deps; optional JSON file loading.
- Derives second-based fields from milliseconds for logging/diagnostics.
- Provides small env overrides for convenience.

If a config file path is not provided or not found, defaults are used.
"""

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from ..api.errors import SchedulingMisuseError
from .logging import get_logger, warn_once
from .types import (
    DEFAULT_ADAPTIVE_COOLDOWN_MIN_MS,
    DEFAULT_COOLDOWN_WINDOW_MS,
    DEFAULT_DELAY_MS,
    DEFAULT_RETRY_DELAY_MS,
)

_log = get_logger("config")

_ENV_INT_FIELDS = {
    "REINDEXKIT_DELAY_MS": "delay_ms",
    "REINDEXKIT_COOLDOWN_WINDOW_MS": "cooldown_window_ms",
    "REINDEXKIT_ADAPTIVE_COOLDOWN_MIN_MS": "adaptive_cooldown_min_ms",
    "REINDEXKIT_RETRY_DELAY_MS": "retry_delay_ms",
}


def _try_load_json(path: Path | None) -> dict[str, Any]:
    if not path or not path.exists():
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise SchedulingMisuseError(f"config file {path} must contain a JSON object")
    return data


def _env_bool(name: str) -> bool | None:
    val = os.getenv(name)
    if val is None or val == "":
        return None
    return val.lower() in ("1", "true", "yes", "on")


@dataclass
class SchedulerConfig:
    """Reindex scheduler configuration loaded from JSON/env with derived second fields."""

    # ---- Debounce
    delay_ms: int = DEFAULT_DELAY_MS

    # ---- Propagation
    propagate_parents_default: bool = True

    # ---- Cooldown
    cooldown_window_ms: int = DEFAULT_COOLDOWN_WINDOW_MS
    adaptive_cooldown_min_ms: int = DEFAULT_ADAPTIVE_COOLDOWN_MIN_MS

    # ---- Timer fired while a run is still in flight
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS

    # ---- Derived (seconds)
    delay_sec: float = 0.0
    cooldown_window_sec: float = 0.0

    def __post_init__(self) -> None:
        for name in ("delay_ms", "cooldown_window_ms", "adaptive_cooldown_min_ms", "retry_delay_ms"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, int) or val < 0:
                raise SchedulingMisuseError(f"{name} must be a non-negative integer, got {val!r}")
        if self.retry_delay_ms == 0:
            raise SchedulingMisuseError("retry_delay_ms must be positive")
        self.delay_sec = self.delay_ms / 1000.0
        self.cooldown_window_sec = self.cooldown_window_ms / 1000.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> SchedulerConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - REINDEXKIT_DELAY_MS
          - REINDEXKIT_COOLDOWN_WINDOW_MS
          - REINDEXKIT_ADAPTIVE_COOLDOWN_MIN_MS
          - REINDEXKIT_RETRY_DELAY_MS
          - REINDEXKIT_PROPAGATE_PARENTS (1/0)
        """
        data: dict[str, Any] = {}

        # File
        data.update(_try_load_json(Path(path) if path else None))

        # Env
        for env_name, field_name in _ENV_INT_FIELDS.items():
            raw = os.getenv(env_name)
            if raw:
                try:
                    data[field_name] = int(raw)
                except ValueError as e:
                    raise SchedulingMisuseError(f"{env_name} must be an integer, got {raw!r}") from e
        propagate = _env_bool("REINDEXKIT_PROPAGATE_PARENTS")
        if propagate is not None:
            data["propagate_parents_default"] = propagate

        # Overrides
        if overrides:
            data.update(overrides)

        # Derived fields are recomputed; drop them if they round-tripped through JSON.
        data.pop("delay_sec", None)
        data.pop("cooldown_window_sec", None)

        known = set(cls.__dataclass_fields__)
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            warn_once(_log, f"config.unknown_keys:{','.join(unknown)}", "ignoring unknown config keys", keys=unknown)
            data = {k: v for k, v in data.items() if k in known}

        return cls(**data)
