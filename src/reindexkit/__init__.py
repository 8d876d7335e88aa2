from __future__ import annotations

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("reindexkit")
except Exception:  # pragma: no cover
    # source checkout without an installed distribution
    __version__ = "0.0.0"

from .api.entity import ReindexEntity, ReindexFn, ReindexOptions, ReindexStrength
from .api.errors import CallbackFailure, ReindexkitError, SchedulingMisuseError
from .core.config import SchedulerConfig
from .observability.events import EventPhase, ReindexEvent
from .observability.sinks import CompositeSink, LoggingSink, RecordingSink
from .scheduler.manager import HierarchicalReindexManager, create

__all__ = [
    "CallbackFailure",
    "CompositeSink",
    "EventPhase",
    "HierarchicalReindexManager",
    "LoggingSink",
    "RecordingSink",
    "ReindexEntity",
    "ReindexEvent",
    "ReindexFn",
    "ReindexOptions",
    "ReindexStrength",
    "ReindexkitError",
    "SchedulerConfig",
    "SchedulingMisuseError",
    "__version__",
    "create",
]
