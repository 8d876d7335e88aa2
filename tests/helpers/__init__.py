from .entities import Call, ReindexRecorder, StubEntity
from .util import wait_until

__all__ = [
    "Call",
    "ReindexRecorder",
    "StubEntity",
    "wait_until",
]
