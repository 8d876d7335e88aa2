# conftest.py
from __future__ import annotations

import os
import uuid

import pytest
import pytest_asyncio

from reindexkit import RecordingSink, create
from reindexkit.core.logging import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
    get_logger,
    log_context,
)
from tests.helpers import ReindexRecorder, StubEntity


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit reindexkit logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_reindexkit_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    # Unless enabled explicitly via env, turn it on here (human-readable by default)
    if os.getenv("REINDEXKIT_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(pytest_nodeid=request.node.nodeid, test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start", event="pytest.test.start")
        yield


@pytest.fixture
def recorder() -> ReindexRecorder:
    return ReindexRecorder()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def tree():
    """root -> parent -> child, plus a sibling under root."""
    root = StubEntity("root")
    parent = root.child("parent")
    child = parent.child("child")
    sibling = root.child("sibling")
    return root, parent, child, sibling


@pytest_asyncio.fixture
async def manager_factory(recorder, sink):
    """
    Returns a manager factory; every manager is closed (and its in-flight runs
    awaited) at teardown. The shared `recorder` is the default callback.
    """
    started = []

    def _spawn(**kw):
        kw.setdefault("sink", sink)
        reindex = kw.pop("reindex", recorder)
        mgr = create(reindex, **kw)
        started.append(mgr)
        return mgr

    try:
        yield _spawn
    finally:
        for mgr in started:
            await mgr.aclose()
