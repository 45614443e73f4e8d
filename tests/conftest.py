"""
Shared fixtures for watchlist tests.
"""

import asyncio
import os
import random
import tempfile

import pytest
import uvicorn

from polytracking.mirror import LocalMirror
from polytracking.mutator import OptimisticMutator
from polytracking.notices import NoticeBoard
from polytracking.session import StaticIdentity

from .fakes import FakeStore
from .mock_servers import create_backend_app

USER_KEY = "user-test-001"


class _UvicornServer:
    def __init__(self, app, host: str, port: int):
        self.config = uvicorn.Config(app, host=host, port=port, log_level="error")
        self.server = uvicorn.Server(self.config)
        self._task: asyncio.Task | None = None

    async def start(self):
        self._task = asyncio.create_task(self.server.serve())
        for _ in range(100):
            if self.server.started:
                return
            await asyncio.sleep(0.05)
        raise RuntimeError("Server did not start")

    async def stop(self):
        self.server.should_exit = True
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._task.cancel()


def _pick_port():
    return random.randint(19000, 19999)


@pytest.fixture
async def backend_server():
    port = _pick_port()
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)
    app = create_backend_app(db_path)
    srv = _UvicornServer(app, "127.0.0.1", port)
    await srv.start()
    yield f"http://127.0.0.1:{port}"
    await srv.stop()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def watchlist_config_dict(backend_server):
    return {
        "backend": {"url": backend_server, "request_timeout_seconds": 5},
        "identity": {"user_key_env": "TEST_POLYTRACKING_USER_KEY"},
        "poller": {"interval_seconds": 0.2},
        "logging": {"level": "debug", "format": "text"},
        "metrics": {"enabled": False, "port": _pick_port()},
    }


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def mirror():
    return LocalMirror()


@pytest.fixture
def notices():
    return NoticeBoard()


@pytest.fixture
def identity():
    return StaticIdentity(USER_KEY)


@pytest.fixture
def mutator(store, mirror, identity, notices):
    async def refresh():
        mirror.replace_all(await store.list_subscriptions(USER_KEY))

    return OptimisticMutator(store, mirror, identity, notices, refresh=refresh)
