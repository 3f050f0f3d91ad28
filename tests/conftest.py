"""Test configuration and shared fixtures for BuildSession service tests.

The platform API is replaced by an AsyncMock client whose chat streams are
scripted from the test, so no platform or Oracle database is needed.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from buildsession_service.config import BuildSessionSettings
from buildsession_service.models.events import AgentEvent, AgentStatus
from buildsession_service.models.workflow import AppRecord, AppVersion
from buildsession_service.services.build_session import BuildSession
from buildsession_service.services.identity_store import SessionIdentityStore
from buildsession_service.services.registry import SessionRegistry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_settings(**overrides) -> BuildSessionSettings:
    defaults = {
        "platform_base_url": "http://platform.test/api/v1",
        "session_store": "memory",
        "oracle_user": "test",
        "oracle_password": "test",
        "oracle_pool_min": 1,
        "oracle_pool_max": 2,
        "autosave_interval": 30.0,
        "auto_init": False,
    }
    defaults.update(overrides)
    return BuildSessionSettings(**defaults)


async def wait_for(predicate, timeout: float = 1.0):
    """Yield to the event loop until ``predicate()`` holds."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(_poll(), timeout)


# ---------------------------------------------------------------------------
# Scripted agent stream
# ---------------------------------------------------------------------------

class ScriptedStream:
    """Events are pushed by the test and delivered to the coordinator in order."""

    def __init__(self, app_id, message, session_id):
        self.app_id = app_id
        self.message = message
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def push(self, **event):
        self._queue.put_nowait(AgentEvent(**event))

    def fail(self, error: Exception):
        self._queue.put_nowait(error)

    def end(self):
        self._queue.put_nowait(None)

    async def events(self):
        try:
            while True:
                item = await self._queue.get()
                if item is None:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed = True


# ---------------------------------------------------------------------------
# Mock pool & connection
# ---------------------------------------------------------------------------

class MockCursor:
    def __init__(self, rows=None, rowcount=0):
        self._rows = rows or []
        self.rowcount = rowcount

    async def execute(self, sql, params=None):
        pass

    async def fetchall(self):
        return self._rows

    async def fetchone(self):
        return self._rows[0] if self._rows else None


class MockConnection:
    def cursor(self):
        return MockCursor()

    async def commit(self):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class MockPool:
    def __init__(self):
        self.min = 1
        self.max = 2
        self.busy = 0
        self.opened = 1
        self._conn = MockConnection()

    def acquire(self):
        return self._conn

    async def close(self):
        pass


# ---------------------------------------------------------------------------
# Mock platform client
# ---------------------------------------------------------------------------

def make_app(workflow_id=None, version_id=None, name="Fleet Manager") -> AppRecord:
    current = None
    if version_id:
        current = AppVersion(
            id=version_id,
            workflow_id=workflow_id,
            ui_schema={"pages": [{"id": "home"}]},
            db_schema={"tables": ["vehicles"]},
        )
    return AppRecord(id="app-1", name=name, current_version_id=version_id, current_version=current)


def make_mock_platform_client(app: AppRecord | None = None):
    client = AsyncMock()
    client.streams = []

    def _stream_chat(app_id, message, session_id=None):
        stream = ScriptedStream(app_id, message, session_id)
        client.streams.append(stream)
        return stream.events()

    client.stream_chat = MagicMock(side_effect=_stream_chat)
    client.get_app = AsyncMock(side_effect=lambda app_id: (app or make_app()).model_copy(deep=True))
    client.get_workflow = AsyncMock(return_value={
        "id": "wf-1",
        "name": "Trip approvals",
        "nodes": [{"id": "start", "type": "start"}],
        "edges": [],
        "version": 3,
        "updatedAt": "2026-01-01T00:00:00Z",
    })
    client.update_workflow = AsyncMock(return_value={"id": "wf-1"})
    client.create_workflow = AsyncMock(return_value="wf-new")
    client.create_version = AsyncMock(side_effect=lambda app_id, workflow_id, **kw: AppVersion(
        id="ver-new", workflow_id=workflow_id,
        ui_schema=kw.get("ui_schema") or {}, db_schema=kw.get("db_schema") or {},
    ))
    client.list_versions = AsyncMock(return_value=[AppVersion(id="ver-1", version="1.0.0")])
    client.list_tables = AsyncMock(return_value=[{"name": "vehicles"}])
    client.update_ui_schema = AsyncMock(side_effect=lambda app_id, ui_schema: AppVersion(
        id="ver-ui", workflow_id=None, ui_schema=ui_schema,
    ))
    client.confirm_action = AsyncMock(return_value={"ok": True})
    client.cancel_session = AsyncMock(return_value={"cancelled": True})
    client.get_agent_status = AsyncMock(return_value=AgentStatus(provider="openai", model="gpt-4o"))
    client.close = AsyncMock()
    return client


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return _make_settings()


@pytest.fixture
def mock_pool():
    return MockPool()


@pytest.fixture
def platform_client():
    return make_mock_platform_client()


@pytest.fixture
def identity_store():
    return SessionIdentityStore("agent_session_id:app-1")


@pytest_asyncio.fixture
async def session(platform_client, identity_store):
    """A loaded BuildSession for an app with no workflow and no version; autosave not started."""
    s = BuildSession("app-1", platform_client, identity_store)
    await s.load()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def app_no_db():
    """FastAPI app without registry or pool. Session endpoints return 503."""
    from buildsession_service.main import app

    app.state.settings = _make_settings()
    app.state.pool = None
    app.state.registry = None
    yield app


@pytest_asyncio.fixture
async def app_with_mocks(platform_client):
    """FastAPI app whose registry drives the mock platform client."""
    from buildsession_service.main import app

    settings = _make_settings()
    pool = MockPool()
    app.state.settings = settings
    app.state.pool = pool
    app.state.platform_client = platform_client
    app.state.registry = SessionRegistry(settings, platform_client, pool)
    yield app
    await app.state.registry.close_all()


@pytest_asyncio.fixture
async def client_no_db(app_no_db):
    transport = ASGITransport(app=app_no_db)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def client(app_with_mocks):
    transport = ASGITransport(app=app_with_mocks)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
