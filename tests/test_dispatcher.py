"""Tests for the agent event dispatcher (Idle/Streaming state machine)."""

import asyncio

import pytest

from buildsession_service.services.build_session import BuildSession
from buildsession_service.services.dispatcher import STOPPED_MESSAGE, SessionBusyError
from buildsession_service.services.identity_store import SessionIdentityStore
from buildsession_service.services.platform_client import PlatformError

from conftest import wait_for


pytestmark = pytest.mark.asyncio


async def _run(session, *events, end=True):
    """Send a message, feed ``events`` and wait for the stream task to finish."""
    handle = await session.send("build me a fleet app")
    stream = session.client.streams[-1]
    for event in events:
        stream.push(**event)
    if end:
        stream.end()
    await handle.task
    return handle


def _roles(session):
    return [e.role for e in session.transcript]


# ---------------------------------------------------------------------------
# Event table
# ---------------------------------------------------------------------------

async def test_message_event_sets_session_id(session):
    """First event carrying a session_id is persisted and its content appended."""
    assert await session.identity_store.get() is None

    await _run(session, {"type": "message", "content": "hi", "session_id": "s1"})

    assert await session.identity_store.get() == "s1"
    assert [(e.role, e.content) for e in session.transcript] == [
        ("user", "build me a fleet app"),
        ("assistant", "hi"),
    ]


async def test_session_id_rotation(session):
    """A later event with a different session_id replaces the held one."""
    await _run(
        session,
        {"type": "thought", "content": "a", "session_id": "s1"},
        {"type": "message", "content": "b", "session_id": "s2"},
    )
    assert await session.identity_store.get() == "s2"


async def test_send_passes_known_session_id(session):
    await session.identity_store.set("s-known")
    await _run(session, {"type": "done"})
    assert session.client.streams[-1].session_id == "s-known"


async def test_thoughts_coalesce_into_one_entry(session):
    """Consecutive thoughts leave one agent_thinking entry with the latest content."""
    await _run(
        session,
        {"type": "thought", "content": "Looking at tables"},
        {"type": "thought", "content": "Looking at tables and pages"},
        {"type": "thought", "content": "Planning three pages"},
    )
    thinking = [e for e in session.transcript if e.role == "agent_thinking"]
    assert len(thinking) == 1
    assert thinking[0].content == "Planning three pages"


async def test_thought_after_other_event_starts_new_entry(session):
    await _run(
        session,
        {"type": "thought", "content": "one"},
        {"type": "tool_call", "tool_name": "create_table"},
        {"type": "thought", "content": "two"},
    )
    assert _roles(session) == ["user", "agent_thinking", "tool_call", "agent_thinking"]


async def test_entries_are_one_per_event(session):
    """tool_call/tool_result/message/confirmation are never merged."""
    await _run(
        session,
        {"type": "tool_call", "tool_name": "create_table"},
        {"type": "tool_call", "tool_name": "create_table"},
        {"type": "tool_result", "tool_name": "create_table", "tool_result": {"success": True, "output": "ok"}},
        {"type": "tool_result", "tool_name": "create_table", "tool_result": {"success": False, "error": "dup"}},
        {"type": "message", "content": "a"},
        {"type": "message", "content": "a"},
        {"type": "confirmation_required", "action_id": "act-1", "tool_name": "drop_table"},
        {"type": "confirmation_required", "action_id": "act-2", "tool_name": "drop_table"},
    )
    roles = _roles(session)
    assert roles.count("tool_call") == 2
    assert roles.count("tool_result") == 2
    assert roles.count("assistant") == 2
    assert roles.count("confirmation") == 2


async def test_tool_call_entry(session):
    await _run(session, {"type": "tool_call", "tool_name": "generate_ui_schema", "step": 2})
    entry = session.transcript.last
    assert entry.role == "tool_call"
    assert entry.tool_name == "generate_ui_schema"
    assert entry.content == "Calling tool: generate_ui_schema"
    assert entry.step == 2


async def test_tool_result_entry_carries_result(session):
    await _run(session, {
        "type": "tool_result", "tool_name": "create_table",
        "tool_result": {"success": False, "error": "table exists"},
    })
    entry = session.transcript.last
    assert entry.role == "tool_result"
    assert entry.tool_result.success is False
    assert entry.tool_result.error == "table exists"
    assert entry.content == "table exists"


async def test_database_tool_result_switches_center_view(session, platform_client):
    """A database tool result reloads tables and shows the database view."""
    assert session.center_view == "workflow"
    platform_client.list_tables.reset_mock()

    await _run(session, {
        "type": "tool_result", "tool_name": "create_table",
        "affected_resource": "database", "tool_result": {"success": True},
    })

    platform_client.list_tables.assert_awaited_once_with("app-1")
    assert session.center_view == "database"


async def test_workflow_tool_result_reloads_app(session, platform_client):
    platform_client.get_app.reset_mock()
    await _run(session, {
        "type": "tool_result", "tool_name": "modify_ui_schema",
        "affected_resource": "ui_schema", "tool_result": {"success": True},
    })
    platform_client.get_app.assert_awaited_once_with("app-1")
    assert session.center_view == "workflow"


async def test_reload_failure_does_not_stop_stream(session, platform_client):
    """A failed reload is logged; later events are still applied."""
    platform_client.list_tables.side_effect = PlatformError("tables down")
    await _run(
        session,
        {"type": "tool_result", "tool_name": "create_table", "affected_resource": "database",
         "tool_result": {"success": True}},
        {"type": "message", "content": "created"},
    )
    assert session.transcript.last.content == "created"
    assert session.center_view == "database"


async def test_confirmation_required_opens_pending_action(session):
    await session.send("clean up the schema")
    session.client.streams[-1].push(
        type="confirmation_required", action_id="act-9",
        tool_name="drop_table", content="Drop table vehicles?",
    )
    await wait_for(lambda: session.gate.pending is not None)

    assert session.gate.pending.action_id == "act-9"
    assert session.gate.awaiting is True
    entry = session.transcript.last
    assert entry.role == "confirmation"
    assert entry.content == "Drop table vehicles?"
    assert entry.action_id == "act-9"
    assert session.is_streaming is True
    await session.stop()


async def test_confirmation_default_content(session):
    await _run(session, {"type": "confirmation_required", "action_id": "a", "tool_name": "drop_table"})
    assert session.transcript.last.content == "Confirm action: drop_table"


async def test_newest_confirmation_overwrites_pending(session):
    await _run(
        session,
        {"type": "confirmation_required", "action_id": "first", "tool_name": "t"},
        {"type": "confirmation_required", "action_id": "second", "tool_name": "t"},
    )
    assert session.gate.pending.action_id == "second"
    assert session.gate.pending.resolved is False


async def test_unknown_event_is_ignored(session):
    await _run(
        session,
        {"type": "heartbeat"},
        {"type": "message", "content": "still here"},
    )
    assert _roles(session) == ["user", "assistant"]


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------

async def test_done_returns_to_idle_and_reloads(session, platform_client):
    platform_client.get_app.reset_mock()
    platform_client.list_versions.reset_mock()

    await _run(session, {"type": "done"}, end=False)

    assert session.is_streaming is False
    platform_client.get_app.assert_awaited_once()
    platform_client.list_versions.assert_awaited_once()


async def test_done_ignores_events_after_it(session):
    await _run(
        session,
        {"type": "done"},
        {"type": "message", "content": "late"},
        end=False,
    )
    assert "late" not in [e.content for e in session.transcript]


async def test_done_publishes_completion_info(session):
    await _run(
        session,
        {"type": "tool_call", "tool_name": "generate_ui_schema"},
        {"type": "tool_result", "tool_name": "generate_ui_schema", "tool_result": {"success": True}},
        {"type": "tool_call", "tool_name": "create_table"},
        {"type": "tool_result", "tool_name": "create_table", "affected_resource": "database",
         "tool_result": {"success": True}},
        {"type": "done"},
    )
    completion = session.dispatcher.completion
    assert completion.tool_call_count == 2
    assert completion.affected_resources == ["database", "ui_schema"]
    assert completion.has_ui_schema and completion.has_database
    assert not completion.has_workflow


async def test_done_without_tool_calls_has_no_completion(session):
    await _run(session, {"type": "message", "content": "hello"}, {"type": "done"})
    assert session.dispatcher.completion is None


async def test_error_event(session):
    await _run(session, {"type": "error", "error": "model overloaded"}, end=False)
    assert session.is_streaming is False
    assert session.transcript.last.role == "assistant"
    assert session.transcript.last.content == "Error: model overloaded"


async def test_transport_error(session):
    handle = await session.send("hello")
    session.client.streams[-1].fail(PlatformError("connection reset"))
    await handle.task

    assert session.is_streaming is False
    assert session.transcript.last.content == "Error: connection reset"


async def test_stream_end_without_done(session):
    await _run(session, {"type": "message", "content": "partial"})
    assert session.is_streaming is False
    assert session.transcript.last.content == "partial"


# ---------------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("processed", [0, 1, 4])
async def test_stop_appends_exactly_one_entry(session, processed):
    handle = await session.send("hello")
    stream = session.client.streams[-1]
    for i in range(processed):
        stream.push(type="message", content=f"m{i}")
    await wait_for(lambda: handle.event_count == processed)

    assert await session.stop() is True
    assert await session.stop() is False

    assert session.is_streaming is False
    stopped = [e for e in session.transcript if e.content == STOPPED_MESSAGE]
    assert len(stopped) == 1
    assert session.transcript.last.content == STOPPED_MESSAGE
    assert handle.cancelled is True


async def test_stop_when_idle_is_noop(session):
    assert await session.stop() is False
    assert len(session.transcript) == 0


async def test_stop_drops_later_events(session):
    handle = await session.send("hello")
    await session.stop()
    session.client.streams[-1].push(type="message", content="too late")
    await wait_for(lambda: handle.task.done())
    assert "too late" not in [e.content for e in session.transcript]


async def test_stop_cancels_server_session(session, platform_client):
    await session.identity_store.set("s1")
    await session.send("hello")
    await session.stop()
    platform_client.cancel_session.assert_awaited_once_with("app-1", "s1")


async def test_stop_survives_server_cancel_failure(session, platform_client):
    await session.identity_store.set("s1")
    platform_client.cancel_session.side_effect = PlatformError("gone")
    await session.send("hello")
    assert await session.stop() is True
    assert session.is_streaming is False


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------

async def test_send_while_streaming_is_refused(session):
    await session.send("first")
    with pytest.raises(SessionBusyError):
        await session.send("second")
    assert len(session.client.streams) == 1
    await session.stop()


async def test_send_empty_message_is_refused(session):
    with pytest.raises(ValueError):
        await session.send("   ")
    assert session.is_streaming is False


async def test_send_after_done_opens_new_stream(session):
    await _run(session, {"type": "done"}, end=False)
    await _run(session, {"type": "message", "content": "again"}, {"type": "done"}, end=False)
    assert len(session.client.streams) == 2
    assert session.transcript.last.content == "again"


class SlowStore(SessionIdentityStore):
    """Backend read that suspends before failing."""

    async def _load(self):
        await asyncio.sleep(0.01)
        raise RuntimeError("store unreachable")


async def test_concurrent_sends_open_one_stream(platform_client):
    s = BuildSession("app-1", platform_client, SlowStore("agent_session_id:app-1"))
    try:
        results = await asyncio.gather(s.send("a"), s.send("b"), return_exceptions=True)

        assert len(platform_client.streams) == 1
        assert sum(isinstance(r, SessionBusyError) for r in results) == 1
        assert [e.content for e in s.transcript if e.role == "user"] == ["a"]
        assert s.is_streaming is True
    finally:
        await s.close()


async def test_failed_stream_open_returns_to_idle(session, platform_client):
    platform_client.stream_chat.side_effect = RuntimeError("client closed")
    with pytest.raises(RuntimeError):
        await session.send("hello")
    assert session.is_streaming is False
    assert session.dispatcher.coordinator.is_active is False
