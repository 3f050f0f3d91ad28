import logging

from ..models.events import (
    AFFECTED_RESOURCES,
    EVENT_CONFIRMATION_REQUIRED,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_MESSAGE,
    EVENT_THOUGHT,
    EVENT_TOOL_CALL,
    EVENT_TOOL_RESULT,
    AgentEvent,
)
from ..models.transcript import CompletionInfo, Transcript
from .platform_client import PlatformError
from .stream_coordinator import StreamCoordinator, StreamHandle

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Stopped by user."

# Successful tools whose effect the agent does not always tag.
TOOL_RESOURCES = {
    "generate_ui_schema": "ui_schema",
    "modify_ui_schema": "ui_schema",
    "create_table": "database",
    "alter_table": "database",
    "insert_data": "database",
    "create_workflow": "workflow",
    "modify_workflow": "workflow",
}


class SessionBusyError(Exception):
    """A message was sent while the previous stream is still running."""


class EventDispatcher:
    """Idle/Streaming state machine of one agent conversation.

    Owns the transcript and the stream coordinator. Events of a stream are
    applied one by one in the order the coordinator delivers them; events
    from a stream that is no longer current are dropped.
    """

    def __init__(self, client, app_id: str, identity_store, reconciler, gate,
                 transcript: Transcript):
        self.client = client
        self.app_id = app_id
        self.identity_store = identity_store
        self.reconciler = reconciler
        self.gate = gate
        self.transcript = transcript
        self.coordinator = StreamCoordinator(
            client, app_id, self.on_event, self.on_error, self.on_close,
        )
        self.is_streaming = False
        self.completion: CompletionInfo | None = None
        self._affected: set[str] = set()
        self._tool_calls = 0

    async def send(self, message: str) -> StreamHandle:
        message = message.strip()
        if not message:
            raise ValueError("Message must not be empty")
        if self.is_streaming:
            raise SessionBusyError("Agent is still working on the previous message")
        # Claimed before the first await so a concurrent send sees us busy.
        self.is_streaming = True
        self.transcript.append("user", message)
        self.completion = None
        self._affected = set()
        self._tool_calls = 0
        try:
            session_id = await self.identity_store.get()
            return self.coordinator.start(message, session_id)
        except BaseException:
            self.is_streaming = False
            raise

    async def stop(self) -> bool:
        """Abort the running stream. Returns False when nothing was running."""
        if not self.coordinator.cancel(self.coordinator.current):
            return False
        self.is_streaming = False
        self.transcript.append("assistant", STOPPED_MESSAGE)
        session_id = await self.identity_store.get()
        if session_id:
            try:
                await self.client.cancel_session(self.app_id, session_id)
            except PlatformError as e:
                logger.warning("Server-side cancel of session %s failed: %s", session_id, e)
        return True

    # ---- coordinator callbacks ----

    async def on_event(self, handle: StreamHandle, event: AgentEvent):
        if handle is not self.coordinator.current or handle.closed:
            logger.debug("Dropping %s event from stale stream %d", event.type, handle.id)
            return
        await self._track_session(event)
        await self.dispatch(handle, event)

    async def on_error(self, handle: StreamHandle, message: str):
        if handle is not self.coordinator.current:
            return
        self.is_streaming = False
        self.transcript.append("assistant", f"Error: {message}")

    async def on_close(self, handle: StreamHandle):
        if handle is not self.coordinator.current:
            return
        self.is_streaming = False

    # ---- event table ----

    async def dispatch(self, handle: StreamHandle, event: AgentEvent):
        if event.affected_resource in AFFECTED_RESOURCES:
            self._affected.add(event.affected_resource)

        if event.type == EVENT_THOUGHT:
            self.transcript.think(event.content or "", step=event.step)

        elif event.type == EVENT_TOOL_CALL:
            self._tool_calls += 1
            self.transcript.append(
                "tool_call", f"Calling tool: {event.tool_name}",
                tool_name=event.tool_name, step=event.step,
            )

        elif event.type == EVENT_TOOL_RESULT:
            result = event.tool_result
            if result and result.success and event.tool_name in TOOL_RESOURCES:
                self._affected.add(TOOL_RESOURCES[event.tool_name])
            content = ""
            if result:
                content = result.output or ("" if result.success else result.error or "")
            self.transcript.append(
                "tool_result", content,
                tool_name=event.tool_name, tool_result=result,
                affected_resource=event.affected_resource, step=event.step,
            )
            if event.affected_resource:
                await self.reconciler.reconcile(event.affected_resource)

        elif event.type == EVENT_CONFIRMATION_REQUIRED:
            self.gate.request(event.action_id, event.tool_name)
            self.transcript.append(
                "confirmation", event.content or f"Confirm action: {event.tool_name}",
                tool_name=event.tool_name, action_id=event.action_id, step=event.step,
            )

        elif event.type == EVENT_MESSAGE:
            self.transcript.append("assistant", event.content or "")

        elif event.type == EVENT_DONE:
            if self.coordinator.release(handle):
                self.is_streaming = False
                if self._tool_calls > 0:
                    self.completion = CompletionInfo(
                        affected_resources=sorted(self._affected),
                        tool_call_count=self._tool_calls,
                    )
                logger.info("Agent stream %d done after %d tool calls", handle.id, self._tool_calls)
                await self.reconciler.refresh_all()

        elif event.type == EVENT_ERROR:
            if self.coordinator.release(handle):
                self.is_streaming = False
                self.transcript.append("assistant", f"Error: {event.error or 'Unknown error'}")

        else:
            logger.debug("Ignoring unknown agent event type %r", event.type)

    async def _track_session(self, event: AgentEvent):
        if not event.session_id:
            return
        if event.session_id != await self.identity_store.get():
            logger.info("Agent session for app %s is now %s", self.app_id, event.session_id)
            await self.identity_store.set(event.session_id)

    def reset(self):
        self.transcript.reset()
        self.completion = None
        self._affected = set()
        self._tool_calls = 0
