import asyncio
import itertools
import logging
from contextlib import aclosing
from typing import Awaitable, Callable, Optional

from ..models.events import AgentEvent
from .platform_client import PlatformError

logger = logging.getLogger(__name__)

_stream_ids = itertools.count(1)


class StreamHandle:
    """One open agent stream.

    ``closed`` flips exactly once, through ``StreamCoordinator.release`` or
    ``StreamCoordinator.cancel``; whoever flips it owns the transition back
    to idle.
    """

    def __init__(self, message: str, session_id: str | None):
        self.id = next(_stream_ids)
        self.message = message
        self.session_id = session_id
        self.task: Optional[asyncio.Task] = None
        self.closed = False
        self.cancelled = False
        self.event_count = 0

    @property
    def active(self) -> bool:
        return not self.closed

    def __repr__(self):
        return f"<StreamHandle {self.id} closed={self.closed} cancelled={self.cancelled}>"


EventCallback = Callable[[StreamHandle, AgentEvent], Awaitable[None]]
ErrorCallback = Callable[[StreamHandle, str], Awaitable[None]]
CloseCallback = Callable[[StreamHandle], Awaitable[None]]


class StreamCoordinator:
    """Runs at most one agent chat stream for an app.

    Each stream is consumed by its own task that hands events to
    ``on_event`` strictly in arrival order, one at a time. A transport
    failure ends in ``on_error``; a stream that simply runs out ends in
    ``on_close``. Neither fires for a handle that is already closed.
    """

    def __init__(self, client, app_id: str, on_event: EventCallback,
                 on_error: ErrorCallback, on_close: CloseCallback):
        self.client = client
        self.app_id = app_id
        self.on_event = on_event
        self.on_error = on_error
        self.on_close = on_close
        self.current: StreamHandle | None = None

    @property
    def is_active(self) -> bool:
        return self.current is not None and self.current.active

    def start(self, message: str, session_id: str | None = None) -> StreamHandle:
        """Open a stream, aborting one that is still active."""
        if self.is_active:
            logger.warning("Agent stream %d still active for app %s, cancelling it",
                           self.current.id, self.app_id)
            self.cancel(self.current)
        events = self.client.stream_chat(self.app_id, message, session_id)
        handle = StreamHandle(message, session_id)
        self.current = handle
        handle.task = asyncio.create_task(
            self._consume(handle, events), name=f"agent-stream-{self.app_id}-{handle.id}",
        )
        logger.info("Agent stream %d started for app %s", handle.id, self.app_id)
        return handle

    def release(self, handle: StreamHandle) -> bool:
        """Close ``handle`` without cancelling its task. True only the first time."""
        if handle.closed:
            return False
        handle.closed = True
        return True

    def cancel(self, handle: StreamHandle | None) -> bool:
        """Abort ``handle`` from the client side. Safe to repeat; False if already closed."""
        if handle is None or not self.release(handle):
            return False
        handle.cancelled = True
        if handle.task is not None and handle.task is not asyncio.current_task():
            handle.task.cancel()
        logger.info("Agent stream %d cancelled after %d events", handle.id, handle.event_count)
        return True

    async def aclose(self):
        """Cancel the current stream and wait for its task to unwind."""
        handle = self.current
        if handle is None:
            return
        self.cancel(handle)
        if handle.task is not None and not handle.task.done():
            try:
                await handle.task
            except asyncio.CancelledError:
                pass

    async def _consume(self, handle: StreamHandle, events):
        try:
            async with aclosing(events):
                async for event in events:
                    if handle.closed:
                        break
                    handle.event_count += 1
                    await self.on_event(handle, event)
                    if handle.closed:
                        break
        except PlatformError as e:
            if self.release(handle):
                logger.warning("Agent stream %d failed: %s", handle.id, e)
                await self.on_error(handle, str(e))
            return
        except Exception as e:
            if not self.release(handle):
                raise
            logger.exception("Agent stream %d crashed", handle.id)
            await self.on_error(handle, f"Unexpected stream failure: {e}")
            return
        if self.release(handle):
            logger.info("Agent stream %d ended without a terminal event", handle.id)
            await self.on_close(handle)
