import asyncio
import logging

from .build_session import BuildSession
from .identity_store import create_identity_store

logger = logging.getLogger(__name__)


class SessionRegistry:
    """One BuildSession per app, created on first use and kept until removed."""

    def __init__(self, settings, client, pool=None):
        self.settings = settings
        self.client = client
        self.pool = pool
        self.sessions: dict[str, BuildSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self.sessions)

    async def get(self, app_id: str) -> BuildSession:
        session = self.sessions.get(app_id)
        if session is not None:
            return session
        lock = self._locks.setdefault(app_id, asyncio.Lock())
        async with lock:
            session = self.sessions.get(app_id)
            if session is None:
                store = create_identity_store(self.settings, app_id, self.pool)
                session = BuildSession(
                    app_id, self.client, store,
                    autosave_interval=self.settings.autosave_interval,
                )
                await session.start()
                self.sessions[app_id] = session
                logger.info("Build session opened for app %s (store=%s)", app_id, store.backend)
        return session

    async def remove(self, app_id: str) -> bool:
        session = self.sessions.pop(app_id, None)
        if session is None:
            return False
        await session.close()
        logger.info("Build session closed for app %s", app_id)
        return True

    async def close_all(self):
        for app_id in list(self.sessions):
            await self.remove(app_id)

    def degraded_stores(self) -> list[str]:
        return [app_id for app_id, s in self.sessions.items() if s.identity_store.degraded]
