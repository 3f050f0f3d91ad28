import json
import logging
import os
import time
from pathlib import Path

logger = logging.getLogger(__name__)


class SessionIdentityStore:
    """Holds the agent session id of one app across restarts.

    Backends override ``_load``/``_save``/``_delete``. A backend failure never
    reaches the caller: the store logs it, flips ``degraded`` and keeps
    serving the in-memory copy.
    """

    backend = "memory"

    def __init__(self, key: str):
        self.key = key
        self.degraded = False
        self._session_id: str | None = None
        self._loaded = False

    @property
    def current(self) -> str | None:
        """Last known session id, without touching the backend."""
        return self._session_id

    async def get(self) -> str | None:
        if not self._loaded:
            try:
                stored = await self._load()
            except Exception as e:
                self._mark_degraded("read", e)
                self._loaded = True
            else:
                if stored is not None:
                    self._session_id = stored
                self._loaded = True
        return self._session_id

    async def set(self, session_id: str):
        self._session_id = session_id
        self._loaded = True
        try:
            await self._save(session_id)
        except Exception as e:
            self._mark_degraded("write", e)

    async def clear(self):
        self._session_id = None
        self._loaded = True
        try:
            await self._delete()
        except Exception as e:
            self._mark_degraded("delete", e)

    def _mark_degraded(self, op: str, error: Exception):
        if not self.degraded:
            logger.warning(
                "Session store %s %s failed for %s, continuing in memory: %s",
                self.backend, op, self.key, error,
            )
        self.degraded = True

    async def _load(self) -> str | None:
        return None

    async def _save(self, session_id: str):
        pass

    async def _delete(self):
        pass


class FileIdentityStore(SessionIdentityStore):
    """Session ids kept in one JSON object file, ``{store_key: session_id}``."""

    backend = "file"

    def __init__(self, key: str, path: str):
        super().__init__(key)
        self.path = Path(path)

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)

    async def _load(self) -> str | None:
        value = self._read_all().get(self.key)
        return value if isinstance(value, str) and value else None

    async def _save(self, session_id: str):
        data = self._read_all()
        data[self.key] = session_id
        self._write_all(data)

    async def _delete(self):
        data = self._read_all()
        if data.pop(self.key, None) is not None:
            self._write_all(data)


class OracleIdentityStore(SessionIdentityStore):
    """Session ids kept in BUILDSESSION_IDENTITY."""

    backend = "oracle"

    def __init__(self, key: str, pool):
        super().__init__(key)
        self.pool = pool

    async def _load(self) -> str | None:
        async with self.pool.acquire() as conn:
            cursor = conn.cursor()
            await cursor.execute(
                "SELECT session_id FROM BUILDSESSION_IDENTITY WHERE store_key = :store_key",
                {"store_key": self.key},
            )
            row = await cursor.fetchone()
            return row[0] if row else None

    async def _save(self, session_id: str):
        async with self.pool.acquire() as conn:
            cursor = conn.cursor()
            await cursor.execute(
                """
                MERGE INTO BUILDSESSION_IDENTITY i
                USING (SELECT :store_key AS store_key FROM DUAL) src
                ON (i.store_key = src.store_key)
                WHEN MATCHED THEN
                    UPDATE SET session_id = :session_id, updated_at = :updated_at
                WHEN NOT MATCHED THEN
                    INSERT (store_key, session_id, updated_at)
                    VALUES (:store_key, :session_id, :updated_at)
                """,
                {
                    "store_key": self.key,
                    "session_id": session_id,
                    "updated_at": int(time.time() * 1000),
                },
            )
            await conn.commit()

    async def _delete(self):
        async with self.pool.acquire() as conn:
            cursor = conn.cursor()
            await cursor.execute(
                "DELETE FROM BUILDSESSION_IDENTITY WHERE store_key = :store_key",
                {"store_key": self.key},
            )
            await conn.commit()


def create_identity_store(settings, app_id: str, pool=None) -> SessionIdentityStore:
    """Build the identity store configured by ``settings.session_store``.

    The oracle backend needs a pool; without one the store starts degraded
    and lives in memory.
    """
    key = settings.session_key(app_id)
    if settings.session_store == "file":
        return FileIdentityStore(key, settings.session_store_path)
    if settings.session_store == "oracle":
        if pool is not None:
            return OracleIdentityStore(key, pool)
        store = SessionIdentityStore(key)
        store.degraded = True
        return store
    return SessionIdentityStore(key)
