import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx
from pydantic import ValidationError

from ..models.events import AgentEvent, AgentStatus
from ..models.workflow import AppRecord, AppVersion

logger = logging.getLogger(__name__)


class PlatformError(Exception):
    """A platform API call failed; ``str(err)`` is safe to show to the user."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _unwrap(payload: Any) -> Any:
    """Strip the platform's ``{"code", "message", "data"}`` envelope if present."""
    if isinstance(payload, dict) and "data" in payload and ("code" in payload or "message" in payload):
        return payload["data"]
    return payload


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:500] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return f"HTTP {response.status_code}"


def extract_workflow_id(payload: Any) -> Optional[str]:
    """Find the id in a workflow create response (bare or nested under ``workflow``)."""
    if not isinstance(payload, dict):
        return None
    if payload.get("id"):
        return str(payload["id"])
    nested = payload.get("workflow")
    if isinstance(nested, dict) and nested.get("id"):
        return str(nested["id"])
    return None


def _items(payload: Any, *keys: str) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def _version(payload: Any) -> Optional[AppVersion]:
    if isinstance(payload, dict) and isinstance(payload.get("version"), dict):
        payload = payload["version"]
    if not isinstance(payload, dict) or not payload.get("id"):
        return None
    return AppVersion.model_validate(payload)


class PlatformClient:
    """Async client for the app platform API the build session drives.

    Owns one ``httpx.AsyncClient``; pass ``transport`` to route requests
    elsewhere (tests use ``httpx.MockTransport``).
    """

    def __init__(self, settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        headers = {"Accept": "application/json"}
        if settings.platform_token:
            headers["Authorization"] = f"Bearer {settings.platform_token}"
        self._client = httpx.AsyncClient(
            base_url=settings.platform_base_url,
            headers=headers,
            timeout=httpx.Timeout(settings.request_timeout),
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise PlatformError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise PlatformError(_error_message(resp), status_code=resp.status_code)
        if not resp.content:
            return None
        try:
            return _unwrap(resp.json())
        except ValueError as e:
            raise PlatformError(f"{method} {path} returned invalid JSON") from e

    # ---- agent chat ----

    async def stream_chat(self, app_id: str, message: str,
                          session_id: str | None = None) -> AsyncIterator[AgentEvent]:
        """Open the agent chat stream and yield its events in arrival order.

        The body is Server-Sent Events: each ``data:`` line holds one JSON
        event. Lines that are not JSON objects are skipped.
        """
        body: dict[str, Any] = {"message": message}
        if session_id:
            body["session_id"] = session_id
        path = f"/workspaces/{app_id}/agent/chat"
        timeout = httpx.Timeout(
            self.settings.request_timeout, read=self.settings.stream_read_timeout,
        )
        try:
            async with self._client.stream(
                "POST", path, json=body, timeout=timeout,
                headers={"Accept": "text/event-stream"},
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    raise PlatformError(_error_message(resp), status_code=resp.status_code)
                logger.info("Agent stream connected: app=%s session=%s", app_id, session_id)
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data_str = line[5:].strip()
                    if not data_str or data_str == "[DONE]":
                        continue
                    try:
                        data = json.loads(data_str)
                    except json.JSONDecodeError:
                        logger.debug("Skipping malformed stream line: %s", data_str[:200])
                        continue
                    if not isinstance(data, dict) or not data.get("type"):
                        continue
                    try:
                        event = AgentEvent.model_validate(data)
                    except ValidationError as e:
                        logger.debug("Skipping invalid %s event: %s", data.get("type"), e)
                        continue
                    yield event
        except httpx.HTTPError as e:
            raise PlatformError(f"Agent stream failed: {e}") from e

    async def confirm_action(self, app_id: str, session_id: str, action_id: str,
                             approved: bool) -> Any:
        return await self._request(
            "POST", f"/workspaces/{app_id}/agent/confirm",
            json={"session_id": session_id, "action_id": action_id, "approved": approved},
        )

    async def cancel_session(self, app_id: str, session_id: str) -> Any:
        return await self._request(
            "POST", f"/workspaces/{app_id}/agent/cancel", json={"session_id": session_id},
        )

    async def get_agent_status(self, app_id: str) -> AgentStatus:
        data = await self._request("GET", f"/workspaces/{app_id}/agent/status")
        return AgentStatus.model_validate(data or {})

    # ---- app, workflow, versions ----

    async def get_app(self, app_id: str) -> AppRecord:
        data = await self._request("GET", f"/workspaces/{app_id}")
        if isinstance(data, dict) and isinstance(data.get("workspace"), dict):
            data = data["workspace"]
        return AppRecord.model_validate(data)

    async def get_workflow(self, workflow_id: str) -> dict:
        data = await self._request("GET", f"/workflows/{workflow_id}")
        if isinstance(data, dict) and isinstance(data.get("workflow"), dict):
            return data["workflow"]
        return data or {}

    async def update_workflow(self, workflow_id: str, definition: dict) -> Any:
        return await self._request(
            "PATCH", f"/workflows/{workflow_id}", json={"definition": definition},
        )

    async def create_workflow(self, name: str, definition: dict, description: str = "") -> str:
        data = await self._request("POST", "/workflows", json={
            "name": name,
            "description": description,
            "definition": definition,
            "variables": {},
        })
        workflow_id = extract_workflow_id(data)
        if not workflow_id:
            raise PlatformError("Workflow create returned no id")
        return workflow_id

    async def create_version(self, app_id: str, workflow_id: str, ui_schema: dict | None,
                             db_schema: dict | None, changelog: str) -> Optional[AppVersion]:
        data = await self._request("POST", f"/workspaces/{app_id}/versions", json={
            "workflow_id": workflow_id,
            "ui_schema": ui_schema or {},
            "db_schema": db_schema or {},
            "changelog": changelog,
        })
        return _version(data)

    async def list_versions(self, app_id: str, page: int = 1, page_size: int = 20) -> list[AppVersion]:
        data = await self._request(
            "GET", f"/workspaces/{app_id}/versions",
            params={"page": page, "page_size": page_size},
        )
        return [AppVersion.model_validate(v) for v in _items(data, "items", "versions")]

    async def update_ui_schema(self, app_id: str, ui_schema: dict) -> Optional[AppVersion]:
        data = await self._request(
            "PATCH", f"/workspaces/{app_id}/ui-schema", json={"ui_schema": ui_schema},
        )
        return _version(data)

    async def list_tables(self, app_id: str) -> list[dict]:
        data = await self._request("GET", f"/workspaces/{app_id}/database/tables")
        return _items(data, "tables", "items")
