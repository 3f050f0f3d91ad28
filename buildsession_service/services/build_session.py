import logging
from datetime import datetime
from typing import Any

from ..models.events import AgentStatus
from ..models.transcript import Transcript
from ..models.workflow import AppRecord, AppVersion, SaveState, WorkflowDraft
from .confirmation import ConfirmationGate
from .dispatcher import EventDispatcher
from .platform_client import PlatformError
from .reconciler import ResourceReconciler
from .save_reconciler import AutosaveTask, WorkflowSaveReconciler

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class BuildSession:
    """Everything the builder screen keeps for one app.

    Composes the agent conversation (dispatcher, confirmation gate,
    reconciler) with the workflow draft and its save/version logic.
    """

    def __init__(self, app_id: str, client, identity_store, autosave_interval: float = 30.0):
        self.app_id = app_id
        self.client = client
        self.identity_store = identity_store

        self.app: AppRecord | None = None
        self.draft: WorkflowDraft = WorkflowDraft.empty()
        self.ui_schema: dict[str, Any] | None = None
        self.tables: list[dict] = []
        self.versions: list[AppVersion] = []
        self.center_view = "workflow"
        self.save_state = SaveState()
        self.workflow_error: str | None = None
        self._loaded_workflow_id: str | None = None
        self._draft_loaded = False

        self.transcript = Transcript()
        self.reconciler = ResourceReconciler(
            reload_app_data=self.reload_app_data,
            reload_tables=self.reload_tables,
            reload_versions=self.reload_versions,
            get_center_view=lambda: self.center_view,
            set_center_view=self.set_center_view,
        )
        self.gate = ConfirmationGate(client, app_id, identity_store, self.transcript, self.reconciler)
        self.dispatcher = EventDispatcher(
            client, app_id, identity_store, self.reconciler, self.gate, self.transcript,
        )
        self.saver = WorkflowSaveReconciler(client, self, self.reconciler)
        self.autosave = AutosaveTask(self.saver, interval=autosave_interval)

    @property
    def is_streaming(self) -> bool:
        return self.dispatcher.is_streaming

    # ---- loading ----

    async def load(self):
        """Initial load; unlike the reloads, failures propagate."""
        await self.identity_store.get()
        await self.reload_app_data()
        await self.reconciler.refresh_versions()
        try:
            await self.reload_tables()
        except PlatformError as e:
            logger.warning("Database tables unavailable for app %s: %s", self.app_id, e)

    async def reload_app_data(self):
        self.app = await self.client.get_app(self.app_id)
        if not self.save_state.ui_schema_dirty:
            current = self.app.current_version
            self.ui_schema = current.ui_schema if current else None
        await self._sync_draft()

    async def reload_tables(self):
        self.tables = await self.client.list_tables(self.app_id)

    async def reload_versions(self):
        self.versions = await self.client.list_versions(self.app_id)

    async def _sync_draft(self):
        """Replace the draft when the bound workflow changed, or refresh a clean one."""
        bound = self.app.bound_workflow_id
        if not self._draft_loaded or bound != self._loaded_workflow_id:
            self._loaded_workflow_id = bound
            if self._draft_loaded and bound is not None and bound == self.draft.id:
                return
            await self._load_workflow(bound)
        elif bound is not None and not self.save_state.dirty and not self.saver.busy:
            await self._load_workflow(bound)

    async def _load_workflow(self, workflow_id: str | None):
        app_name = self.app.name if self.app else ""
        self._draft_loaded = True
        self.workflow_error = None
        if not workflow_id:
            self.draft = WorkflowDraft.empty(app_name)
            self.save_state.dirty = False
            self.save_state.status = "saved"
            self.save_state.last_saved_at = None
            return
        try:
            workflow = await self.client.get_workflow(workflow_id)
        except PlatformError as e:
            logger.error("Failed to load workflow %s: %s", workflow_id, e)
            self.workflow_error = "Workflow failed to load, please retry later."
            self.draft = WorkflowDraft.empty(app_name)
            return
        definition = workflow.get("definition") if isinstance(workflow.get("definition"), dict) else {}
        self.draft = WorkflowDraft(
            id=str(workflow.get("id") or workflow_id),
            name=workflow.get("name") or definition.get("name") or app_name or WorkflowDraft.empty().name,
            nodes=workflow.get("nodes") or definition.get("nodes") or [],
            edges=workflow.get("edges") or definition.get("edges") or [],
            version=workflow.get("version"),
        )
        self.save_state.dirty = False
        self.save_state.status = "saved"
        self.save_state.last_saved_at = _parse_timestamp(workflow.get("updatedAt") or workflow.get("updated_at"))

    # ---- conversation ----

    async def send(self, message: str):
        return await self.dispatcher.send(message)

    async def stop(self) -> bool:
        return await self.dispatcher.stop()

    async def confirm(self, approved: bool):
        return await self.gate.resolve(approved)

    async def new_conversation(self):
        """Forget the transcript, pending action and agent session id."""
        await self.dispatcher.stop()
        self.dispatcher.reset()
        self.gate.reset()
        await self.identity_store.clear()

    async def agent_status(self) -> AgentStatus:
        return await self.client.get_agent_status(self.app_id)

    # ---- editing ----

    def update_draft(self, nodes: list, edges: list, name: str | None = None):
        self.draft.nodes = nodes
        self.draft.edges = edges
        if name:
            self.draft.name = name
        self.saver.mark_dirty()

    def update_ui_schema(self, ui_schema: dict):
        self.ui_schema = ui_schema
        self.save_state.ui_schema_dirty = True

    def set_center_view(self, view: str):
        self.center_view = view

    async def save(self) -> bool:
        return await self.saver.save()

    async def save_ui_schema(self) -> bool:
        return await self.saver.save_ui_schema()

    # ---- lifecycle ----

    async def start(self):
        await self.load()
        self.autosave.start()

    async def close(self):
        await self.autosave.stop()
        await self.dispatcher.coordinator.aclose()

    def snapshot(self) -> dict:
        pending = self.gate.pending
        completion = self.dispatcher.completion
        return {
            "app_id": self.app_id,
            "session_id": self.identity_store.current,
            "is_streaming": self.is_streaming,
            "awaiting_confirmation": self.gate.awaiting,
            "pending_action": pending.model_dump() if pending else None,
            "center_view": self.center_view,
            "transcript_length": len(self.transcript),
            "completion": completion.model_dump() if completion else None,
            "current_version_id": self.app.current_version_id if self.app else None,
            "draft": self.draft.model_dump(exclude={"revision"}),
            "save": self.save_state.model_dump(mode="json"),
            "workflow_error": self.workflow_error,
            "table_count": len(self.tables),
            "version_count": len(self.versions),
        }
