import asyncio
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

SAVE_CHANGELOG = "Workflow update"


def needs_version_binding(app) -> bool:
    """True until the app's current version points at a workflow."""
    return not app.current_version_id or not app.bound_workflow_id


class WorkflowSaveReconciler:
    """Writes the workflow draft back and binds it to an app version once.

    ``state`` is the owning build session: it provides ``app_id``, ``app``,
    ``draft`` and ``save_state``. Only one save runs at a time; a save
    requested meanwhile is skipped, not queued.
    """

    def __init__(self, client, state, reconciler):
        self.client = client
        self.state = state
        self.reconciler = reconciler
        self._busy = False
        self._ui_busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def mark_dirty(self):
        self.state.draft.revision += 1
        save_state = self.state.save_state
        save_state.dirty = True
        if save_state.status != "saving":
            save_state.status = "unsaved"

    def mark_clean(self):
        save_state = self.state.save_state
        save_state.dirty = False
        if save_state.status != "saving":
            save_state.status = "saved"

    async def save(self) -> bool:
        """Persist the draft. False when skipped (busy) or failed."""
        if self._busy:
            logger.debug("Save skipped for app %s: another save is in flight", self.state.app_id)
            return False
        self._busy = True
        save_state = self.state.save_state
        save_state.saving = True
        save_state.status = "saving"

        draft = self.state.draft
        revision = draft.revision
        definition = draft.definition()
        try:
            app = self.state.app
            workflow_id = app.bound_workflow_id or draft.id
            if workflow_id:
                await self.client.update_workflow(workflow_id, definition)
            else:
                workflow_id = await self.client.create_workflow(
                    definition["name"], definition, description=app.description or "",
                )
                logger.info("Created workflow %s for app %s", workflow_id, self.state.app_id)
            draft.id = workflow_id

            if needs_version_binding(app):
                current = app.current_version
                version = await self.client.create_version(
                    self.state.app_id, workflow_id,
                    ui_schema=current.ui_schema if current else None,
                    db_schema=current.db_schema if current else None,
                    changelog=SAVE_CHANGELOG,
                )
                if version:
                    app.current_version_id = version.id
                    app.current_version = version
                    logger.info("Bound workflow %s to version %s", workflow_id, version.id)
        except Exception as e:
            logger.error("Failed to save workflow for app %s: %s", self.state.app_id, e)
            save_state.status = "error"
            save_state.last_error = str(e)
            return False
        finally:
            save_state.saving = False
            self._busy = False

        save_state.last_saved_at = datetime.now(timezone.utc)
        save_state.last_error = None
        if self.state.draft is draft and draft.revision != revision:
            save_state.dirty = True
            save_state.status = "unsaved"
        else:
            save_state.dirty = False
            save_state.status = "saved"
        await self.reconciler.refresh_versions()
        return True

    async def save_ui_schema(self) -> bool:
        """Write the edited UI schema; the platform answers with the new current version."""
        if self._ui_busy:
            return False
        self._ui_busy = True
        save_state = self.state.save_state
        try:
            version = await self.client.update_ui_schema(self.state.app_id, self.state.ui_schema or {})
        except Exception as e:
            logger.error("Failed to save UI schema for app %s: %s", self.state.app_id, e)
            save_state.last_error = str(e)
            return False
        finally:
            self._ui_busy = False

        if version:
            self.state.app.current_version_id = version.id
            self.state.app.current_version = version
        save_state.ui_schema_dirty = False
        save_state.last_error = None
        await self.reconciler.refresh_versions()
        return True


class AutosaveTask:
    """Periodic save of a dirty draft; use as ``async with`` to bound its life."""

    def __init__(self, reconciler: WorkflowSaveReconciler, interval: float = 30.0):
        self.reconciler = reconciler
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> bool:
        save_state = self.reconciler.state.save_state
        if self.reconciler.busy:
            return False
        if not (save_state.dirty or save_state.status == "unsaved"):
            return False
        return await self.reconciler.save()

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Autosave tick failed for app %s", self.reconciler.state.app_id)

    def start(self):
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()
