import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[object]]


class ResourceReconciler:
    """Refreshes whatever a finished agent tool call changed.

    Every reload is best-effort: failures are logged and never stop the
    caller's remaining effects. One reload is issued per trigger; repeated
    triggers are not deduplicated.
    """

    def __init__(self, reload_app_data: Loader, reload_tables: Loader, reload_versions: Loader,
                 get_center_view: Callable[[], str], set_center_view: Callable[[str], None]):
        self.reload_app_data = reload_app_data
        self.reload_tables = reload_tables
        self.reload_versions = reload_versions
        self.get_center_view = get_center_view
        self.set_center_view = set_center_view

    async def reconcile(self, affected_resource: str | None) -> list[str]:
        """Reload the owner of ``affected_resource``; returns what was reloaded."""
        if affected_resource in ("workflow", "ui_schema"):
            await self._safe("app data", self.reload_app_data)
            return ["app_data"]
        if affected_resource == "database":
            if self.get_center_view() != "database":
                self.set_center_view("database")
            await self._safe("database tables", self.reload_tables)
            return ["database_tables"]
        if affected_resource:
            logger.debug("No reload mapped for affected resource %r", affected_resource)
        return []

    async def refresh_all(self) -> list[str]:
        """App data and version list, after a run finishes or an action is approved."""
        await self._safe("app data", self.reload_app_data)
        await self._safe("versions", self.reload_versions)
        return ["app_data", "versions"]

    async def refresh_versions(self):
        await self._safe("versions", self.reload_versions)

    async def _safe(self, what: str, loader: Loader):
        try:
            await loader()
        except Exception as e:
            logger.warning("Failed to reload %s: %s", what, e)
