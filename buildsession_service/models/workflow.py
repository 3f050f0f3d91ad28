from datetime import datetime

from pydantic import BaseModel
from typing import Any, Literal, Optional

SaveStatus = Literal["saved", "unsaved", "saving", "error"]

UNNAMED_WORKFLOW = "Untitled workflow"


class AppVersion(BaseModel):
    id: str
    version: Optional[str] = None
    workflow_id: Optional[str] = None
    ui_schema: Optional[dict[str, Any]] = None
    db_schema: Optional[dict[str, Any]] = None
    changelog: Optional[str] = None
    created_at: Optional[str] = None

    model_config = {"extra": "ignore"}


class AppRecord(BaseModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    current_version_id: Optional[str] = None
    current_version: Optional[AppVersion] = None

    model_config = {"extra": "ignore"}

    @property
    def bound_workflow_id(self) -> Optional[str]:
        if self.current_version:
            return self.current_version.workflow_id
        return None


class WorkflowDraft(BaseModel):
    """Editable in-memory mirror of the app's workflow document.

    ``revision`` grows with every local edit so a save can tell whether the
    draft changed underneath it.
    """

    id: Optional[str] = None
    name: str = UNNAMED_WORKFLOW
    nodes: list[dict[str, Any]] = []
    edges: list[dict[str, Any]] = []
    version: Optional[int] = None
    revision: int = 0

    @classmethod
    def empty(cls, app_name: str = "") -> "WorkflowDraft":
        return cls(name=app_name or UNNAMED_WORKFLOW)

    def definition(self) -> dict[str, Any]:
        return {"name": self.name, "nodes": self.nodes, "edges": self.edges}


class SaveState(BaseModel):
    status: SaveStatus = "saved"
    dirty: bool = False
    saving: bool = False
    last_saved_at: Optional[datetime] = None
    last_error: Optional[str] = None
    ui_schema_dirty: bool = False
