from pydantic import BaseModel, Field
from typing import Any, Literal, Optional

CenterView = Literal["workflow", "database", "ui_schema", "preview", "versions"]


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)


class ConfirmRequest(BaseModel):
    approved: bool


class DraftUpdate(BaseModel):
    name: Optional[str] = None
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]]


class UISchemaUpdate(BaseModel):
    ui_schema: dict[str, Any]


class CenterViewRequest(BaseModel):
    view: CenterView
