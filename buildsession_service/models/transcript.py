import itertools
from datetime import datetime, timezone

from pydantic import BaseModel, Field
from typing import Literal, Optional

from .events import ToolResult

Role = Literal["user", "assistant", "agent_thinking", "tool_call", "tool_result", "confirmation"]

_entry_ids = itertools.count(1)


def _next_entry_id() -> str:
    return f"entry_{next(_entry_ids)}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptEntry(BaseModel):
    id: str = Field(default_factory=_next_entry_id)
    role: Role
    content: str = ""
    tool_name: Optional[str] = None
    tool_result: Optional[ToolResult] = None
    affected_resource: Optional[str] = None
    action_id: Optional[str] = None
    step: Optional[int] = None
    timestamp: datetime = Field(default_factory=_now)


class Transcript:
    """Append-only list of entries; only a trailing thinking entry is rewritten."""

    def __init__(self):
        self.entries: list[TranscriptEntry] = []

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def last(self) -> TranscriptEntry | None:
        return self.entries[-1] if self.entries else None

    def append(self, role: Role, content: str = "", **fields) -> TranscriptEntry:
        entry = TranscriptEntry(role=role, content=content, **fields)
        self.entries.append(entry)
        return entry

    def think(self, content: str, step: int | None = None) -> TranscriptEntry:
        last = self.last
        if last is not None and last.role == "agent_thinking":
            last.content = content
            last.step = step
            return last
        return self.append("agent_thinking", content, step=step)

    def page(self, offset: int = 0, limit: int = 100) -> list[TranscriptEntry]:
        return self.entries[offset:offset + limit]

    def reset(self):
        self.entries = []


class PendingAction(BaseModel):
    action_id: str
    tool_name: Optional[str] = None
    resolved: bool = False


class CompletionInfo(BaseModel):
    """What a finished agent run touched."""

    affected_resources: list[str] = []
    tool_call_count: int = 0

    @property
    def has_ui_schema(self) -> bool:
        return "ui_schema" in self.affected_resources

    @property
    def has_database(self) -> bool:
        return "database" in self.affected_resources

    @property
    def has_workflow(self) -> bool:
        return "workflow" in self.affected_resources
