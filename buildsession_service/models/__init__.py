from .events import AgentEvent, AgentStatus, ToolResult
from .sessions import (
    ChatRequest,
    ConfirmRequest,
    DraftUpdate,
    UISchemaUpdate,
    CenterViewRequest,
)
from .transcript import TranscriptEntry, PendingAction, CompletionInfo
from .workflow import AppRecord, AppVersion, WorkflowDraft, SaveState

__all__ = [
    "AgentEvent",
    "AgentStatus",
    "ToolResult",
    "ChatRequest",
    "ConfirmRequest",
    "DraftUpdate",
    "UISchemaUpdate",
    "CenterViewRequest",
    "TranscriptEntry",
    "PendingAction",
    "CompletionInfo",
    "AppRecord",
    "AppVersion",
    "WorkflowDraft",
    "SaveState",
]
