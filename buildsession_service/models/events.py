from pydantic import BaseModel
from typing import Any, Literal, Optional

EVENT_THOUGHT = "thought"
EVENT_TOOL_CALL = "tool_call"
EVENT_TOOL_RESULT = "tool_result"
EVENT_CONFIRMATION_REQUIRED = "confirmation_required"
EVENT_MESSAGE = "message"
EVENT_DONE = "done"
EVENT_ERROR = "error"

AffectedResource = Literal["workflow", "database", "ui_schema"]
AFFECTED_RESOURCES = ("workflow", "database", "ui_schema")


class ToolResult(BaseModel):
    success: bool = False
    output: Optional[str] = None
    error: Optional[str] = None


class AgentEvent(BaseModel):
    """One event of an agent chat stream.

    ``type`` is kept as a plain string so that event types this client does
    not know about still parse and can be skipped in order.
    """

    type: str
    step: Optional[int] = None
    content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_args: Optional[dict[str, Any]] = None
    tool_result: Optional[ToolResult] = None
    action_id: Optional[str] = None
    error: Optional[str] = None
    session_id: Optional[str] = None
    # Open-ended on the wire (the agent also reports e.g. "persona").
    affected_resource: Optional[str] = None

    model_config = {"extra": "ignore"}


class AgentStatus(BaseModel):
    provider: str = "heuristic"
    model: Optional[str] = None

    model_config = {"extra": "allow"}
