"""Data models for the stallwatch engine.

Uses Pydantic for the item union, run results and the final report.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator


class ResultLevel(str, Enum):
    """Terminal classification of one supervised run."""

    PASS = "PASS"
    FAIL = "FAIL"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"


class ExecutionLevel(str, Enum):
    """Execution level label used for log naming and reports."""

    L1 = "L1"  # Executor
    L2 = "L2"  # Builder
    L3 = "L3"  # Autonomous
    L4 = "L4"  # Specialist


# --- Items (normalized units of agent output) ---


class _ItemBase(BaseModel):
    model_config = {"frozen": True, "extra": "ignore"}

    id: str = ""


class MessageItem(_ItemBase):
    """Final or intermediate response text from the agent."""

    type: Literal["agent_message"] = "agent_message"
    text: str = ""


class ReasoningItem(_ItemBase):
    """Reasoning summary emitted between actions."""

    type: Literal["reasoning"] = "reasoning"
    text: str = ""


class CommandItem(_ItemBase):
    """A shell command run by the agent."""

    type: Literal["command_execution"] = "command_execution"
    command: str = ""
    aggregated_output: str = ""
    exit_code: int | None = None
    status: str = "in_progress"  # in_progress | completed | failed


class FileChange(BaseModel):
    """One (kind, path) edit inside a file-change item."""

    model_config = {"frozen": True}

    kind: str  # add | delete | update
    path: str

    def describe(self) -> str:
        return f"{self.kind}: {self.path}"


class FileChangeItem(_ItemBase):
    """A patch applied by the agent. Changes keep their original order."""

    type: Literal["file_change"] = "file_change"
    changes: tuple[FileChange, ...] = ()
    status: str = "completed"  # completed | failed


class ToolCallItem(_ItemBase):
    """An MCP tool invocation."""

    type: Literal["mcp_tool_call"] = "mcp_tool_call"
    server: str = ""
    tool: str = ""
    status: str = "in_progress"


class SearchItem(_ItemBase):
    type: Literal["web_search"] = "web_search"
    query: str = ""


class TodoEntry(BaseModel):
    model_config = {"frozen": True}

    text: str = ""
    completed: bool = False


class TodoListItem(_ItemBase):
    type: Literal["todo_list"] = "todo_list"
    items: tuple[TodoEntry, ...] = ()

    @property
    def count(self) -> int:
        return len(self.items)


class ErrorItem(_ItemBase):
    """A non-fatal error reported by the agent as part of its output."""

    type: Literal["error"] = "error"
    message: str = ""


class UnknownItem(_ItemBase):
    """Item whose shape is not recognized. Kept so nothing is silently lost."""

    type: str = "unknown"
    raw: dict[str, Any] = Field(default_factory=dict)


KnownItem = Annotated[
    Union[
        MessageItem,
        ReasoningItem,
        CommandItem,
        FileChangeItem,
        ToolCallItem,
        SearchItem,
        TodoListItem,
        ErrorItem,
    ],
    Field(discriminator="type"),
]

Item = Union[KnownItem, UnknownItem]

_known_item_adapter: TypeAdapter[Any] = TypeAdapter(KnownItem)


def parse_item(raw: Any) -> Item:
    """Build an Item from a raw payload.

    Never raises: unrecognized or malformed payloads become UnknownItem.
    """
    if isinstance(raw, _ItemBase):
        return raw  # type: ignore[return-value]
    if not isinstance(raw, dict):
        return UnknownItem(type=type(raw).__name__, raw={"value": raw})

    item_type = raw.get("type")
    try:
        return _known_item_adapter.validate_python(raw)
    except ValidationError:
        pass
    return UnknownItem(
        id=str(raw.get("id") or ""),
        type=str(item_type or "unknown"),
        raw=raw,
    )


# --- Run state ---


class Usage(BaseModel):
    """Token usage reported on turn completion."""

    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0

    @field_validator("input_tokens", "output_tokens", "cached_input_tokens", mode="before")
    @classmethod
    def _null_as_zero(cls, value: int | None) -> int:
        return 0 if value is None else value


class RunResult(BaseModel):
    """Outcome of one pass through the timed event consumer."""

    items: list[Item] = Field(default_factory=list)
    session_id: str | None = None
    final_text: str = ""
    usage: Usage | None = None
    stalled: bool = False
    error: str | None = None


class RecoveryRecord(BaseModel):
    """Bookkeeping for stall recovery attempts."""

    attempted: bool = False
    attempts: int = 0
    recovered: bool = False
    last_error: str | None = None


# --- Report ---


class ReportStats(BaseModel):
    total_items: int = 0
    commands: int = 0
    file_changes: int = 0
    tool_calls: int = 0
    usage: Usage | None = None


class Report(BaseModel):
    """Final, flat summary of a supervised run."""

    thread_id: str | None = None
    level: ExecutionLevel = ExecutionLevel.L2
    result: ResultLevel
    content: str = ""
    error: str | None = None
    progress_log: str | None = None
    rollout_file: str | None = None
    stats: ReportStats = Field(default_factory=ReportStats)
    files_modified: list[FileChange] = Field(default_factory=list)
    recovery: RecoveryRecord | None = None
    needs_user_input: bool = False
