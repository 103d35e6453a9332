"""Thread events emitted by an agent session.

Codex-style agents stream JSONL events while a turn runs:

    {"type": "thread.started", "thread_id": "..."}
    {"type": "turn.started"}
    {"type": "item.started" | "item.updated" | "item.completed", "item": {...}}
    {"type": "turn.completed", "usage": {"input_tokens": 1, "output_tokens": 2}}
    {"type": "turn.failed", "error": {"message": "..."}}
    {"type": "error", "message": "..."}

parse_event() turns one decoded line into a typed event. Shapes that do not
validate become UnknownEvent instead of raising.
"""

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from stallwatch.core.models import Item, Usage, parse_item

logger = logging.getLogger(__name__)


class _EventBase(BaseModel):
    model_config = {"frozen": True, "extra": "ignore"}


class ThreadStartedEvent(_EventBase):
    type: Literal["thread.started"] = "thread.started"
    thread_id: str


class TurnStartedEvent(_EventBase):
    type: Literal["turn.started"] = "turn.started"


class _ItemEvent(_EventBase):
    item: Item

    @field_validator("item", mode="before")
    @classmethod
    def _coerce_item(cls, value: Any) -> Item:
        return parse_item(value)


class ItemStartedEvent(_ItemEvent):
    type: Literal["item.started"] = "item.started"


class ItemUpdatedEvent(_ItemEvent):
    type: Literal["item.updated"] = "item.updated"


class ItemCompletedEvent(_ItemEvent):
    type: Literal["item.completed"] = "item.completed"


class TurnCompletedEvent(_EventBase):
    type: Literal["turn.completed"] = "turn.completed"
    usage: Usage = Field(default_factory=Usage)


class TurnError(BaseModel):
    model_config = {"frozen": True}

    message: str = ""


class TurnFailedEvent(_EventBase):
    type: Literal["turn.failed"] = "turn.failed"
    error: TurnError = Field(default_factory=TurnError)


class StreamErrorEvent(_EventBase):
    """Fatal stream-level error reported by the agent itself."""

    type: Literal["error"] = "error"
    message: str = ""


class UnknownEvent(_EventBase):
    type: str = "unknown"
    raw: dict[str, Any] = Field(default_factory=dict)


KnownEvent = Annotated[
    Union[
        ThreadStartedEvent,
        TurnStartedEvent,
        ItemStartedEvent,
        ItemUpdatedEvent,
        ItemCompletedEvent,
        TurnCompletedEvent,
        TurnFailedEvent,
        StreamErrorEvent,
    ],
    Field(discriminator="type"),
]

ThreadEvent = Union[KnownEvent, UnknownEvent]

_known_event_adapter: TypeAdapter[Any] = TypeAdapter(KnownEvent)


def parse_event(raw: Any) -> ThreadEvent:
    """Parse a decoded event payload. Already-parsed events pass through."""
    if isinstance(raw, _EventBase):
        return raw  # type: ignore[return-value]
    if not isinstance(raw, dict):
        return UnknownEvent(type=type(raw).__name__, raw={"value": raw})

    event_type = raw.get("type")
    try:
        return _known_event_adapter.validate_python(raw)
    except ValidationError as e:
        logger.debug(f"Unrecognized or malformed '{event_type}' event: {e.error_count()} error(s)")
    return UnknownEvent(type=str(event_type or "unknown"), raw=raw)
