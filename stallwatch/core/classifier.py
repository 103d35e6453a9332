"""Event classification.

Maps one thread event to the progress line it should produce and, for
completed items, the Item to accumulate. Pure: no state, no I/O.
"""

from dataclasses import dataclass
from typing import Any

from stallwatch.core.events import (
    ItemCompletedEvent,
    ItemStartedEvent,
    ItemUpdatedEvent,
    StreamErrorEvent,
    ThreadEvent,
    ThreadStartedEvent,
    TurnCompletedEvent,
    TurnFailedEvent,
    TurnStartedEvent,
    UnknownEvent,
    parse_event,
)
from stallwatch.core.models import (
    CommandItem,
    ErrorItem,
    FileChangeItem,
    Item,
    MessageItem,
    ReasoningItem,
    SearchItem,
    TodoListItem,
    ToolCallItem,
    UnknownItem,
    Usage,
)

PREVIEW_CHARS = 100


@dataclass(frozen=True)
class Classification:
    """What a single event contributes to a run."""

    log_line: str
    item: Item | None = None
    session_id: str | None = None
    usage: Usage | None = None


def _preview(text: str) -> str:
    if len(text) > PREVIEW_CHARS:
        return text[:PREVIEW_CHARS] + "..."
    return text


def format_item(item: Item) -> str:
    """One-line human readable description of an item."""
    match item:
        case MessageItem():
            return f"[Message] {_preview(item.text)}"
        case ReasoningItem():
            return f"[Reasoning] {_preview(item.text)}"
        case CommandItem():
            exit_code = item.exit_code if item.exit_code is not None else "running"
            return f"[Command] {item.command} (status: {item.status}, exit: {exit_code})"
        case FileChangeItem():
            changes = ", ".join(change.describe() for change in item.changes)
            return f"[FileChange] {changes} ({item.status})"
        case ToolCallItem():
            return f"[MCP] {item.server}/{item.tool} ({item.status})"
        case SearchItem():
            return f"[WebSearch] {item.query}"
        case TodoListItem():
            return f"[TodoList] {item.count} items"
        case ErrorItem():
            return f"[Error] {item.message}"
        case UnknownItem():
            return f"[Unknown] {item.type}"
    raise TypeError(f"Unhandled item type: {type(item).__name__}")


def classify_event(event: ThreadEvent | dict[str, Any]) -> Classification:
    """Classify one event.

    Control signals (thread/turn lifecycle, started/updated items, failures)
    only produce a log line. A completed item produces exactly one Item.
    Unrecognized shapes are reported as unknown, never rejected.
    """
    event = parse_event(event)
    match event:
        case ThreadStartedEvent():
            return Classification(
                log_line=f"Thread started: {event.thread_id}",
                session_id=event.thread_id,
            )
        case TurnStartedEvent():
            return Classification(log_line="Turn started")
        case ItemStartedEvent():
            return Classification(log_line=f"Started: {format_item(event.item)}")
        case ItemUpdatedEvent():
            return Classification(log_line=f"Updated: {format_item(event.item)}")
        case ItemCompletedEvent():
            return Classification(
                log_line=f"Completed: {format_item(event.item)}",
                item=event.item,
            )
        case TurnCompletedEvent():
            usage = event.usage
            return Classification(
                log_line=(
                    f"Turn completed. Tokens: {usage.input_tokens} in / "
                    f"{usage.output_tokens} out"
                ),
                usage=usage,
            )
        case TurnFailedEvent():
            return Classification(log_line=f"Turn failed: {event.error.message}")
        case StreamErrorEvent():
            return Classification(log_line=f"Error: {event.message}")
        case UnknownEvent():
            return Classification(log_line=f"Unknown event: {event.type}")
    raise TypeError(f"Unhandled event type: {type(event).__name__}")
