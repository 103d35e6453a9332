# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the stallwatch test suite.

This module provides:
- Scripted event sources that emit events, pause, or raise on cue
- An in-memory progress log
- A fake agent backend with scripted start/resume streams
- Sample raw events

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
    Helpers (Pause, scripted_source, FakeAgent) are importable from conftest.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from stallwatch.core.config import ExecutionOptions, SupervisorConfig
from stallwatch.core.progress import MemoryProgressLog

# Short inactivity window so stall tests finish quickly
TEST_TIMEOUT = 0.2


# =============================================================================
# Scripted Event Sources
# =============================================================================


@dataclass(frozen=True)
class Pause:
    """Script step: sleep before the next step."""

    seconds: float


async def scripted_source(steps: list[Any]) -> AsyncIterator[Any]:
    """Yield events from a script.

    Steps:
        dict / event model -> yielded as an event
        Pause(seconds)     -> sleep, then continue
        Exception instance -> raised from the source
    """
    for step in steps:
        if isinstance(step, Pause):
            await asyncio.sleep(step.seconds)
        elif isinstance(step, BaseException):
            raise step
        else:
            yield step


def thread_started(thread_id: str = "thread-X") -> dict[str, Any]:
    return {"type": "thread.started", "thread_id": thread_id}


def message(text: str = "done", item_id: str = "msg-1") -> dict[str, Any]:
    return {
        "type": "item.completed",
        "item": {"id": item_id, "type": "agent_message", "text": text},
    }


def command(cmd: str = "ls", status: str = "completed", exit_code: int | None = 0) -> dict[str, Any]:
    return {
        "type": "item.completed",
        "item": {
            "id": "cmd-1",
            "type": "command_execution",
            "command": cmd,
            "aggregated_output": "",
            "exit_code": exit_code,
            "status": status,
        },
    }


def file_change(path: str = "src/app.py", kind: str = "update", status: str = "completed") -> dict[str, Any]:
    return {
        "type": "item.completed",
        "item": {
            "id": "fc-1",
            "type": "file_change",
            "changes": [{"path": path, "kind": kind}],
            "status": status,
        },
    }


def error_item(text: str = "something broke") -> dict[str, Any]:
    return {"type": "item.completed", "item": {"id": "err-1", "type": "error", "message": text}}


def turn_completed(input_tokens: int = 10, output_tokens: int = 5) -> dict[str, Any]:
    return {
        "type": "turn.completed",
        "usage": {
            "input_tokens": input_tokens,
            "cached_input_tokens": 0,
            "output_tokens": output_tokens,
        },
    }


# =============================================================================
# Fake Agent Backend
# =============================================================================


@dataclass
class FakeAgent:
    """Agent backend whose streams come from scripts.

    start_script: steps for the initial run
    resume_scripts: one entry per resume call, consumed in order; an
        Exception entry is raised by resume() itself
    """

    start_script: list[Any] = field(default_factory=list)
    resume_scripts: list[Any] = field(default_factory=list)
    start_error: Exception | None = None
    start_calls: list[tuple[str, ExecutionOptions]] = field(default_factory=list)
    resume_calls: list[tuple[str, str]] = field(default_factory=list)

    def start(self, prompt: str, options: ExecutionOptions) -> AsyncIterator[Any]:
        self.start_calls.append((prompt, options))
        if self.start_error is not None:
            raise self.start_error
        return scripted_source(self.start_script)

    async def resume(self, session_id: str, prompt: str) -> AsyncIterator[Any]:
        self.resume_calls.append((session_id, prompt))
        script = self.resume_scripts.pop(0) if self.resume_scripts else [Pause(60)]
        if isinstance(script, Exception):
            raise script
        return scripted_source(script)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def memory_log() -> MemoryProgressLog:
    """Fresh in-memory progress log."""
    return MemoryProgressLog()


@pytest.fixture
def fast_config(tmp_path: Path) -> SupervisorConfig:
    """Config with a short inactivity timeout and logs under tmp_path."""
    return SupervisorConfig(
        inactivity_timeout=TEST_TIMEOUT,
        max_recovery_attempts=2,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def fake_agent() -> FakeAgent:
    """Empty fake agent; tests fill in the scripts."""
    return FakeAgent()
