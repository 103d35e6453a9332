"""Tests for the Codex CLI backend.

Subprocess tests run the current Python interpreter as a stand-in for the
codex binary so no real agent is needed.
"""

from __future__ import annotations

import json
import sys
import textwrap

import pytest

from stallwatch.agent.codex import (
    AgentExitError,
    AgentNotFoundError,
    CodexAgent,
    _truncate_output,
)
from stallwatch.core.config import ApprovalPolicy, ExecutionOptions, SandboxMode
from stallwatch.core.consumer import consume_events
from stallwatch.core.events import ItemCompletedEvent, ThreadStartedEvent, UnknownEvent
from stallwatch.core.models import MessageItem

from conftest import TEST_TIMEOUT


def _script(body: str) -> list[str]:
    return [sys.executable, "-c", textwrap.dedent(body)]


def _emit(*events: dict) -> str:
    lines = "".join(f"print({json.dumps(json.dumps(e))}, flush=True)\n" for e in events)
    return "import sys\n" + lines


class TestArgs:
    """Tests for command-line construction."""

    def test_minimal_start(self):
        agent = CodexAgent()
        assert agent.build_start_args("hi", ExecutionOptions()) == ["codex", "exec", "--json", "hi"]

    def test_full_start(self):
        agent = CodexAgent("/usr/local/bin/codex")
        options = ExecutionOptions(
            working_directory="/repo",
            model="gpt-5-codex",
            sandbox_mode=SandboxMode.WORKSPACE_WRITE,
            approval_policy=ApprovalPolicy.NEVER,
            skip_git_repo_check=True,
        )
        assert agent.build_start_args("do it", options) == [
            "/usr/local/bin/codex",
            "exec",
            "--json",
            "--cd",
            "/repo",
            "--model",
            "gpt-5-codex",
            "--sandbox",
            "workspace-write",
            "--config",
            'approval_policy="never"',
            "--skip-git-repo-check",
            "do it",
        ]

    def test_resume(self):
        assert CodexAgent().build_resume_args("T-1", "continue") == [
            "codex",
            "exec",
            "--json",
            "resume",
            "T-1",
            "continue",
        ]


class TestTruncateOutput:
    def test_short_output_unchanged(self):
        assert _truncate_output("abc", 10) == "abc"

    def test_keeps_tail(self):
        out = _truncate_output("0123456789", 4)
        assert out.startswith("[...truncated]")
        assert out.endswith("6789")


class TestCodexEventStream:
    """Tests against a real subprocess."""

    @pytest.mark.asyncio
    async def test_parses_jsonl(self):
        body = _emit(
            {"type": "thread.started", "thread_id": "T"},
            {"type": "item.completed", "item": {"id": "1", "type": "agent_message", "text": "hi"}},
            {"type": "mystery.event"},
        )
        async with CodexAgent(sys.executable) as agent:
            stream = await agent._spawn(_script(body))
            events = [event async for event in stream]

        assert isinstance(events[0], ThreadStartedEvent)
        assert isinstance(events[1], ItemCompletedEvent)
        assert isinstance(events[1].item, MessageItem)
        assert isinstance(events[2], UnknownEvent)

    @pytest.mark.asyncio
    async def test_skips_blank_and_non_json_lines(self):
        body = """
            print("Reading prompt from stdin...", flush=True)
            print("", flush=True)
            print('{"type": "turn.started"}', flush=True)
        """
        async with CodexAgent(sys.executable) as agent:
            stream = await agent._spawn(_script(body))
            events = [event async for event in stream]

        assert len(events) == 1
        assert events[0].type == "turn.started"

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(self):
        body = """
            import sys
            sys.stderr.write("auth failed\\n")
            sys.exit(3)
        """
        async with CodexAgent(sys.executable) as agent:
            stream = await agent._spawn(_script(body))
            with pytest.raises(AgentExitError) as exc_info:
                async for _ in stream:
                    pass

        assert exc_info.value.returncode == 3
        assert "auth failed" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_stall_then_aclose_terminates(self, memory_log):
        """A silent process stalls the consumer and is cleaned up on close."""
        body = """
            import time
            print('{"type": "thread.started", "thread_id": "T"}', flush=True)
            time.sleep(60)
        """
        agent = CodexAgent(sys.executable)
        stream = await agent._spawn(_script(body))

        result = await consume_events(stream, memory_log, TEST_TIMEOUT * 5)
        assert result.stalled is True
        assert result.session_id == "T"
        assert len(agent.running) == 1

        await agent.aclose()
        assert agent.running == []
        assert stream.process.returncode is not None


class TestSpawn:
    @pytest.mark.asyncio
    async def test_missing_binary(self):
        agent = CodexAgent("definitely-not-a-codex-binary")
        with pytest.raises(AgentNotFoundError):
            await agent.start("hi", ExecutionOptions())

    @pytest.mark.asyncio
    async def test_resume_uses_resume_args(self, mocker):
        agent = CodexAgent()
        spawn = mocker.patch.object(agent, "_spawn", mocker.AsyncMock(return_value="stream"))

        assert await agent.resume("T-1", "go on") == "stream"
        spawn.assert_awaited_once_with(["codex", "exec", "--json", "resume", "T-1", "go on"])
