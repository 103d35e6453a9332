"""Codex CLI backend.

Runs `codex exec --json` as a subprocess and exposes its JSONL stdout as an
async stream of thread events.

A stall only stops the engine from waiting; the process keeps running. The
agent tracks every process it spawned and terminates survivors in aclose().
"""

import asyncio
import json
import logging
import shutil
from typing import Any

from stallwatch.core.config import ExecutionOptions
from stallwatch.core.events import ThreadEvent, parse_event

logger = logging.getLogger(__name__)

# Bound on captured stderr to keep error messages small
MAX_STDERR_BYTES = 64 * 1024
# JSONL lines can carry large command output
MAX_LINE_BYTES = 16 * 1024 * 1024
# Seconds to wait for a terminated process before killing it
TERMINATE_GRACE = 5.0


class AgentError(Exception):
    """Error talking to the agent CLI."""

    pass


class AgentNotFoundError(AgentError):
    """Agent CLI binary is not available."""

    pass


class AgentExitError(AgentError):
    """Agent CLI exited with a non-zero status."""

    def __init__(self, returncode: int, stderr: str):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"codex exec exited with code {returncode}: {stderr.strip()}")


def _truncate_output(output: str, max_bytes: int) -> str:
    """Keep the tail of output within max_bytes."""
    encoded = output.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return output
    return "[...truncated] " + encoded[-max_bytes:].decode("utf-8", errors="ignore")


class CodexEventStream:
    """Async iterator over the events of one `codex exec` process."""

    def __init__(self, process: asyncio.subprocess.Process):
        self.process = process
        self._stderr_chunks: list[str] = []
        self._stderr_task = asyncio.ensure_future(self._drain_stderr())

    async def _drain_stderr(self) -> None:
        stream = self.process.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            self._stderr_chunks.append(chunk.decode("utf-8", errors="replace"))

    @property
    def stderr(self) -> str:
        return _truncate_output("".join(self._stderr_chunks), MAX_STDERR_BYTES)

    def __aiter__(self) -> "CodexEventStream":
        return self

    async def __anext__(self) -> ThreadEvent:
        stdout = self.process.stdout
        assert stdout is not None

        while True:
            line = await stdout.readline()
            if not line:
                await self._finish()
                raise StopAsyncIteration

            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                logger.debug(f"Skipping non-JSON codex output: {text[:160]}")
                continue
            return parse_event(payload)

    async def _finish(self) -> None:
        returncode = await self.process.wait()
        await self._stderr_task
        if returncode != 0:
            raise AgentExitError(returncode, self.stderr)


class CodexAgent:
    """Starts and resumes Codex sessions through the `codex` CLI."""

    def __init__(self, command: str = "codex"):
        self.command = command
        self._processes: set[asyncio.subprocess.Process] = set()

    def build_start_args(self, prompt: str, options: ExecutionOptions) -> list[str]:
        args = [self.command, "exec", "--json"]
        if options.working_directory:
            args += ["--cd", options.working_directory]
        if options.model:
            args += ["--model", options.model]
        if options.sandbox_mode:
            args += ["--sandbox", options.sandbox_mode.value]
        if options.approval_policy:
            args += ["--config", f'approval_policy="{options.approval_policy.value}"']
        if options.skip_git_repo_check:
            args.append("--skip-git-repo-check")
        args.append(prompt)
        return args

    def build_resume_args(self, session_id: str, prompt: str) -> list[str]:
        return [self.command, "exec", "--json", "resume", session_id, prompt]

    async def start(self, prompt: str, options: ExecutionOptions) -> CodexEventStream:
        """Launch a new session."""
        return await self._spawn(self.build_start_args(prompt, options))

    async def resume(self, session_id: str, prompt: str) -> CodexEventStream:
        """Send prompt to an existing session."""
        return await self._spawn(self.build_resume_args(session_id, prompt))

    async def _spawn(self, args: list[str]) -> CodexEventStream:
        if shutil.which(args[0]) is None:
            raise AgentNotFoundError(f"Codex CLI '{args[0]}' not found in PATH")

        logger.debug(f"Spawning: {args[:-1]} <prompt: {len(args[-1])} chars>")
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=MAX_LINE_BYTES,
            )
        except FileNotFoundError as e:
            raise AgentNotFoundError(f"Codex CLI not found: {e}") from e

        self._processes.add(process)
        return CodexEventStream(process)

    @property
    def running(self) -> list[asyncio.subprocess.Process]:
        return [p for p in self._processes if p.returncode is None]

    async def aclose(self) -> None:
        """Terminate any process still running and forget all processes."""
        for process in self.running:
            try:
                process.terminate()
            except ProcessLookupError:
                continue
            try:
                await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE)
            except asyncio.TimeoutError:
                logger.warning(f"Codex process {process.pid} ignored SIGTERM, killing")
                process.kill()
                await process.wait()
        self._processes.clear()

    async def __aenter__(self) -> "CodexAgent":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
