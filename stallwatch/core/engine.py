"""Session run coordination for the stallwatch engine.

Coordinates:
- Event source acquisition (start or resume)
- Timed consumption with stall detection
- Stall recovery
- Outcome evaluation
- Report packaging and progress log finalization
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol

from stallwatch.core.config import ExecutionOptions, SupervisorConfig
from stallwatch.core.consumer import EventSource, consume_events
from stallwatch.core.evaluator import determine_result_level
from stallwatch.core.models import (
    CommandItem,
    ExecutionLevel,
    FileChangeItem,
    RecoveryRecord,
    Report,
    ReportStats,
    ResultLevel,
    RunResult,
    ToolCallItem,
)
from stallwatch.core.progress import FileProgressLog, MemoryProgressLog, ProgressLog
from stallwatch.core.recovery import ResumeFn, open_source, recover_stalled_run

logger = logging.getLogger(__name__)

AcquireFn = Callable[[], EventSource | Awaitable[EventSource]]


class EngineError(Exception):
    """Error raised inside a supervised run."""

    pass


class AgentBackend(Protocol):
    """Capability to start and resume agent sessions as event sources."""

    def start(
        self, prompt: str, options: ExecutionOptions
    ) -> EventSource | Awaitable[EventSource]:
        ...

    def resume(self, session_id: str, prompt: str) -> EventSource | Awaitable[EventSource]:
        ...


def _write_quietly(log: ProgressLog, message: str) -> None:
    """Write from the failure path. A broken sink is reported, not raised."""
    try:
        log.write(message)
    except Exception as e:
        logger.warning(f"Progress log write failed: {e}")


def rollout_file_hint(thread_id: str, now: datetime | None = None) -> str:
    """Glob for the Codex rollout file of a thread started today."""
    day = (now or datetime.now(UTC)).strftime("%Y/%m/%d")
    return f"~/.codex/sessions/{day}/rollout-*{thread_id[-12:]}*.jsonl"


def build_report(
    result: RunResult,
    level: ResultLevel,
    recovery: RecoveryRecord,
    needs_user_input: bool,
    label: ExecutionLevel = ExecutionLevel.L2,
    error: str | None = None,
) -> Report:
    """Package a run into a flat report."""
    items = result.items
    file_items = [i for i in items if isinstance(i, FileChangeItem)]
    return Report(
        thread_id=result.session_id,
        level=label,
        result=level,
        content=result.final_text,
        error=error,
        rollout_file=rollout_file_hint(result.session_id) if result.session_id else None,
        stats=ReportStats(
            total_items=len(items),
            commands=sum(1 for i in items if isinstance(i, CommandItem)),
            file_changes=len(file_items),
            tool_calls=sum(1 for i in items if isinstance(i, ToolCallItem)),
            usage=result.usage,
        ),
        files_modified=[change for item in file_items for change in item.changes],
        recovery=recovery.model_copy() if recovery.attempted else None,
        needs_user_input=needs_user_input,
    )


async def run_supervised(
    acquire: AcquireFn,
    log: ProgressLog,
    config: SupervisorConfig | None = None,
    *,
    resume: ResumeFn | None = None,
    session_id: str | None = None,
) -> Report:
    """Run one supervised pass, recovering from stalls when possible.

    Args:
        acquire: Returns the event source for the initial pass
        log: Progress sink for this run
        config: Timeout and recovery settings (defaults if None)
        resume: Capability used for recovery; without it stalls are final
        session_id: Known session id, used when the stream never reports one

    Returns:
        Report. Never raises for run failures; they map to ERROR/TIMEOUT.
        A failing progress sink is logged, not raised.
    """
    config = config or SupervisorConfig()
    label = config.execution_level
    result = RunResult(session_id=session_id)
    recovery = RecoveryRecord()

    try:
        source = await open_source(acquire())
        result = await consume_events(source, log, config.inactivity_timeout)
        if result.session_id is None:
            result.session_id = session_id
        if result.error is not None:
            raise EngineError(result.error)

        resume_id = result.session_id
        if result.stalled and resume_id and resume is not None:
            result, recovery = await recover_stalled_run(
                result,
                resume_id,
                resume,
                log,
                config.inactivity_timeout,
                config.max_recovery_attempts,
            )

        log.write("=== Session Complete ===")

        has_unrecovered_stall = result.stalled and not recovery.recovered
        if has_unrecovered_stall:
            level = ResultLevel.TIMEOUT
        else:
            level = determine_result_level(result.items, False)
        log.write(f"Result: {level.value}")

        report = build_report(result, level, recovery, has_unrecovered_stall, label)

    except asyncio.CancelledError:
        raise
    except Exception as e:
        message = str(e) or type(e).__name__
        logger.error(f"Supervised run failed: {message}")
        _write_quietly(log, f"Error: {message}")
        level = determine_result_level([], True, message)
        _write_quietly(log, f"Result: {level.value}")
        report = build_report(result, level, recovery, False, label, error=message)

    try:
        report.progress_log = log.finalize(level)
    except Exception as e:
        logger.warning(f"Could not finalize progress log: {e}")
    return report


class SessionSupervisor:
    """Supervises agent sessions started or resumed through a backend.

    Each call owns a fresh progress log, result and recovery record; nothing
    is shared between runs except the backend.
    """

    def __init__(
        self,
        agent: AgentBackend,
        config: SupervisorConfig | None = None,
        log_factory: Callable[[SupervisorConfig], ProgressLog] | None = None,
    ):
        self.agent = agent
        self.config = config or SupervisorConfig()
        self._log_factory = log_factory or self._default_log

    @staticmethod
    def _default_log(config: SupervisorConfig) -> ProgressLog:
        return FileProgressLog(
            config.log_dir,
            label=config.execution_level.value,
            keep_passing=config.keep_passing_logs,
        )

    def _settings_line(self) -> str:
        return (
            f"Stall timeout: {self.config.stall_timeout_minutes:g} min, "
            f"Max recovery: {self.config.max_recovery_attempts}"
        )

    def _open_log(self, preamble: list[str]) -> ProgressLog:
        """Create the run's sink and write its preamble.

        If the configured sink cannot be created or written, progress is kept
        in memory so the run still produces a report.
        """
        try:
            log = self._log_factory(self.config)
            for line in preamble:
                log.write(line)
            return log
        except OSError as e:
            logger.warning(f"Progress log unavailable, keeping it in memory: {e}")
        log = MemoryProgressLog()
        for line in preamble:
            log.write(line)
        return log

    async def run(self, prompt: str, options: ExecutionOptions | None = None) -> Report:
        """Start a new session for prompt and supervise it."""
        options = options or ExecutionOptions()
        preamble = [f"Prompt: {prompt}"]
        if options.working_directory:
            preamble.append(f"Working directory: {options.working_directory}")
        preamble.append(self._settings_line())
        log = self._open_log(preamble)

        def acquire() -> EventSource | Awaitable[EventSource]:
            log.write("Starting Codex session (with stall detection)...")
            return self.agent.start(prompt, options)

        return await run_supervised(acquire, log, self.config, resume=self.agent.resume)

    async def reply(self, thread_id: str, prompt: str) -> Report:
        """Continue an existing session and supervise the new turn."""
        log = self._open_log(
            [f"Continuing thread: {thread_id}", f"Prompt: {prompt}", self._settings_line()]
        )

        def acquire() -> EventSource | Awaitable[EventSource]:
            log.write("Resuming Codex session (with stall detection)...")
            return self.agent.resume(thread_id, prompt)

        return await run_supervised(
            acquire,
            log,
            self.config,
            resume=self.agent.resume,
            session_id=thread_id,
        )
