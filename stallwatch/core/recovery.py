"""Stall recovery.

After a stall, the session is re-engaged through the resume capability with
a fixed prompt asking the agent to report where it is. Attempts are strictly
sequential; the first completed (non-stalled) attempt wins.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from stallwatch.core.consumer import EventSource, consume_events
from stallwatch.core.models import RecoveryRecord, RunResult
from stallwatch.core.progress import ProgressLog

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECOVERY_ATTEMPTS = 2

STILL_STALLED = "Still stalled after recovery attempt"

RECOVERY_PROMPT = """Execution appears to have stalled. Check the current state and continue the task.
If you are blocked, report the specific problem:
1. What was the last action you performed?
2. Are you blocked on something?
3. What help do you need to continue?"""

ResumeFn = Callable[[str, str], EventSource | Awaitable[EventSource]]


@dataclass
class AttemptOutcome:
    """Result of a single recovery attempt."""

    result: RunResult
    succeeded: bool


async def open_source(source: EventSource | Awaitable[EventSource]) -> EventSource:
    """Resolve a capability's return value to an event source."""
    if inspect.isawaitable(source):
        return await source
    return source


async def attempt_recovery(
    session_id: str,
    resume: ResumeFn,
    log: ProgressLog,
    attempt: int,
    max_attempts: int,
    inactivity_timeout: float,
) -> AttemptOutcome:
    """Run one resume-and-observe cycle.

    Resume failures and source errors count as a stalled attempt carrying the
    error message; they are never propagated.
    """
    log.write(f"🔄 Recovery attempt {attempt}/{max_attempts}...")

    try:
        source = await open_source(resume(session_id, RECOVERY_PROMPT))
        result = await consume_events(source, log, inactivity_timeout)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        message = str(e) or type(e).__name__
        log.write(f"❌ Recovery attempt {attempt} error: {message}")
        logger.warning(f"Recovery attempt {attempt} for {session_id} raised: {message}")
        return AttemptOutcome(
            result=RunResult(session_id=session_id, stalled=True, error=message),
            succeeded=False,
        )

    if result.error is not None:
        log.write(f"❌ Recovery attempt {attempt} error: {result.error}")
        return AttemptOutcome(
            result=result.model_copy(update={"stalled": True}),
            succeeded=False,
        )

    if result.stalled:
        log.write(f"❌ Recovery attempt {attempt} failed: still stalled")
        return AttemptOutcome(result=result, succeeded=False)

    log.write(f"✅ Recovery attempt {attempt} succeeded")
    return AttemptOutcome(result=result, succeeded=True)


async def recover_stalled_run(
    stalled: RunResult,
    session_id: str,
    resume: ResumeFn,
    log: ProgressLog,
    inactivity_timeout: float,
    max_attempts: int = DEFAULT_MAX_RECOVERY_ATTEMPTS,
) -> tuple[RunResult, RecoveryRecord]:
    """Try to revive a stalled session.

    Args:
        stalled: Partial result of the stalled pass
        session_id: Session to resume
        resume: Capability returning a fresh event source for (session_id, prompt)
        log: Progress sink
        inactivity_timeout: Same per-event timeout as the original pass
        max_attempts: Upper bound on attempts (0 disables recovery)

    Returns:
        (result, recovery). On success the result holds the original items
        followed by the recovery items, with the recovery pass's final text
        and usage. Otherwise the stalled result is returned unchanged.
    """
    if max_attempts < 0:
        raise ValueError(f"max_attempts must be >= 0, got {max_attempts}")

    recovery = RecoveryRecord(attempted=True)
    result = stalled

    for attempt in range(1, max_attempts + 1):
        recovery.attempts = attempt

        outcome = await attempt_recovery(
            session_id, resume, log, attempt, max_attempts, inactivity_timeout
        )

        if outcome.succeeded:
            recovery.recovered = True
            result = outcome.result.model_copy(
                update={
                    "items": [*stalled.items, *outcome.result.items],
                    "session_id": session_id,
                    "stalled": False,
                }
            )
            break

        recovery.last_error = outcome.result.error or STILL_STALLED

    if not recovery.recovered:
        log.write("🛑 All recovery attempts failed. Manual intervention required.")
        logger.warning(f"Session {session_id} still stalled after {recovery.attempts} attempt(s)")

    return result, recovery
