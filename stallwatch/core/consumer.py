"""Timed event consumption with stall detection.

Each step races "next event" against an inactivity timer. The window
restarts on every event; it is not a budget for the whole run.

A stall only stops the wait. The pending read is left running and the source
is never drained, cancelled or closed here; that belongs to its owner.
"""

import asyncio
import logging
from collections.abc import AsyncIterable
from typing import Any

from stallwatch.core.classifier import classify_event
from stallwatch.core.events import ThreadEvent
from stallwatch.core.models import MessageItem, RunResult
from stallwatch.core.progress import ProgressLog

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_TIMEOUT = 5 * 60.0  # seconds

EventSource = AsyncIterable[ThreadEvent | dict[str, Any]]


class _Stalled:
    """Sentinel returned when the inactivity timer wins the race."""


_STALLED = _Stalled()


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


async def _anext(iterator: Any) -> Any:
    return await iterator.__anext__()


# Reads that lost the race to the timer. They are left running, never
# cancelled; the source's owner decides when the source is closed.
_abandoned_reads: set[asyncio.Task] = set()


def _release_read(task: asyncio.Task) -> None:
    _abandoned_reads.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None and not isinstance(error, StopAsyncIteration):
        logger.debug(f"Abandoned read finished with {error!r}")


def abandoned_reads() -> set[asyncio.Task]:
    """Next-event reads on the running loop still pending after a stall."""
    loop = asyncio.get_running_loop()
    return {task for task in _abandoned_reads if task.get_loop() is loop}


async def _next_or_stall(iterator: Any, timeout: float) -> Any:
    """Wait for the next event or for the timer, whichever comes first.

    Raises StopAsyncIteration at end of stream and propagates source errors.
    The timer is always cancelled. A next-event read that lost the race is
    not cancelled: the engine stops waiting on it and leaves the source alone.
    """
    next_task = asyncio.create_task(_anext(iterator))
    timer = asyncio.create_task(asyncio.sleep(timeout))
    try:
        done, _pending = await asyncio.wait(
            {next_task, timer}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        next_task.cancel()
        raise
    finally:
        timer.cancel()

    if next_task in done:
        return next_task.result()

    _abandoned_reads.add(next_task)
    next_task.add_done_callback(_release_read)
    return _STALLED


async def consume_events(
    source: EventSource,
    log: ProgressLog,
    inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
) -> RunResult:
    """Consume a stream of thread events until it ends, fails or stalls.

    Args:
        source: Async iterable of events (parsed or raw dicts)
        log: Progress sink for per-event lines
        inactivity_timeout: Seconds without any event before declaring a stall

    Returns:
        RunResult with stalled=True on timeout, or error set when the
        source itself raised. Errors and stalls are mutually exclusive.

    Raises:
        ValueError: If inactivity_timeout is not positive
    """
    if inactivity_timeout <= 0:
        raise ValueError(f"inactivity_timeout must be > 0, got {inactivity_timeout}")

    result = RunResult()
    iterator = source.__aiter__()

    while True:
        try:
            event = await _next_or_stall(iterator, inactivity_timeout)
        except StopAsyncIteration:
            break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result.error = _error_message(e)
            logger.info(f"Event source raised: {result.error}")
            break

        if event is _STALLED:
            log.write(
                f"⚠️ STALL DETECTED: No activity for {inactivity_timeout / 60:g} minutes"
            )
            logger.warning(f"No event for {inactivity_timeout}s, treating run as stalled")
            result.stalled = True
            break

        classification = classify_event(event)
        log.write(classification.log_line)

        if classification.session_id and result.session_id is None:
            result.session_id = classification.session_id
        if classification.usage is not None:
            result.usage = classification.usage
        if classification.item is not None:
            result.items.append(classification.item)
            if isinstance(classification.item, MessageItem):
                result.final_text = classification.item.text

    return result
