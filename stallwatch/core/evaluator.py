"""Outcome evaluation for a finished run."""

from collections.abc import Sequence

from stallwatch.core.models import ErrorItem, FileChangeItem, Item, MessageItem, ResultLevel

# Lowercase substrings that mark an error as a timeout rather than a crash
TIMEOUT_MARKERS = ("timeout", "aborted")


def determine_result_level(
    items: Sequence[Item],
    has_error: bool,
    error_message: str | None = None,
) -> ResultLevel:
    """Classify a run from its items and any raised error.

    Precedence:
    1. A raised error is TIMEOUT when its message mentions a timeout/abort,
       otherwise ERROR.
    2. Any completed agent message is PASS. Failed commands on the way to an
       answer are exploration, not failure of the run.
    3. Error items or failed file changes are FAIL.
    4. Anything else is PASS.

    Stalls are not visible here; the coordinator overrides to TIMEOUT when a
    stall was not recovered.
    """
    if has_error:
        message = (error_message or "").lower()
        if any(marker in message for marker in TIMEOUT_MARKERS):
            return ResultLevel.TIMEOUT
        return ResultLevel.ERROR

    if any(isinstance(item, MessageItem) for item in items):
        return ResultLevel.PASS

    for item in items:
        if isinstance(item, ErrorItem):
            return ResultLevel.FAIL
        if isinstance(item, FileChangeItem) and item.status == "failed":
            return ResultLevel.FAIL

    return ResultLevel.PASS
