"""Core modules for the stallwatch engine."""

from stallwatch.core.classifier import Classification, classify_event, format_item
from stallwatch.core.consumer import consume_events
from stallwatch.core.engine import SessionSupervisor, run_supervised
from stallwatch.core.evaluator import determine_result_level
from stallwatch.core.models import RecoveryRecord, Report, ResultLevel, RunResult
from stallwatch.core.recovery import recover_stalled_run

__all__ = [
    "Classification",
    "RecoveryRecord",
    "Report",
    "ResultLevel",
    "RunResult",
    "SessionSupervisor",
    "classify_event",
    "consume_events",
    "determine_result_level",
    "format_item",
    "recover_stalled_run",
    "run_supervised",
]
