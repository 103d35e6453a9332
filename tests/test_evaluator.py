"""Tests for outcome evaluation."""

from __future__ import annotations

import pytest

from stallwatch.core.evaluator import determine_result_level
from stallwatch.core.models import (
    CommandItem,
    ErrorItem,
    FileChange,
    FileChangeItem,
    MessageItem,
    ReasoningItem,
    ResultLevel,
)

FAILED_PATCH = FileChangeItem(changes=(FileChange(kind="update", path="a.py"),), status="failed")
GOOD_PATCH = FileChangeItem(changes=(FileChange(kind="update", path="a.py"),), status="completed")


class TestDetermineResultLevel:
    """Tests for determine_result_level precedence."""

    @pytest.mark.parametrize(
        "message",
        ["Request timeout after 30s", "operation aborted", "TIMEOUT waiting for model"],
    )
    def test_timeout_errors(self, message):
        assert determine_result_level([], True, message) == ResultLevel.TIMEOUT

    def test_other_errors(self):
        assert determine_result_level([], True, "connection refused") == ResultLevel.ERROR

    def test_error_without_message(self):
        assert determine_result_level([], True) == ResultLevel.ERROR

    def test_error_beats_message(self):
        items = [MessageItem(text="done")]
        assert determine_result_level(items, True, "crash") == ResultLevel.ERROR

    @pytest.mark.parametrize(
        "before",
        [
            [ErrorItem(message="first try failed")],
            [FAILED_PATCH],
            [CommandItem(command="ls", status="failed", exit_code=1), ErrorItem(message="x"), FAILED_PATCH],
        ],
    )
    def test_message_means_pass(self, before):
        """A completed message wins over earlier failures."""
        items = [*before, MessageItem(text="fixed it")]
        assert determine_result_level(items, False) == ResultLevel.PASS

    def test_error_item_without_message_fails(self):
        items = [CommandItem(command="ls"), ErrorItem(message="bad")]
        assert determine_result_level(items, False) == ResultLevel.FAIL

    def test_failed_file_change_fails(self):
        assert determine_result_level([GOOD_PATCH, FAILED_PATCH], False) == ResultLevel.FAIL

    def test_failed_command_alone_is_not_failure(self):
        items = [CommandItem(command="make", status="failed", exit_code=2)]
        assert determine_result_level(items, False) == ResultLevel.PASS

    def test_no_items_is_pass(self):
        assert determine_result_level([], False) == ResultLevel.PASS

    def test_benign_items_pass(self):
        items = [ReasoningItem(text="hmm"), GOOD_PATCH]
        assert determine_result_level(items, False) == ResultLevel.PASS
