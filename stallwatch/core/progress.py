"""Progress log sinks.

The engine only needs "append a timestamped line" plus a final call that
labels the log with the run's result level. Sinks are passed explicitly to
every engine operation; there is no module-level log handle.
"""

import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from stallwatch.core.models import ResultLevel

logger = logging.getLogger("stallwatch.progress")


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class ProgressLog(Protocol):
    """Append-only, single-writer sink for one run."""

    def write(self, message: str) -> None:
        """Append one line."""
        ...

    def finalize(self, level: ResultLevel) -> str | None:
        """Mark the end of the run. Returns the kept log location, if any."""
        ...


class MemoryProgressLog:
    """In-memory sink. Keeps raw messages and the final level."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.level: ResultLevel | None = None

    def write(self, message: str) -> None:
        self.lines.append(message)
        logger.debug(message)

    def finalize(self, level: ResultLevel) -> str | None:
        self.level = level
        return None

    def contains(self, fragment: str) -> bool:
        return any(fragment in line for line in self.lines)


class FileProgressLog:
    """Progress log file under a log directory.

    File name: progress-<label>-<id8>.log. On finalize the file is renamed to
    progress-<label>-<id8>-<LEVEL>.log; passing runs are deleted unless
    keep_passing is set.
    """

    def __init__(
        self,
        log_dir: Path,
        label: str = "L2",
        run_id: str | None = None,
        keep_passing: bool = False,
    ) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:8]
        self.path = Path(log_dir).expanduser() / f"progress-{label}-{self.run_id}.log"
        self.keep_passing = keep_passing
        self._reset()

    def _reset(self) -> None:
        """Create the directory if needed and start a fresh file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            f"=== Codex Session Started at {_timestamp()} ===\n", encoding="utf-8"
        )

    def write(self, message: str) -> None:
        line = f"[{_timestamp()}] {message}"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
        logger.info(line)

    def finalize(self, level: ResultLevel) -> str | None:
        final_path = self._rename_with_level(level)
        if level == ResultLevel.PASS and not self.keep_passing:
            try:
                final_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not delete progress log {final_path}: {e}")
            return None
        return str(final_path)

    def _rename_with_level(self, level: ResultLevel) -> Path:
        """progress-L2-abc123.log -> progress-L2-abc123-PASS.log"""
        new_path = self.path.with_name(f"{self.path.stem}-{level.value}{self.path.suffix}")
        try:
            if self.path.exists():
                self.path.rename(new_path)
        except OSError as e:
            logger.warning(f"Could not rename progress log {self.path}: {e}")
            return self.path
        self.path = new_path
        return new_path
