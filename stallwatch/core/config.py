"""Configuration loading.

Settings come from, in priority order:
- Command-line overrides (SupervisorConfig.with_overrides)
- .stallwatch/config.yaml in the current project
- ~/.stallwatch/config.yaml
- Built-in defaults
"""

import dataclasses
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from stallwatch.core.consumer import DEFAULT_INACTIVITY_TIMEOUT
from stallwatch.core.models import ExecutionLevel
from stallwatch.core.recovery import DEFAULT_MAX_RECOVERY_ATTEMPTS

PACKAGE_DIR = Path(__file__).parent.parent
DEFAULT_LOG_DIR = Path.home() / ".claude" / "codex-logs"


class ConfigError(Exception):
    """Configuration is missing or invalid."""

    pass


class SandboxMode(str, Enum):
    READ_ONLY = "read-only"
    WORKSPACE_WRITE = "workspace-write"
    DANGER_FULL_ACCESS = "danger-full-access"


class ApprovalPolicy(str, Enum):
    NEVER = "never"
    ON_REQUEST = "on-request"
    ON_FAILURE = "on-failure"
    UNTRUSTED = "untrusted"


@dataclass
class ExecutionOptions:
    """Options for starting a new agent session."""

    working_directory: str | None = None
    model: str | None = None
    sandbox_mode: SandboxMode | None = None
    approval_policy: ApprovalPolicy | None = None
    skip_git_repo_check: bool = False


@dataclass
class SupervisorConfig:
    """Settings for one supervised run."""

    inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT  # seconds
    max_recovery_attempts: int = DEFAULT_MAX_RECOVERY_ATTEMPTS
    execution_level: ExecutionLevel = ExecutionLevel.L2
    log_dir: Path = field(default_factory=lambda: DEFAULT_LOG_DIR)
    keep_passing_logs: bool = False
    codex_command: str = "codex"

    def __post_init__(self) -> None:
        if self.inactivity_timeout <= 0:
            raise ConfigError(
                f"Inactivity timeout must be positive, got {self.inactivity_timeout}"
            )
        if self.max_recovery_attempts < 0:
            raise ConfigError(
                f"max_recovery_attempts must be >= 0, got {self.max_recovery_attempts}"
            )
        self.execution_level = ExecutionLevel(self.execution_level)
        self.log_dir = Path(self.log_dir).expanduser()

    @property
    def stall_timeout_minutes(self) -> float:
        return self.inactivity_timeout / 60

    def with_overrides(
        self,
        stall_timeout_minutes: float | None = None,
        max_recovery_attempts: int | None = None,
        level: str | None = None,
    ) -> "SupervisorConfig":
        """Return a copy with command-line overrides applied (None = keep)."""
        changes: dict[str, Any] = {}
        if stall_timeout_minutes is not None:
            changes["inactivity_timeout"] = stall_timeout_minutes * 60
        if max_recovery_attempts is not None:
            changes["max_recovery_attempts"] = max_recovery_attempts
        if level is not None:
            changes["execution_level"] = ExecutionLevel(level)
        return dataclasses.replace(self, **changes)


@dataclass
class ConfigLoader:
    """Load SupervisorConfig from YAML, validated against a JSON schema."""

    # Search paths in priority order (first existing file wins)
    search_paths: list[Path] = field(default_factory=list)
    schema_path: Path = field(
        default_factory=lambda: PACKAGE_DIR / "config" / "config_schema.json"
    )

    def __post_init__(self) -> None:
        if not self.search_paths:
            self.search_paths = [
                Path(".stallwatch/config.yaml"),  # Project-specific
                Path.home() / ".stallwatch/config.yaml",  # User-global
            ]
        self._schema = self._load_schema()

    def _load_schema(self) -> dict:
        try:
            with open(self.schema_path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise ConfigError(
                f"Config schema not found at {self.schema_path}. "
                f"Ensure stallwatch package is properly installed."
            )
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in config schema at {self.schema_path}: {e}")

    def find_config_file(self) -> Path | None:
        for path in self.search_paths:
            if path.exists():
                return path
        return None

    def load(self) -> SupervisorConfig:
        """Load the first config file found, or defaults if there is none."""
        path = self.find_config_file()
        if path is None:
            return SupervisorConfig()
        return self.load_file(path)

    def load_file(self, path: Path) -> SupervisorConfig:
        data = self._load_yaml(path)
        try:
            jsonschema.validate(data, self._schema)
        except jsonschema.ValidationError as e:
            raise ConfigError(f"Invalid config in {path}: {e.message}")

        kwargs: dict[str, Any] = {}
        if "stall_timeout_minutes" in data:
            kwargs["inactivity_timeout"] = float(data["stall_timeout_minutes"]) * 60
        if "max_recovery_attempts" in data:
            kwargs["max_recovery_attempts"] = data["max_recovery_attempts"]
        if "level" in data:
            kwargs["execution_level"] = ExecutionLevel(data["level"])
        if "log_dir" in data:
            kwargs["log_dir"] = Path(data["log_dir"])
        if "keep_passing_logs" in data:
            kwargs["keep_passing_logs"] = data["keep_passing_logs"]
        if "codex_command" in data:
            kwargs["codex_command"] = data["codex_command"]
        return SupervisorConfig(**kwargs)

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"Config must be a mapping, got {type(data).__name__} in {path}"
            )
        return data


DEFAULT_CONFIG_YAML = """# stallwatch configuration for this project

# Minutes without any agent event before a run counts as stalled
stall_timeout_minutes: 5

# Resume attempts after a stall before asking for human input
max_recovery_attempts: 2

# Execution level label (L1=Executor, L2=Builder, L3=Autonomous, L4=Specialist)
level: L2

# Where progress logs are written; passing runs are deleted unless kept
log_dir: ~/.claude/codex-logs
keep_passing_logs: false

# Codex CLI binary
codex_command: codex
"""
