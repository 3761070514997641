"""Configuration for spec-to-tasks.

``load_settings`` is the only place the process environment is read. The
resulting ``Settings`` is passed to every component at construction time.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Union

from .errors import ArgumentError, ResolutionError
from .models import DEFAULT_PRIORITY, DEFAULT_REVIEWER, RunConfig

logger = logging.getLogger("spectasks.config")

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_RETRIES = 0
DEFAULT_RETRY_DELAY_MS = 250
DEFAULT_CHECKPOINT_DIR = ".spec-to-tasks/checkpoints"
DEFAULT_SPEC_FILENAME = "spec.md"
DEFAULT_PYTHON_BIN = "python3"

_PRIORITY_PATTERN = re.compile(r"^[0-4]$")
_NON_NEGATIVE_INT = re.compile(r"^\d+$")


@dataclass(frozen=True, slots=True)
class Settings:
    """Environment-derived configuration shared by all components."""

    spec_path: Optional[str] = None
    spec_dir: Optional[str] = None
    reviewer: Optional[str] = None
    user: Optional[str] = None
    task_tool_path: Optional[str] = None
    python_bin: str = DEFAULT_PYTHON_BIN
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retries: int = DEFAULT_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    checkpoint_dir: str = DEFAULT_CHECKPOINT_DIR
    project_root: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None


def _env_string(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_non_negative_int(value: Optional[str]) -> Optional[int]:
    """Parse a digit-only string; anything else yields ``None``."""
    if value is None:
        return None
    value = value.strip()
    if not _NON_NEGATIVE_INT.match(value):
        return None
    return int(value)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from the environment."""
    env = os.environ if environ is None else environ

    def int_setting(name: str, default: int) -> int:
        parsed = parse_non_negative_int(env.get(name))
        return default if parsed is None else parsed

    return Settings(
        spec_path=_env_string(env, "SPEC_PATH"),
        spec_dir=_env_string(env, "SPEC_DIR"),
        reviewer=_env_string(env, "SPEC_REVIEWER"),
        user=_env_string(env, "USER"),
        task_tool_path=_env_string(env, "GRNSW_PATH"),
        python_bin=_env_string(env, "PYTHON_BIN") or DEFAULT_PYTHON_BIN,
        timeout_ms=int_setting("GRNSW_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
        retries=int_setting("GRNSW_RETRIES", DEFAULT_RETRIES),
        retry_delay_ms=int_setting("GRNSW_RETRY_DELAY_MS", DEFAULT_RETRY_DELAY_MS),
        checkpoint_dir=_env_string(env, "SPECTASKS_CHECKPOINT_DIR") or DEFAULT_CHECKPOINT_DIR,
        project_root=_env_string(env, "SPECTASKS_PROJECT_ROOT"),
        log_level=(_env_string(env, "SPECTASKS_LOG_LEVEL") or "INFO").upper(),
        log_file=_env_string(env, "SPECTASKS_LOG_FILE"),
    )


# ---------------------------------------------------------------------------
# Run options
# ---------------------------------------------------------------------------


def validate_priority(value: Union[int, str, None]) -> int:
    """Return a priority in 0-4 or raise ``ArgumentError`` naming the flag."""
    if value is None:
        return DEFAULT_PRIORITY
    if isinstance(value, bool):
        raise ArgumentError("--priority must be an integer between 0 and 4")
    if isinstance(value, int):
        if 0 <= value <= 4:
            return value
        raise ArgumentError("--priority must be an integer between 0 and 4")
    text = str(value).strip()
    if not _PRIORITY_PATTERN.match(text):
        raise ArgumentError("--priority must be an integer between 0 and 4")
    return int(text)


def validate_reviewer(value: Optional[str]) -> Optional[str]:
    """Reject blank or flag-like reviewer values."""
    if value is None:
        return None
    value = value.strip()
    if not value or value.startswith("-"):
        raise ArgumentError("--reviewer requires a value")
    return value


def resolve_reviewer(explicit: Optional[str], settings: Settings) -> str:
    """Explicit reviewer, then $SPEC_REVIEWER, then $USER, then ``reviewer``."""
    return explicit or settings.reviewer or settings.user or DEFAULT_REVIEWER


def build_run_config(
    settings: Settings,
    *,
    priority: Union[int, str, None] = None,
    with_validation: bool = False,
    reviewer: Optional[str] = None,
) -> RunConfig:
    """Validate run arguments and fill in configured defaults."""
    return RunConfig(
        priority=validate_priority(priority),
        with_validation=bool(with_validation),
        reviewer=resolve_reviewer(validate_reviewer(reviewer), settings),
    )


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def to_absolute_path(value: Union[str, Path], cwd: Union[str, Path]) -> Path:
    """Expand ``~`` and resolve ``value`` against ``cwd`` when relative."""
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = Path(cwd) / path
    return Path(os.path.normpath(path))


def resolve_project_root(root: Optional[str], settings: Settings) -> Path:
    """Explicit root, then $SPECTASKS_PROJECT_ROOT, then the current directory."""
    candidate = root or settings.project_root
    if candidate:
        resolved = Path(candidate).expanduser().resolve()
        if not resolved.is_dir():
            raise ResolutionError(f"Provided root '{candidate}' does not exist.")
        return resolved
    return Path.cwd().resolve()


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def spec_path_candidates(requested: Optional[str], cwd: Union[str, Path], settings: Settings) -> List[str]:
    """Candidate spec locations in resolution order."""
    candidates: List[str] = []
    spec_dir = settings.spec_dir
    requested = requested.strip() if requested else None

    if requested:
        candidates.append(requested)
        if spec_dir and not Path(requested).is_absolute() and not requested.startswith("~"):
            candidates.append(str(Path(spec_dir) / requested))

    if settings.spec_path:
        candidates.append(settings.spec_path)

    if spec_dir:
        candidates.append(str(Path(spec_dir) / DEFAULT_SPEC_FILENAME))
        try:
            markdown_files = sorted(
                entry.name
                for entry in to_absolute_path(spec_dir, cwd).iterdir()
                if entry.name.lower().endswith(".md")
            )
        except OSError as e:
            logger.debug(f"Could not list SPEC_DIR {spec_dir}: {e}")
            markdown_files = []
        if len(markdown_files) == 1:
            candidates.append(str(Path(spec_dir) / markdown_files[0]))

    candidates.append(DEFAULT_SPEC_FILENAME)
    return _dedupe(candidates)


def resolve_spec_path(requested: Optional[str], cwd: Union[str, Path], settings: Settings) -> Path:
    """Return the first candidate that is an existing regular file."""
    for candidate in spec_path_candidates(requested, cwd, settings):
        resolved = to_absolute_path(candidate, cwd)
        if resolved.is_file():
            return resolved
    raise ResolutionError(
        "No spec file found (tried argument, $SPEC_PATH, $SPEC_DIR/spec.md, and ./spec.md)."
    )
