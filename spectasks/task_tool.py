"""Client for the external task tool (``grnsw``).

Every call runs ``<command> [base args...] --json <subcommand> <args...>``
as a subprocess and expects a JSON object on stdout. Timeouts are retried
while attempts remain; other failures are retried only when the caller asks
for it, so creation calls are never blindly repeated.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from .config import Settings, to_absolute_path
from .errors import (
    TaskToolError,
    TaskToolExitError,
    TaskToolHealthError,
    TaskToolLaunchError,
    TaskToolOutputError,
    TaskToolTimeoutError,
)
from .models import CreatedResponse, HealthResponse
from .spectasks_logging import log_performance

logger = logging.getLogger("spectasks.task_tool")

DEFAULT_COMMAND = "grnsw"
LOCAL_SCRIPT = Path("scripts") / "grnsw.py"
JSON_FLAG = "--json"
HEALTH_CHECK_RETRIES = 2
TIMEOUT_EXIT_CODE = 124

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


@dataclass(frozen=True, slots=True)
class TaskToolInvocation:
    """Executable plus the arguments that precede ``--json``."""

    command: str
    base_args: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class InvokeOptions:
    """Per-call overrides; ``None`` means use the configured setting."""

    timeout_ms: Optional[int] = None
    retries: Optional[int] = None
    retry_delay_ms: Optional[int] = None
    retry_on_error: bool = False


def resolve_task_tool_invocation(cwd: Union[str, Path], settings: Settings) -> TaskToolInvocation:
    """Configured path, then ``scripts/grnsw.py`` under ``cwd``, then ``grnsw`` on PATH."""
    if settings.task_tool_path:
        expanded = to_absolute_path(settings.task_tool_path, cwd)
        if expanded.suffix == ".py":
            return TaskToolInvocation(settings.python_bin, (str(expanded),))
        return TaskToolInvocation(str(expanded))

    local_script = Path(cwd).resolve() / LOCAL_SCRIPT
    if local_script.exists():
        return TaskToolInvocation(settings.python_bin, (str(local_script),))

    return TaskToolInvocation(DEFAULT_COMMAND)


def is_timeout_result(result: "subprocess.CompletedProcess[str]") -> bool:
    """Whether a failed call looks like it was cut off by a timeout."""
    if result.returncode < 0 or result.returncode == TIMEOUT_EXIT_CODE:
        return True
    for stream in (result.stderr or "", result.stdout or ""):
        lowered = stream.lower()
        if "timed out" in lowered or "timeout" in lowered:
            return True
    return False


def with_attempt_context(message: str, attempt: int, total_attempts: int) -> str:
    if total_attempts <= 1:
        return message
    return f"{message} (attempt {attempt}/{total_attempts})"


def parse_json_output(stdout: Optional[str]) -> Dict[str, Any]:
    """Empty output is ``{}``; anything else must be a JSON object."""
    text = (stdout or "").strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise TaskToolOutputError(f"invalid task tool JSON output: {e}") from e
    if not isinstance(parsed, dict):
        raise TaskToolOutputError("invalid task tool JSON output: task tool output was not a JSON object")
    return parsed


class TaskToolClient:
    """Runs task tool subcommands with timeout and retry policy."""

    def __init__(
        self,
        invocation: TaskToolInvocation,
        settings: Settings,
        *,
        runner: Optional[Runner] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.invocation = invocation
        self.settings = settings
        self._runner = runner or subprocess.run
        self._sleep = sleep or time.sleep

    def argv(self, args: Sequence[str]) -> list:
        return [self.invocation.command, *self.invocation.base_args, JSON_FLAG, *args]

    @log_performance("task_tool_call")
    def invoke(self, args: Sequence[str], options: Optional[InvokeOptions] = None) -> Dict[str, Any]:
        """Run one subcommand and return its parsed JSON object."""
        options = options or InvokeOptions()
        timeout_ms = self.settings.timeout_ms if options.timeout_ms is None else options.timeout_ms
        retries = self.settings.retries if options.retries is None else options.retries
        retry_delay_ms = (
            self.settings.retry_delay_ms if options.retry_delay_ms is None else options.retry_delay_ms
        )
        total_attempts = max(retries, 0) + 1
        argv = self.argv(args)
        subcommand = " ".join(args[:2])

        for attempt in range(1, total_attempts + 1):
            logger.debug(f"Running task tool: {subcommand} (attempt {attempt}/{total_attempts})")
            error: TaskToolError
            try:
                result = self._runner(
                    argv,
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    timeout=timeout_ms / 1000 if timeout_ms > 0 else None,
                    check=False,
                )
            except subprocess.TimeoutExpired:
                error = TaskToolTimeoutError(
                    with_attempt_context(f"task tool timed out after {timeout_ms}ms", attempt, total_attempts)
                )
                retryable = True
            except OSError as e:
                error = TaskToolLaunchError(
                    with_attempt_context(f"task tool invocation failed: {e}", attempt, total_attempts)
                )
                retryable = options.retry_on_error
            except UnicodeDecodeError as e:
                error = TaskToolOutputError(
                    with_attempt_context(f"task tool output is not valid UTF-8: {e}", attempt, total_attempts)
                )
                retryable = options.retry_on_error
            else:
                if result.returncode == 0:
                    return parse_json_output(result.stdout)
                if is_timeout_result(result):
                    error = TaskToolTimeoutError(
                        with_attempt_context(f"task tool timed out after {timeout_ms}ms", attempt, total_attempts)
                    )
                    retryable = True
                else:
                    detail = (result.stderr or "").strip() or (result.stdout or "").strip()
                    detail = detail or f"exit code {result.returncode}"
                    error = TaskToolExitError(
                        with_attempt_context(f"task tool failed: {detail}", attempt, total_attempts),
                        result.returncode,
                    )
                    retryable = options.retry_on_error

            if retryable and attempt < total_attempts:
                logger.warning(f"Retrying task tool {subcommand} after: {error}")
                if retry_delay_ms > 0:
                    self._sleep(retry_delay_ms / 1000)
                continue
            raise error

        raise TaskToolError("task tool failed after retries")

    def create(self, args: Sequence[str], what: str) -> str:
        """Run a creation subcommand and return the new entity id."""
        payload = self.invoke(args)
        return CreatedResponse.from_payload(payload, what).created_id

    def ensure_healthy(self) -> None:
        """Fail fast unless ``doctor`` reports ``{"ok": true}``."""
        try:
            payload = self.invoke(
                ["doctor"],
                InvokeOptions(retries=HEALTH_CHECK_RETRIES, retry_on_error=True),
            )
        except TaskToolError as e:
            raise TaskToolHealthError(f"task tool health check failed: {e}") from e
        if not HealthResponse.from_payload(payload).ok:
            raise TaskToolHealthError("task tool doctor failed. Check GRNSW_PATH / task tool installation.")
        logger.debug("Task tool health check passed")
