"""Exception types raised by spec-to-tasks.

Every failure of an apply or resume run surfaces as one of these. The
workflow layer turns them into error payloads; the engines never swallow
them.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import ApplyCheckpoint


class SpecTasksError(Exception):
    """Base class for all spec-to-tasks errors."""


class ArgumentError(SpecTasksError, ValueError):
    """Malformed or out-of-range run arguments."""


class ResolutionError(SpecTasksError, ValueError):
    """A spec file or checkpoint could not be located."""


class CheckpointSchemaError(SpecTasksError, ValueError):
    """A checkpoint file does not match the expected schema."""


class PlanMismatchError(SpecTasksError, ValueError):
    """A checkpoint no longer matches the spec it was created from."""


class CheckpointWriteError(SpecTasksError, RuntimeError):
    """A required checkpoint write failed."""


class TaskToolError(SpecTasksError, RuntimeError):
    """The external task tool could not complete a call."""


class TaskToolLaunchError(TaskToolError):
    """The task tool process could not be started."""


class TaskToolTimeoutError(TaskToolError):
    """The task tool did not answer within the configured timeout."""


class TaskToolExitError(TaskToolError):
    """The task tool exited with a non-zero status."""

    def __init__(self, message: str, returncode: int):
        super().__init__(message)
        self.returncode = returncode


class TaskToolOutputError(TaskToolError):
    """The task tool answered with output that does not fit the contract."""


class TaskToolHealthError(TaskToolError):
    """The task tool health check did not report ok."""


class PartialApplyError(SpecTasksError, RuntimeError):
    """A run failed after it may already have created entities.

    The message holds the root failure followed by recovery instructions;
    ``checkpoint`` reflects everything that was recorded before the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        cause_message: str,
        checkpoint_path: Path,
        checkpoint: "ApplyCheckpoint",
        save_error: Optional[str] = None,
    ):
        super().__init__(message)
        self.cause_message = cause_message
        self.checkpoint_path = checkpoint_path
        self.checkpoint = checkpoint
        self.save_error = save_error
