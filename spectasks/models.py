"""Data models for spec-to-tasks.

This module contains the plan tree parsed from a spec document, the
checkpoint recording what an apply run has created so far, and the narrow
response shapes accepted from the external task tool.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import TaskToolOutputError

CHECKPOINT_VERSION = 1
CHECKPOINT_STATUSES = ("in-progress", "failed", "completed")
RESUMABLE_STATUSES = ("failed", "in-progress")
INVALID_STATUS = "invalid"
UNSORTED_PHASE_TITLE = "Phase: Unsorted"
DEFAULT_PRIORITY = 1
DEFAULT_REVIEWER = "reviewer"


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Plan tree (immutable, recomputed from the spec on every run)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MilestonePlan:
    """A milestone parsed from the spec."""

    title: str
    acceptance: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"title": self.title}
        if self.acceptance:
            data["acceptance"] = self.acceptance
        return data


@dataclass(frozen=True, slots=True)
class PhasePlan:
    """A phase parsed from the spec, with its milestones in document order."""

    title: str
    milestones: Tuple[MilestonePlan, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "milestones": [milestone.to_dict() for milestone in self.milestones],
        }


@dataclass(frozen=True, slots=True)
class SpecPlan:
    """Epic, phases and milestones derived from one spec document."""

    spec_path: str
    epic_title: str
    phases: Tuple[PhasePlan, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spec_path": self.spec_path,
            "epic_title": self.epic_title,
            "phases": [phase.to_dict() for phase in self.phases],
        }

    def counts(self, with_validation: bool) -> "EntityCounts":
        """Entities an apply of this plan would create (epic excluded)."""
        milestone_count = sum(len(phase.milestones) for phase in self.phases)
        return EntityCounts(
            phase_count=len(self.phases),
            milestone_count=milestone_count,
            validation_count=milestone_count if with_validation else 0,
        )


@dataclass(frozen=True, slots=True)
class EntityCounts:
    """Phase, milestone and validation totals."""

    phase_count: int = 0
    milestone_count: int = 0
    validation_count: int = 0

    @classmethod
    def from_applied(cls, phases: List["AppliedPhase"]) -> "EntityCounts":
        milestone_count = 0
        validation_count = 0
        for phase in phases:
            milestone_count += len(phase.milestones)
            validation_count += sum(1 for m in phase.milestones if m.validation_id)
        return cls(
            phase_count=len(phases),
            milestone_count=milestone_count,
            validation_count=validation_count,
        )


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Per-run options echoed into the checkpoint."""

    priority: int = DEFAULT_PRIORITY
    with_validation: bool = False
    reviewer: str = DEFAULT_REVIEWER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "with_validation": self.with_validation,
            "reviewer": self.reviewer,
        }


# ---------------------------------------------------------------------------
# Applied entities and checkpoints
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class AppliedMilestone:
    """A milestone that exists in the task tool."""

    title: str
    id: str
    validation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"title": self.title, "id": self.id}
        if self.validation_id:
            data["validationId"] = self.validation_id
        return data


@dataclass(slots=True)
class AppliedPhase:
    """A phase that exists in the task tool."""

    title: str
    id: str
    depends_on: Optional[str] = None
    milestones: List[AppliedMilestone] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"title": self.title, "id": self.id}
        if self.depends_on:
            data["dependsOn"] = self.depends_on
        data["milestones"] = [milestone.to_dict() for milestone in self.milestones]
        return data


@dataclass(slots=True)
class AppliedPlan:
    """What exists in the task tool after an apply or resume."""

    epic_title: str
    epic_id: str
    phases: List[AppliedPhase]
    spec_path: str
    checkpoint_path: Optional[Path] = None
    checkpoint_warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epic_title": self.epic_title,
            "epic_id": self.epic_id,
            "spec_path": self.spec_path,
            "phases": [phase.to_dict() for phase in self.phases],
            "checkpoint_path": str(self.checkpoint_path) if self.checkpoint_path else None,
            "checkpoint_warning": self.checkpoint_warning,
        }


@dataclass(slots=True)
class ApplyCheckpoint:
    """Durable record of apply progress against a plan."""

    status: str
    created_at: str
    updated_at: str
    spec_path: str
    epic_title: str
    priority: int
    with_validation: bool
    reviewer: str
    epic_id: Optional[str] = None
    phases: List[AppliedPhase] = field(default_factory=list)
    error: Optional[str] = None
    version: int = CHECKPOINT_VERSION

    @classmethod
    def start(cls, plan: SpecPlan, run_config: RunConfig) -> "ApplyCheckpoint":
        """Fresh in-progress checkpoint for a new apply."""
        now = utc_timestamp()
        return cls(
            status="in-progress",
            created_at=now,
            updated_at=now,
            spec_path=plan.spec_path,
            epic_title=plan.epic_title,
            priority=run_config.priority,
            with_validation=run_config.with_validation,
            reviewer=run_config.reviewer,
        )

    def to_dict(self) -> Dict[str, Any]:
        """File representation; optional keys are omitted when unset."""
        applied: Dict[str, Any] = {}
        if self.epic_id:
            applied["epicId"] = self.epic_id
        applied["phases"] = [phase.to_dict() for phase in self.phases]

        data: Dict[str, Any] = {
            "version": self.version,
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "specPath": self.spec_path,
            "epicTitle": self.epic_title,
            "priority": self.priority,
            "withValidation": self.with_validation,
            "reviewer": self.reviewer,
            "applied": applied,
        }
        if self.error:
            data["error"] = self.error
        return data

    def run_config(self) -> RunConfig:
        return RunConfig(
            priority=self.priority,
            with_validation=self.with_validation,
            reviewer=self.reviewer,
        )

    def counts(self) -> EntityCounts:
        return EntityCounts.from_applied(self.phases)

    def is_resumable(self) -> bool:
        return self.status in RESUMABLE_STATUSES


@dataclass(slots=True)
class CheckpointListEntry:
    """One checkpoint file as seen by the listing."""

    path: Path
    file_name: str
    status: str
    mtime: float
    updated_at: Optional[str] = None
    spec_path: Optional[str] = None
    epic_title: Optional[str] = None
    reviewer: Optional[str] = None
    priority: Optional[int] = None
    with_validation: Optional[bool] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "file_name": self.file_name,
            "status": self.status,
            "mtime": self.mtime,
            "updated_at": self.updated_at,
            "spec_path": self.spec_path,
            "epic_title": self.epic_title,
            "reviewer": self.reviewer,
            "priority": self.priority,
            "with_validation": self.with_validation,
            "error": self.error,
        }

    def is_resumable(self) -> bool:
        return self.status in RESUMABLE_STATUSES


# ---------------------------------------------------------------------------
# Task tool responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CreatedResponse:
    """``{"created_id": "..."}`` returned by every creation subcommand."""

    created_id: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], what: str) -> "CreatedResponse":
        value = payload.get("created_id")
        if isinstance(value, str) and value.strip():
            return cls(created_id=value.strip())
        raise TaskToolOutputError(f"missing {what} id from task tool output")


@dataclass(frozen=True, slots=True)
class HealthResponse:
    """``{"ok": true}`` returned by ``doctor``."""

    ok: bool

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "HealthResponse":
        return cls(ok=payload.get("ok") is True)
