"""Human-readable summaries of plans, runs and checkpoints."""

from __future__ import annotations

import os
import shlex
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .models import (
    INVALID_STATUS,
    AppliedPlan,
    ApplyCheckpoint,
    CheckpointListEntry,
    RunConfig,
    SpecPlan,
)

RESUME_COMMAND = "spec-to-tasks resume"


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def to_display_path(path: Union[str, Path], cwd: Union[str, Path]) -> str:
    """Path relative to ``cwd`` when it lies inside it, otherwise unchanged."""
    try:
        relative = os.path.relpath(path, cwd)
    except ValueError:
        return str(path)
    if relative == "." or relative.startswith("..") or os.path.isabs(relative):
        return str(path)
    return relative


def summarize_plan(plan: SpecPlan, run_config: RunConfig) -> str:
    lines = [
        f"Spec: {plan.spec_path}",
        f"Epic: {plan.epic_title}",
        f"Priority: {run_config.priority}",
        f"Phases: {len(plan.phases)}",
    ]
    for phase in plan.phases:
        lines.append(f"  - {phase.title} ({_plural(len(phase.milestones), 'milestone')})")
        for milestone in phase.milestones:
            lines.append(f"      - {milestone.title}")

    if run_config.with_validation:
        lines.append(f"Validation tasks: yes (reviewer: {run_config.reviewer})")
    else:
        lines.append("Validation tasks: no")

    if not plan.phases:
        lines.append("Note: no Phase headings found; only epic will be created.")
    return "\n".join(lines)


def summarize_resume_plan(checkpoint_path: Union[str, Path], checkpoint: ApplyCheckpoint, plan: SpecPlan) -> str:
    """Checkpoint state plus progress against the current plan."""
    total = plan.counts(checkpoint.with_validation)
    applied = checkpoint.counts()
    validation = f"yes (reviewer: {checkpoint.reviewer})" if checkpoint.with_validation else "no"
    lines = [
        f"Checkpoint: {checkpoint_path}",
        f"Status: {checkpoint.status}",
        f"Spec: {checkpoint.spec_path}",
        f"Epic: {checkpoint.epic_title}",
        f"Epic id: {checkpoint.epic_id or '<not created>'}",
        f"Priority: {checkpoint.priority}",
        f"Validation tasks: {validation}",
        (
            f"Progress: phases {applied.phase_count}/{total.phase_count}, "
            f"milestones {applied.milestone_count}/{total.milestone_count}, "
            f"validations {applied.validation_count}/{total.validation_count}"
        ),
    ]
    if checkpoint.error:
        lines.append(f"Last error: {checkpoint.error}")
    return "\n".join(lines)


def format_applied_summary(applied: AppliedPlan, priority: int) -> str:
    lines = [
        f"Created epic {applied.epic_id}: {applied.epic_title}",
        f"Spec: {applied.spec_path}",
        f"Priority: {priority}",
    ]
    for phase in applied.phases:
        dependency = f" (depends on {phase.depends_on})" if phase.depends_on else ""
        lines.append(f"- {phase.id} {phase.title}{dependency}")
        for milestone in phase.milestones:
            lines.append(f"  - {milestone.id} {milestone.title}")
            if milestone.validation_id:
                lines.append(f"    - {milestone.validation_id} Validate: {milestone.title}")

    if not applied.phases:
        lines.append("No phases parsed; only epic created.")
    if applied.checkpoint_path:
        lines.append(f"Checkpoint: {applied.checkpoint_path}")
    if applied.checkpoint_warning:
        lines.append(f"Warning: final checkpoint write failed: {applied.checkpoint_warning}")
    return "\n".join(lines)


def format_checkpoint_status(status: str) -> str:
    if status in ("in-progress", "failed", "completed"):
        return status.upper()
    return INVALID_STATUS.upper()


def _updated_label(entry: CheckpointListEntry) -> str:
    if entry.updated_at:
        return entry.updated_at
    return datetime.fromtimestamp(entry.mtime, tz=timezone.utc).isoformat(timespec="milliseconds")


def format_checkpoint_list(
    entries: Sequence[CheckpointListEntry],
    cwd: Union[str, Path],
    checkpoint_dir: Optional[Union[str, Path]] = None,
) -> str:
    """Numbered listing, newest first, with a resume hint."""
    if not entries:
        location = to_display_path(checkpoint_dir, cwd) if checkpoint_dir else "the checkpoint directory"
        return f"No checkpoints found under {location}"

    lines: List[str] = ["spec-to-tasks checkpoints:"]
    for index, entry in enumerate(entries, start=1):
        lines.append(f"{index}. [{format_checkpoint_status(entry.status)}] {entry.file_name}")
        lines.append(f"   path: {to_display_path(entry.path, cwd)}")
        lines.append(f"   updated: {_updated_label(entry)}")
        if entry.epic_title:
            lines.append(f"   epic: {entry.epic_title}")
        if entry.spec_path:
            lines.append(f"   spec: {entry.spec_path}")
        if entry.priority is not None:
            lines.append(f"   priority: {entry.priority}")
        if entry.with_validation is not None:
            if entry.with_validation:
                reviewer = f" (reviewer: {entry.reviewer})" if entry.reviewer else ""
                lines.append(f"   validation: yes{reviewer}")
            else:
                lines.append("   validation: no")
        if entry.error:
            lines.append(f"   error: {entry.error}")

    resumable = [entry for entry in entries if entry.is_resumable()]
    lines.append("")
    lines.append(f"Resumable checkpoints: {len(resumable)}")
    if resumable:
        latest = shlex.quote(to_display_path(resumable[0].path, cwd))
        lines.append(f"Resume the latest with: {RESUME_COMMAND} {latest}")
    return "\n".join(lines)
