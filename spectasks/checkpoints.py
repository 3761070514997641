"""Checkpoint files for apply and resume runs.

One JSON file per apply attempt lives under the checkpoint directory of the
working repository. Files are rewritten after every successful creation and
are never deleted here.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

from .config import Settings, to_absolute_path
from .errors import (
    CheckpointSchemaError,
    CheckpointWriteError,
    ResolutionError,
    SpecTasksError,
)
from .models import (
    CHECKPOINT_STATUSES,
    CHECKPOINT_VERSION,
    INVALID_STATUS,
    AppliedMilestone,
    AppliedPhase,
    ApplyCheckpoint,
    CheckpointListEntry,
    RunConfig,
    SpecPlan,
    utc_timestamp,
)
from .spectasks_logging import observability_hooks

logger = logging.getLogger("spectasks.checkpoints")

_UNSAFE_FILE_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def sanitize_file_component(value: str) -> str:
    return _UNSAFE_FILE_CHARS.sub("-", value)


# ---------------------------------------------------------------------------
# Field readers used by ``load``
# ---------------------------------------------------------------------------


def _read_required_string(value: Any, field: str, path: Path) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise CheckpointSchemaError(f"Invalid checkpoint field '{field}' in {path}")


def _read_optional_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _read_required_boolean(value: Any, field: str, path: Path) -> bool:
    if isinstance(value, bool):
        return value
    raise CheckpointSchemaError(f"Invalid checkpoint field '{field}' in {path}")


def _read_required_priority(value: Any, path: Path) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 4:
        return value
    raise CheckpointSchemaError(f"Invalid checkpoint field 'priority' in {path}")


def _read_milestones(raw: Any, phase_index: int, path: Path) -> List[AppliedMilestone]:
    if not isinstance(raw, list):
        raise CheckpointSchemaError(f"Invalid checkpoint milestones for phase {phase_index} in {path}")

    milestones: List[AppliedMilestone] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise CheckpointSchemaError(
                f"Invalid checkpoint milestone at phase {phase_index}, index {index} in {path}"
            )
        prefix = f"phases[{phase_index}].milestones[{index}]"
        milestones.append(
            AppliedMilestone(
                title=_read_required_string(item.get("title"), f"{prefix}.title", path),
                id=_read_required_string(item.get("id"), f"{prefix}.id", path),
                validation_id=_read_optional_string(item.get("validationId")),
            )
        )
    return milestones


def _read_phases(raw: Any, path: Path) -> List[AppliedPhase]:
    if not isinstance(raw, list):
        raise CheckpointSchemaError(f"Invalid checkpoint phases array in {path}")

    phases: List[AppliedPhase] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise CheckpointSchemaError(f"Invalid checkpoint phase at index {index} in {path}")
        phases.append(
            AppliedPhase(
                title=_read_required_string(item.get("title"), f"phases[{index}].title", path),
                id=_read_required_string(item.get("id"), f"phases[{index}].id", path),
                depends_on=_read_optional_string(item.get("dependsOn")),
                milestones=_read_milestones(item.get("milestones"), index, path),
            )
        )
    return phases


def _check_invariants(checkpoint: ApplyCheckpoint, path: Path) -> None:
    if checkpoint.phases and not checkpoint.epic_id:
        raise CheckpointSchemaError(
            f"Checkpoint is inconsistent ({path}): phases exist but epic id is missing"
        )

    previous_id: Optional[str] = None
    for phase_index, phase in enumerate(checkpoint.phases):
        if phase.depends_on != previous_id:
            expected = f"'{previous_id}'" if previous_id else "absent"
            raise CheckpointSchemaError(
                f"Checkpoint is inconsistent ({path}): phases[{phase_index}].dependsOn must be {expected}"
            )
        previous_id = phase.id

        if checkpoint.with_validation:
            continue
        for milestone_index, milestone in enumerate(phase.milestones):
            if milestone.validation_id:
                raise CheckpointSchemaError(
                    f"Checkpoint is inconsistent ({path}): "
                    f"phases[{phase_index}].milestones[{milestone_index}].validationId "
                    "is set but withValidation is false"
                )


def checkpoint_from_dict(data: Any, path: Path) -> ApplyCheckpoint:
    """Validate a decoded checkpoint payload and build the model."""
    if not isinstance(data, dict):
        raise CheckpointSchemaError(f"Invalid checkpoint payload at {path}: expected object")

    version = data.get("version")
    if isinstance(version, bool) or version != CHECKPOINT_VERSION:
        raise CheckpointSchemaError(f"Unsupported checkpoint version in {path}")

    status = data.get("status")
    if status not in CHECKPOINT_STATUSES:
        raise CheckpointSchemaError(f"Invalid checkpoint status in {path}")

    spec_path = _read_required_string(data.get("specPath"), "specPath", path)
    epic_title = _read_required_string(data.get("epicTitle"), "epicTitle", path)
    reviewer = _read_required_string(data.get("reviewer"), "reviewer", path)
    priority = _read_required_priority(data.get("priority"), path)
    with_validation = _read_required_boolean(data.get("withValidation"), "withValidation", path)
    created_at = _read_required_string(data.get("createdAt"), "createdAt", path)
    updated_at = _read_required_string(data.get("updatedAt"), "updatedAt", path)

    applied = data.get("applied")
    if not isinstance(applied, dict):
        raise CheckpointSchemaError(f"Invalid checkpoint applied payload in {path}")

    checkpoint = ApplyCheckpoint(
        status=status,
        created_at=created_at,
        updated_at=updated_at,
        spec_path=spec_path,
        epic_title=epic_title,
        priority=priority,
        with_validation=with_validation,
        reviewer=reviewer,
        epic_id=_read_optional_string(applied.get("epicId")),
        phases=_read_phases(applied.get("phases"), path),
        error=_read_optional_string(data.get("error")),
    )
    _check_invariants(checkpoint, path)
    return checkpoint


class CheckpointStore:
    """Read and write checkpoint files for one working repository."""

    def __init__(self, root: Union[str, Path], settings: Settings):
        self.root = Path(root).resolve()
        self.checkpoint_dir = to_absolute_path(settings.checkpoint_dir, self.root)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def allocate_path(self, plan: SpecPlan, explicit: Optional[Union[str, Path]] = None) -> Path:
        """Explicit path, or ``apply-<timestamp>-<spec stem>.json`` in the checkpoint directory."""
        if explicit and str(explicit).strip():
            return to_absolute_path(str(explicit).strip(), self.root)

        stamp = utc_timestamp().replace(":", "-").replace(".", "-")
        stem = sanitize_file_component(Path(plan.spec_path).stem or "spec")
        candidate = self.checkpoint_dir / f"apply-{stamp}-{stem}.json"
        suffix = 1
        while candidate.exists():
            candidate = self.checkpoint_dir / f"apply-{stamp}-{stem}-{suffix}.json"
            suffix += 1
        return candidate

    def create(
        self,
        plan: SpecPlan,
        run_config: RunConfig,
        explicit_path: Optional[Union[str, Path]] = None,
    ) -> Tuple[Path, ApplyCheckpoint]:
        """Allocate a checkpoint file and persist the initial in-progress state."""
        path = self.allocate_path(plan, explicit_path)
        checkpoint = ApplyCheckpoint.start(plan, run_config)
        self.save_or_raise(path, checkpoint)
        logger.info(f"Created checkpoint {path}")
        return path, checkpoint

    def save(self, path: Path, checkpoint: ApplyCheckpoint) -> Optional[str]:
        """Write the checkpoint; return the error text instead of raising."""
        checkpoint.updated_at = utc_timestamp()
        temp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(checkpoint.to_dict(), indent=2, ensure_ascii=False)
            temp_path.write_text(payload + "\n", encoding="utf-8")
            os.replace(temp_path, path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to write checkpoint {path}: {e}")
            return str(e)

        observability_hooks.log_workflow_event(
            "checkpoint_saved",
            spec_path=checkpoint.spec_path,
            checkpoint_path=str(path),
            status=checkpoint.status,
        )
        return None

    def save_or_raise(self, path: Path, checkpoint: ApplyCheckpoint) -> None:
        error = self.save(path, checkpoint)
        if error:
            raise CheckpointWriteError(f"failed to write apply checkpoint at {path}: {error}")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def load(self, path: Union[str, Path]) -> ApplyCheckpoint:
        """Load and strictly validate a checkpoint file."""
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ResolutionError(f"Checkpoint file not found: {path}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise CheckpointSchemaError(f"Could not read checkpoint {path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CheckpointSchemaError(f"Invalid checkpoint JSON at {path}: {e}") from e

        return checkpoint_from_dict(data, path)

    def list_checkpoints(self) -> List[CheckpointListEntry]:
        """All ``*.json`` files in the checkpoint directory, newest first.

        Files that fail to load are reported with status ``invalid``.
        """
        if not self.checkpoint_dir.is_dir():
            return []

        entries: List[CheckpointListEntry] = []
        for path in sorted(self.checkpoint_dir.iterdir()):
            if not path.name.lower().endswith(".json"):
                continue
            try:
                stat = path.stat()
            except OSError:
                continue
            if not path.is_file():
                continue

            try:
                checkpoint = self.load(path)
            except (SpecTasksError, OSError) as e:
                entries.append(
                    CheckpointListEntry(
                        path=path,
                        file_name=path.name,
                        status=INVALID_STATUS,
                        mtime=stat.st_mtime,
                        error=str(e),
                    )
                )
                continue

            entries.append(
                CheckpointListEntry(
                    path=path,
                    file_name=path.name,
                    status=checkpoint.status,
                    mtime=stat.st_mtime,
                    updated_at=checkpoint.updated_at,
                    spec_path=checkpoint.spec_path,
                    epic_title=checkpoint.epic_title,
                    reviewer=checkpoint.reviewer,
                    priority=checkpoint.priority,
                    with_validation=checkpoint.with_validation,
                    error=checkpoint.error,
                )
            )

        entries.sort(key=lambda entry: entry.mtime, reverse=True)
        return entries

    def resolve_latest_resumable(self) -> Path:
        """Most recent ``failed`` or ``in-progress`` checkpoint."""
        entries = self.list_checkpoints()
        if not entries:
            raise ResolutionError(f"No checkpoints found under {self.checkpoint_dir}")

        for entry in entries:
            if entry.is_resumable():
                return entry.path
        raise ResolutionError("No resumable checkpoint found (all checkpoints are completed or invalid).")

    def resolve_resume_path(self, explicit: Optional[Union[str, Path]] = None) -> Path:
        """Explicit checkpoint file if given, otherwise the latest resumable one."""
        if explicit and str(explicit).strip():
            resolved = to_absolute_path(str(explicit).strip(), self.root)
            if not resolved.is_file():
                raise ResolutionError(f"Checkpoint file not found: {resolved}")
            return resolved
        return self.resolve_latest_resumable()

