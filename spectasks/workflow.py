"""Workflow facade for spec-to-tasks.

This module wires settings, the task tool client, the checkpoint store and
the engines together for one working repository, and turns results and
failures into plain dictionaries for the MCP tools and the CLI.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .checkpoints import CheckpointStore
from .config import (
    Settings,
    build_run_config,
    resolve_spec_path,
    to_absolute_path,
    validate_reviewer,
)
from .engine import ApplyEngine, ResumeEngine
from .errors import (
    ArgumentError,
    CheckpointSchemaError,
    CheckpointWriteError,
    PartialApplyError,
    PlanMismatchError,
    ResolutionError,
    TaskToolError,
    TaskToolHealthError,
)
from .formatting import (
    format_applied_summary,
    format_checkpoint_list,
    summarize_plan,
    summarize_resume_plan,
    to_display_path,
)
from .models import SpecPlan
from .parser import parse_spec_file, parse_spec_text
from .spectasks_logging import log_error_with_context, log_performance
from .task_tool import TaskToolClient, resolve_task_tool_invocation

logger = logging.getLogger("spectasks.workflow")


def suggestion_for(error: Exception) -> str:
    """Next step to offer the user for a failed operation."""
    if isinstance(error, ArgumentError):
        return "Check the arguments: priority must be 0-4 and reviewer must be a non-empty name"
    if isinstance(error, ResolutionError):
        return "Pass an explicit path, or set SPEC_PATH / SPEC_DIR for specs; use spec_to_tasks_checkpoints to list checkpoints"
    if isinstance(error, PartialApplyError):
        return "Fix the cause, then run spec_to_tasks_resume with the checkpoint file to finish without duplicates"
    if isinstance(error, PlanMismatchError):
        return "The spec changed since apply started; restore the original spec or start a new apply"
    if isinstance(error, CheckpointSchemaError):
        return "The checkpoint file is not usable; inspect it or pick another checkpoint"
    if isinstance(error, TaskToolHealthError):
        return "Check GRNSW_PATH and the task tool installation"
    if isinstance(error, TaskToolError):
        return "Check the task tool output and GRNSW_TIMEOUT_MS / GRNSW_RETRIES settings"
    if isinstance(error, CheckpointWriteError):
        return "Check that the checkpoint directory is writable"
    return "Check the logs for details"


class SpecTasksWorkflow:
    """Preview, apply, resume and list checkpoints for one repository root."""

    def __init__(
        self,
        root: Union[str, Path],
        settings: Settings,
        *,
        client: Optional[TaskToolClient] = None,
    ):
        self.root = Path(root).resolve()
        self.settings = settings
        self.store = CheckpointStore(self.root, settings)
        self._client = client

    @property
    def client(self) -> TaskToolClient:
        if self._client is None:
            invocation = resolve_task_tool_invocation(self.root, self.settings)
            logger.debug(f"Using task tool: {invocation.command} {' '.join(invocation.base_args)}".rstrip())
            self._client = TaskToolClient(invocation, self.settings)
        return self._client

    def _error_payload(self, error: Exception, operation: str, **context: Any) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": operation, "root": str(self.root), **context})
        payload: Dict[str, Any] = {
            "error": str(error),
            "error_type": type(error).__name__,
            "suggestion": suggestion_for(error),
            "message": f"Error: {error}",
        }
        if isinstance(error, PartialApplyError):
            payload["checkpoint_path"] = str(error.checkpoint_path)
            payload["checkpoint"] = error.checkpoint.to_dict()
            payload["next_suggested_step"] = "spec_to_tasks_resume"
        return payload

    def load_plan(self, spec_path: Optional[str] = None) -> SpecPlan:
        resolved = resolve_spec_path(spec_path, self.root, self.settings)
        return parse_spec_file(resolved)

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def preview(
        self,
        spec_path: Optional[str] = None,
        with_validation: bool = False,
        reviewer: Optional[str] = None,
        priority: Union[int, str, None] = None,
    ) -> Dict[str, Any]:
        """Parse the spec and describe what an apply would create."""
        try:
            run_config = build_run_config(
                self.settings, priority=priority, with_validation=with_validation, reviewer=reviewer
            )
            plan = self.load_plan(spec_path)
        except Exception as e:
            return self._error_payload(e, "preview", spec_path=spec_path)

        counts = plan.counts(run_config.with_validation)
        summary = summarize_plan(plan, run_config)
        return {
            "mode": "preview",
            "plan": plan.to_dict(),
            "run_config": run_config.to_dict(),
            "counts": {
                "phases": counts.phase_count,
                "milestones": counts.milestone_count,
                "validations": counts.validation_count,
            },
            "summary": summary,
            "next_suggested_step": "spec_to_tasks",
            "workflow_tip": "Dry-run only. Re-run with apply=True to create tasks.",
            "message": f"{summary}\n\nDry-run only. Re-run with apply=True to create tasks.",
        }

    @log_performance("apply_spec")
    def apply(
        self,
        spec_path: Optional[str] = None,
        with_validation: bool = False,
        reviewer: Optional[str] = None,
        priority: Union[int, str, None] = None,
        checkpoint_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create the epic, phases, milestones and validations for a spec."""
        try:
            run_config = build_run_config(
                self.settings, priority=priority, with_validation=with_validation, reviewer=reviewer
            )
            plan = self.load_plan(spec_path)
            engine = ApplyEngine(self.client, self.store)
            explicit = to_absolute_path(checkpoint_path, self.root) if checkpoint_path else None
            applied = engine.apply(plan, run_config, explicit)
        except Exception as e:
            return self._error_payload(e, "apply", spec_path=spec_path, checkpoint_path=checkpoint_path)

        summary = format_applied_summary(applied, run_config.priority)
        result: Dict[str, Any] = {
            "mode": "applied",
            "applied": applied.to_dict(),
            "run_config": run_config.to_dict(),
            "checkpoint_path": str(applied.checkpoint_path),
            "summary": summary,
            "message": f"Created epic {applied.epic_id} with {len(applied.phases)} phase(s).",
        }
        if applied.checkpoint_warning:
            result["warning"] = f"final checkpoint write failed: {applied.checkpoint_warning}"
        return result

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    def _plan_for_checkpoint(self, spec_path: str) -> SpecPlan:
        spec_file = to_absolute_path(spec_path, self.root)
        try:
            text = spec_file.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ResolutionError(f"Spec file recorded in checkpoint not found: {spec_file}") from e
        return parse_spec_text(text, spec_path)

    @log_performance("resume_spec")
    def resume(self, checkpoint_path: Optional[str] = None, reviewer: Optional[str] = None) -> Dict[str, Any]:
        """Continue a failed or interrupted apply from its checkpoint."""
        try:
            reviewer = validate_reviewer(reviewer)
            path = self.store.resolve_resume_path(checkpoint_path)
            checkpoint = self.store.load(path)
            plan = self._plan_for_checkpoint(checkpoint.spec_path)
            resume_summary = summarize_resume_plan(to_display_path(path, self.root), checkpoint, plan)

            if not checkpoint.is_resumable():
                applied = ResumeEngine(self.client, self.store).resume(checkpoint, path, plan)
                return {
                    "mode": "completed",
                    "applied": applied.to_dict(),
                    "checkpoint_path": str(path),
                    "resume_summary": resume_summary,
                    "message": "Checkpoint is already completed. Nothing to resume.",
                }

            applied = ResumeEngine(self.client, self.store).resume(checkpoint, path, plan, reviewer=reviewer)
            run_config = checkpoint.run_config()
        except Exception as e:
            return self._error_payload(e, "resume", checkpoint_path=checkpoint_path)

        result: Dict[str, Any] = {
            "mode": "resumed",
            "applied": applied.to_dict(),
            "checkpoint_path": str(path),
            "run_config": run_config.to_dict(),
            "resume_summary": resume_summary,
            "summary": format_applied_summary(applied, run_config.priority),
            "message": f"Resumed epic {applied.epic_id}; {len(applied.phases)} phase(s) in checkpoint.",
        }
        if applied.checkpoint_warning:
            result["warning"] = f"final checkpoint write failed: {applied.checkpoint_warning}"
        return result

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def list_checkpoints(self) -> Dict[str, Any]:
        """List checkpoint files, newest first."""
        try:
            entries = self.store.list_checkpoints()
        except Exception as e:
            return self._error_payload(e, "list_checkpoints")

        resumable = [entry for entry in entries if entry.is_resumable()]
        return {
            "checkpoint_dir": str(self.store.checkpoint_dir),
            "checkpoints": [entry.to_dict() for entry in entries],
            "count": len(entries),
            "resumable_count": len(resumable),
            "latest_resumable": str(resumable[0].path) if resumable else None,
            "summary": format_checkpoint_list(entries, self.root, self.store.checkpoint_dir),
            "message": (
                f"Found {len(entries)} checkpoints ({len(resumable)} resumable)"
                if entries
                else "No checkpoints found. Run spec_to_tasks with apply=True to create one."
            ),
        }
