"""Apply and resume a spec plan against the task tool.

Entities are created strictly in order: epic, then each phase followed by its
milestones (and their validation tasks). The checkpoint is persisted after
every successful creation, so a failed run can be resumed without creating
duplicates of anything that was recorded.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .checkpoints import CheckpointStore
from .errors import CheckpointSchemaError, PartialApplyError, PlanMismatchError
from .models import (
    AppliedMilestone,
    AppliedPhase,
    AppliedPlan,
    ApplyCheckpoint,
    MilestonePlan,
    RunConfig,
    SpecPlan,
)
from .spectasks_logging import log_entity_created, log_operation, log_run_finished
from .task_tool import TaskToolClient

logger = logging.getLogger("spectasks.engine")


def format_partial_apply_recovery(
    checkpoint_path: Path,
    checkpoint: ApplyCheckpoint,
    save_error: Optional[str] = None,
) -> str:
    """Recovery instructions appended to the message of a failed run."""
    counts = checkpoint.counts()
    lines = [
        "Partial apply detected; some task tool entities were created before the failure.",
        f"Checkpoint file: {checkpoint_path}",
        (
            f"Created so far: epic={checkpoint.epic_id or 'none'}, phases={counts.phase_count}, "
            f"milestones={counts.milestone_count}, validations={counts.validation_count}"
        ),
        "Review this checkpoint and existing tasks before retrying to avoid duplicates.",
    ]
    if save_error:
        lines.insert(1, f"Checkpoint write failed: {save_error}")
    return "\n".join(lines)


def assert_checkpoint_matches_plan(checkpoint: ApplyCheckpoint, plan: SpecPlan) -> None:
    """Raise ``PlanMismatchError`` unless the checkpoint is a prefix of the plan."""
    if checkpoint.spec_path != plan.spec_path:
        raise PlanMismatchError(
            f"Checkpoint spec path mismatch. Checkpoint: {checkpoint.spec_path}, plan: {plan.spec_path}"
        )
    if checkpoint.epic_title != plan.epic_title:
        raise PlanMismatchError(
            f"Checkpoint epic title mismatch. Checkpoint: '{checkpoint.epic_title}', "
            f"plan: '{plan.epic_title}'. The spec changed since apply started."
        )
    if len(checkpoint.phases) > len(plan.phases):
        raise PlanMismatchError("Checkpoint has more phases than current spec plan.")

    for phase_index, (applied_phase, plan_phase) in enumerate(zip(checkpoint.phases, plan.phases), start=1):
        if applied_phase.title != plan_phase.title:
            raise PlanMismatchError(
                f"Checkpoint phase mismatch at index {phase_index}: "
                f"'{applied_phase.title}' vs '{plan_phase.title}'."
            )
        if len(applied_phase.milestones) > len(plan_phase.milestones):
            raise PlanMismatchError(
                f"Checkpoint phase '{applied_phase.title}' has more milestones than current spec."
            )
        pairs = zip(applied_phase.milestones, plan_phase.milestones)
        for milestone_index, (applied_milestone, plan_milestone) in enumerate(pairs, start=1):
            if applied_milestone.title != plan_milestone.title:
                raise PlanMismatchError(
                    f"Checkpoint milestone mismatch in phase '{applied_phase.title}' at index "
                    f"{milestone_index}: '{applied_milestone.title}' vs '{plan_milestone.title}'."
                )

    if checkpoint.phases and not checkpoint.epic_id:
        raise PlanMismatchError("Checkpoint is inconsistent: phases exist but epic id is missing.")


def applied_plan_from_checkpoint(
    checkpoint: ApplyCheckpoint,
    plan: SpecPlan,
    checkpoint_path: Optional[Path] = None,
) -> AppliedPlan:
    if not checkpoint.epic_id:
        raise CheckpointSchemaError("Checkpoint does not contain an epic id yet.")
    return AppliedPlan(
        epic_title=plan.epic_title,
        epic_id=checkpoint.epic_id,
        phases=checkpoint.phases,
        spec_path=checkpoint.spec_path,
        checkpoint_path=checkpoint_path,
    )


class _CheckpointedRun:
    """Creation walk shared by apply and resume.

    The walk skips every entity already recorded in the checkpoint, so a
    fresh apply is simply a walk over an empty checkpoint.
    """

    def __init__(self, client: TaskToolClient, store: CheckpointStore):
        self.client = client
        self.store = store

    def _walk(self, plan: SpecPlan, checkpoint: ApplyCheckpoint, checkpoint_path: Path) -> None:
        priority = str(checkpoint.priority)

        if not checkpoint.epic_id:
            checkpoint.epic_id = self.client.create(
                [
                    "epic", "new", plan.epic_title,
                    "--priority", priority,
                    "--spec-id", plan.spec_path,
                    "--design", plan.spec_path,
                ],
                "epic",
            )
            self.store.save_or_raise(checkpoint_path, checkpoint)
            log_entity_created("epic", plan.epic_title, checkpoint.epic_id, plan.spec_path)

        previous_phase_id: Optional[str] = None
        for phase_index, plan_phase in enumerate(plan.phases):
            if phase_index < len(checkpoint.phases):
                applied_phase = checkpoint.phases[phase_index]
            else:
                phase_args = [
                    "phase", "add", plan_phase.title,
                    "--epic", checkpoint.epic_id,
                    "--priority", priority,
                ]
                if previous_phase_id:
                    phase_args.extend(["--depends-on", previous_phase_id])
                applied_phase = AppliedPhase(
                    title=plan_phase.title,
                    id=self.client.create(phase_args, "phase"),
                    depends_on=previous_phase_id,
                )
                checkpoint.phases.append(applied_phase)
                self.store.save_or_raise(checkpoint_path, checkpoint)
                log_entity_created(
                    "phase", applied_phase.title, applied_phase.id, plan.spec_path,
                    depends_on=previous_phase_id,
                )

            for milestone_index, plan_milestone in enumerate(plan_phase.milestones):
                if milestone_index < len(applied_phase.milestones):
                    applied_milestone = applied_phase.milestones[milestone_index]
                else:
                    applied_milestone = AppliedMilestone(
                        title=plan_milestone.title,
                        id=self.client.create(
                            [
                                "milestone", "add", plan_milestone.title,
                                "--phase", applied_phase.id,
                                "--priority", priority,
                            ],
                            "milestone",
                        ),
                    )
                    applied_phase.milestones.append(applied_milestone)
                    self.store.save_or_raise(checkpoint_path, checkpoint)
                    log_entity_created(
                        "milestone", applied_milestone.title, applied_milestone.id, plan.spec_path,
                        phase_id=applied_phase.id,
                    )

                if checkpoint.with_validation and not applied_milestone.validation_id:
                    self._create_validation(plan, checkpoint, checkpoint_path, applied_milestone, plan_milestone)

            previous_phase_id = applied_phase.id

    def _create_validation(
        self,
        plan: SpecPlan,
        checkpoint: ApplyCheckpoint,
        checkpoint_path: Path,
        applied_milestone: AppliedMilestone,
        plan_milestone: MilestonePlan,
    ) -> None:
        title = f"Validate: {plan_milestone.title}"
        args = [
            "validation", "add", title,
            "--milestone", applied_milestone.id,
            "--reviewer", checkpoint.reviewer,
            "--priority", str(checkpoint.priority),
        ]
        if plan_milestone.acceptance:
            args.extend(["--acceptance", plan_milestone.acceptance])

        applied_milestone.validation_id = self.client.create(args, "validation")
        self.store.save_or_raise(checkpoint_path, checkpoint)
        log_entity_created(
            "validation", title, applied_milestone.validation_id, plan.spec_path,
            milestone_id=applied_milestone.id,
            reviewer=checkpoint.reviewer,
        )

    def _finish(self, plan: SpecPlan, checkpoint: ApplyCheckpoint, checkpoint_path: Path) -> AppliedPlan:
        checkpoint.status = "completed"
        checkpoint.error = None
        save_error = self.store.save(checkpoint_path, checkpoint)
        if save_error:
            logger.warning(f"Run completed but the final checkpoint write failed: {save_error}")

        applied = applied_plan_from_checkpoint(checkpoint, plan, checkpoint_path)
        applied.checkpoint_warning = save_error
        counts = checkpoint.counts()
        log_run_finished(
            "completed", plan.spec_path, checkpoint_path,
            epic_id=checkpoint.epic_id,
            phases=counts.phase_count,
            milestones=counts.milestone_count,
            validations=counts.validation_count,
        )
        return applied

    def _fail(self, error: Exception, checkpoint: ApplyCheckpoint, checkpoint_path: Path) -> PartialApplyError:
        message = str(error) or type(error).__name__
        checkpoint.status = "failed"
        checkpoint.error = message
        save_error = self.store.save(checkpoint_path, checkpoint)
        log_run_finished(
            "failed", checkpoint.spec_path, checkpoint_path,
            error=message,
            checkpoint_save_error=save_error,
        )
        return PartialApplyError(
            f"{message}\n{format_partial_apply_recovery(checkpoint_path, checkpoint, save_error)}",
            cause_message=message,
            checkpoint_path=checkpoint_path,
            checkpoint=checkpoint,
            save_error=save_error,
        )


class ApplyEngine(_CheckpointedRun):
    """Create every entity of a plan, recording progress in a new checkpoint."""

    def apply(
        self,
        plan: SpecPlan,
        run_config: RunConfig,
        checkpoint_path: Optional[Path] = None,
    ) -> AppliedPlan:
        with log_operation("apply", spec_path=plan.spec_path):
            self.client.ensure_healthy()
            path, checkpoint = self.store.create(plan, run_config, checkpoint_path)
            logger.info(f"Applying '{plan.epic_title}' with checkpoint {path}")

            try:
                self._walk(plan, checkpoint, path)
            except Exception as e:
                raise self._fail(e, checkpoint, path) from e

            return self._finish(plan, checkpoint, path)


class ResumeEngine(_CheckpointedRun):
    """Finish a failed or interrupted apply from its checkpoint."""

    def resume(
        self,
        checkpoint: ApplyCheckpoint,
        checkpoint_path: Path,
        plan: SpecPlan,
        reviewer: Optional[str] = None,
    ) -> AppliedPlan:
        """Create whatever the checkpoint is missing relative to ``plan``.

        A completed checkpoint is returned as-is without calling the task
        tool. ``reviewer`` only affects validation tasks created from now on.
        """
        assert_checkpoint_matches_plan(checkpoint, plan)

        if not checkpoint.is_resumable():
            logger.info(f"Checkpoint {checkpoint_path} is already completed; nothing to resume")
            return applied_plan_from_checkpoint(checkpoint, plan, checkpoint_path)

        with log_operation("resume", spec_path=plan.spec_path, checkpoint_path=str(checkpoint_path)):
            if reviewer:
                checkpoint.reviewer = reviewer
            checkpoint.status = "in-progress"
            checkpoint.error = None
            self.store.save_or_raise(checkpoint_path, checkpoint)

            try:
                self.client.ensure_healthy()
                self._walk(plan, checkpoint, checkpoint_path)
            except Exception as e:
                raise self._fail(e, checkpoint, checkpoint_path) from e

            return self._finish(plan, checkpoint, checkpoint_path)
