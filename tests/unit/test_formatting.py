"""Unit tests for summaries and checkpoint listings."""

from spectasks.formatting import (
    format_applied_summary,
    format_checkpoint_list,
    format_checkpoint_status,
    summarize_plan,
    summarize_resume_plan,
    to_display_path,
)
from spectasks.models import (
    AppliedMilestone,
    AppliedPhase,
    AppliedPlan,
    ApplyCheckpoint,
    CheckpointListEntry,
    MilestonePlan,
    PhasePlan,
    RunConfig,
    SpecPlan,
)

PLAN = SpecPlan(
    "/r/spec.md",
    "Offline Sync",
    (
        PhasePlan("Phase 1", (MilestonePlan("M1"), MilestonePlan("M2"))),
        PhasePlan("Phase 2", (MilestonePlan("M3"),)),
    ),
)


class TestPlanSummaries:
    """Test cases for plan and resume summaries."""

    def test_summarize_plan(self):
        """Test the plan preview text."""
        text = summarize_plan(PLAN, RunConfig(priority=2, with_validation=True, reviewer="sam"))
        assert text.splitlines() == [
            "Spec: /r/spec.md",
            "Epic: Offline Sync",
            "Priority: 2",
            "Phases: 2",
            "  - Phase 1 (2 milestones)",
            "      - M1",
            "      - M2",
            "  - Phase 2 (1 milestone)",
            "      - M3",
            "Validation tasks: yes (reviewer: sam)",
        ]

    def test_summarize_empty_plan(self):
        """Test the preview of a plan without phases."""
        text = summarize_plan(SpecPlan("s.md", "E"), RunConfig())
        assert "Validation tasks: no" in text
        assert text.endswith("Note: no Phase headings found; only epic will be created.")

    def test_summarize_resume_plan(self):
        """Test the resume summary with progress counts."""
        checkpoint = ApplyCheckpoint(
            status="failed",
            created_at="c",
            updated_at="u",
            spec_path="/r/spec.md",
            epic_title="Offline Sync",
            priority=1,
            with_validation=True,
            reviewer="sam",
            epic_id="E1",
            phases=[AppliedPhase("Phase 1", "P1", milestones=[AppliedMilestone("M1", "m1", "v1")])],
            error="boom",
        )
        text = summarize_resume_plan("cp.json", checkpoint, PLAN)
        assert "Epic id: E1" in text
        assert "Progress: phases 1/2, milestones 1/3, validations 1/3" in text
        assert text.endswith("Last error: boom")


class TestAppliedSummary:
    """Test cases for format_applied_summary."""

    def test_tree(self, tmp_path):
        """Test the applied tree with a checkpoint warning."""
        applied = AppliedPlan(
            epic_title="Offline Sync",
            epic_id="E1",
            phases=[
                AppliedPhase("Phase 1", "P1", milestones=[AppliedMilestone("M1", "m1", "v1")]),
                AppliedPhase("Phase 2", "P2", depends_on="P1"),
            ],
            spec_path="/r/spec.md",
            checkpoint_path=tmp_path / "cp.json",
            checkpoint_warning="disk full",
        )
        lines = format_applied_summary(applied, 1).splitlines()
        assert lines[:7] == [
            "Created epic E1: Offline Sync",
            "Spec: /r/spec.md",
            "Priority: 1",
            "- P1 Phase 1",
            "  - m1 M1",
            "    - v1 Validate: M1",
            "- P2 Phase 2 (depends on P1)",
        ]
        assert lines[-1] == "Warning: final checkpoint write failed: disk full"

    def test_epic_only(self):
        """Test the applied summary for an epic without phases."""
        applied = AppliedPlan("E", "E1", [], "s.md")
        assert format_applied_summary(applied, 0).endswith("No phases parsed; only epic created.")


class TestCheckpointList:
    """Test cases for format_checkpoint_list."""

    def test_statuses(self):
        """Test status labels."""
        assert format_checkpoint_status("in-progress") == "IN-PROGRESS"
        assert format_checkpoint_status("completed") == "COMPLETED"
        assert format_checkpoint_status("weird") == "INVALID"

    def test_display_path(self, tmp_path):
        """Test relative display paths."""
        assert to_display_path(tmp_path / "a" / "b.json", tmp_path) == "a/b.json"
        assert to_display_path("/elsewhere/b.json", tmp_path) == "/elsewhere/b.json"

    def test_listing(self, tmp_path):
        """Test the checkpoint listing text."""
        cp_dir = tmp_path / ".spec-to-tasks" / "checkpoints"
        entries = [
            CheckpointListEntry(
                cp_dir / "apply 2.json", "apply 2.json", "failed", 0.0,
                updated_at="2026-01-02T00:00:00.000Z", spec_path="/r/spec.md", epic_title="Offline Sync",
                reviewer="sam", priority=1, with_validation=True, error="boom",
            ),
            CheckpointListEntry(cp_dir / "bad.json", "bad.json", "invalid", 0.0, error="Unsupported"),
        ]
        lines = format_checkpoint_list(entries, tmp_path).splitlines()

        assert lines[0] == "spec-to-tasks checkpoints:"
        assert lines[1] == "1. [FAILED] apply 2.json"
        assert lines[2] == "   path: .spec-to-tasks/checkpoints/apply 2.json"
        assert "   validation: yes (reviewer: sam)" in lines
        assert "2. [INVALID] bad.json" in lines
        assert "   updated: 1970-01-01T00:00:00.000+00:00" in lines
        assert "Resumable checkpoints: 1" in lines
        assert lines[-1] == "Resume the latest with: spec-to-tasks resume '.spec-to-tasks/checkpoints/apply 2.json'"

    def test_empty_listing(self, tmp_path):
        """Test the listing with no checkpoints."""
        text = format_checkpoint_list([], tmp_path, tmp_path / ".spec-to-tasks" / "checkpoints")
        assert text == "No checkpoints found under .spec-to-tasks/checkpoints"
