"""Unit tests for the spec-to-tasks workflow facade.

The task tool is replaced by a scripted runner; checkpoints are written to a
temporary project directory.
"""

import json

import pytest
from unittest.mock import patch

from spectasks.errors import (
    ArgumentError,
    PartialApplyError,
    PlanMismatchError,
    ResolutionError,
    TaskToolHealthError,
)
from spectasks.workflow import SpecTasksWorkflow, suggestion_for


@pytest.fixture
def workflow(project_dir, settings, client):
    return SpecTasksWorkflow(project_dir, settings, client=client)


class TestPreview:
    """Test cases for SpecTasksWorkflow.preview."""

    def test_preview_does_not_call_task_tool(self, workflow, fake_tool, spec_file):
        """Test that preview does not call the task tool."""
        result = workflow.preview("offline-sync.md", with_validation=True, reviewer="sam", priority=2)

        assert fake_tool.calls == []
        assert result["mode"] == "preview"
        assert result["counts"] == {"phases": 2, "milestones": 3, "validations": 3}
        assert result["plan"]["epic_title"] == "Offline Sync"
        assert result["run_config"] == {"priority": 2, "with_validation": True, "reviewer": "sam"}
        assert result["message"].endswith("Dry-run only. Re-run with apply=True to create tasks.")

    def test_preview_invalid_priority(self, workflow, spec_file):
        """Test preview with an invalid priority."""
        result = workflow.preview("offline-sync.md", priority=7)
        assert result["error_type"] == "ArgumentError"
        assert "--priority" in result["error"]

    def test_preview_missing_spec(self, workflow):
        """Test preview with a missing spec."""
        result = workflow.preview("nope.md")
        assert result["error_type"] == "ResolutionError"
        assert "No spec file found" in result["error"]
        assert result["suggestion"]


class TestApply:
    """Test cases for SpecTasksWorkflow.apply."""

    def test_apply_success(self, workflow, fake_tool, spec_file):
        """Test a successful apply."""
        result = workflow.apply("offline-sync.md")

        assert result["mode"] == "applied"
        assert result["message"] == "Created epic EP-1 with 2 phase(s)."
        assert result["summary"].startswith("Created epic EP-1: Offline Sync")
        assert json.loads(open(result["checkpoint_path"], encoding="utf-8").read())["status"] == "completed"
        assert "warning" not in result

    def test_apply_partial_failure(self, workflow, fake_tool, spec_file):
        """Test the error payload of a partial apply."""
        fake_tool.fail_on("phase add", stderr="quota exceeded")

        with patch("spectasks.workflow.log_error_with_context") as mock_log:
            result = workflow.apply("offline-sync.md")

        assert result["error_type"] == "PartialApplyError"
        assert result["error"].startswith("task tool failed: quota exceeded\nPartial apply detected")
        assert result["next_suggested_step"] == "spec_to_tasks_resume"
        assert result["checkpoint"]["status"] == "failed"
        assert result["checkpoint"]["applied"]["epicId"] == "EP-1"
        context = mock_log.call_args[0][1]
        assert context["operation"] == "apply"

    def test_apply_explicit_checkpoint(self, workflow, project_dir, spec_file):
        """Test apply with an explicit checkpoint path."""
        result = workflow.apply("offline-sync.md", checkpoint_path="runs/first.json")
        assert result["checkpoint_path"] == str(project_dir.resolve() / "runs" / "first.json")


class TestResume:
    """Test cases for SpecTasksWorkflow.resume."""

    def test_resume_after_failure(self, workflow, fake_tool, spec_file):
        """Test resuming after a failed apply."""
        fake_tool.fail_on("milestone add")
        failed = workflow.apply("offline-sync.md", with_validation=True)
        assert failed["error_type"] == "PartialApplyError"

        result = workflow.resume()

        assert result["mode"] == "resumed"
        assert result["checkpoint_path"] == failed["checkpoint_path"]
        assert "Progress: phases 1/2, milestones 0/3, validations 0/3" in result["resume_summary"]
        assert len(result["applied"]["phases"]) == 2
        kinds = fake_tool.created_kinds()
        assert kinds.count("epic new") == 1
        assert kinds.count("phase add") == 2
        assert kinds.count("milestone add") == 4
        assert kinds.count("validation add") == 3

    def test_resume_reports_run_config_with_reviewer_override(self, workflow, fake_tool, spec_file):
        """Test that resume echoes the checkpoint run config, including a new reviewer."""
        fake_tool.fail_on("validation add")
        workflow.apply("offline-sync.md", with_validation=True, priority=3)

        result = workflow.resume(reviewer="ana")

        assert result["run_config"] == {"priority": 3, "with_validation": True, "reviewer": "ana"}
        assert "Priority: 3" in result["summary"]

    def test_resume_completed_checkpoint(self, workflow, fake_tool, spec_file):
        """Test resuming a completed checkpoint."""
        applied = workflow.apply("offline-sync.md")
        calls_before = len(fake_tool.calls)

        result = workflow.resume(applied["checkpoint_path"])

        assert result["mode"] == "completed"
        assert result["message"] == "Checkpoint is already completed. Nothing to resume."
        assert len(fake_tool.calls) == calls_before

    def test_resume_after_spec_edit(self, workflow, fake_tool, spec_file):
        """Test resuming after the spec was edited."""
        fake_tool.fail_on("milestone add")
        workflow.apply("offline-sync.md")
        spec_file.write_text(spec_file.read_text(encoding="utf-8").replace("# Offline Sync", "# Renamed"),
                             encoding="utf-8")
        calls_before = len(fake_tool.calls)

        result = workflow.resume()

        assert result["error_type"] == "PlanMismatchError"
        assert "Checkpoint epic title mismatch" in result["error"]
        assert len(fake_tool.calls) == calls_before

    def test_resume_without_checkpoints(self, workflow):
        """Test resume without checkpoints."""
        result = workflow.resume()
        assert result["error_type"] == "ResolutionError"
        assert "No checkpoints found" in result["error"]

    def test_resume_rejects_blank_reviewer(self, workflow):
        """Test that resume rejects a blank reviewer."""
        result = workflow.resume(reviewer="  ")
        assert result["error_type"] == "ArgumentError"

    def test_resume_with_missing_spec(self, workflow, fake_tool, spec_file):
        """Test resume when the recorded spec file is gone."""
        fake_tool.fail_on("epic new")
        workflow.apply("offline-sync.md")
        spec_file.unlink()

        result = workflow.resume()

        assert result["error_type"] == "ResolutionError"
        assert "Spec file recorded in checkpoint not found" in result["error"]


class TestListCheckpoints:
    """Test cases for SpecTasksWorkflow.list_checkpoints."""

    def test_empty(self, workflow):
        """Test listing with no checkpoints."""
        result = workflow.list_checkpoints()
        assert result["count"] == 0
        assert result["latest_resumable"] is None
        assert result["summary"] == "No checkpoints found under .spec-to-tasks/checkpoints"

    def test_lists_runs(self, workflow, fake_tool, spec_file):
        """Test listing completed and failed runs."""
        workflow.apply("offline-sync.md")
        fake_tool.fail_on("epic new")
        failed = workflow.apply("offline-sync.md")

        result = workflow.list_checkpoints()

        assert result["count"] == 2
        assert result["resumable_count"] == 1
        assert result["latest_resumable"] == failed["checkpoint_path"]
        assert "Resumable checkpoints: 1" in result["summary"]


class TestSuggestions:
    """Test cases for error suggestions."""

    @pytest.mark.parametrize(
        "error,fragment",
        [
            (ArgumentError("x"), "priority must be 0-4"),
            (ResolutionError("x"), "SPEC_PATH"),
            (PlanMismatchError("x"), "spec changed"),
            (TaskToolHealthError("x"), "GRNSW_PATH"),
            (RuntimeError("x"), "Check the logs"),
        ],
    )
    def test_suggestion_for(self, error, fragment):
        """Test suggestions for each error kind."""
        assert fragment in suggestion_for(error)

    def test_partial_apply_suggestion(self, tmp_path):
        """Test the suggestion for a partial apply."""
        error = PartialApplyError("x", cause_message="x", checkpoint_path=tmp_path, checkpoint=None)
        assert "spec_to_tasks_resume" in suggestion_for(error)
