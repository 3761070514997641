"""spec-to-tasks library exports."""

from .checkpoints import CheckpointStore
from .config import Settings, build_run_config, load_settings, resolve_project_root, resolve_spec_path
from .engine import ApplyEngine, ResumeEngine, assert_checkpoint_matches_plan
from .errors import (
    ArgumentError,
    CheckpointSchemaError,
    CheckpointWriteError,
    PartialApplyError,
    PlanMismatchError,
    ResolutionError,
    SpecTasksError,
    TaskToolError,
)
from .models import (
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
from .parser import parse_spec_file, parse_spec_text
from .spectasks_logging import setup_logging
from .task_tool import TaskToolClient, resolve_task_tool_invocation
from .workflow import SpecTasksWorkflow

__all__ = [
    "AppliedMilestone",
    "AppliedPhase",
    "AppliedPlan",
    "ApplyCheckpoint",
    "ApplyEngine",
    "ArgumentError",
    "CheckpointListEntry",
    "CheckpointSchemaError",
    "CheckpointStore",
    "CheckpointWriteError",
    "MilestonePlan",
    "PartialApplyError",
    "PhasePlan",
    "PlanMismatchError",
    "ResolutionError",
    "ResumeEngine",
    "RunConfig",
    "Settings",
    "SpecPlan",
    "SpecTasksError",
    "SpecTasksWorkflow",
    "TaskToolClient",
    "TaskToolError",
    "assert_checkpoint_matches_plan",
    "build_run_config",
    "load_settings",
    "parse_spec_file",
    "parse_spec_text",
    "resolve_project_root",
    "resolve_spec_path",
    "resolve_task_tool_invocation",
    "setup_logging",
]
