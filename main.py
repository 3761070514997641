"""MCP server exposing spec-to-tasks apply, resume and checkpoint tools."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from spectasks import (
    ResolutionError,
    SpecTasksWorkflow,
    load_settings,
    resolve_project_root,
    setup_logging,
)

mcp = FastMCP("spec-to-tasks")


def _workflow(root: Optional[str]) -> SpecTasksWorkflow:
    settings = load_settings()
    return SpecTasksWorkflow(resolve_project_root(root, settings), settings)


def _root_error(error: ResolutionError) -> Dict[str, Any]:
    return {
        "error": str(error),
        "error_type": type(error).__name__,
        "suggestion": "Provide an existing 'root' argument or set SPECTASKS_PROJECT_ROOT.",
        "message": f"Error: {error}",
    }


@mcp.tool()
def spec_to_tasks(
    spec_path: Optional[str] = None,
    apply: bool = False,
    with_validation: bool = False,
    reviewer: Optional[str] = None,
    priority: int = 1,
    checkpoint_path: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Turn a spec document into an epic with phases, milestones and optional validation tasks.

    Without apply=True this only previews the plan. With apply=True every created
    entity is recorded in a checkpoint so a failed run can be resumed with
    spec_to_tasks_resume."""

    try:
        workflow = _workflow(root)
    except ResolutionError as e:
        return _root_error(e)

    if not apply:
        return workflow.preview(
            spec_path,
            with_validation=with_validation,
            reviewer=reviewer,
            priority=priority,
        )
    return workflow.apply(
        spec_path,
        with_validation=with_validation,
        reviewer=reviewer,
        priority=priority,
        checkpoint_path=checkpoint_path,
    )


@mcp.tool()
def spec_to_tasks_resume(
    checkpoint_path: Optional[str] = None,
    reviewer: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Resume a failed or interrupted apply from a checkpoint.

    Uses the most recent failed or in-progress checkpoint when checkpoint_path is
    omitted. Entities already recorded in the checkpoint are not created again."""

    try:
        workflow = _workflow(root)
    except ResolutionError as e:
        return _root_error(e)
    return workflow.resume(checkpoint_path, reviewer=reviewer)


@mcp.tool()
def spec_to_tasks_checkpoints(root: Optional[str] = None) -> Dict[str, Any]:
    """List apply checkpoints, newest first, with their status."""

    try:
        workflow = _workflow(root)
    except ResolutionError as e:
        return _root_error(e)
    return workflow.list_checkpoints()


@mcp.resource("spec-to-tasks://checkpoints")
def resource_checkpoints() -> str:
    """Resource view of the checkpoint listing for the configured project root."""

    try:
        workflow = _workflow(None)
    except ResolutionError as e:
        return f"No project root available: {e}"

    result = workflow.list_checkpoints()
    if "error" in result:
        return result["message"]
    return result["summary"]


def run() -> None:
    settings = load_settings()
    setup_logging(settings.log_level, Path(settings.log_file) if settings.log_file else None)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    run()
