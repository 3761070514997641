"""Command line interface: ``spec-to-tasks apply|resume|checkpoints``."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_settings, resolve_project_root
from .errors import ResolutionError
from .spectasks_logging import setup_logging
from .workflow import SpecTasksWorkflow

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spec-to-tasks",
        description="Turn a spec document into task tool epics, phases and milestones.",
    )
    parser.add_argument("--root", help="Working repository root (default: $SPECTASKS_PROJECT_ROOT or cwd)")
    parser.add_argument("--json", action="store_true", dest="as_json", help="Print the full result as JSON")
    parser.add_argument("--log-level", help="Logging level (default: $SPECTASKS_LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    apply_parser = subparsers.add_parser("apply", help="Preview or apply a spec")
    apply_parser.add_argument("spec", nargs="?", help="Spec file (default: $SPEC_PATH, $SPEC_DIR/spec.md, ./spec.md)")
    apply_parser.add_argument("--apply", action="store_true", help="Create tasks instead of previewing")
    apply_parser.add_argument("--with-validation", action="store_true", help="Add a validation task per milestone")
    apply_parser.add_argument("--reviewer", help="Reviewer for validation tasks")
    apply_parser.add_argument("--priority", default="1", help="Priority 0-4 (default: 1)")
    apply_parser.add_argument("--checkpoint", help="Checkpoint file to write")

    resume_parser = subparsers.add_parser("resume", help="Resume a failed apply from a checkpoint")
    resume_parser.add_argument("checkpoint", nargs="?", help="Checkpoint file (default: latest resumable)")
    resume_parser.add_argument("--reviewer", help="Reviewer for validation tasks created by this resume")

    subparsers.add_parser("checkpoints", help="List apply checkpoints")
    return parser


def _emit(result: Dict[str, Any], as_json: bool) -> int:
    if as_json:
        print(json.dumps(result, indent=2, default=str))
    elif "error" not in result:
        if result.get("mode") == "preview":
            print(result["message"])
        else:
            print(result.get("summary") or result["message"])
            if result.get("summary") and result.get("mode") != "completed":
                print(result["message"])
        if result.get("warning"):
            print(f"Warning: {result['warning']}", file=sys.stderr)

    if "error" in result:
        if not as_json:
            print(result["error"], file=sys.stderr)
            if result.get("suggestion"):
                print(f"Hint: {result['suggestion']}", file=sys.stderr)
        return EXIT_USAGE if result.get("error_type") == "ArgumentError" else EXIT_FAILURE
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_logging(
        (args.log_level or settings.log_level).upper(),
        Path(settings.log_file) if settings.log_file else None,
    )

    try:
        root = resolve_project_root(args.root, settings)
    except ResolutionError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    workflow = SpecTasksWorkflow(root, settings)
    if args.command == "apply":
        if args.apply:
            result = workflow.apply(
                args.spec,
                with_validation=args.with_validation,
                reviewer=args.reviewer,
                priority=args.priority,
                checkpoint_path=args.checkpoint,
            )
        else:
            result = workflow.preview(
                args.spec,
                with_validation=args.with_validation,
                reviewer=args.reviewer,
                priority=args.priority,
            )
    elif args.command == "resume":
        result = workflow.resume(args.checkpoint, reviewer=args.reviewer)
    else:
        result = workflow.list_checkpoints()

    return _emit(result, args.as_json)


if __name__ == "__main__":
    sys.exit(main())
