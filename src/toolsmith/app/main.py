"""CLI entrypoint for toolsmith.

Command output goes to stdout; structured logs go to stderr.
"""

from __future__ import annotations

import argparse
import logging
import sys

from pydantic import ValidationError

from toolsmith import __version__
from toolsmith.core.config import ToolkitConfig
from toolsmith.core.toolkit import RESOURCE_KINDS, Toolkit
from toolsmith.errors import ToolsmithError
from toolsmith.workflow.definition import StateKind, WorkflowDefinition
from toolsmith.workflow.executor import RunStatus, WorkflowRun
from toolsmith.workflow.validator import Severity

logger = logging.getLogger(__name__)


def _parse_vars(values: list[str] | None) -> dict[str, str]:
    variables: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {item!r}")
        variables[key] = value
    return variables


def _format_run(run: WorkflowRun) -> str:
    states = ", ".join(run.current_states) or "-"
    text = f"Run {run.run_id} [{run.status.value}] {run.workflow_name}: {states}"
    if run.failure is not None:
        text = f"{text}\n  failure: {run.failure}"
    return text


def _print_workflow(definition: WorkflowDefinition) -> None:
    meta = definition.metadata
    print(f"{definition.name} (v{meta.version})")
    if meta.description:
        print(f"  {meta.description}")
    print("States:")
    for state in definition.named_states().values():
        suffix = f" <<{state.kind.value}>>" if state.kind != StateKind.NORMAL else ""
        actions = f" ({len(state.actions)} actions)" if state.actions else ""
        print(f"  {state.id}{suffix}{actions}")
    print("Transitions:")
    for t in definition.transitions:
        guard = f" {{{t.guard}}}" if t.guard else ""
        label = f" : {t.label}" if t.label else ""
        print(f"  {t.source} --> {t.target}{guard}{label}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="toolsmith",
        description="Layered prompt and workflow toolkit",
    )
    parser.add_argument("--version", action="version", version=f"toolsmith {__version__}")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging for toolsmith",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    prompt = subparsers.add_parser("prompt", help="Inspect resolved prompts")
    prompt_sub = prompt.add_subparsers(dest="action", required=True)
    prompt_sub.add_parser("list", help="List prompts with their source tier")
    prompt_show = prompt_sub.add_parser("show", help="Print a prompt template")
    prompt_show.add_argument("name", help="Prompt name, e.g. 'review/code'")

    flow = subparsers.add_parser("flow", help="Inspect and run workflows")
    flow_sub = flow.add_subparsers(dest="action", required=True)
    flow_sub.add_parser("list", help="List workflows with their source tier")
    flow_show = flow_sub.add_parser("show", help="Describe a workflow's states and transitions")
    flow_show.add_argument("name", help="Workflow name")

    for action, help_text in (
        ("run", "Start a workflow and advance it until it settles"),
        ("start", "Start a workflow and stop after the first step"),
    ):
        cmd = flow_sub.add_parser(action, help=help_text)
        cmd.add_argument("name", help="Workflow name")
        cmd.add_argument(
            "--var",
            action="append",
            default=None,
            metavar="KEY=VALUE",
            help="Initial run variable (repeatable)",
        )
        if action == "run":
            cmd.add_argument(
                "--max-steps",
                type=int,
                default=None,
                help="Upper bound on advance steps (defaults to TOOLSMITH_RUNS_MAX_STEPS)",
            )

    for action, help_text in (
        ("step", "Advance a run by one step"),
        ("status", "Show a run"),
        ("suspend", "Suspend a running run"),
        ("resume", "Resume a suspended run"),
        ("cancel", "Cancel a run"),
    ):
        cmd = flow_sub.add_parser(action, help=help_text)
        cmd.add_argument("run_id", help="Run identifier")

    flow_sub.add_parser("runs", help="List stored runs")

    validate = subparsers.add_parser("validate", help="Validate every resolved workflow")
    validate.add_argument(
        "--quiet",
        action="store_true",
        help="Only print errors",
    )

    dirs = subparsers.add_parser("dirs", help="Show directories that contribute resources")
    dirs.add_argument(
        "kind",
        nargs="?",
        choices=RESOURCE_KINDS,
        default=None,
        help="Resource kind (default: all)",
    )

    return parser


def _run_prompt(toolkit: Toolkit, args: argparse.Namespace) -> int:
    if args.action == "list":
        for name, tier in toolkit.list_resources("prompts"):
            print(f"{name}\t{tier.value}")
        return 0

    prompt = toolkit.get_prompt(args.name)
    if prompt is None:
        print(f"Prompt not found: {args.name!r}", file=sys.stderr)
        return 3
    if prompt.description:
        print(f"# {prompt.description}")
    print(prompt.template)
    return 0


def _run_flow(toolkit: Toolkit, args: argparse.Namespace) -> int:
    if args.action == "list":
        for name, tier in toolkit.list_resources("workflows"):
            print(f"{name}\t{tier.value}")
        return 0

    if args.action == "show":
        _print_workflow(toolkit.get_workflow(args.name))
        return 0

    if args.action in ("run", "start"):
        run_id = toolkit.start_run(args.name, _parse_vars(args.var))
        if args.action == "run":
            run = toolkit.run_to_completion(run_id, max_steps=args.max_steps)
        else:
            run = toolkit.get_run(run_id)
        print(_format_run(run))
        return 1 if run.status == RunStatus.FAILED else 0

    if args.action == "runs":
        for run in toolkit.list_runs():
            print(_format_run(run))
        return 0

    if args.action == "status":
        run = toolkit.get_run(args.run_id)
        print(_format_run(run))
        for entry in run.history:
            exited = entry.exited_at.isoformat() if entry.exited_at else "-"
            print(f"  {entry.state_id}\t{entry.entered_at.isoformat()}\t{exited}")
        return 0

    handlers = {
        "step": toolkit.advance,
        "suspend": toolkit.suspend,
        "resume": toolkit.resume,
        "cancel": toolkit.cancel,
    }
    run = handlers[args.action](args.run_id)
    print(_format_run(run))
    return 1 if run.status == RunStatus.FAILED else 0


def _run_validate(toolkit: Toolkit, args: argparse.Namespace) -> int:
    result = toolkit.validate_all("workflows")
    for finding in result.findings:
        if args.quiet and finding.severity != Severity.ERROR:
            continue
        print(str(finding))
    if not args.quiet:
        print(
            f"{result.files_checked} workflows checked: "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
    return 2 if result.has_errors else 0


def _run_dirs(toolkit: Toolkit, args: argparse.Namespace) -> int:
    kinds = [args.kind] if args.kind else list(RESOURCE_KINDS)
    for kind in kinds:
        for directory in toolkit.get_directories(kind):
            print(f"{kind}\t{directory}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ToolkitConfig(debug=True) if args.debug else ToolkitConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    config.setup_logging()
    toolkit = Toolkit(config)

    try:
        if args.command == "prompt":
            return _run_prompt(toolkit, args)
        if args.command == "flow":
            return _run_flow(toolkit, args)
        if args.command == "validate":
            return _run_validate(toolkit, args)
        if args.command == "dirs":
            return _run_dirs(toolkit, args)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except argparse.ArgumentTypeError as e:
        print(str(e), file=sys.stderr)
        return 2

    except ToolsmithError as e:
        logger.warning(str(e), extra={"error": type(e).__name__})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
