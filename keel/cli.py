"""
keel CLI - run workflow phases for a project.

Usage:
    keel run <target> [args...]    Run a phase (or a single task) and its plan
    keel plan <target>             Show the phases and tasks a run would execute
    keel phases                    List registered phases
    keel tasks                     List registered tasks
    keel config                    Print a commented keel.toml for loaded plugins

Options:
    -C, --project-dir DIR          Project directory (default: current directory)
    -v, --verbose                  Verbose output
"""

import argparse
import logging
import sys

from keel import __version__
from keel.config.settings import ENGINE_SCHEMA
from keel.config.toml_handler import generate_project_toml
from keel.core.engine import RunState
from keel.core.events import ExecutionEvent, format_event
from keel.errors import KeelError
from keel.runtime import Runtime, bootstrap


class PrintSink:
    """Sink that prints each event to stdout."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def emit(self, event: ExecutionEvent) -> None:
        print(format_event(event), flush=True)
        if self.verbose and event.error_detail:
            print(event.error_detail, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="keel",
        description="Keel - pluggable build and CI workflow engine",
    )
    parser.add_argument(
        "-C", "--project-dir", default=".", help="Project directory (default: .)"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--version", action="version", version=f"keel {__version__}")

    commands = parser.add_subparsers(dest="command", metavar="<command>")

    run = commands.add_parser("run", help="Run a phase or task")
    run.add_argument("target", help="Phase or task id")
    run.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to tasks")

    plan = commands.add_parser("plan", help="Show the execution plan of a target")
    plan.add_argument("target", help="Phase or task id")

    commands.add_parser("phases", help="List registered phases")
    commands.add_parser("tasks", help="List registered tasks")
    commands.add_parser("config", help="Print a commented keel.toml")

    return parser


def run_command(runtime: Runtime, args: argparse.Namespace) -> int:
    status = runtime.run(args.target, args.args, sink=PrintSink(args.verbose))
    print(
        f"{status.status.value}: {status.completed_tasks} completed, "
        f"{status.failed_tasks} failed, {status.skipped_tasks} skipped "
        f"of {status.total_tasks} in {status.duration()} ms"
    )
    return 0 if status.status is RunState.COMPLETED else 1


def plan_command(runtime: Runtime, args: argparse.Namespace) -> int:
    for step in runtime.engine.plan(args.target):
        print(step.phase.id)
        for entry in step.tasks:
            print(f"  - {entry.id}")
    return 0


def phases_command(runtime: Runtime, args: argparse.Namespace) -> int:
    for phase in runtime.graph.phases():
        relations = []
        if phase.specializes:
            relations.append(f"specializes {phase.specializes}")
        if phase.depends_on:
            relations.append(f"after {', '.join(phase.depends_on)}")
        suffix = f" ({'; '.join(relations)})" if relations else ""
        print(f"{phase.id:<16} {phase.description}{suffix}")
    return 0


def tasks_command(runtime: Runtime, args: argparse.Namespace) -> int:
    for entry in runtime.registry.all():
        owner = f" [{entry.owner}]" if entry.owner else ""
        print(f"{entry.phase_id:<16} {entry.id}{owner}  {entry.task.description}")
    return 0


def config_command(runtime: Runtime, args: argparse.Namespace) -> int:
    sections = {"engine": ENGINE_SCHEMA}
    for plugin in runtime.report.loaded:
        if plugin.context_key and plugin.config_schema:
            sections[plugin.context_key] = plugin.config_schema
    print(generate_project_toml(runtime.project.name, sections), end="")
    return 0


COMMANDS = {
    "run": run_command,
    "plan": plan_command,
    "phases": phases_command,
    "tasks": tasks_command,
    "config": config_command,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the keel CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        with bootstrap(args.project_dir) as runtime:
            return COMMANDS[args.command](runtime, args)
    except KeelError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
