"""Entry point for `python -m sas_workflow` and the `sas-workflow` CLI script."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from sas_workflow import WorkflowEngine
from sas_workflow.canonical import to_canonical_json
from sas_workflow.models import Attachments, HostEvent, WorkflowPhase
from sas_workflow.settings import RuntimeSettings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Record and gate SAS container workflow state")
    parser.add_argument("--container", default="task", help="Container id or title (sanitized into the file name)")
    parser.add_argument("--title", default=None, help="Container title written on first creation (default: --container)")
    parser.add_argument("--initial-task", default=None, help="User intent written into a newly created document")
    parser.add_argument("--scope", action="append", default=None, help="Scope path (repeatable)")
    parser.add_argument(
        "--workspace-root",
        type=Path,
        default=None,
        help="Root directory holding sas/containers (default: SAS_WORKSPACE_ROOT or cwd)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("ensure", help="Create the container document if missing and print its path")

    intent = commands.add_parser("intent", help="Record user intent (instantiator)")
    intent.add_argument("text")
    intent.add_argument("--file", dest="files", action="append", default=[], help="Attached file (repeatable)")
    intent.add_argument("--image", dest="images", action="append", default=[], help="Attached image (repeatable)")

    plan = commands.add_parser("plan", help="Replace the plan (planner)")
    plan.add_argument("text", nargs="?", default=None)
    plan.add_argument("--plan-file", type=Path, default=None, help="Read plan lines from a file")

    note = commands.add_parser("note", help="Record an implementation note (implementer)")
    note.add_argument("kind")
    note.add_argument("text", nargs="?", default=None)

    question = commands.add_parser("question", help="Record an open question")
    question.add_argument("text")

    event = commands.add_parser("event", help="Classify and record a host event given as JSON")
    event.add_argument("payload", help='e.g. {"kind": "command", "text": "pytest"}')

    context = commands.add_parser("context", help="Print the prompt context block")
    context.add_argument("--max-chars", type=int, default=None)

    commands.add_parser("readiness", help="Print the readiness report as canonical JSON")

    authorize = commands.add_parser("authorize", help="Check whether an action may run now")
    authorize.add_argument("name")

    complete = commands.add_parser("complete", help="Mark a plan step done")
    complete.add_argument("plan_item_id")
    complete.add_argument("--note", default=None)

    phase = commands.add_parser("phase", help="Set the workflow phase explicitly")
    phase.add_argument("phase", type=lambda value: value.lower(), choices=[item.value for item in WorkflowPhase])
    phase.add_argument("--reason", default=None)
    return parser.parse_args(argv)


def build_engine(args: argparse.Namespace) -> WorkflowEngine:
    if args.workspace_root is not None:
        os.environ["SAS_WORKSPACE_ROOT"] = str(args.workspace_root.resolve())
    settings = RuntimeSettings.from_env()
    return WorkflowEngine(
        workspace_root=settings.workspace_root_path,
        container_id=args.container,
        title=args.title or args.container,
        initial_task=args.initial_task,
        scope_paths=args.scope,
        settings=settings,
    )


def run(engine: WorkflowEngine, args: argparse.Namespace) -> int:
    command = args.command
    if command == "ensure":
        path = engine.ensure_initialized()
        if path is None:
            return 1
        print(path)
    elif command == "intent":
        engine.record_intent(args.text, Attachments(files=args.files, images=args.images))
    elif command == "plan":
        text = args.plan_file.read_text(encoding="utf-8") if args.plan_file is not None else args.text
        engine.record_plan(text)
    elif command == "note":
        engine.record_implementation_note(args.kind, args.text)
    elif command == "question":
        engine.record_open_question(args.text)
    elif command == "event":
        route = engine.classify_and_record(HostEvent.model_validate(json.loads(args.payload)))
        print(f"route={route.value if route is not None else 'dropped'}")
    elif command == "context":
        block = engine.get_prompt_context(args.max_chars)
        if block is None:
            return 1
        print(block)
    elif command == "readiness":
        print(to_canonical_json(engine.evaluate_readiness()))
    elif command == "authorize":
        decision = engine.authorize_action(args.name)
        print(to_canonical_json(decision))
        return 0 if decision.allowed else 2
    elif command == "complete":
        return 0 if engine.complete_step(args.plan_item_id, args.note) else 1
    elif command == "phase":
        engine.set_phase(WorkflowPhase(args.phase), args.reason)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    env_path = Path.cwd() / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    try:
        engine = build_engine(args)
        return run(engine, args)
    except (OSError, ValueError) as exc:
        # ValidationError and JSONDecodeError are ValueError subclasses.
        logging.error("sas-workflow %s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
