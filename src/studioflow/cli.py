from __future__ import annotations

import argparse
import logging
import signal
import threading
from pathlib import Path

from dotenv import load_dotenv

from .batch.generation import GenerationStage, SceneGenerationError
from .batch.runner import BatchOutcome
from .config import StudioConfig
from .coordinator import ProductionCoordinator
from .interventions import InterventionNotDismissibleError, UnknownInterventionError
from .project.model import Phase
from .workflow import StepStatus, UnknownStepError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drive a multi-phase video production project.")
    parser.add_argument("--config", type=Path, help="Optional path to studio configuration JSON/YAML")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Show the current phase, checklist and gates")

    batch = commands.add_parser("batch", help="Generate every pending scene")
    batch.add_argument("--fresh", action="store_true", help="Ignore any resumable queue and start over")

    retry = commands.add_parser("retry", help="Regenerate a single scene")
    retry.add_argument("scene_id", type=int)
    retry.add_argument(
        "--stage",
        choices=[stage.value for stage in GenerationStage],
        default=GenerationStage.FULL.value,
        help="Pipeline stage to restart from",
    )

    step = commands.add_parser("step", help="Mark a checklist step as completed or skipped")
    step.add_argument("action", choices=["complete", "skip"])
    step.add_argument("phase", choices=[phase.value for phase in Phase])
    step.add_argument("step_id")

    navigate = commands.add_parser("navigate", help="Attempt to move to another phase")
    navigate.add_argument("phase", choices=[phase.value for phase in Phase])

    commands.add_parser("interventions", help="Evaluate and list active interventions")

    dismiss = commands.add_parser("dismiss", help="Dismiss an intervention permanently")
    dismiss.add_argument("intervention_id")

    commands.add_parser("archive", help="Append the current project to the archive list")
    return parser


def _print_status(coordinator: ProductionCoordinator) -> None:
    project = coordinator.project
    checklist = coordinator.checklist()
    print(f"Phase: {coordinator.active_phase.value}  ({len(project.scenes)} scenes)")
    if coordinator.phase != coordinator.active_phase:
        print(f"Reached: {coordinator.phase.value}")
    print(f"Checklist: {checklist.completion_percentage}% complete")
    marks = {StepStatus.COMPLETED: "x", StepStatus.SKIPPED: "-", StepStatus.PENDING: " "}
    for step in checklist.steps:
        print(f"  [{marks[step.status]}] {step.id} ({step.priority.value})")
    for gate in coordinator.gates():
        print(f"  {gate.severity.value.upper()}: {gate.message}")
    suggestion = coordinator.next_step()
    if suggestion is not None:
        print(f"Next: {suggestion.label}")
    queue = coordinator.resumable_batch()
    if queue is not None:
        print(f"Resumable batch: {len(queue.pending)} of {queue.total_scenes} scenes pending")


def _run_batch(coordinator: ProductionCoordinator, fresh: bool) -> int:
    cancel = threading.Event()

    def _request_cancel(signum, frame) -> None:
        print("Cancelling after the current step...")
        cancel.set()

    previous_handler = signal.signal(signal.SIGINT, _request_cancel)
    try:
        report = coordinator.run_batch(cancel=cancel, fresh=fresh)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
    print(
        f"Batch {report.outcome.value}: {len(report.completed)} complete, "
        f"{len(report.failed)} failed, {len(report.pending)} pending"
    )
    return 0 if report.outcome == BatchOutcome.SUCCEEDED else 1


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = StudioConfig.from_file(args.config) if args.config else StudioConfig()
    coordinator = ProductionCoordinator.default(config)

    if args.command == "status":
        _print_status(coordinator)
    elif args.command == "batch":
        return _run_batch(coordinator, args.fresh)
    elif args.command == "retry":
        try:
            asset = coordinator.retry_scene(args.scene_id, GenerationStage(args.stage))
        except SceneGenerationError as exc:
            print(str(exc))
            return 1
        print(f"Scene {args.scene_id}: {asset.status.value}")
    elif args.command == "step":
        try:
            coordinator.mark_step(Phase(args.phase), args.step_id, completed=args.action == "complete")
        except UnknownStepError as exc:
            parser.error(str(exc))
        print(f"Step {args.step_id} marked {args.action}")
    elif args.command == "navigate":
        result = coordinator.navigate(Phase(args.phase))
        if not result.moved:
            for gate in result.decision.blockers:
                print(f"BLOCKER: {gate.message}")
            return 1
        for gate in result.decision.warnings:
            print(f"WARNING: {gate.message}")
        print(f"Now in {result.phase.value}" + (" (gates bypassed)" if result.bypassed else ""))
    elif args.command == "interventions":
        for intervention in coordinator.refresh_interventions():
            actions = ", ".join(action.action_id for action in intervention.actions)
            print(f"[{intervention.priority}] {intervention.id}: {intervention.title} ({actions})")
    elif args.command == "dismiss":
        try:
            coordinator.dismiss(args.intervention_id)
        except (InterventionNotDismissibleError, UnknownInterventionError) as exc:
            print(str(exc))
            return 1
        print(f"Dismissed {args.intervention_id}")
    elif args.command == "archive":
        result = coordinator.archive()
        print("Project archived" if result.persisted else "Archive could not be written")
        return 0 if result.persisted else 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
