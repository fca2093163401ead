"""
SCENECAST CLI - 프로젝트 JSON 기반 씬 비디오 생성.

사용법:
    python cli/scenecast_cli.py scene   <project.json> <scene_id> [--no-wait]
    python cli/scenecast_cli.py batch   <project.json> [--force] [--no-wait]
    python cli/scenecast_cli.py refresh
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.append(str(Path(__file__).parent.parent))

from pipeline import ScenecastPipeline
from schemas import BatchReport
from utils.errors import CharacterRegistrationError, GenerationError


def print_banner():
    """Print SCENECAST banner."""
    print("""
=====================================================================
                         S C E N E C A S T
          Character-consistent scene video generation (v1.0)
=====================================================================
""")


def print_report(report: BatchReport):
    """Print batch summary."""
    print("\n" + "=" * 60)
    print("Batch Summary")
    print("=" * 60)
    print(f"  Total: {report.total}")
    print(f"  Submitted: {report.submitted}")
    print(f"  Failed: {report.failed}")
    print(f"  Skipped: {report.skipped}")
    for outcome in report.details:
        line = f"  - {outcome.scene_id} [{outcome.status}]"
        if outcome.task_ids:
            line += f" tasks={','.join(outcome.task_ids)}"
        if outcome.error:
            line += f" ({outcome.error})"
        print(line)
    print("=" * 60 + "\n")


def _on_progress(total: int, current: int, status: str, message: str):
    print(f"  [{current}/{total}] {status}: {message}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scenecast", description="SCENECAST scene video generator")
    parser.add_argument("--output-dir", default="outputs", help="Output base directory (default: outputs)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scene = subparsers.add_parser("scene", help="Generate one scene")
    scene.add_argument("project", help="Project JSON file")
    scene.add_argument("scene_id", help="Scene ID")
    scene.add_argument("--no-wait", action="store_true", help="Submit only, do not poll")

    batch = subparsers.add_parser("batch", help="Generate every scene of a project")
    batch.add_argument("project", help="Project JSON file")
    batch.add_argument("--force", action="store_true", help="Regenerate completed scenes")
    batch.add_argument("--no-wait", action="store_true", help="Submit only, do not poll")

    subparsers.add_parser("refresh", help="Re-poll pending tasks once")
    return parser


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    print_banner()

    try:
        pipeline = ScenecastPipeline(output_base_dir=args.output_dir)

        if args.command == "scene":
            project = pipeline.load_project(args.project)
            task_ids = pipeline.generate_scene(project, args.scene_id, wait=not args.no_wait)
            print(f"\n[OK] Scene {args.scene_id}: {len(task_ids)} task(s)")
            for task_id in task_ids:
                print(f"  - {task_id}")

        elif args.command == "batch":
            project = pipeline.load_project(args.project)
            report = pipeline.generate_project(
                project,
                force=args.force,
                progress_callback=_on_progress,
                wait=not args.no_wait,
            )
            print_report(report)
            if report.failed:
                return 1

        elif args.command == "refresh":
            tasks = pipeline.refresh_tasks()
            print(f"\n[OK] Refreshed {len(tasks)} task(s)")
            for task in tasks:
                print(f"  - {task.id} [{task.status.value}] {task.progress}%")

    except KeyboardInterrupt:
        print("\n\n[INTERRUPTED] Generation interrupted by user.")
        return 1

    except CharacterRegistrationError as e:
        print(f"\n[ERROR] {e.message}")
        for failure in e.failures:
            print(f"  - {failure.character}: {failure.message}")
        return 1

    except GenerationError as e:
        print(f"\n[ERROR] {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
