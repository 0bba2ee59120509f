#!/usr/bin/env python3
"""Testpad Rounds CLI.

Usage:
    testpad-rounds connect --api-key KEY
    testpad-rounds projects
    testpad-rounds folders --project 42
    testpad-rounds duplicate --project 42 --folder f1 --name "Sprint 15" -t alice -t bob --build v2.5.0
    testpad-rounds summary --project 42 --folder f1
    testpad-rounds remind --project 42 --tester alice
    testpad-rounds dashboard
"""

import argparse
import asyncio
import logging
import os
import random
import sys

from testpad_rounds.aggregation import aggregate
from testpad_rounds.client import TestpadClient
from testpad_rounds.config import ServiceConfig, load_config
from testpad_rounds.credentials import create_credential_store
from testpad_rounds.dashboard import load_dashboard_stats, load_script_contexts
from testpad_rounds.duplication import FolderDuplicator
from testpad_rounds.errors import InvalidCredential, TestpadError, Unauthenticated
from testpad_rounds.models import BuildInfo, DuplicationResult
from testpad_rounds.reminders import render_team_status
from testpad_rounds.retry import RetryPolicy
from testpad_rounds.traversal import iter_folders

logger = logging.getLogger(__name__)

COMMANDS = ["connect", "disconnect", "projects", "folders", "duplicate", "summary", "remind", "dashboard"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="🧪 Testpad Rounds - test round creation and tester progress",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  testpad-rounds connect --api-key $TESTPAD_API_KEY
  testpad-rounds duplicate --project 42 --folder f1 --name "Sprint 15" -t alice -t bob
  testpad-rounds summary --project 42
""",
    )
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--config", help="Path to YAML config")
    parser.add_argument("--api-key", help="API key for connect")
    parser.add_argument("--project", type=int, help="Project ID")
    parser.add_argument("--folder", help="Folder ID")
    parser.add_argument("--name", help="Name of the new round folder")
    parser.add_argument(
        "--tester", "-t", action="append", default=[],
        help="Tester to assign (repeatable); summary/remind: filter by name",
    )
    parser.add_argument("--build", help="Build header for new runs")
    parser.add_argument("--browser", help="Browser header for new runs")
    parser.add_argument("--seed", type=int, help="Seed the tester shuffle")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def print_progress(current: int, total: int, message: str) -> None:
    print(f"   [{current}/{total}] {message}")


def print_result(result: DuplicationResult) -> None:
    if result.success:
        print(f"✅ Round created: {result.created_scripts} scripts with {result.created_runs} runs")
        print(f"   Folder: {result.new_folder_id}")
        return
    print(f"❌ Round creation {result.outcome}: {len(result.errors)} error(s)")
    for err in result.errors[:5]:
        print(f"   - {err.step}: {err.error}")
    if result.is_partial:
        print(
            f"   Partial success: created {result.created_scripts} scripts "
            f"and {result.created_runs} runs"
        )


def _require(args: argparse.Namespace, *names: str) -> None:
    missing = [f"--{n}" for n in names if not getattr(args, n)]
    if missing:
        raise SystemExit(f"{args.command} requires {', '.join(missing)}")


async def run(args: argparse.Namespace, config: ServiceConfig) -> int:
    credentials = create_credential_store(config.testpad)
    client = TestpadClient(config.testpad, credentials)

    if args.command == "connect":
        key = args.api_key or os.getenv("TESTPAD_API_KEY")
        if not key:
            raise SystemExit("connect requires --api-key or TESTPAD_API_KEY")
        credentials.set(key.strip())
        if not await client.validate_api_key():
            credentials.clear()
            print("❌ Invalid API key")
            return 1
        print("✅ Connected")
        return 0

    if args.command == "disconnect":
        credentials.clear()
        print("👋 Disconnected")
        return 0

    if args.command == "projects":
        for project in await client.get_projects():
            print(f"{project.id:>8}  {project.name}")
        return 0

    if args.command == "folders":
        _require(args, "project")
        tree = await client.get_folders(args.project)
        for folder, depth in iter_folders(tree):
            print(f"{'  ' * depth}📁 {folder.name}  ({folder.id})")
        return 0

    if args.command == "duplicate":
        _require(args, "project", "folder", "name")
        duplicator = FolderDuplicator(
            client,
            retry=RetryPolicy.from_config(config.retry),
            throttle=config.throttle,
            rng=random.Random(args.seed),
        )
        testers = args.tester or config.rounds.team_members
        print(f"🧪 Creating round '{args.name}' for {len(testers)} tester(s)")
        result = await duplicator.duplicate_folder(
            args.project,
            args.folder,
            args.name.strip(),
            testers,
            build_info=BuildInfo(build=args.build, browser=args.browser),
            progress=print_progress,
        )
        print_result(result)
        return 0 if result.success else 1

    if args.command in ("summary", "remind"):
        _require(args, "project")
        contexts = await load_script_contexts(client, args.project, args.folder)
        report = aggregate(contexts)
        testers = report.testers
        if args.tester:
            testers = [t for t in testers if t.name in args.tester]

        if args.command == "remind":
            if not testers:
                print("No matching testers")
                return 1
            print(render_team_status(testers, config.testpad.app_url))
            return 0

        for t in testers:
            print(
                f"👤 {t.name:<30} {t.completion_rate:>3}%  runs={t.total_runs} "
                f"done={t.completed_runs} active={t.in_progress_runs} issues={t.failed_runs}"
            )
        if report.failed_tests:
            print(f"\n🐞 {len(report.failed_tests)} failed/blocked/queried tests:")
            for f in report.failed_tests:
                print(
                    f"   [{f.outcome.value.upper()}] {f.script_name} / "
                    f"{f.test_name or f'Step #{f.test_id}'} ({f.tester})"
                )
        return 0

    if args.command == "dashboard":
        stats = await load_dashboard_stats(client, config.rounds.scripts_per_project)
        print(f"Projects: {stats.total_projects}  Scripts: {stats.total_scripts}")
        print(f"Runs: {stats.total_runs}  Tests: {stats.total_tests}")
        p = stats.progress
        print(
            f"Pass {p.pass_} · Fail {p.fail} · Block {p.block} · Query {p.query} "
            f"· Pending {p.pending} ({p.summary})"
        )
        return 0

    return 2


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level="DEBUG" if args.verbose else os.environ.get("LOG_LEVEL", "WARNING"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config(args.config)
    logger.debug(f"Testpad API at {config.testpad.base_url}")

    try:
        return asyncio.run(run(args, config))
    except InvalidCredential as e:
        create_credential_store(config.testpad).clear()
        print(f"❌ {e.message}. Stored key removed, run 'connect' again.")
        return 1
    except Unauthenticated as e:
        print(f"❌ {e.message}. Run 'connect' first.")
        return 1
    except TestpadError as e:
        print(f"❌ {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
