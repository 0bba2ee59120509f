"""Fetch helpers feeding the dashboard totals and the tester aggregation."""

import logging
from typing import Optional

from testpad_rounds.aggregation import aggregate_progress
from testpad_rounds.client import TestpadClient
from testpad_rounds.errors import InvalidCredential, TestpadError, Unauthenticated
from testpad_rounds.models import DashboardStats, FolderNode, Script, ScriptContext
from testpad_rounds.traversal import extract_script_ids, iter_scripts_with_path

logger = logging.getLogger(__name__)

ROOT_FOLDER_NAME = "/"


async def load_dashboard_stats(
    client: TestpadClient, scripts_per_project: int = 10
) -> DashboardStats:
    """Totals across all projects.

    Script counts cover every script; runs, tests and progress only the first
    ``scripts_per_project`` scripts of each project, to stay under the rate
    limit. A failing project or script is skipped.
    """
    projects = await client.get_projects()

    total_scripts = 0
    sampled: list[Script] = []

    for project in projects:
        try:
            tree = await client.get_folders(project.id)
        except (Unauthenticated, InvalidCredential):
            raise
        except TestpadError as e:
            logger.warning(f"Skipping project {project.id} ({project.name}): {e.message}")
            continue

        script_ids = extract_script_ids(tree)
        total_scripts += len(script_ids)

        for script_id in script_ids[:scripts_per_project]:
            try:
                sampled.append(await client.get_script(script_id))
            except (Unauthenticated, InvalidCredential):
                raise
            except TestpadError as e:
                logger.warning(f"Skipping script {script_id}: {e.message}")

    return DashboardStats(
        total_projects=len(projects),
        total_scripts=total_scripts,
        total_runs=sum(len(s.runs) for s in sampled),
        total_tests=sum(s.progress.total for s in sampled),
        progress=aggregate_progress(sampled),
    )


async def load_script_contexts(
    client: TestpadClient,
    project_id: int,
    folder_id: Optional[str] = None,
) -> list[ScriptContext]:
    """Full scripts (runs and results included) of a project or one folder."""
    project = await client.get_project(project_id)
    if folder_id:
        tree: FolderNode = await client.get_folder(project_id, folder_id)
        base: tuple[str, ...] = (tree.name,)
    else:
        tree = await client.get_folders(project_id)
        base = ()

    contexts: list[ScriptContext] = []
    for path, node in iter_scripts_with_path(tree):
        try:
            script = await client.get_script(int(node.id))
        except (Unauthenticated, InvalidCredential):
            raise
        except TestpadError as e:
            logger.warning(f"Skipping script {node.id} ({node.name}): {e.message}")
            continue
        folder_path = base + path
        contexts.append(
            ScriptContext(
                script=script,
                project_name=project.name,
                folder_name=" / ".join(folder_path) if folder_path else ROOT_FOLDER_NAME,
            )
        )
    return contexts
