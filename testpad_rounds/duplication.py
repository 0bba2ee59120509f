"""Test round creation: duplicate a folder of scripts with fresh assigned runs.

Handles:
- Source folder validation (no empty rounds)
- Destination folder creation, with a by-name lookup when the API omits the id
- Round-robin tester assignment over a shuffled pool
- Error isolation (one script failure doesn't block the others)
- Rate-limit retries and politeness delays between calls

Scripts are copied strictly one after another, so progress is monotonic.
There is no rollback: a failed script leaves the already-copied ones in place.
"""

import asyncio
import logging
import random
from typing import Any, Iterable, Optional, Protocol, Union

from testpad_rounds.client import TestpadClient
from testpad_rounds.config import ThrottleConfig
from testpad_rounds.errors import (
    DuplicationFailed,
    InvalidCredential,
    TestpadError,
    Unauthenticated,
    ValidationError,
)
from testpad_rounds.models import (
    BuildInfo,
    DuplicationResult,
    FolderNode,
    Script,
    StepError,
)
from testpad_rounds.responses import FOLDER_ID_STRATEGIES, SCRIPT_ID_STRATEGIES, extract_id
from testpad_rounds.retry import RetryPolicy, Sleep, retry_with_backoff
from testpad_rounds.traversal import extract_scripts

logger = logging.getLogger(__name__)

TOTAL_STEPS = 4
EMPTY_SOURCE_MESSAGE = "Source folder contains no scripts"

# Structure only: the full script is fetched per copy
SOURCE_QUERY = {
    "subfolders": "all",
    "scripts": "terse",
    "tests": "none",
    "fields": "none",
    "runs": "none",
}

TOP_LEVEL_QUERY = {
    "subfolders": "none",
    "scripts": "none",
    "tests": "none",
    "fields": "none",
    "runs": "none",
    "results": "none",
    "progress": "none",
}


class ProgressCallback(Protocol):
    """Receives ``(current_step, total_steps, message)`` for display."""

    def __call__(self, current: int, total: int, message: str) -> None:
        ...


def null_progress(current: int, total: int, message: str) -> None:
    pass


def tester_pool(testers: Union[str, Iterable[str], None]) -> list[str]:
    """Non-blank tester names; a single string is a pool of one."""
    if testers is None:
        return []
    if isinstance(testers, str):
        testers = [testers]
    return [t.strip() for t in testers if t and t.strip()]


def build_script_payload(
    script: Script, tester: str, build_info: Optional[BuildInfo] = None
) -> dict[str, Any]:
    """Creation payload for a copy of ``script`` with one fresh run.

    Server-assigned test ids and system fields (``_``-prefixed) are dropped.
    """
    headers = {"_tester": tester}
    if build_info:
        headers.update(build_info.as_headers())

    payload: dict[str, Any] = {
        "name": script.name,
        "tests": [{"text": t.label, "indent": t.indent} for t in script.tests],
        "fields": [f.label for f in script.fields if not f.is_system],
        "runs": [{"headers": headers, "results": {}}],
    }
    if script.description is not None:
        payload["description"] = script.description
    return payload


class FolderDuplicator:
    """Copies a folder subtree into a new folder, one assigned run per script."""

    def __init__(
        self,
        client: TestpadClient,
        retry: Optional[RetryPolicy] = None,
        throttle: Optional[ThrottleConfig] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.client = client
        self.retry = retry or RetryPolicy()
        self.throttle = throttle or ThrottleConfig()
        self.rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

    async def _throttle(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)

    @staticmethod
    def _reporter(progress: Optional[ProgressCallback]) -> ProgressCallback:
        callback = progress or null_progress

        def report(current: int, total: int, message: str) -> None:
            try:
                callback(current, total, message)
            except Exception:
                logger.exception("Progress callback raised, ignoring")

        return report

    async def duplicate_folder(
        self,
        project_id: int,
        source_folder_id: str,
        new_folder_name: str,
        testers: Union[str, Iterable[str], None],
        build_info: Optional[BuildInfo] = None,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> DuplicationResult:
        """Create a test round from ``source_folder_id``.

        Args:
            project_id: Project holding both the source and the new folder
            source_folder_id: Folder whose scripts (recursively) are copied
            new_folder_name: Name of the folder created at the project root
            testers: Pool assigned round-robin after shuffling; may be empty
            build_info: Optional build/browser headers for every new run
            progress: Display callback, called at least once per script
            cancel: When set, no further scripts are started

        Returns:
            DuplicationResult; ``success`` is True only with zero errors, so
            check ``created_scripts`` to detect partial success.

        Raises:
            Unauthenticated, InvalidCredential: before any script was copied;
            the caller should clear the key and reconnect.
        """
        report = self._reporter(progress)
        new_folder_id: Optional[str] = None

        try:
            report(1, TOTAL_STEPS, "Fetching source folder...")
            scripts = await self._source_scripts(project_id, source_folder_id)

            report(2, TOTAL_STEPS, "Creating new folder...")
            new_folder_id = await self._create_folder(project_id, new_folder_name)
            logger.info(f"Created round folder '{new_folder_name}' ({new_folder_id})")
            await self._throttle(self.throttle.after_folder)
        except (Unauthenticated, InvalidCredential):
            raise
        except Exception as e:
            step = "duplication"
            if isinstance(e, TestpadError):
                step = e.details.get("step", step)
                message = e.message
            else:
                message = str(e) or "Failed to duplicate folder"
            logger.error(f"Round creation aborted at {step}: {message}")
            return DuplicationResult(
                success=False,
                new_folder_id=new_folder_id,
                errors=[StepError(step=step, error=message)],
            )

        total = len(scripts)
        report(3, TOTAL_STEPS, f"Duplicating {total} scripts...")

        shuffled = tester_pool(testers)
        self.rng.shuffle(shuffled)

        errors: list[StepError] = []
        mapping: dict[str, str] = {}

        for i, node in enumerate(scripts):
            if cancel is not None and cancel.is_set():
                logger.warning(f"Round creation cancelled after {i} of {total} scripts")
                errors.append(
                    StepError(step="cancelled", error=f"Cancelled after {i} of {total} scripts")
                )
                break

            report(3, TOTAL_STEPS, f"Duplicating script {i + 1} of {total}: {node.name}")
            assigned = shuffled[i % len(shuffled)] if shuffled else ""

            try:
                new_id = await self._copy_script(
                    project_id, new_folder_id, node, assigned, build_info
                )
            except Exception as e:
                message = e.message if isinstance(e, TestpadError) else str(e)
                errors.append(
                    StepError(
                        step=f"create_script_{node.name}",
                        error=message or "Failed to create script",
                    )
                )
                logger.warning(f"Failed to copy script '{node.name}' ({node.id}): {message}")
                continue

            mapping[node.id] = new_id
            logger.info(f"Copied script '{node.name}' {node.id} → {new_id} for '{assigned}'")
            await self._throttle(self.throttle.after_create)

        created = len(mapping)
        report(4, TOTAL_STEPS, f"Created {created} runs with scripts")

        return DuplicationResult(
            success=not errors,
            new_folder_id=new_folder_id,
            errors=errors,
            created_scripts=created,
            # every copy carries exactly one run
            created_runs=created,
            script_mapping=mapping,
        )

    async def _source_scripts(self, project_id: int, folder_id: str) -> list[FolderNode]:
        source = await retry_with_backoff(
            lambda: self.client.get_folder(project_id, folder_id, SOURCE_QUERY),
            self.retry,
        )
        scripts = extract_scripts(source)
        if not scripts:
            raise ValidationError(EMPTY_SOURCE_MESSAGE)
        return scripts

    async def _create_folder(self, project_id: int, name: str) -> str:
        resp = await retry_with_backoff(
            lambda: self.client.create_folder(project_id, name), self.retry
        )
        folder_id = extract_id(resp, FOLDER_ID_STRATEGIES)
        if folder_id:
            return folder_id

        logger.info(f"No folder id in create response, looking up '{name}' by name")
        top = await retry_with_backoff(
            lambda: self.client.get_folders(project_id, TOP_LEVEL_QUERY), self.retry
        )
        for child in top.children:
            if child.is_folder and child.name == name:
                return child.id
        raise DuplicationFailed("Failed to retrieve new folder ID from API response")

    async def _copy_script(
        self,
        project_id: int,
        folder_id: str,
        node: FolderNode,
        tester: str,
        build_info: Optional[BuildInfo],
    ) -> str:
        # Folder listings carry terse scripts; fetch tests and fields in full
        script = await retry_with_backoff(
            lambda: self.client.get_script(int(node.id)), self.retry
        )
        await self._throttle(self.throttle.after_read)

        payload = build_script_payload(script, tester, build_info)
        resp = await retry_with_backoff(
            lambda: self.client.create_script(project_id, folder_id, payload),
            self.retry,
        )
        new_id = extract_id(resp, SCRIPT_ID_STRATEGIES)
        if new_id is None:
            raise TestpadError(
                f"Created script but could not find ID in response for {node.name}",
                code="MISSING_ID",
            )
        return new_id
