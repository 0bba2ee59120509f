"""Testpad REST API client.

Handles:
- API key headers (``Authorization: apikey <key>`` plus ``X-API-Key``)
- HTTP status classification into typed errors
- Response envelope differences between endpoints
- Project, folder, script, run and note endpoints
"""

import logging
from typing import Any, Optional

import httpx

from testpad_rounds.config import TestpadConfig
from testpad_rounds.credentials import CredentialStore
from testpad_rounds.errors import (
    ApiError,
    InvalidCredential,
    NetworkError,
    RateLimited,
    TestpadError,
    Unauthenticated,
)
from testpad_rounds.models import FolderNode, NodeKind, Note, Project, Script
from testpad_rounds.responses import unwrap_list, unwrap_object

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60

# Folder reads: structure plus progress, no test bodies
FOLDER_QUERY = {
    "subfolders": "all",
    "scripts": "terse",
    "tests": "none",
    "fields": "none",
    "runs": "terse",
    "results": "none",
    "progress": "full",
}

SCRIPT_QUERY = {"runs": "full", "tests": "full"}


def parse_retry_after(value: Optional[str]) -> int:
    """Seconds from a Retry-After header, DEFAULT_RETRY_AFTER if unusable."""
    if not value:
        return DEFAULT_RETRY_AFTER
    try:
        seconds = int(value.strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER
    return seconds if seconds >= 0 else DEFAULT_RETRY_AFTER


class TestpadClient:
    """Async Testpad API client."""

    __test__ = False

    def __init__(
        self,
        config: TestpadConfig,
        credentials: CredentialStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.credentials = credentials
        self._transport = transport

    @property
    def is_connected(self) -> bool:
        return bool(self.credentials.get())

    def _client(self) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {"base_url": self.config.base_url.rstrip("/")}
        if self.config.timeout is not None:
            kwargs["timeout"] = self.config.timeout
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    # --- Transport ---

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        json: Any = None,
        params: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Send one authenticated request and return the parsed JSON body.

        Raises:
            Unauthenticated: no key stored, nothing was sent
            InvalidCredential: 401, callers must clear the stored key
            RateLimited: 429, with Retry-After seconds
            ApiError: any other non-2xx status
            NetworkError: the request never got a response
        """
        key = self.credentials.get()
        if not key:
            raise Unauthenticated()

        request_headers = {
            "Authorization": f"apikey {key}",
            "X-API-Key": key,
            "Content-Type": "application/json",
            **(headers or {}),
        }

        logger.debug(f"{method} {endpoint} params={params}")
        try:
            async with self._client() as client:
                resp = await client.request(
                    method,
                    endpoint,
                    json=json,
                    params=params,
                    headers=request_headers,
                )
        except httpx.TransportError as e:
            logger.error(f"{method} {endpoint} failed: {e!r}")
            raise NetworkError() from e

        if resp.status_code == 401:
            raise InvalidCredential()

        if resp.status_code == 429:
            retry_after = parse_retry_after(resp.headers.get("Retry-After"))
            logger.warning(f"Rate limited on {method} {endpoint}, retry after {retry_after}s")
            raise RateLimited(retry_after=retry_after)

        if not resp.is_success:
            raise ApiError(resp.status_code, f"API error: {resp.reason_phrase}")

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(resp.status_code, "API error: response is not valid JSON") from e

    async def validate_api_key(self) -> bool:
        """True if the stored key can list projects."""
        try:
            await self.get_projects()
            return True
        except TestpadError as e:
            logger.info(f"API key validation failed: {e.message}")
            return False

    # --- Projects ---

    async def get_projects(self) -> list[Project]:
        resp = await self.request("/projects")
        items = unwrap_list(resp, "projects")
        if items is None:
            raise ApiError(500, "Unexpected response for projects")
        return [Project.model_validate(p) for p in items]

    async def get_project(self, project_id: int) -> Project:
        resp = await self.request(f"/projects/{project_id}")
        return Project.model_validate(unwrap_object(resp, "project"))

    # --- Folders ---

    async def get_folders(
        self, project_id: int, params: Optional[dict[str, str]] = None
    ) -> FolderNode:
        """Folder tree of a whole project, rooted at a synthetic ``/`` folder."""
        query = {**FOLDER_QUERY, "runs": "full", **(params or {})}
        resp = await self.request(f"/projects/{project_id}/folders", params=query)

        if isinstance(resp, dict) and isinstance(resp.get("folder"), dict):
            if resp["folder"].get("contents") is not None:
                return FolderNode.model_validate(resp["folder"])
        items = unwrap_list(resp, "folders")
        if items is not None:
            return FolderNode(id="root", name="/", kind=NodeKind.FOLDER, children=items)
        raise ApiError(500, "Unexpected response for folders")

    async def get_folder(
        self,
        project_id: int,
        folder_id: str,
        params: Optional[dict[str, str]] = None,
    ) -> FolderNode:
        query = {**FOLDER_QUERY, **(params or {})}
        resp = await self.request(
            f"/projects/{project_id}/folders/{folder_id}", params=query
        )
        folder = resp.get("folder") if isinstance(resp, dict) else None
        if isinstance(folder, dict) and folder.get("contents") is not None:
            return FolderNode.model_validate(folder)
        raise ApiError(500, "Unexpected response for folder")

    async def create_folder(
        self,
        project_id: int,
        name: str,
        parent_folder_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Any:
        """Create a folder. Returns the raw response; the id's location varies."""
        if parent_folder_id:
            endpoint = f"/projects/{project_id}/folders/{parent_folder_id}/folders"
        else:
            endpoint = f"/projects/{project_id}/folders"
        payload = {"name": name}
        if description is not None:
            payload["description"] = description
        return await self.request(endpoint, method="POST", json=payload)

    # --- Scripts & runs ---

    async def get_script(self, script_id: int) -> Script:
        resp = await self.request(f"/scripts/{script_id}", params=SCRIPT_QUERY)
        return Script.model_validate(unwrap_object(resp, "script"))

    async def create_script(
        self, project_id: int, folder_id: str, script_data: dict[str, Any]
    ) -> Any:
        """Create a script in a folder. Returns the raw response."""
        return await self.request(
            f"/projects/{project_id}/folders/{folder_id}/scripts",
            method="POST",
            json=script_data,
        )

    async def create_run(self, script_id: int, payload: dict[str, Any]) -> Any:
        return await self.request(
            f"/scripts/{script_id}/runs", method="POST", json=payload
        )

    # --- Notes ---

    async def get_notes(self, project_id: int) -> list[Note]:
        resp = await self.request(f"/projects/{project_id}/notes")
        return [Note.model_validate(n) for n in unwrap_list(resp, "notes") or []]

    async def get_folder_notes(self, project_id: int, folder_id: str) -> list[Note]:
        resp = await self.request(f"/projects/{project_id}/folders/{folder_id}/notes")
        return [Note.model_validate(n) for n in unwrap_list(resp, "notes") or []]

    async def create_note(
        self, project_id: int, content: str, folder_id: Optional[str] = None
    ) -> Any:
        if folder_id:
            endpoint = f"/projects/{project_id}/folders/{folder_id}/notes"
        else:
            endpoint = f"/projects/{project_id}/notes"
        return await self.request(endpoint, method="POST", json={"content": content})

    async def update_note(self, project_id: int, note_id: str, content: str) -> Note:
        resp = await self.request(
            f"/projects/{project_id}/notes/{note_id}",
            method="PATCH",
            json={"content": content},
        )
        return Note.model_validate(unwrap_object(resp, "note"))
