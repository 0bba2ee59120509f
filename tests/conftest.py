"""
Testpad Rounds Test Configuration

Shared fixtures for all tests. HTTP goes to an in-memory fake of the
Testpad API served through httpx.MockTransport.
"""
import copy
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from testpad_rounds.config import TestpadConfig, ThrottleConfig
from testpad_rounds.credentials import MemoryCredentialStore
from testpad_rounds.client import TestpadClient
from testpad_rounds.models import Script, ScriptContext
from testpad_rounds.retry import RetryPolicy


API_PREFIX = "/api/v1"
PROJECT_ID = 42


# =============================================================================
# FIXTURES: Sample Data
# =============================================================================

def sample_folder_listing() -> Dict:
    """Folder tree of project 42 as the folders endpoint returns it."""
    return {
        "id": "root",
        "name": "",
        "type": "folder",
        "contents": [
            {
                "id": "f1",
                "name": "Regression",
                "type": "folder",
                "contents": [
                    {"id": 101, "name": "Login", "type": "script"},
                    {"id": "n1", "name": "Read me first", "type": "note"},
                    {
                        "id": "f2",
                        "name": "Checkout",
                        "type": "folder",
                        "contents": [
                            {"id": 102, "name": "Cart", "type": "script"},
                            {"id": 103, "name": "Payment", "type": "script"},
                        ],
                    },
                ],
            },
            {
                "id": "f9",
                "name": "Empty",
                "type": "folder",
                "contents": [
                    {"id": "f10", "name": "Nothing here", "type": "folder", "contents": []},
                ],
            },
        ],
    }


def sample_scripts() -> Dict[int, Dict]:
    """Full script details keyed by id."""
    return {
        101: {
            "id": 101,
            "name": "Login",
            "description": "Login flows",
            "tests": [
                {"id": "t1", "name": "Open login page", "indent": 0},
                {"id": "t2", "text": "Submit wrong password", "indent": 1},
            ],
            "fields": [
                {"id": "_tester", "label": "Tester"},
                {"id": "build", "label": "Build"},
            ],
            "runs": [
                {
                    "id": 1,
                    "created": "2026-03-01T10:00:00Z",
                    "state": "complete",
                    "assignee": {"id": 7, "name": "Alice", "email": "alice@example.com"},
                    "results": {"t1": {"result": "pass"}, "t2": {"result": "pass"}},
                    "progress": {"total": 2, "pass": 2},
                },
                {
                    "id": 2,
                    "created": "2026-03-05T10:00:00Z",
                    "state": "started",
                    "assignee": {"id": 8, "name": "Bob", "email": "bob@example.com"},
                    "results": {
                        "t1": {"result": "pass"},
                        "t2": {"result": "fail", "comment": "500 on submit", "issue": "SHOP-17"},
                    },
                    "progress": {"total": 2, "pass": 1, "fail": 1},
                },
            ],
            "progress": {"total": 2, "pass": 1, "fail": 1},
        },
        102: {
            "id": 102,
            "name": "Cart",
            "tests": [
                {"id": "t1", "name": "Add item", "indent": 0},
                {"id": "t2", "name": "Remove item", "indent": 0},
                {"id": "t3", "name": "Update quantity", "indent": 0},
            ],
            "fields": [],
            "runs": [
                {
                    "id": 3,
                    "created": "2026-03-02T10:00:00Z",
                    "state": "complete",
                    "assignee": {"id": 7, "name": "Alice", "email": "alice@example.com"},
                    "results": {
                        "t1": {"result": "pass"},
                        "t2": {"result": "pass"},
                        "t3": {"result": "pass"},
                    },
                    "progress": {"total": 3, "pass": 3, "summary": "3/3 passed"},
                },
            ],
            "progress": {"total": 3, "pass": 3},
        },
        103: {
            "id": 103,
            "name": "Payment",
            "tests": [
                {"id": "t1", "name": "Pay by card", "indent": 0},
                {"id": "t2", "name": "Pay by invoice", "indent": 0},
            ],
            "fields": None,
            "runs": [
                {
                    "id": 4,
                    "created": "2026-03-03T10:00:00Z",
                    "state": "new",
                    "headers": {"_tester": "Carol", "build": "v2.4.0"},
                    "results": {},
                    "progress": {"total": 2},
                },
            ],
            "progress": {"total": 2},
        },
    }


@pytest.fixture
def folder_listing() -> Dict:
    return sample_folder_listing()


@pytest.fixture
def scripts() -> Dict[int, Script]:
    """Sample scripts parsed into models."""
    return {sid: Script.model_validate(data) for sid, data in sample_scripts().items()}


@pytest.fixture
def script_contexts(scripts) -> List[ScriptContext]:
    """Contexts in traversal order of folder f1."""
    return [
        ScriptContext(script=scripts[101], project_name="Webshop", folder_name="Regression"),
        ScriptContext(script=scripts[102], project_name="Webshop", folder_name="Regression / Checkout"),
        ScriptContext(script=scripts[103], project_name="Webshop", folder_name="Regression / Checkout"),
    ]


# =============================================================================
# FIXTURES: Testpad API Fake
# =============================================================================

class FakeTestpad:
    """In-memory Testpad API. Mount with ``httpx.MockTransport(fake.handler)``."""

    __test__ = False

    def __init__(self):
        self.projects = [{"id": PROJECT_ID, "name": "Webshop", "description": None}]
        self.root = sample_folder_listing()
        self.scripts = sample_scripts()
        self.notes: List[Dict] = [{"id": "note-1", "content": "Kickoff on Monday"}]
        self.requests: List[httpx.Request] = []
        self.created_scripts: List[Dict] = []
        self.created_folders: List[Dict] = []
        self.queued: Dict[tuple, List[httpx.Response]] = {}

        # Failure knobs
        self.fail_get_script: set = set()
        self.folder_create_response: Optional[Any] = None
        self.script_create_response: Optional[Any] = None
        self.list_created_folders = True
        self.reject_all = False

        self._next_id = 9000

    def queue(self, method: str, path: str, *responses: httpx.Response) -> None:
        """Serve ``responses`` for the next calls to ``method path`` first."""
        self.queued.setdefault((method, path), []).extend(responses)

    def calls(self, method: str, path_prefix: str = "") -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and self._path(r).startswith(path_prefix)
        ]

    def new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    @staticmethod
    def _path(request: httpx.Request) -> str:
        path = request.url.path
        return path[len(API_PREFIX):] if path.startswith(API_PREFIX) else path

    def _find_folder(self, folder_id: str, node: Optional[Dict] = None) -> Optional[Dict]:
        node = node or self.root
        if str(node["id"]) == folder_id and node["type"] == "folder":
            return node
        for child in node.get("contents", []):
            if child["type"] == "folder":
                found = self._find_folder(folder_id, child)
                if found:
                    return found
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, self._path(request)

        queued = self.queued.get((method, path))
        if queued:
            return queued.pop(0)
        if self.reject_all:
            return httpx.Response(401, json={"error": "unauthorized"})

        parts = path.strip("/").split("/")
        body = json.loads(request.content) if request.content else None

        # /projects
        if parts == ["projects"] and method == "GET":
            return httpx.Response(200, json={"projects": self.projects})

        # /projects/{id}
        if len(parts) == 2 and parts[0] == "projects" and method == "GET":
            project = next((p for p in self.projects if str(p["id"]) == parts[1]), None)
            if project is None:
                return httpx.Response(404)
            return httpx.Response(200, json={"project": project})

        # /projects/{id}/folders
        if parts[2:] == ["folders"]:
            if method == "GET":
                return httpx.Response(200, json={"folder": copy.deepcopy(self.root)})
            if method == "POST":
                return self._create_folder(body)

        # /projects/{id}/folders/{folder_id}
        if len(parts) == 4 and parts[2] == "folders" and method == "GET":
            folder = self._find_folder(parts[3])
            if folder is None:
                return httpx.Response(404)
            return httpx.Response(200, json={"folder": copy.deepcopy(folder)})

        # /projects/{id}/folders/{folder_id}/scripts
        if len(parts) == 5 and parts[4] == "scripts" and method == "POST":
            return self._create_script(parts[3], body)

        # /scripts/{id}
        if len(parts) == 2 and parts[0] == "scripts" and method == "GET":
            script_id = int(parts[1])
            if script_id in self.fail_get_script:
                return httpx.Response(500)
            if script_id not in self.scripts:
                return httpx.Response(404)
            return httpx.Response(200, json={"script": copy.deepcopy(self.scripts[script_id])})

        # /scripts/{id}/runs
        if len(parts) == 3 and parts[2] == "runs" and method == "POST":
            return httpx.Response(201, json={"id": self.new_id(), **body})

        # notes
        if parts[-1] == "notes":
            if method == "GET":
                return httpx.Response(200, json={"notes": self.notes})
            note = {"id": f"note-{self.new_id()}", "content": body["content"]}
            self.notes.append(note)
            return httpx.Response(201, json=note)
        if len(parts) == 4 and parts[2] == "notes" and method == "PATCH":
            note = next(n for n in self.notes if n["id"] == parts[3])
            note["content"] = body["content"]
            return httpx.Response(200, json={"note": note})

        return httpx.Response(404)

    def _create_folder(self, body: Dict) -> httpx.Response:
        folder = {"id": f"f{self.new_id()}", "name": body["name"], "type": "folder", "contents": []}
        self.created_folders.append(folder)
        if self.list_created_folders:
            self.root["contents"].append(folder)
        if self.folder_create_response is not None:
            return httpx.Response(201, json=self.folder_create_response)
        return httpx.Response(201, json={"folder": {"id": folder["id"], "name": folder["name"]}})

    def _create_script(self, folder_id: str, body: Dict) -> httpx.Response:
        self.created_scripts.append({"folder_id": folder_id, **body})
        if self.script_create_response is not None:
            return httpx.Response(201, json=self.script_create_response)
        return httpx.Response(201, json={"id": self.new_id()})


@pytest.fixture
def fake_testpad() -> FakeTestpad:
    return FakeTestpad()


def make_client(handler, key: Optional[str] = "test-key", config: Optional[TestpadConfig] = None):
    """TestpadClient over a MockTransport calling ``handler``."""
    return TestpadClient(
        config or TestpadConfig(credential_path=None),
        MemoryCredentialStore(key),
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def client(fake_testpad) -> TestpadClient:
    return make_client(fake_testpad.handler)


@pytest.fixture
def client_factory():
    """Build clients over ad-hoc handlers: ``client_factory(handler, key=...)``."""
    return make_client


# =============================================================================
# FIXTURES: Timing
# =============================================================================

class SleepRecorder:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleeper) -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay=1.0, sleep=sleeper)


@pytest.fixture
def no_throttle() -> ThrottleConfig:
    return ThrottleConfig(after_folder=0, after_read=0, after_create=0)
