"""Pydantic models for Testpad entities, round duplication and tester aggregation."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

# Field ids starting with this prefix are Testpad built-ins (_tester, _run, ...)
SYSTEM_FIELD_PREFIX = "_"


class ApiModel(BaseModel):
    """Base for models parsed from Testpad responses.

    Wire names are accepted through aliases, Python names through
    ``populate_by_name``. Unknown wire fields are dropped.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _as_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Testpad mixes numeric and string ids across endpoints
WireId = Annotated[str, BeforeValidator(_as_str)]
Timestamp = Annotated[Optional[datetime], BeforeValidator(_blank_to_none)]


# --- Enums ---


class NodeKind(str, Enum):
    FOLDER = "folder"
    SCRIPT = "script"
    NOTE = "note"


class RunState(str, Enum):
    NEW = "new"
    STARTED = "started"
    COMPLETE = "complete"


class Outcome(str, Enum):
    """Result recorded for one test in one run."""

    PASS = "pass"
    FAIL = "fail"
    BLOCK = "block"
    QUERY = "query"
    PENDING = "pending"
    UNSET = ""

    @property
    def needs_attention(self) -> bool:
        return self in (Outcome.FAIL, Outcome.BLOCK, Outcome.QUERY)


# --- Progress ---


class ProgressCounters(ApiModel):
    total: int = Field(default=0, ge=0)
    pass_: int = Field(default=0, ge=0, alias="pass")
    fail: int = Field(default=0, ge=0)
    block: int = Field(default=0, ge=0)
    query: int = Field(default=0, ge=0)
    summary: str = ""

    @property
    def pending(self) -> int:
        """Tests without an outcome, never negative."""
        return max(0, self.total - self.pass_ - self.fail - self.block - self.query)

    @property
    def attention(self) -> int:
        return self.fail + self.block + self.query

    @property
    def completion_rate(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.pass_ / self.total * 100)

    def __add__(self, other: "ProgressCounters") -> "ProgressCounters":
        return ProgressCounters(
            total=self.total + other.total,
            pass_=self.pass_ + other.pass_,
            fail=self.fail + other.fail,
            block=self.block + other.block,
            query=self.query + other.query,
        )


# --- Core entities ---


class Project(ApiModel):
    id: int
    name: str
    description: str = ""
    created: Timestamp = None

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, v):
        return v or ""


class Assignee(ApiModel):
    id: Union[int, str]
    name: str = ""
    email: str = ""


class Result(ApiModel):
    outcome: Outcome = Field(default=Outcome.UNSET, alias="result")
    comment: Optional[str] = None
    issue: Optional[str] = None

    @field_validator("outcome", mode="before")
    @classmethod
    def _unknown_outcome(cls, v):
        if v is None:
            return Outcome.UNSET
        if isinstance(v, str) and v.lower() not in {o.value for o in Outcome}:
            return Outcome.UNSET
        return v.lower() if isinstance(v, str) else v


class Run(ApiModel):
    id: WireId
    created: Timestamp = None
    state: Optional[RunState] = None
    label: Optional[str] = None
    tester: Optional[str] = None  # legacy free-text field, superseded by assignee
    headers: dict[str, str] = {}
    assignee: Optional[Assignee] = None
    results: dict[str, Result] = {}
    progress: ProgressCounters = Field(default_factory=ProgressCounters)

    @field_validator("state", mode="before")
    @classmethod
    def _unknown_state(cls, v):
        if v not in {s.value for s in RunState} and not isinstance(v, RunState):
            return None
        return v

    @field_validator("headers", mode="before")
    @classmethod
    def _stringify_headers(cls, v):
        if not v:
            return {}
        return {str(k): str(val) for k, val in v.items() if val is not None}

    @field_validator("results", mode="before")
    @classmethod
    def _null_results(cls, v):
        return v or {}


class FolderNode(ApiModel):
    """One entry of a folder listing; folders nest through ``children``."""

    id: WireId
    name: str = ""
    kind: NodeKind = Field(alias="type")
    children: list["FolderNode"] = Field(default=[], alias="contents")
    progress: Optional[ProgressCounters] = None
    runs: list[Run] = []

    @field_validator("children", "runs", mode="before")
    @classmethod
    def _null_list(cls, v):
        return v or []

    @property
    def is_folder(self) -> bool:
        return self.kind == NodeKind.FOLDER

    @property
    def is_script(self) -> bool:
        return self.kind == NodeKind.SCRIPT


class Test(ApiModel):
    # Not a test class, keep pytest from collecting it.
    __test__ = False

    id: WireId
    name: str = ""
    text: Optional[str] = None
    indent: int = Field(default=0, ge=0)

    @property
    def label(self) -> str:
        return self.text or self.name


class ScriptField(ApiModel):
    id: WireId
    label: str = ""
    show: bool = True

    @property
    def is_system(self) -> bool:
        return self.id.startswith(SYSTEM_FIELD_PREFIX)


class Script(ApiModel):
    id: int
    name: str
    description: Optional[str] = None
    tests: list[Test] = []
    fields: list[ScriptField] = []
    runs: list[Run] = []
    progress: ProgressCounters = Field(default_factory=ProgressCounters)

    @field_validator("tests", "fields", "runs", mode="before")
    @classmethod
    def _null_list(cls, v):
        return v or []

    def test_labels(self) -> dict[str, str]:
        return {t.id: t.label for t in self.tests}


class Note(ApiModel):
    id: WireId
    content: str = ""
    created: Timestamp = None


# --- Duplication ---


class BuildInfo(BaseModel):
    """Shared metadata written into the headers of every new run."""

    build: Optional[str] = None
    browser: Optional[str] = None

    def as_headers(self) -> dict[str, str]:
        headers = {}
        if self.build and self.build.strip():
            headers["build"] = self.build.strip()
        if self.browser and self.browser.strip():
            headers["browser"] = self.browser.strip()
        return headers


class StepError(BaseModel):
    step: str
    error: str


class DuplicationResult(BaseModel):
    """Outcome of one round duplication. ``success`` means zero errors."""

    success: bool
    new_folder_id: Optional[str] = None
    errors: list[StepError] = []
    created_scripts: int = 0
    created_runs: int = 0
    script_mapping: dict[str, str] = {}  # source script id -> copy id

    @property
    def is_partial(self) -> bool:
        return self.created_scripts > 0 and bool(self.errors)

    @property
    def outcome(self) -> str:
        if self.success:
            return "succeeded"
        if self.is_partial:
            return "partial"
        return "failed"


class RoundRequest(BaseModel):
    """Request to create a new test round from a source folder."""

    project_id: int
    source_folder_id: str
    name: str = Field(..., min_length=1)
    testers: list[str] = Field(default_factory=list)
    build: Optional[str] = None
    browser: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Round name must not be blank")
        return v

    @property
    def build_info(self) -> BuildInfo:
        return BuildInfo(build=self.build, browser=self.browser)


class RunRequest(BaseModel):
    """Request to add one run to an existing script."""

    tester: str = Field(..., min_length=1)
    tags: str = "ALL"
    build: Optional[str] = None
    browser: Optional[str] = None

    def payload(self) -> dict[str, Any]:
        headers = {"_tester": self.tester.strip(), "_tags": self.tags.strip() or "ALL"}
        headers.update(BuildInfo(build=self.build, browser=self.browser).as_headers())
        return {"headers": headers, "results": {}}


class ConnectRequest(BaseModel):
    api_key: str = Field(..., min_length=1)


class NoteRequest(BaseModel):
    content: str
    folder_id: Optional[str] = None


# --- Aggregation ---


class ScriptContext(BaseModel):
    """A fetched script plus where it lives, the unit of aggregation."""

    script: Script
    project_name: str
    folder_name: str


class Assignment(BaseModel):
    run_id: str
    script_id: Optional[int] = None
    script_name: str
    project_name: str
    status: str  # complete | started | new | unknown
    progress_summary: str = ""


class TesterSummary(BaseModel):
    __test__ = False

    name: str
    email: Optional[str] = None
    total_runs: int = 0
    completed_runs: int = 0
    in_progress_runs: int = 0
    failed_runs: int = 0
    assignments: list[Assignment] = []

    @property
    def completion_rate(self) -> int:
        if self.total_runs <= 0:
            return 0
        return round(self.completed_runs / self.total_runs * 100)

    @property
    def pending_assignments(self) -> list[Assignment]:
        return [a for a in self.assignments if a.status != RunState.COMPLETE.value]


class FailedTest(BaseModel):
    project_name: str
    folder_name: str
    script_id: int
    script_name: str
    test_id: str
    test_name: Optional[str] = None
    outcome: Outcome
    comment: Optional[str] = None
    issue: Optional[str] = None
    tester: str
    run_id: str
    run_created: Optional[datetime] = None


class TesterInsights(BaseModel):
    top_performer: Optional[str] = None
    busiest: Optional[str] = None
    bug_hunter: Optional[str] = None


class AggregationReport(BaseModel):
    testers: list[TesterSummary] = []
    failed_tests: list[FailedTest] = []
    insights: TesterInsights = TesterInsights()


class DashboardStats(BaseModel):
    total_projects: int = 0
    total_scripts: int = 0
    total_runs: int = 0
    total_tests: int = 0
    progress: ProgressCounters = Field(default_factory=ProgressCounters)
