# src/maester_api/api/schemas.py
# Pydantic models for scan requests, job responses and the job summary document
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional, Literal

SEVERITY_LEVELS = ("Critical", "High", "Medium", "Low", "Info")
TEST_OUTCOMES = ("Passed", "Failed", "Skipped", "NotRun")

Severity = Literal["Critical", "High", "Medium", "Low", "Info"]
TestOutcome = Literal["Passed", "Failed", "Skipped", "NotRun"]
JobStatus = Literal["running", "completed", "failed"]


def to_iso(dt):
    """UTC timestamp as sortable ISO-8601 with millisecond precision."""
    if dt is None:
        return None
    return dt.isoformat(timespec="milliseconds") + "Z"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScanRequest(ApiModel):
    suites: Optional[List[str]] = Field(None, description="Suite subdirectories to run; empty runs every suite")
    severity: Optional[List[Severity]] = Field(None, description="Severity filter; empty or the full set means no filter")
    tags: Optional[List[str]] = Field(None, description="Extra tags passed to the engine's include filter")
    include_long_running: Optional[bool] = Field(False, description="Also run long-running tests")
    include_preview: Optional[bool] = Field(False, description="Also run preview tests")
    tenant_id: Optional[str] = Field("", description="Target tenant; scoping key for the one-scan-per-tenant rule")
    app_client_id: Optional[str] = Field(None, description="Application (client) id for client-credentials grants")
    app_client_secret: Optional[str] = Field(None, description="Application secret", repr=False)
    bearer_token: Optional[str] = Field(None, description="Caller token for the directory service", repr=False)

    @field_validator("severity", mode="before")
    @classmethod
    def _canonical_severity(cls, value):
        if not value:
            return value
        canonical = {level.lower(): level for level in SEVERITY_LEVELS}
        return [canonical.get(str(item).lower(), item) for item in value]


class TestResultRecord(ApiModel):
    __test__ = False  # keep pytest from collecting this model

    id: str
    name: str
    result: TestOutcome
    duration_ms: int = 0
    severity: Severity = "Info"
    category: str = ""
    block: str = ""
    error_record: Optional[str] = None
    description: Optional[str] = None
    result_detail: Optional[str] = None
    skipped_reason: Optional[str] = None
    investigate: bool = False
    service: Optional[str] = None


class ConnectionDiagnostics(ApiModel):
    graph: bool = False
    exchange: bool = False
    security_compliance: bool = False
    teams: bool = False
    azure: bool = False
    errors: Dict[str, str] = Field(default_factory=dict)


class JobSummary(ApiModel):
    total_count: int
    passed_count: int
    failed_count: int
    skipped_count: int
    duration_ms: int
    timestamp: str
    suites_run: List[str]
    severity_filter: List[str]
    connections: ConnectionDiagnostics
    tests: List[TestResultRecord]


class SubmitResponse(ApiModel):
    job_id: str
    status: JobStatus = "running"
    created_at: str


class JobResponse(ApiModel):
    job_id: str
    status: JobStatus
    created_at: str
    updated_at: str
    result: Optional[JobSummary] = None
    error: Optional[str] = None


class StatsResponse(ApiModel):
    total: int
    completed: int
    failed: int
    running: int
    avg_duration_ms: Optional[int] = None
    min_duration_ms: Optional[int] = None
    max_duration_ms: Optional[int] = None
    last_completed_at: Optional[str] = None
