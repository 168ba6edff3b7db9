"""Pydantic schemas for the vulnerability list, detail, metrics and export endpoints."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Canonical severity levels, most severe first.
Severity = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW", "UNKNOWN"]
SEVERITY_LEVELS: tuple[str, ...] = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "UNKNOWN")

KaiStatusFilter = Literal["none", "analysis", "ai-analysis"]
KAI_STATUS_FILTERS: frozenset[str] = frozenset({"none", "analysis", "ai-analysis"})

SortField = Literal["severity", "cvssScore", "cveId", "packageName", "publishedDate"]
SORT_FIELDS: frozenset[str] = frozenset(
    {"severity", "cvssScore", "cveId", "packageName", "publishedDate"}
)

SortOrder = Literal["asc", "desc"]

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 50
MIN_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
# Keeps (page - 1) * limit within a SQLite INTEGER.
MAX_PAGE = (2**63 - 1) // MAX_PAGE_SIZE


def _to_int(value: Any, default: int) -> int:
    """Parse an int from a query value; fall back to default on anything unparseable."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


class CamelModel(BaseModel):
    """Base for response bodies: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class FilterRequest(BaseModel):
    """
    One list query: search, severity set, status filter, sort and page.

    Never rejects input. Out-of-range or unparseable values are clamped or replaced
    with defaults so that any query string yields a valid request.
    """

    model_config = ConfigDict(frozen=True)

    search: str = ""
    severity: tuple[str, ...] = ()
    kai_status_filter: KaiStatusFilter = "none"
    sort_by: SortField = "severity"
    sort_order: SortOrder = "desc"
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_PAGE_SIZE

    @field_validator("search", mode="before")
    @classmethod
    def coerce_search(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("severity", mode="before")
    @classmethod
    def coerce_severity(cls, v: Any) -> tuple[str, ...]:
        """Accept 'CRITICAL,HIGH' or a list; upper-case, drop blanks and repeats."""
        if v is None:
            return ()
        items = v.split(",") if isinstance(v, str) else list(v)
        result: list[str] = []
        for item in items:
            level = str(item).strip().upper()
            if level and level not in result:
                result.append(level)
        return tuple(result)

    @field_validator("kai_status_filter", mode="before")
    @classmethod
    def coerce_kai_status_filter(cls, v: Any) -> str:
        s = str(v).strip().lower() if v is not None else ""
        return s if s in KAI_STATUS_FILTERS else "none"

    @field_validator("sort_by", mode="before")
    @classmethod
    def coerce_sort_by(cls, v: Any) -> str:
        s = str(v).strip() if v is not None else ""
        return s if s in SORT_FIELDS else "severity"

    @field_validator("sort_order", mode="before")
    @classmethod
    def coerce_sort_order(cls, v: Any) -> str:
        s = str(v).strip().lower() if v is not None else ""
        return s if s in ("asc", "desc") else "desc"

    @field_validator("page", mode="before")
    @classmethod
    def coerce_page(cls, v: Any) -> int:
        return min(MAX_PAGE, max(DEFAULT_PAGE, _to_int(v, DEFAULT_PAGE)))

    @field_validator("limit", mode="before")
    @classmethod
    def coerce_limit(cls, v: Any) -> int:
        return min(MAX_PAGE_SIZE, max(MIN_PAGE_SIZE, _to_int(v, DEFAULT_PAGE_SIZE)))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class VulnerabilityRecord(CamelModel):
    """One stored record with its JSON array fields decoded."""

    id: int
    cve_id: str
    package_name: str | None = None
    current_version: str | None = None
    fixed_version: str | None = None
    severity: Severity = "UNKNOWN"
    cvss_score: float | None = None
    epss_score: float | None = None
    description: str | None = None
    risk_factors: list[str] = Field(default_factory=list)
    cwe: list[str] = Field(default_factory=list)
    reference_links: list[str] = Field(default_factory=list)
    published_date: str | None = None
    last_modified_date: str | None = None
    kai_status: str | None = None
    exploit_available: bool = False
    patch_available: bool = False

    @field_validator("severity", mode="before")
    @classmethod
    def coerce_severity(cls, v: Any) -> str:
        s = str(v).strip().upper() if v is not None else ""
        return s if s in SEVERITY_LEVELS else "UNKNOWN"


class Pagination(CamelModel):
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=MIN_PAGE_SIZE, le=MAX_PAGE_SIZE)
    total_count: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)
    has_next_page: bool
    has_prev_page: bool


class DashboardMetrics(CamelModel):
    """Tallies over the filtered set, plus whole-table status-filter preview counts."""

    total_vulnerabilities: int = Field(default=0, ge=0)
    critical_count: int = Field(default=0, ge=0)
    high_count: int = Field(default=0, ge=0)
    medium_count: int = Field(default=0, ge=0)
    low_count: int = Field(default=0, ge=0)
    with_exploit: int = Field(default=0, ge=0)
    patch_available: int = Field(default=0, ge=0)
    filtered_out_by_analysis: int = Field(default=0, ge=0)
    filtered_out_by_ai: int = Field(default=0, ge=0, alias="filteredOutByAI")


class SeverityBucket(CamelModel):
    name: Severity
    value: int = Field(..., ge=0)


class NamedCount(CamelModel):
    """A label and how many filtered records carry it (packages, risk factors)."""

    name: str
    count: int = Field(..., ge=1)


class MonthlyTrend(CamelModel):
    """Records published in one calendar month, split by severity."""

    month: str = Field(..., description="Bucket key, YYYY-MM.")
    count: int = Field(..., ge=1)
    critical: int = Field(default=0, ge=0, alias="CRITICAL")
    high: int = Field(default=0, ge=0, alias="HIGH")
    medium: int = Field(default=0, ge=0, alias="MEDIUM")
    low: int = Field(default=0, ge=0, alias="LOW")
    unknown: int = Field(default=0, ge=0, alias="UNKNOWN")


class ChartData(CamelModel):
    severity_distribution: list[SeverityBucket] = Field(default_factory=list)
    package_distribution: list[NamedCount] = Field(default_factory=list)
    monthly_trends: list[MonthlyTrend] = Field(default_factory=list)
    risk_factor_distribution: list[NamedCount] = Field(default_factory=list)


class ResponseMeta(CamelModel):
    response_time: str = Field(..., description="Server-side time to build the response, e.g. '12ms'.")
    database: str = "SQLite"
    total_data_points: int = Field(..., ge=0, description="Rows in the full filtered set.")


class VulnerabilityListResponse(CamelModel):
    """Response for GET /vulnerabilities."""

    success: Literal[True] = True
    data: list[VulnerabilityRecord]
    pagination: Pagination
    metrics: DashboardMetrics
    chart_data: ChartData
    meta: ResponseMeta


class MetricsResponse(CamelModel):
    """Response for GET /vulnerabilities/metrics (whole table, no filters)."""

    success: Literal[True] = True
    metrics: DashboardMetrics


class VulnerabilityDetailResponse(CamelModel):
    """Response for GET /vulnerabilities/{cve_id}."""

    success: Literal[True] = True
    data: VulnerabilityRecord
    related_packages: list[str] = Field(
        default_factory=list,
        description="Distinct packages that carry the same CVE id, including this record's.",
    )


class ErrorResponse(CamelModel):
    """Failure envelope returned for store errors and unknown records."""

    success: Literal[False] = False
    error: str
    message: str
    hint: str | None = None


class ExportRequest(BaseModel):
    """Body for POST /vulnerabilities/export."""

    format: Literal["csv", "json"] = "csv"

    @field_validator("format", mode="before")
    @classmethod
    def coerce_format(cls, v: Any) -> str:
        """Only 'csv' selects CSV; any other explicit value gets the raw JSON rows."""
        if v is None:
            return "csv"
        return "csv" if str(v).strip().lower() == "csv" else "json"


class ExportRow(CamelModel):
    cve_id: str
    package_name: str | None = None
    current_version: str | None = None
    severity: str
    cvss_score: float | None = None
    kai_status: str | None = None
