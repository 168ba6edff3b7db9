"""Pydantic request/response schemas."""

from app.schemas.health import HealthResponse
from app.schemas.vulnerabilities import (
    ChartData,
    DashboardMetrics,
    ErrorResponse,
    ExportRequest,
    ExportRow,
    FilterRequest,
    MetricsResponse,
    MonthlyTrend,
    NamedCount,
    Pagination,
    Severity,
    SeverityBucket,
    VulnerabilityDetailResponse,
    VulnerabilityListResponse,
    VulnerabilityRecord,
)

__all__ = [
    "ChartData",
    "DashboardMetrics",
    "ErrorResponse",
    "ExportRequest",
    "ExportRow",
    "FilterRequest",
    "HealthResponse",
    "MetricsResponse",
    "MonthlyTrend",
    "NamedCount",
    "Pagination",
    "Severity",
    "SeverityBucket",
    "VulnerabilityDetailResponse",
    "VulnerabilityListResponse",
    "VulnerabilityRecord",
]
