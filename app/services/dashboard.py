"""Assemble list, metrics and detail responses from the query builder and aggregator."""

import logging
import time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.schemas.vulnerabilities import (
    ChartData,
    FilterRequest,
    MetricsResponse,
    ResponseMeta,
    VulnerabilityDetailResponse,
    VulnerabilityListResponse,
)
from app.services.aggregator import (
    compute_metrics,
    count_status_exclusions,
    monthly_trends,
    package_distribution,
    risk_factor_distribution,
    severity_distribution,
)
from app.services.normalize import record_from_row
from app.services.query_builder import (
    build_pagination,
    count_filtered,
    fetch_by_cve_id,
    fetch_filtered_rows,
    fetch_page,
)

logger = logging.getLogger(__name__)

SETUP_HINT = "Database not initialized. Run: python -m app.ingest"
GENERIC_HINT = "Check server logs for details"


class StoreQueryError(Exception):
    """Raised when the record store is unreachable, uninitialized or schema-mismatched."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        self.message = message
        self.hint = hint
        super().__init__(message)


def store_error(exc: SQLAlchemyError) -> StoreQueryError:
    """Wrap a SQLAlchemy failure, hinting at the ingest job when the table is missing."""
    message = str(getattr(exc, "orig", None) or exc)
    hint = SETUP_HINT if "no such table" in message.lower() else GENERIC_HINT
    return StoreQueryError(message, hint)


def build_dashboard(
    db: Session,
    request: FilterRequest,
    top_packages: int = 10,
    trend_months: int = 12,
) -> VulnerabilityListResponse:
    """
    Run count, page and full-set queries for one request and merge them with metrics
    and chart aggregates.

    Metrics and charts cover every row matching the filter, not just the current page;
    status-filter counts cover the whole table. Either a complete response is returned
    or StoreQueryError is raised.
    """
    started = time.perf_counter()
    try:
        total_count = count_filtered(db, request)
        page_rows = fetch_page(db, request)
        filtered_rows = fetch_filtered_rows(db, request)
        status_counts = count_status_exclusions(db)
    except SQLAlchemyError as e:
        raise store_error(e) from e

    metrics = compute_metrics(filtered_rows, status_counts)
    chart_data = ChartData(
        severity_distribution=severity_distribution(metrics),
        package_distribution=package_distribution(filtered_rows, top_packages),
        monthly_trends=monthly_trends(filtered_rows, trend_months),
        risk_factor_distribution=risk_factor_distribution(filtered_rows, top_packages),
    )
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return VulnerabilityListResponse(
        data=[record_from_row(row) for row in page_rows],
        pagination=build_pagination(request, total_count),
        metrics=metrics,
        chart_data=chart_data,
        meta=ResponseMeta(
            response_time=f"{elapsed_ms}ms",
            total_data_points=len(filtered_rows),
        ),
    )


def build_store_metrics(db: Session) -> MetricsResponse:
    """Metrics over the whole table, as the list endpoint reports them with no filters."""
    try:
        rows = fetch_filtered_rows(db, FilterRequest())
        status_counts = count_status_exclusions(db)
    except SQLAlchemyError as e:
        raise store_error(e) from e
    return MetricsResponse(metrics=compute_metrics(rows, status_counts))


def build_detail(db: Session, cve_id: str) -> VulnerabilityDetailResponse | None:
    """First record with the CVE id plus every package sharing it; None when absent."""
    try:
        rows = fetch_by_cve_id(db, cve_id.strip())
    except SQLAlchemyError as e:
        raise store_error(e) from e
    if not rows:
        return None
    related: list[str] = []
    for row in rows:
        if row.package_name and row.package_name not in related:
            related.append(row.package_name)
    return VulnerabilityDetailResponse(
        data=record_from_row(rows[0]),
        related_packages=related,
    )
