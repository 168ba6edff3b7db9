"""Vulnerability endpoints: filtered list with metrics and charts, detail, metrics, export."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.schemas.vulnerabilities import (
    ErrorResponse,
    ExportRequest,
    FilterRequest,
    MetricsResponse,
    VulnerabilityDetailResponse,
    VulnerabilityListResponse,
)
from app.services.dashboard import (
    StoreQueryError,
    build_dashboard,
    build_detail,
    build_store_metrics,
)
from app.services.export import export_filename, fetch_export_rows, render_csv

logger = logging.getLogger(__name__)
router = APIRouter()

QUERY_FAILED = "Database query failed"
EXPORT_FAILED = "Export failed"

_FAILURE_RESPONSES = {500: {"model": ErrorResponse}}


def _failure(status_code: int, error: str, message: str, hint: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, hint=hint)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@router.get("", response_model=VulnerabilityListResponse, responses=_FAILURE_RESPONSES)
def list_vulnerabilities(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    page: Annotated[str | None, Query()] = None,
    limit: Annotated[str | None, Query()] = None,
    search: Annotated[str | None, Query()] = None,
    severity: Annotated[str | None, Query(description="Comma-separated, e.g. CRITICAL,HIGH")] = None,
    kai_status_filter: Annotated[str | None, Query(alias="kaiStatusFilter")] = None,
    sort_by: Annotated[str | None, Query(alias="sortBy")] = None,
    sort_order: Annotated[str | None, Query(alias="sortOrder")] = None,
) -> VulnerabilityListResponse | JSONResponse:
    """
    Return one page of vulnerabilities plus metrics and chart data for the whole filtered set.

    Parameters are never rejected: page < 1 becomes 1, limit is clamped to 10..100,
    unknown sortBy falls back to severity and unknown kaiStatusFilter to none.
    filteredOutByAnalysis / filteredOutByAI preview each status filter over the whole
    table, regardless of the active filters.
    """
    filters = FilterRequest(
        search=search,
        severity=severity,
        kai_status_filter=kai_status_filter,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    settings = request.app.state.settings
    try:
        result = build_dashboard(
            db,
            filters,
            top_packages=settings.TOP_PACKAGES,
            trend_months=settings.TREND_MONTHS,
        )
    except StoreQueryError as e:
        logger.exception("Vulnerability query failed")
        return _failure(500, QUERY_FAILED, e.message, e.hint)

    logger.info(
        "Vulnerability query completed",
        extra={
            "total_count": result.pagination.total_count,
            "page": filters.page,
            "limit": filters.limit,
            "response_time": result.meta.response_time,
        },
    )
    return result


@router.get("/metrics", response_model=MetricsResponse, responses=_FAILURE_RESPONSES)
def get_metrics(
    db: Annotated[Session, Depends(get_db)],
) -> MetricsResponse | JSONResponse:
    """Metrics over the whole table (no filters applied)."""
    try:
        return build_store_metrics(db)
    except StoreQueryError as e:
        logger.exception("Metrics query failed")
        return _failure(500, QUERY_FAILED, e.message, e.hint)


@router.post("/export", responses={**_FAILURE_RESPONSES, 200: {"content": {"text/csv": {}}}})
def export_vulnerabilities(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    body: ExportRequest | None = None,
) -> Response:
    """
    Export stored vulnerabilities (at most EXPORT_MAX_ROWS).

    - **csv** (default): quoted comma-delimited table served as an attachment.
    - **json**: the raw rows as a JSON array.
    """
    export_format = body.format if body is not None else "csv"
    max_rows = request.app.state.settings.EXPORT_MAX_ROWS
    try:
        rows = fetch_export_rows(db, max_rows)
    except StoreQueryError as e:
        logger.exception("Export failed")
        return _failure(500, EXPORT_FAILED, e.message, e.hint)

    logger.info("Export completed", extra={"format": export_format, "row_count": len(rows)})
    if export_format == "csv":
        return Response(
            content=render_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
        )
    return JSONResponse(content=[row.model_dump(by_alias=True) for row in rows])


@router.get(
    "/{cve_id}",
    response_model=VulnerabilityDetailResponse,
    responses={**_FAILURE_RESPONSES, 404: {"model": ErrorResponse}},
)
def get_vulnerability(
    cve_id: str,
    db: Annotated[Session, Depends(get_db)],
) -> VulnerabilityDetailResponse | JSONResponse:
    """
    Return the first record with this CVE id and the packages that share it.

    CVE ids are not unique across packages; relatedPackages lists every package
    carrying the same id.
    """
    try:
        detail = build_detail(db, cve_id)
    except StoreQueryError as e:
        logger.exception("Vulnerability lookup failed")
        return _failure(500, QUERY_FAILED, e.message, e.hint)
    if detail is None:
        return _failure(404, "Not found", f"No vulnerability with id {cve_id!r}.")
    return detail
