"""Translate a FilterRequest into parameterized count, page and full-set queries.

This is the only filter/sort implementation: pagination, metrics and charts all run
against the same predicate list so totals and aggregates always agree.
"""

import math
from typing import Any

from sqlalchemy import ColumnElement, case, func, or_
from sqlalchemy.orm import Session

from app.models import Vulnerability
from app.schemas.vulnerabilities import FilterRequest, Pagination

# Sort rank for severity (higher is more severe); unknown values rank 0.
SEVERITY_RANK: dict[str, int] = {
    "CRITICAL": 4,
    "HIGH": 3,
    "MEDIUM": 2,
    "LOW": 1,
    "UNKNOWN": 0,
}

# kaiStatus labels excluded by each status filter. Both spellings of the manual label
# are the same classification. Records with no status are never excluded.
EXCLUDED_STATUSES: dict[str, tuple[str, ...]] = {
    "none": (),
    "analysis": ("invalid - norisk", "invalid-norisk"),
    "ai-analysis": ("ai-invalid-norisk",),
}

# Columns the aggregator needs for every row in the filtered set.
AGGREGATION_COLUMNS = (
    Vulnerability.id,
    Vulnerability.cve_id,
    Vulnerability.package_name,
    Vulnerability.severity,
    Vulnerability.published_date,
    Vulnerability.exploit_available,
    Vulnerability.patch_available,
    Vulnerability.risk_factors,
)


def severity_rank_expression() -> ColumnElement[int]:
    """CASE expression ranking severity CRITICAL=4 .. LOW=1, anything else 0."""
    return case(
        {level: rank for level, rank in SEVERITY_RANK.items() if rank > 0},
        value=Vulnerability.severity,
        else_=0,
    )


def _sort_expression(sort_by: str) -> ColumnElement[Any]:
    if sort_by == "cvssScore":
        return func.coalesce(Vulnerability.cvss_score, 0.0)
    if sort_by == "publishedDate":
        # julianday() is NULL for absent or unparseable dates; those sort as the epoch.
        return func.coalesce(func.julianday(Vulnerability.published_date), 0.0)
    if sort_by == "cveId":
        return Vulnerability.cve_id
    if sort_by == "packageName":
        return func.coalesce(Vulnerability.package_name, "")
    return severity_rank_expression()


def order_by_clause(sort_by: str, sort_order: str) -> list[ColumnElement[Any]]:
    """Primary sort key in the requested direction, then row id for stable paging."""
    expr = _sort_expression(sort_by)
    primary = expr.asc() if sort_order == "asc" else expr.desc()
    return [primary, Vulnerability.id.asc()]


def filter_conditions(request: FilterRequest) -> list[ColumnElement[bool]]:
    """WHERE predicates for search, severity set and status filter (ANDed together)."""
    conditions: list[ColumnElement[bool]] = []
    if request.search:
        conditions.append(
            or_(
                Vulnerability.cve_id.icontains(request.search, autoescape=True),
                Vulnerability.package_name.icontains(request.search, autoescape=True),
                Vulnerability.description.icontains(request.search, autoescape=True),
            )
        )
    if request.severity:
        conditions.append(Vulnerability.severity.in_(request.severity))
    excluded = EXCLUDED_STATUSES.get(request.kai_status_filter, ())
    if excluded:
        conditions.append(
            or_(
                Vulnerability.kai_status.is_(None),
                Vulnerability.kai_status.not_in(excluded),
            )
        )
    return conditions


def count_filtered(db: Session, request: FilterRequest) -> int:
    """Total number of rows matching the request, before pagination."""
    return (
        db.query(func.count(Vulnerability.id))
        .filter(*filter_conditions(request))
        .scalar()
        or 0
    )


def fetch_page(db: Session, request: FilterRequest) -> list[Vulnerability]:
    """One page of matching rows in the requested order."""
    return (
        db.query(Vulnerability)
        .filter(*filter_conditions(request))
        .order_by(*order_by_clause(request.sort_by, request.sort_order))
        .limit(request.limit)
        .offset(request.offset)
        .all()
    )


def fetch_filtered_rows(db: Session, request: FilterRequest) -> list[Any]:
    """Every matching row (aggregation columns only), in the requested order, ignoring pagination."""
    return (
        db.query(*AGGREGATION_COLUMNS)
        .filter(*filter_conditions(request))
        .order_by(*order_by_clause(request.sort_by, request.sort_order))
        .all()
    )


def fetch_by_cve_id(db: Session, cve_id: str) -> list[Vulnerability]:
    """All rows carrying the given CVE id (exact match), lowest id first."""
    return (
        db.query(Vulnerability)
        .filter(Vulnerability.cve_id == cve_id)
        .order_by(Vulnerability.id.asc())
        .all()
    )


def build_pagination(request: FilterRequest, total_count: int) -> Pagination:
    """Pagination block derived from the request and the pre-pagination total."""
    total_pages = math.ceil(total_count / request.limit) if total_count else 0
    return Pagination(
        page=request.page,
        limit=request.limit,
        total_count=total_count,
        total_pages=total_pages,
        has_next_page=request.page < total_pages,
        has_prev_page=request.page > 1,
    )
