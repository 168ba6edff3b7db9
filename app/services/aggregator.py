"""Metrics and chart aggregates over the full filtered set."""

from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.models import Vulnerability
from app.schemas.vulnerabilities import (
    DashboardMetrics,
    MonthlyTrend,
    NamedCount,
    SeverityBucket,
)
from app.services.normalize import decode_json_array
from app.services.query_builder import EXCLUDED_STATUSES

# Severities shown in the distribution chart, in display order.
_DISTRIBUTION_LEVELS = ("CRITICAL", "HIGH", "MEDIUM", "LOW")

_TREND_FIELDS = {
    "CRITICAL": "critical",
    "HIGH": "high",
    "MEDIUM": "medium",
    "LOW": "low",
}


def parse_published_date(value: str | None) -> date | None:
    """
    Parse an ISO-8601 date or datetime string (a trailing 'Z' is accepted).

    Returns the calendar date as written (no timezone conversion), or None when the
    value is absent or unparseable.
    """
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def count_status_exclusions(db: Session) -> tuple[int, int]:
    """
    Count rows each status filter would hide, over the whole table.

    Independent of the active filter: these preview the effect of turning a filter on.
    Returns (filtered_out_by_analysis, filtered_out_by_ai).
    """
    by_analysis, by_ai = db.query(
        func.coalesce(
            func.sum(
                case((Vulnerability.kai_status.in_(EXCLUDED_STATUSES["analysis"]), 1), else_=0)
            ),
            0,
        ),
        func.coalesce(
            func.sum(
                case((Vulnerability.kai_status.in_(EXCLUDED_STATUSES["ai-analysis"]), 1), else_=0)
            ),
            0,
        ),
    ).one()
    return int(by_analysis), int(by_ai)


def compute_metrics(
    rows: Sequence[Any],
    status_counts: tuple[int, int] = (0, 0),
) -> DashboardMetrics:
    """Severity, exploit and patch tallies over rows, plus the whole-table status counts."""
    severity_counts = {level: 0 for level in _DISTRIBUTION_LEVELS}
    with_exploit = 0
    patch_available = 0
    for row in rows:
        if row.severity in severity_counts:
            severity_counts[row.severity] += 1
        if row.exploit_available:
            with_exploit += 1
        if row.patch_available:
            patch_available += 1
    return DashboardMetrics(
        total_vulnerabilities=len(rows),
        critical_count=severity_counts["CRITICAL"],
        high_count=severity_counts["HIGH"],
        medium_count=severity_counts["MEDIUM"],
        low_count=severity_counts["LOW"],
        with_exploit=with_exploit,
        patch_available=patch_available,
        filtered_out_by_analysis=status_counts[0],
        filtered_out_by_ai=status_counts[1],
    )


def severity_distribution(metrics: DashboardMetrics) -> list[SeverityBucket]:
    """Non-zero severity counts in CRITICAL, HIGH, MEDIUM, LOW order."""
    values = {
        "CRITICAL": metrics.critical_count,
        "HIGH": metrics.high_count,
        "MEDIUM": metrics.medium_count,
        "LOW": metrics.low_count,
    }
    return [
        SeverityBucket(name=level, value=values[level])
        for level in _DISTRIBUTION_LEVELS
        if values[level] > 0
    ]


def _top_counts(labels: Iterable[str], top_n: int) -> list[NamedCount]:
    # dict keeps first-seen order and sorted() is stable, so ties stay in encounter order.
    counts: dict[str, int] = {}
    for label in labels:
        counts[label] = counts.get(label, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [NamedCount(name=name, count=count) for name, count in ranked[:top_n]]


def package_distribution(rows: Sequence[Any], top_n: int = 10) -> list[NamedCount]:
    """Top packages by record count, descending; ties keep first-encountered order."""
    return _top_counts(((row.package_name or "Unknown") for row in rows), top_n)


def risk_factor_distribution(rows: Sequence[Any], top_n: int = 10) -> list[NamedCount]:
    """Top risk factor labels across rows; each record counts once per label."""
    return _top_counts(
        (factor for row in rows for factor in decode_json_array(row.risk_factors)),
        top_n,
    )


def monthly_trends(rows: Sequence[Any], months: int = 12) -> list[MonthlyTrend]:
    """
    Bucket rows by (year, month) of publishedDate and return the last `months` buckets.

    Only months present in the data appear (no zero-filling). Rows without a parseable
    date are skipped here but still counted by the other aggregates.
    """
    buckets: dict[str, dict[str, int]] = {}
    for row in rows:
        published = parse_published_date(row.published_date)
        if published is None:
            continue
        key = f"{published.year:04d}-{published.month:02d}"
        bucket = buckets.setdefault(
            key, {"count": 0, "critical": 0, "high": 0, "medium": 0, "low": 0, "unknown": 0}
        )
        bucket["count"] += 1
        bucket[_TREND_FIELDS.get(row.severity, "unknown")] += 1
    ordered = sorted(buckets.items())[-months:]
    return [MonthlyTrend(month=month, **counts) for month, counts in ordered]
