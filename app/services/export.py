"""Export stored vulnerabilities as a quoted CSV table or raw JSON rows."""

import csv
import io
import time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Vulnerability
from app.schemas.vulnerabilities import ExportRow
from app.services.dashboard import store_error

CSV_HEADERS = ("CVE ID", "Package", "Version", "Severity", "CVSS Score", "Status")
MISSING_STATUS = "N/A"


def fetch_export_rows(db: Session, max_rows: int) -> list[ExportRow]:
    """At most max_rows rows in table order. Raises StoreQueryError on store failure."""
    try:
        rows = (
            db.query(
                Vulnerability.cve_id,
                Vulnerability.package_name,
                Vulnerability.current_version,
                Vulnerability.severity,
                Vulnerability.cvss_score,
                Vulnerability.kai_status,
            )
            .order_by(Vulnerability.id.asc())
            .limit(max_rows)
            .all()
        )
    except SQLAlchemyError as e:
        raise store_error(e) from e
    return [
        ExportRow(
            cve_id=row.cve_id,
            package_name=row.package_name,
            current_version=row.current_version,
            severity=row.severity,
            cvss_score=row.cvss_score,
            kai_status=row.kai_status,
        )
        for row in rows
    ]


def render_csv(rows: list[ExportRow]) -> str:
    """Comma-delimited table with a header row; every field quoted, missing status as N/A."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for row in rows:
        writer.writerow(
            [
                row.cve_id,
                row.package_name or "",
                row.current_version or "",
                row.severity,
                "" if row.cvss_score is None else row.cvss_score,
                row.kai_status or MISSING_STATUS,
            ]
        )
    return buffer.getvalue()


def export_filename(now: float | None = None) -> str:
    """Attachment name stamped with epoch milliseconds."""
    stamp = int((time.time() if now is None else now) * 1000)
    return f"vulnerabilities-{stamp}.csv"
