"""Normalize raw export items into table rows, and stored rows back into API records."""

import json
from typing import TYPE_CHECKING, Any

from app.schemas.vulnerabilities import SEVERITY_LEVELS, VulnerabilityRecord

if TYPE_CHECKING:
    from app.models.vulnerability import Vulnerability

# Accepted source keys per column, in precedence order: the first key present with a
# non-empty value wins. Keys are matched exactly (case-sensitive).
FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "cve_id": ("cveId", "CVE_ID", "cve_id", "cve", "id"),
    "package_name": ("packageName", "package", "Package", "pkg", "package_name"),
    "current_version": ("currentVersion", "version", "Version", "current_version"),
    "fixed_version": ("fixedVersion", "fixed_version", "Fixed", "fix"),
    "severity": ("severity", "Severity", "SEVERITY"),
    "cvss_score": ("cvssScore", "cvss_score", "CVSS", "cvss", "score"),
    "description": ("description", "Description", "summary"),
    "published_date": ("publishedDate", "published_date", "published", "publishedAt", "date"),
    "last_modified_date": ("lastModifiedDate", "last_modified", "lastModified", "updatedAt", "updated"),
    "kai_status": ("kaiStatus", "kai_status", "status"),
    "exploit_available": ("exploitAvailable", "exploit_available", "exploit"),
    "patch_available": ("patchAvailable", "patch_available", "patch"),
    "risk_factors": ("riskFactors", "risk_factors"),
    "cwe": ("cwe", "CWE", "cwes"),
    "reference_links": ("referenceLinks", "references", "refs", "links"),
    "epss_score": ("epssScore", "epss_score", "epss"),
}

# Severity spellings (upper-cased) that map onto a canonical level other than themselves.
_SEVERITY_ALIASES: dict[str, str] = {
    "MODERATE": "MEDIUM",
    "MED": "MEDIUM",
    "CRIT": "CRITICAL",
    "NEGLIGIBLE": "LOW",
}

_DEFAULT_PACKAGE = "Unknown"
_DEFAULT_VERSION = "0.0.0"
_DEFAULT_DESCRIPTION = "No description available"
_FALSY_STRINGS = frozenset({"", "0", "false", "no", "n", "off", "none", "null"})


def pick(item: dict[str, Any], field: str) -> Any:
    """Return the value of the first synonym of field present and non-empty in item, else None."""
    for key in FIELD_SYNONYMS[field]:
        value = item.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        if isinstance(value, (list, dict)) and not value:
            continue
        return value
    return None


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    s = value.strip() if isinstance(value, str) else str(value).strip()
    return s or None


def normalize_severity(raw_severity: Any) -> str:
    """Upper-case and map to one of CRITICAL/HIGH/MEDIUM/LOW/UNKNOWN; anything unrecognized is UNKNOWN."""
    s = _str_or_none(raw_severity)
    if s is None:
        return "UNKNOWN"
    upper = s.upper()
    upper = _SEVERITY_ALIASES.get(upper, upper)
    return upper if upper in SEVERITY_LEVELS else "UNKNOWN"


def parse_score(value: Any, upper_bound: float) -> float | None:
    """Parse a score in [0, upper_bound]; unparseable or out-of-range values are absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score or not 0 <= score <= upper_bound:
        return None
    return score


def parse_flag(value: Any) -> bool:
    """Truthiness for export flags; strings like 'false' or '0' count as False."""
    if isinstance(value, str):
        return value.strip().lower() not in _FALSY_STRINGS
    return bool(value)


def to_string_list(value: Any) -> list[str]:
    """Coerce a list, dict (keys) or single string into a list of non-empty strings, deduplicated in order."""
    if value is None:
        return []
    if isinstance(value, dict):
        items: list[Any] = list(value.keys())
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        items = [value]
    result: list[str] = []
    for item in items:
        if item is None or isinstance(item, (dict, list)):
            continue
        s = str(item).strip()
        if s and s not in result:
            result.append(s)
    return result


def decode_json_array(stored: str | None) -> list[str]:
    """
    Decode a stored JSON array column. Null, empty, malformed or non-array text yields [].
    Never raises.
    """
    if not stored:
        return []
    try:
        value = json.loads(stored)
    except (TypeError, ValueError):
        return []
    if not isinstance(value, list):
        return []
    return to_string_list(value)


def normalize_item(item: dict[str, Any], index: int) -> dict[str, Any]:
    """
    Convert one flattened export item to Vulnerability column values.

    Applies FIELD_SYNONYMS precedence, defaults missing identity fields, maps severity
    onto the enum and drops out-of-range scores. patch_available is true when a patch
    flag is truthy or a fixed version is known. The original item is kept as raw_data.
    Raises TypeError or ValueError when the item cannot be serialized.
    """
    if not isinstance(item, dict):
        raise TypeError(f"item at index {index} is not an object")
    fixed_version = _str_or_none(pick(item, "fixed_version"))
    return {
        "cve_id": _str_or_none(pick(item, "cve_id")) or f"UNKNOWN-{index}",
        "package_name": _str_or_none(pick(item, "package_name")) or _DEFAULT_PACKAGE,
        "current_version": _str_or_none(pick(item, "current_version")) or _DEFAULT_VERSION,
        "fixed_version": fixed_version,
        "severity": normalize_severity(pick(item, "severity")),
        "cvss_score": parse_score(pick(item, "cvss_score"), 10.0),
        "description": _str_or_none(pick(item, "description")) or _DEFAULT_DESCRIPTION,
        "published_date": _str_or_none(pick(item, "published_date")),
        "last_modified_date": _str_or_none(pick(item, "last_modified_date")),
        "kai_status": _str_or_none(pick(item, "kai_status")),
        "exploit_available": parse_flag(pick(item, "exploit_available")),
        "patch_available": parse_flag(pick(item, "patch_available")) or fixed_version is not None,
        "risk_factors": json.dumps(to_string_list(pick(item, "risk_factors"))),
        "cwe": json.dumps(to_string_list(pick(item, "cwe"))),
        "reference_links": json.dumps(to_string_list(pick(item, "reference_links"))),
        "epss_score": parse_score(pick(item, "epss_score"), 1.0),
        "raw_data": json.dumps(item, default=str),
    }


def record_from_row(row: "Vulnerability") -> VulnerabilityRecord:
    """Build the wire record from a stored row, decoding JSON array columns."""
    return VulnerabilityRecord(
        id=row.id,
        cve_id=row.cve_id,
        package_name=row.package_name,
        current_version=row.current_version,
        fixed_version=row.fixed_version,
        severity=row.severity,
        cvss_score=row.cvss_score,
        epss_score=row.epss_score,
        description=row.description,
        risk_factors=decode_json_array(row.risk_factors),
        cwe=decode_json_array(row.cwe),
        reference_links=decode_json_array(row.reference_links),
        published_date=row.published_date,
        last_modified_date=row.last_modified_date,
        kai_status=row.kai_status,
        exploit_available=bool(row.exploit_available),
        patch_available=bool(row.patch_available),
    )
