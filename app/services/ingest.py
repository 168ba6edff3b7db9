"""One-time ingest: flatten a nested JSON export into the vulnerabilities table."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine, func, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.database import create_session_factory, create_store_engine
from app.models import Base, Vulnerability
from app.services.normalize import normalize_item
from app.services.query_builder import severity_rank_expression

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

LFS_POINTER_MARKER = "git-lfs.github.com"
PROGRESS_EVERY = 10_000
MAX_LOGGED_ERRORS = 5

# Image-level context copied onto each vulnerability; item keys win on conflict.
_IMAGE_CONTEXT_KEYS = ("baseImage", "buildType", "maintainer", "createTime")


class IngestError(Exception):
    """Raised when the source export cannot be read or holds no vulnerabilities."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class IngestResult:
    processed: int
    errors: int
    total: int


def _values(container: Any) -> list[Any]:
    """Children of a groups/repos/images node, which may be a mapping or a list."""
    if isinstance(container, dict):
        return list(container.values())
    if isinstance(container, list):
        return container
    return []


def flatten_export(data: Any) -> list[dict[str, Any]]:
    """
    Flatten groups -> repos -> images -> vulnerabilities into one item per vulnerability,
    carrying group, repo and image context. A top-level list of items, or an object with a
    top-level 'vulnerabilities' list, is returned as-is.
    """
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if not isinstance(data, dict):
        return []
    if "groups" not in data and isinstance(data.get("vulnerabilities"), list):
        return [item for item in data["vulnerabilities"] if isinstance(item, dict)]

    items: list[dict[str, Any]] = []
    for group in _values(data.get("groups")):
        if not isinstance(group, dict):
            continue
        for repo in _values(group.get("repos")):
            if not isinstance(repo, dict):
                continue
            for image in _values(repo.get("images")):
                if not isinstance(image, dict):
                    continue
                context: dict[str, Any] = {
                    "groupName": group.get("name"),
                    "repoName": repo.get("name"),
                    "imageName": image.get("name"),
                    "imageVersion": image.get("version"),
                }
                for key in _IMAGE_CONTEXT_KEYS:
                    context[key] = image.get(key)
                for vuln in image.get("vulnerabilities") or []:
                    if isinstance(vuln, dict):
                        items.append({**context, **vuln})
    return items


def read_export(source_path: str | Path) -> Any:
    """Read and parse the export file, rejecting missing files and Git LFS pointers."""
    path = Path(source_path)
    if not path.is_file():
        raise IngestError(f"JSON export not found: {path}")
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise IngestError(f"Could not read {path}: {e!s}") from e
    if LFS_POINTER_MARKER in content[:100]:
        raise IngestError(
            f"{path} is a Git LFS pointer, not the export itself; run `git lfs pull` first."
        )
    size_mb = path.stat().st_size / (1024 * 1024)
    logger.info("Source export %s (%.2f MB)", path, size_mb)
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise IngestError(f"Invalid JSON in {path}: {e!s}") from e


def rebuild_schema(engine: Engine) -> None:
    """Drop and recreate the vulnerabilities table and its indexes."""
    Base.metadata.drop_all(engine, tables=[Vulnerability.__table__])
    Base.metadata.create_all(engine, tables=[Vulnerability.__table__])


def load_items(
    session: Session,
    items: list[dict[str, Any]],
    batch_size: int = 1000,
) -> IngestResult:
    """
    Normalize and insert items in batches, one transaction per batch.

    Items that fail normalization are counted and skipped; the first few are logged.
    A batch whose insert fails is rolled back and each of its items counted as an error.
    """
    processed = 0
    errors = 0
    batch: list[dict[str, Any]] = []

    def flush() -> None:
        nonlocal processed, errors
        if not batch:
            return
        try:
            session.execute(insert(Vulnerability), batch)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Batch insert of %s items failed: %s", len(batch), e)
            errors += len(batch)
        else:
            processed += len(batch)
            if processed % PROGRESS_EVERY < len(batch):
                logger.info("Processed %s items...", processed)
        batch.clear()

    for index, item in enumerate(items):
        try:
            batch.append(normalize_item(item, index))
        except (TypeError, ValueError) as e:
            errors += 1
            if errors <= MAX_LOGGED_ERRORS:
                logger.warning("Skipping item %s: %s", index, e)
            continue
        if len(batch) >= batch_size:
            flush()
    flush()
    return IngestResult(processed=processed, errors=errors, total=len(items))


def severity_summary(session: Session) -> list[tuple[str, int, float | None]]:
    """(severity, count, average CVSS rounded to 2 places) per severity, most severe first."""
    rows = (
        session.query(
            Vulnerability.severity,
            func.count(Vulnerability.id),
            func.round(func.avg(Vulnerability.cvss_score), 2),
        )
        .group_by(Vulnerability.severity)
        .order_by(severity_rank_expression().desc())
        .all()
    )
    return [(severity, int(count), avg) for severity, count, avg in rows]


def run_ingest(
    source_path: str | Path,
    database_path: str,
    settings: "Settings",
) -> IngestResult:
    """
    Build the SQLite store from a JSON export. Replaces any existing table.

    Raises IngestError when the export is missing, unreadable or empty.
    """
    items = flatten_export(read_export(source_path))
    if not items:
        raise IngestError("No vulnerabilities found in JSON export.")
    logger.info("Found %s vulnerabilities", len(items))

    Path(database_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
    engine = create_store_engine(database_path, read_only=False, echo=settings.DEBUG)
    try:
        rebuild_schema(engine)
        session = create_session_factory(engine)()
        try:
            result = load_items(session, items, settings.INGEST_BATCH_SIZE)
            stored = session.query(func.count(Vulnerability.id)).scalar() or 0
            logger.info(
                "Ingest complete",
                extra={
                    "processed": result.processed,
                    "errors": result.errors,
                    "stored": stored,
                    "database_path": database_path,
                },
            )
            for severity, count, avg in severity_summary(session):
                logger.info("  %-10s %6d (avg CVSS: %s)", severity, count, avg)
        finally:
            session.close()
    finally:
        engine.dispose()
    return result
