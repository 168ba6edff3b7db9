"""
CLI entrypoint for the one-time ingest job. Run from project root, e.g.:

  python -m app.ingest
  python -m app.ingest path/to/export.json --database data/vulnerabilities.db

Replaces the vulnerabilities table in DATABASE_PATH with the contents of the export.
"""

import argparse
import logging
import sys

from app.core.config import get_settings
from app.services.ingest import IngestError, run_ingest

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Flatten the JSON export into the SQLite store."""
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Convert a nested vulnerability JSON export into the SQLite store."
    )
    parser.add_argument(
        "source",
        nargs="?",
        default=settings.SOURCE_JSON_PATH,
        help=f"JSON export to read (default: {settings.SOURCE_JSON_PATH})",
    )
    parser.add_argument(
        "--database",
        default=settings.DATABASE_PATH,
        help=f"SQLite file to (re)create (default: {settings.DATABASE_PATH})",
    )
    args = parser.parse_args(argv)

    try:
        result = run_ingest(args.source, args.database, settings)
    except IngestError as e:
        logger.error("Ingest failed: %s", e.message)
        return 1
    logger.info(
        "Ingest completed: processed=%s errors=%s total=%s",
        result.processed,
        result.errors,
        result.total,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
