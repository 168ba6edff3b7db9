"""SQLAlchemy declarative Base for the record store."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base; the ingest job creates tables from its metadata."""

    pass
