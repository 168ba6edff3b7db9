"""SQLAlchemy ORM models."""

from app.models.base import Base
from app.models.vulnerability import Vulnerability

__all__ = ["Base", "Vulnerability"]
