"""Pydantic schemas for health check responses."""

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response body for the health check endpoint."""

    status: Literal["ok"] = Field(default="ok", description="Service status")
    environment: str = Field(description="Current app environment (e.g. dev, prod)")
    database: Literal["connected", "disconnected"] = Field(
        description="Whether the SQLite store could be opened",
    )
    records: int | None = Field(
        default=None,
        ge=0,
        description="Rows in the vulnerabilities table; null when the table is missing or the store is down",
    )
