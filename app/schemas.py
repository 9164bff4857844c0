"""Pydantic schemas for the HTTP listener."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness payload for the HTTP listener."""

    status: str = Field(..., description="Always 'ok' while the listener serves requests.")
    name: str = Field(..., description="Listener name as shown in the gateway logs.")
    default_database: str = Field(
        "", description="Database used when a write request carries no 'db' parameter."
    )
