"""Pydantic schemas for the exporter's HTTP API"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response. Reflects the exporter process, not the database."""
    status: str
    version: str
    uptime_seconds: int
    now: datetime
    last_scrape_ok: Optional[bool] = None
