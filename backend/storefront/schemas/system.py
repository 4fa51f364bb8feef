"""Health check response schema."""

from typing import Dict

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = Field(description="Overall: healthy, degraded, or unhealthy")
    version: str = Field(description="Application version")
    environment: str
    database: str = Field(description="Database status: connected or disconnected")
    upstreams: Dict[str, str] = Field(description="Circuit breaker state per upstream")
    uptime_seconds: float = Field(description="Seconds since service started")
