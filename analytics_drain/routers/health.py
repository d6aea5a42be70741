from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from analytics_drain.config import settings


router = APIRouter(tags=["health"])

_startup_time = datetime.now(timezone.utc)


class EndpointInfo(BaseModel):
    path: str
    description: str
    auth: str | None = None


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    endpoints: list[EndpointInfo]


class IntegrationStatus(BaseModel):
    connected: bool
    status: str
    last_check: str | None = None


class IntegrationsResponse(BaseModel):
    drain_secret: IntegrationStatus
    database: IntegrationStatus


ENDPOINTS = [
    EndpointInfo(path="/health", description="Gateway status and API directory"),
    EndpointInfo(path="/health/integrations", description="Configuration status"),
    EndpointInfo(path="/analytics-drain", description="Analytics webhook ingestion", auth="HMAC-SHA1 signature"),
    EndpointInfo(path="/analytics/summary", description="Visitors and page views over a window", auth="API key"),
]


def _check_drain_secret() -> IntegrationStatus:
    if not settings.analytics_drain_secret:
        return IntegrationStatus(connected=False, status="secret not configured")
    return IntegrationStatus(
        connected=True,
        status="ok",
        last_check=datetime.now(timezone.utc).isoformat(),
    )


def _check_database() -> IntegrationStatus:
    if not settings.database_url:
        return IntegrationStatus(connected=False, status="database url not configured")
    return IntegrationStatus(
        connected=True,
        status="ok",
        last_check=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/health", response_model=HealthResponse)
async def health_check():
    uptime = (datetime.now(timezone.utc) - _startup_time).total_seconds()

    return HealthResponse(
        status="ok",
        version="0.1.0",
        uptime_seconds=round(uptime, 2),
        endpoints=ENDPOINTS,
    )


@router.get("/health/integrations", response_model=IntegrationsResponse)
async def get_integrations():
    return IntegrationsResponse(
        drain_secret=_check_drain_secret(),
        database=_check_database(),
    )
