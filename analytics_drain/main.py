"""Analytics Drain Gateway - FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from analytics_drain.config import settings
from analytics_drain.dependencies import close_event_store, verify_api_key
from analytics_drain.errors import DrainError, drain_error_handler
from analytics_drain.routers import analytics, drain, health


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_event_store()


app = FastAPI(
    title="Analytics Drain Gateway",
    description="Verified, deduplicated landing of analytics webhook deliveries",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = drain.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(DrainError, drain_error_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers (health is public; the drain authenticates by signature; the rest require API key when set)
app.include_router(health.router)
app.include_router(drain.router, prefix="/analytics-drain", tags=["drain"])
app.include_router(
    analytics.router, prefix="/analytics", tags=["analytics"], dependencies=[Depends(verify_api_key)]
)
