from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from jobwatch.api.router import api_router
from jobwatch.config import get_settings
from jobwatch.core.errors import register_exception_handlers
from jobwatch.core.logging import setup_logging
from jobwatch.core.rate_limit import limiter, rate_limit_exceeded_handler
from jobwatch.core.scheduler import start_scheduler, stop_scheduler

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging()
    await start_scheduler()
    yield
    await stop_scheduler()


app = FastAPI(
    title="Jobwatch",
    description="Job execution lifecycle and monitoring API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}
