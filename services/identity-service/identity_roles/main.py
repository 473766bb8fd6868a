"""FastAPI application wiring for the identity service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool
from redis import Redis
from redis.exceptions import RedisError

from .api.admin import router as admin_router
from .api.envelope import install_error_handlers
from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.admin import AdminRoleController
from .domain.provisioner import RoleProvisioner
from .domain.scoring import ProfileCompletionScorer
from .domain.service import AccountService
from .repository import AccountRepository
from .security.rate_limiter import FixedWindowRateLimiter
from .security.redis_rate_limiter import RedisFixedWindowRateLimiter

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def build_rate_limiter(config: Settings) -> Any:
    """Use Redis when configured and reachable, otherwise the process-local limiter."""
    if config.rate_limit_backend == "redis" and config.redis_url:
        try:
            client = Redis.from_url(config.redis_url)
            client.ping()
        except RedisError:
            logger.warning("redis unavailable at %s; using in-memory rate limiting", config.redis_url)
        else:
            return RedisFixedWindowRateLimiter(
                client,
                max_requests=config.rate_limit_requests,
                window_seconds=config.rate_limit_window_seconds,
            )
    return FixedWindowRateLimiter(
        max_requests=config.rate_limit_requests,
        window_seconds=config.rate_limit_window_seconds,
    )


def wire_services(app: FastAPI, repository: Any, rate_limiter: Any) -> None:
    """Attach the domain services sharing one repository to ``app.state``."""
    provisioner = RoleProvisioner(repository)
    scorer = ProfileCompletionScorer(repository)
    app.state.account_service = AccountService(
        repository, rate_limiter, provisioner=provisioner, scorer=scorer
    )
    app.state.admin_controller = AdminRoleController(
        repository, provisioner=provisioner, scorer=scorer
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    wire_services(app, AccountRepository(pool), build_rate_limiter(settings))
    try:
        yield
    finally:
        pool.close()
        pool.wait_close()


def create_app(**kwargs: Any) -> FastAPI:
    """Build the application; tests pass their own ``lifespan``."""
    kwargs.setdefault("lifespan", lifespan)
    application = FastAPI(title=settings.app_name, version=settings.version, **kwargs)

    # CORS for local frontend dev
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )
    install_error_handlers(application)

    @application.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    # Prometheus metrics endpoint for Prometheus scrapes
    @application.get("/metrics", include_in_schema=False)
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    application.include_router(v1_router)
    application.include_router(admin_router)
    return application


app = create_app()
