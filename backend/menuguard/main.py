import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from menuguard.auth.session import IdentityGate
from menuguard.config import settings
from menuguard.database import async_session
from menuguard.middleware.exceptions import register_exception_handlers
from menuguard.rbac.resolver import PermissionResolver
from menuguard.rbac.store import PermissionStoreClient, SQLAlchemyPermissionStore
from menuguard.routers import access, auth, health, roles
from menuguard.utils.redis_client import close_redis

logger = logging.getLogger("menuguard")


def install_services(app: FastAPI, store: PermissionStoreClient | None = None) -> None:
    """Create the process-wide resolver and identity gate on app.state."""
    app.state.resolver = PermissionResolver(
        store or SQLAlchemyPermissionStore(async_session),
        max_entries=settings.permission_cache_size,
    )
    app.state.identity_gate = IdentityGate()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not hasattr(app.state, "resolver"):
        install_services(app)
    logger.info("menuguard started")
    try:
        yield
    finally:
        await close_redis()
        logger.info("menuguard stopped")


app = FastAPI(
    title="menuguard",
    description="Authorization core for restaurant menu accounts: RBAC, route access, tenant scope",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(access.router, prefix="/api/access", tags=["access"])
app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
