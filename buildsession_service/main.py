import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .config import BuildSessionSettings
from .db.connection import OracleConnectionManager
from .db.schema import init_schema
from .services.platform_client import PlatformClient
from .services.registry import SessionRegistry
from .api import api_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = BuildSessionSettings()
    app.state.settings = settings

    conn_mgr = None
    pool = None
    if settings.uses_oracle:
        conn_mgr = OracleConnectionManager(settings)
        try:
            pool = await conn_mgr.create_pool()
            logger.info("Oracle connection pool created (min=%d, max=%d)",
                        settings.oracle_pool_min, settings.oracle_pool_max)
        except Exception as e:
            logger.error("Failed to create Oracle connection pool, session ids stay in memory: %s", e)
            pool = None
    app.state.pool = pool

    if settings.auto_init and pool:
        try:
            result = await init_schema(pool)
            logger.info("Auto-init schema: %s", result)
        except Exception as e:
            logger.warning("Auto-init failed (run POST /api/init manually): %s", e)

    client = PlatformClient(settings)
    registry = SessionRegistry(settings, client, pool)
    app.state.platform_client = client
    app.state.registry = registry
    logger.info("Platform API at %s, session store: %s",
                settings.platform_base_url, settings.session_store)

    yield

    # Shutdown
    await registry.close_all()
    await client.close()
    if conn_mgr:
        await conn_mgr.close_pool()
        logger.info("Oracle connection pool closed")


app = FastAPI(
    title="BuildSession Service",
    version="0.1.0",
    description="Sidecar that drives agent-driven app build sessions and workflow saves",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


class BearerTokenMiddleware(BaseHTTPMiddleware):
    """Optional bearer token authentication.

    When BUILDSESSION_SERVICE_TOKEN is set, every request must carry a
    matching Authorization: Bearer <token> header.
    """

    async def dispatch(self, request: Request, call_next):
        token = request.app.state.settings.buildsession_service_token
        if token:
            auth = request.headers.get("authorization", "")
            if not auth.startswith("Bearer ") or auth[7:] != token:
                return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
        return await call_next(request)


app.add_middleware(BearerTokenMiddleware)

app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn

    settings = BuildSessionSettings()
    uvicorn.run(
        "buildsession_service.main:app",
        host="0.0.0.0",
        port=settings.buildsession_service_port,
        reload=True,
    )
