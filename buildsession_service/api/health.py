from fastapi import APIRouter, Request

from ..db.schema import ALL_TABLES, check_tables_exist, get_schema_version

router = APIRouter()


@router.get("/api/health")
async def health(request: Request):
    pool = request.app.state.pool
    settings = request.app.state.settings
    registry = request.app.state.registry

    pool_info = {"min": 0, "max": 0, "busy": 0, "open": 0}
    tables = {}
    schema_version = "unknown"
    if pool:
        pool_info = {
            "min": pool.min,
            "max": pool.max,
            "busy": pool.busy,
            "open": pool.opened,
        }
        try:
            tables = await check_tables_exist(pool)
        except Exception:
            tables = {t: False for t in ALL_TABLES}
        schema_version = await get_schema_version(pool)

    degraded = registry.degraded_stores() if registry else []
    return {
        "status": "degraded" if degraded else "ok",
        "platform_base_url": settings.platform_base_url,
        "session_store": {
            "backend": settings.session_store,
            "degraded_apps": degraded,
        },
        "active_sessions": len(registry) if registry else 0,
        "pool": pool_info,
        "tables": tables,
        "schema_version": schema_version,
    }
