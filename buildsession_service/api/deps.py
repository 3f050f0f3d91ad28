from fastapi import HTTPException, Request

from ..services.platform_client import PlatformError


def get_registry(request: Request):
    registry = request.app.state.registry
    if not registry:
        raise HTTPException(status_code=503, detail="Build session service not available")
    return registry


async def get_session(request: Request, app_id: str):
    registry = get_registry(request)
    try:
        return await registry.get(app_id)
    except PlatformError as e:
        status = 404 if e.status_code == 404 else 502
        raise HTTPException(status_code=status, detail=f"Failed to load app {app_id}: {e}")
