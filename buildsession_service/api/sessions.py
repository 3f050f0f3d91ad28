from fastapi import APIRouter, Request, HTTPException

from ..models.sessions import ChatRequest, ConfirmRequest
from ..services.confirmation import ConfirmationError
from ..services.dispatcher import SessionBusyError
from ..services.platform_client import PlatformError
from .deps import get_registry, get_session

router = APIRouter(prefix="/api/apps")


@router.get("/{app_id}/session")
async def get_session_state(request: Request, app_id: str):
    session = await get_session(request, app_id)
    return session.snapshot()


@router.delete("/{app_id}/session")
async def close_session(request: Request, app_id: str):
    registry = get_registry(request)
    closed = await registry.remove(app_id)
    return {"app_id": app_id, "closed": closed}


@router.post("/{app_id}/chat", status_code=202)
async def send_message(request: Request, app_id: str, body: ChatRequest):
    session = await get_session(request, app_id)
    try:
        handle = await session.send(body.message)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"stream_id": handle.id, "is_streaming": session.is_streaming}


@router.post("/{app_id}/stop")
async def stop_stream(request: Request, app_id: str):
    session = await get_session(request, app_id)
    stopped = await session.stop()
    return {"stopped": stopped, "is_streaming": session.is_streaming}


@router.post("/{app_id}/confirm")
async def confirm_action(request: Request, app_id: str, body: ConfirmRequest):
    session = await get_session(request, app_id)
    try:
        action = await session.confirm(body.approved)
    except ConfirmationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PlatformError as e:
        raise HTTPException(status_code=502, detail=f"Failed to process confirmation: {e}")
    return {"action": action.model_dump(), "approved": body.approved}


@router.post("/{app_id}/conversation/reset")
async def reset_conversation(request: Request, app_id: str):
    session = await get_session(request, app_id)
    await session.new_conversation()
    return session.snapshot()


@router.get("/{app_id}/agent/status")
async def agent_status(request: Request, app_id: str):
    session = await get_session(request, app_id)
    try:
        status = await session.agent_status()
    except PlatformError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return status.model_dump()
