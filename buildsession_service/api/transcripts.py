from fastapi import APIRouter, Request, Query

from .deps import get_session

router = APIRouter(prefix="/api/apps")


@router.get("/{app_id}/transcript")
async def get_transcript(request: Request, app_id: str,
                         offset: int = Query(0, ge=0), limit: int = Query(100, ge=1, le=1000)):
    session = await get_session(request, app_id)
    entries = session.transcript.page(offset=offset, limit=limit)
    return {
        "entries": [e.model_dump(mode="json") for e in entries],
        "count": len(entries),
        "total": len(session.transcript),
        "is_streaming": session.is_streaming,
    }
