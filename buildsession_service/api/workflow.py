from fastapi import APIRouter, Request

from ..models.sessions import CenterViewRequest, DraftUpdate, UISchemaUpdate
from .deps import get_session

router = APIRouter(prefix="/api/apps")


def _save_result(session, saved: bool) -> dict:
    return {
        "saved": saved,
        "save": session.save_state.model_dump(mode="json"),
        "workflow_id": session.draft.id,
        "current_version_id": session.app.current_version_id if session.app else None,
    }


@router.put("/{app_id}/draft")
async def update_draft(request: Request, app_id: str, body: DraftUpdate):
    session = await get_session(request, app_id)
    session.update_draft(body.nodes, body.edges, name=body.name)
    return {"save": session.save_state.model_dump(mode="json")}


@router.post("/{app_id}/save")
async def save_workflow(request: Request, app_id: str):
    session = await get_session(request, app_id)
    saved = await session.save()
    return _save_result(session, saved)


@router.put("/{app_id}/ui-schema")
async def update_ui_schema(request: Request, app_id: str, body: UISchemaUpdate):
    session = await get_session(request, app_id)
    session.update_ui_schema(body.ui_schema)
    return {"ui_schema_dirty": session.save_state.ui_schema_dirty}


@router.post("/{app_id}/ui-schema/save")
async def save_ui_schema(request: Request, app_id: str):
    session = await get_session(request, app_id)
    saved = await session.save_ui_schema()
    return _save_result(session, saved)


@router.put("/{app_id}/center-view")
async def set_center_view(request: Request, app_id: str, body: CenterViewRequest):
    session = await get_session(request, app_id)
    session.set_center_view(body.view)
    return {"center_view": session.center_view}
