import logging

from fastapi import APIRouter, Request, HTTPException

from ..db.schema import init_schema

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/init")
async def initialize(request: Request):
    pool = request.app.state.pool
    if not pool:
        raise HTTPException(status_code=503, detail="Database pool not available")

    result = await init_schema(pool)
    logger.info("Schema init result: %s", result)
    return {
        "status": "initialized",
        "tables_created": result.get("tables_created", []),
        "errors": result.get("errors", []),
    }
