import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from adapters.entry.http.envelope import error_body, ok
from adapters.external.database.mongo_client import get_mongo_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness plus a MongoDB ping")
async def health(request: Request):
    try:
        await get_mongo_db().command("ping")
    except PyMongoError as exc:
        logger.warning("health check: mongo ping failed: %s", exc)
        return JSONResponse(status_code=503, content=error_body("DATABASE_UNAVAILABLE", "mongo ping failed"))
    return ok({"status": "ok", "database": "ok"}, request)
