import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tracksub.core.database import get_db
from tracksub.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "ok", "service": "tracksub"}


@router.get("/health/db")
async def health_db(db: AsyncSession = Depends(get_db)):
    """Database round-trip plus a check that the schema is migrated."""
    try:
        await db.execute(text("SELECT 1"))
        await db.execute(select(User.id).limit(1))
    except SQLAlchemyError as exc:
        logger.warning("Health check failed: %s", exc)
        return JSONResponse(status_code=503, content={"status": "error", "database": "unavailable"})
    return {"status": "ok", "database": "connected"}
