from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tracksub.core.database import get_db
from tracksub.core.deps import get_current_user
from tracksub.models.user import User
from tracksub.schemas.user import NotificationSettings

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/", response_model=NotificationSettings)
async def get_settings(user: User = Depends(get_current_user)):
    return NotificationSettings(notification_days=user.notification_days or 7)


@router.put("/", response_model=NotificationSettings)
async def update_settings(
    payload: NotificationSettings,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user.notification_days = payload.notification_days
    await db.commit()
    return NotificationSettings(notification_days=user.notification_days)
