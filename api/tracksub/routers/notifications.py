from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tracksub.core.database import get_db
from tracksub.core.deps import get_current_user
from tracksub.models.user import User
from tracksub.services.notifications import check_and_send_notifications
from tracksub.services.recurrence import utc_today

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/run")
async def run_notification_check(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Run today's reminder check now. Same code path as the daily task."""
    today = utc_today()
    count = await db.run_sync(lambda session: check_and_send_notifications(session, today))
    return {"message": "Notification check completed", "emails_sent": count}
