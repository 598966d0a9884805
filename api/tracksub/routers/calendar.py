from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracksub.core.database import get_db
from tracksub.core.deps import get_current_user
from tracksub.models.subscription import Subscription
from tracksub.models.user import User
from tracksub.services.bank_sync import require_pro
from tracksub.services.calendar_feed import build_ics, calendar_url, new_calendar_token

router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.get("/token")
async def get_calendar_token(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Persistent iCalendar feed link for the current user (Pro only)."""
    require_pro(user, "Calendar sync")
    if not user.calendar_token:
        user.calendar_token = new_calendar_token()
        await db.commit()
    return {"ical_url": calendar_url(user.calendar_token), "token": user.calendar_token}


@router.get("/ics/{token}")
async def get_calendar_feed(token: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.calendar_token == token))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="Calendar not found")
    if not user.is_pro:
        raise HTTPException(status_code=403, detail="Calendar requires active Pro plan")

    subs = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user.id, Subscription.status == "active")
        .order_by(Subscription.next_payment_date)
    )
    return Response(
        content=build_ics(user.id, subs.scalars().all()),
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="tracksub.ics"'},
    )
