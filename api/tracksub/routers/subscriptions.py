import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracksub.core.database import get_db
from tracksub.core.deps import get_current_user
from tracksub.models.subscription import Subscription
from tracksub.models.user import User
from tracksub.schemas.subscription import (
    SpendingSummary,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionUpdate,
)
from tracksub.services.recurrence import roll_forward, utc_today
from tracksub.services.spending import spending_summary

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


async def _get_owned(db: AsyncSession, subscription_id: uuid.UUID, user: User) -> Subscription:
    result = await db.execute(
        select(Subscription).where(
            Subscription.id == subscription_id,
            Subscription.user_id == user.id,
        )
    )
    sub = result.scalar_one_or_none()
    if not sub:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return sub


@router.get("/", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user.id)
        .order_by(Subscription.next_payment_date, Subscription.name)
    )
    return result.scalars().all()


@router.get("/summary", response_model=SpendingSummary)
async def get_summary(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Monthly and yearly cost of the active subscriptions."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == user.id,
            Subscription.status == "active",
        )
    )
    return spending_summary(result.scalars().all())


@router.post("/", response_model=SubscriptionResponse, status_code=201)
async def create_subscription(
    payload: SubscriptionCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = payload.model_dump()
    if data["next_payment_date"] is None:
        data["next_payment_date"] = roll_forward(
            payload.start_date, payload.billing_cycle, utc_today()
        )

    sub = Subscription(user_id=user.id, **data)
    db.add(sub)
    await db.commit()
    await db.refresh(sub)
    return sub


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _get_owned(db, subscription_id, user)


@router.put("/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: uuid.UUID,
    payload: SubscriptionUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    sub = await _get_owned(db, subscription_id, user)

    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(sub, field, value)

    await db.commit()
    await db.refresh(sub)
    return sub


@router.delete("/{subscription_id}", status_code=204)
async def delete_subscription(
    subscription_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    sub = await _get_owned(db, subscription_id, user)
    await db.delete(sub)
    await db.commit()
