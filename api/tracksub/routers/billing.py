from collections.abc import Callable

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tracksub.core.database import get_db
from tracksub.core.deps import get_current_user
from tracksub.core.limiter import limiter
from tracksub.models.user import User
from tracksub.schemas.financial import (
    AccountAttach,
    BillingState,
    CandidateImportRequest,
    CandidateList,
    ImportResponse,
    LinkTokenResponse,
    SyncResponse,
)
from tracksub.services import bank_sync
from tracksub.services.financial_feed import (
    FinancialFeed,
    create_link_token,
    exchange_public_token,
    feed_for_user,
)

router = APIRouter(prefix="/billing", tags=["billing"])


def get_feed_factory() -> Callable[[User], FinancialFeed]:
    return feed_for_user


@router.get("/me", response_model=BillingState)
async def billing_state(user: User = Depends(get_current_user)):
    return user


@router.post("/financial-connections/link-token", response_model=LinkTokenResponse)
async def financial_link_token(user: User = Depends(get_current_user)):
    bank_sync.require_pro(user, "Bank account linking")
    return LinkTokenResponse(link_token=create_link_token(str(user.id)))


@router.post("/financial-connections/attach")
async def attach_financial_account(
    payload: AccountAttach,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    bank_sync.require_pro(user, "Bank account linking")
    access_token = exchange_public_token(payload.public_token)
    await db.run_sync(
        lambda session: bank_sync.link_account(session, user, payload.account_id, access_token)
    )
    return {"message": "Financial account saved", "financial_account_id": payload.account_id}


@router.post("/financial-connections/sync", response_model=SyncResponse)
@limiter.limit("10/hour")
async def sync_financial_account(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed_factory: Callable[[User], FinancialFeed] = Depends(get_feed_factory),
):
    bank_sync.require_pro(user)
    feed = feed_factory(user)
    result = await db.run_sync(
        lambda session: bank_sync.sync_financial_account(session, user, feed)
    )
    return SyncResponse(
        new_transactions=result.new_transactions,
        syncs_remaining=result.syncs_remaining,
        last_sync_at=result.last_sync_at,
    )


@router.get("/financial-connections/candidates", response_model=CandidateList)
async def list_candidates(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Subscriptions guessed from bank transactions. Nothing is saved."""
    candidates = await db.run_sync(lambda session: bank_sync.find_candidates(session, user))
    return CandidateList(candidates=candidates)


@router.post("/financial-connections/import", response_model=ImportResponse, status_code=201)
async def import_candidates(
    payload: CandidateImportRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.run_sync(
        lambda session: bank_sync.import_candidates(session, user, payload.subscriptions)
    )
    return ImportResponse(created=result.created, skipped=result.skipped)
