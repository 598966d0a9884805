"""
Bank reconciliation importer: idempotent and quota-limited.

Flow for a Pro user with a linked account:

  sync_financial_account   reserve a monthly sync slot, refresh the account,
                           store every transaction id not seen before
  find_candidates          propose subscriptions from unlinked transactions
  import_candidates        create one subscription per reviewed candidate,
                           at most once per transaction id

The sync slot is taken with a single conditional UPDATE so concurrent syncs
can never exceed the monthly limit.  The transaction id uniqueness constraint
is what keeps repeated or overlapping syncs from duplicating rows.
"""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tracksub.core.config import settings
from tracksub.core.security import encrypt_value
from tracksub.models.financial import ImportedTransaction
from tracksub.models.subscription import Subscription
from tracksub.models.user import User
from tracksub.schemas.financial import Candidate, CandidateImportItem
from tracksub.services.candidate_detector import (
    CandidateStrategy,
    DescriptionGroupingStrategy,
    normalize_name,
)
from tracksub.services.errors import (
    AccountNotLinked,
    ExternalFeedError,
    PlanRequired,
    SyncLimitExceeded,
)
from tracksub.services.financial_feed import FeedTransaction, FinancialFeed
from tracksub.services.recurrence import month_key, utc_today

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    new_transactions: int
    syncs_remaining: int
    last_sync_at: datetime | None


@dataclass
class ImportResult:
    created: list[uuid.UUID] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _as_utc(moment: datetime | None) -> datetime | None:
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def require_pro(user: User, action: str = "Bank sync") -> None:
    if not user.is_pro:
        raise PlanRequired(f"{action} is available for Pro users only.")


def syncs_remaining(user: User, now: datetime | None = None, limit: int | None = None) -> int:
    limit = settings.financial_sync_monthly_limit if limit is None else limit
    if user.financial_sync_month != month_key(now or datetime.now(timezone.utc)):
        return limit
    return max(0, limit - (user.financial_sync_count or 0))


# ─── Quota ───────────────────────────────────────────────────────────────────

def reserve_sync_slot(db: Session, user_id: uuid.UUID, month: str, limit: int) -> bool:
    """
    Take one sync slot for `month` in a single statement.

    A stale month resets the counter to 1; the current month increments it
    only while it is below `limit`.  Returns False when the quota is used up,
    in which case nothing is written.
    """
    result = db.execute(
        update(User)
        .where(
            User.id == user_id,
            or_(
                User.financial_sync_month.is_(None),
                User.financial_sync_month != month,
                User.financial_sync_count < limit,
            ),
        )
        .values(
            financial_sync_count=case(
                (User.financial_sync_month == month, User.financial_sync_count + 1),
                else_=1,
            ),
            financial_sync_month=month,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_sync_slot(db: Session, user_id: uuid.UUID, month: str) -> None:
    """Give back a slot taken by a sync that never reached the bank."""
    db.execute(
        update(User)
        .where(
            User.id == user_id,
            User.financial_sync_month == month,
            User.financial_sync_count > 0,
        )
        .values(financial_sync_count=User.financial_sync_count - 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()


# ─── Linking ─────────────────────────────────────────────────────────────────

def link_account(db: Session, user: User, account_id: str, access_token: str) -> None:
    require_pro(user, "Bank account linking")
    if user.financial_account_id != account_id:
        # New account: start its history from scratch
        user.financial_last_sync_at = None
    user.financial_account_id = account_id
    user.financial_access_token = encrypt_value(access_token)
    db.commit()
    logger.info("Linked bank account %s for user %s", account_id, user.id)


# ─── Sync ────────────────────────────────────────────────────────────────────

def _store_transaction(db: Session, user_id: uuid.UUID, tx: FeedTransaction) -> bool:
    """Insert `tx` unless its id is already stored. Returns True if inserted."""
    existing = db.execute(
        select(ImportedTransaction.id).where(ImportedTransaction.transaction_id == tx.id)
    ).first()
    if existing:
        return False

    try:
        with db.begin_nested():
            db.add(ImportedTransaction(
                user_id=user_id,
                account_id=tx.account,
                transaction_id=tx.id,
                amount=tx.amount,
                currency=tx.currency,
                description=tx.description,
                status=tx.status,
                transacted_at=tx.transacted_at,
            ))
    except IntegrityError:
        # Stored by a concurrent sync between the check and the insert
        return False
    return True


def sync_financial_account(
    db: Session,
    user: User,
    feed: FinancialFeed,
    now: datetime | None = None,
    page_size: int | None = None,
) -> SyncResult:
    """Pull new bank transactions for `user`. Consumes one monthly sync slot."""
    require_pro(user)
    if not user.financial_account_id:
        raise AccountNotLinked("No financial account linked to this user.")

    now = now or datetime.now(timezone.utc)
    month = month_key(now)
    limit = settings.financial_sync_monthly_limit
    user_id = user.id

    if not reserve_sync_slot(db, user_id, month, limit):
        logger.info("Sync limit reached for user %s in %s", user_id, month)
        raise SyncLimitExceeded(limit)
    db.refresh(user)

    account_id = user.financial_account_id
    since = _as_utc(user.financial_last_sync_at)

    try:
        feed.refresh_account(account_id)
    except ExternalFeedError:
        release_sync_slot(db, user_id, month)
        raise

    new_count = 0
    latest = since
    failure: ExternalFeedError | None = None
    try:
        for tx in feed.list_transactions(account_id, since, page_size or settings.financial_page_size):
            try:
                inserted = _store_transaction(db, user_id, tx)
            except SQLAlchemyError:
                logger.exception("Could not store bank transaction %s", tx.id)
                continue
            if not inserted:
                continue
            new_count += 1
            moment = _as_utc(tx.transacted_at)
            if latest is None or moment > latest:
                latest = moment
    except ExternalFeedError as exc:
        failure = exc
        logger.warning(
            "Bank feed failed for user %s after %d new transaction(s): %s", user_id, new_count, exc
        )

    if latest is not None and latest != since:
        user.financial_last_sync_at = latest
    db.commit()

    if failure is not None:
        raise ExternalFeedError(str(failure), processed=new_count) from failure

    db.refresh(user)
    logger.info("Bank sync for user %s stored %d new transaction(s)", user_id, new_count)
    return SyncResult(
        new_transactions=new_count,
        syncs_remaining=syncs_remaining(user, now, limit),
        last_sync_at=_as_utc(user.financial_last_sync_at),
    )


# ─── Candidates ──────────────────────────────────────────────────────────────

def find_candidates(
    db: Session,
    user: User,
    strategy: CandidateStrategy | None = None,
    today: date | None = None,
) -> list[Candidate]:
    """Proposed subscriptions from recent, not-yet-imported transactions."""
    require_pro(user)
    today = today or utc_today()
    strategy = strategy or DescriptionGroupingStrategy()
    cutoff = datetime.combine(
        today - timedelta(days=settings.candidate_lookback_days),
        datetime.min.time(),
        tzinfo=timezone.utc,
    )

    transactions = db.execute(
        select(ImportedTransaction)
        .where(
            ImportedTransaction.user_id == user.id,
            ImportedTransaction.linked_subscription_id.is_(None),
            ImportedTransaction.transacted_at >= cutoff,
        )
        .order_by(ImportedTransaction.transacted_at)
    ).scalars().all()

    tracked = {
        normalize_name(name)
        for name in db.execute(
            select(Subscription.name).where(
                Subscription.user_id == user.id,
                Subscription.status != "cancelled",
            )
        ).scalars().all()
    }
    # Merchants with an imported charge are tracked, whatever the subscription was renamed to
    tracked.update(
        normalize_name(description)
        for description in db.execute(
            select(ImportedTransaction.description).where(
                ImportedTransaction.user_id == user.id,
                ImportedTransaction.linked_subscription_id.is_not(None),
                ImportedTransaction.description.is_not(None),
            )
        ).scalars().all()
    )

    return [
        c for c in strategy.propose(transactions, today)
        if normalize_name(c.suggested_name) not in tracked
        and normalize_name(c.description or "") not in tracked
    ]


def import_candidates(
    db: Session, user: User, items: Sequence[CandidateImportItem]
) -> ImportResult:
    """Create one subscription per reviewed candidate, once per transaction id."""
    require_pro(user)
    result = ImportResult()

    for item in items:
        txn = db.execute(
            select(ImportedTransaction).where(
                ImportedTransaction.transaction_id == item.transaction_id,
                ImportedTransaction.user_id == user.id,
            )
        ).scalar_one_or_none()
        if txn is None or txn.linked_subscription_id is not None:
            result.skipped.append(item.transaction_id)
            continue

        savepoint = db.begin_nested()
        try:
            sub = Subscription(
                user_id=user.id,
                name=item.name,
                billing_cycle=item.billing_cycle,
                start_date=item.next_payment_date,
                next_payment_date=item.next_payment_date,
                amount=item.amount,
                category=item.category or "Other",
                status="active",
            )
            db.add(sub)
            db.flush()

            linked = db.execute(
                update(ImportedTransaction)
                .where(
                    ImportedTransaction.id == txn.id,
                    ImportedTransaction.linked_subscription_id.is_(None),
                )
                .values(linked_subscription_id=sub.id)
                .execution_options(synchronize_session=False)
            ).rowcount
            if linked != 1:
                savepoint.rollback()
                result.skipped.append(item.transaction_id)
                continue

            siblings = [tid for tid in item.transaction_ids if tid != item.transaction_id]
            if siblings:
                db.execute(
                    update(ImportedTransaction)
                    .where(
                        ImportedTransaction.user_id == user.id,
                        ImportedTransaction.transaction_id.in_(siblings),
                        ImportedTransaction.linked_subscription_id.is_(None),
                    )
                    .values(linked_subscription_id=sub.id)
                    .execution_options(synchronize_session=False)
                )
            savepoint.commit()
        except SQLAlchemyError:
            savepoint.rollback()
            logger.exception("Could not import transaction %s", item.transaction_id)
            result.skipped.append(item.transaction_id)
            continue

        result.created.append(sub.id)

    db.commit()
    logger.info(
        "Imported %d subscription(s) for user %s, skipped %d",
        len(result.created), user.id, len(result.skipped),
    )
    return result
