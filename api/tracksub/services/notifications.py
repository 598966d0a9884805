"""
Payment reminder dispatcher.

Once a day (Celery beat, 00:00 UTC) and on demand through
POST /api/v1/notifications/run, every user's active subscriptions are matched
against `today + notification_days` and one reminder email is sent per match.

Each (subscription, charge date) pair is claimed in the database before the
email goes out, so overlapping runs never remind twice for the same charge.
A failed send releases the claim and the next run retries it.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import date

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tracksub.core.config import settings
from tracksub.core.database import sync_session_factory
from tracksub.models.subscription import Subscription
from tracksub.models.user import User
from tracksub.services.email import send_email
from tracksub.services.errors import DeliveryFailure
from tracksub.services.recurrence import reminder_target, utc_today
from tracksub.worker import celery_app

logger = logging.getLogger(__name__)

EmailSender = Callable[[str, str, str], bool]


# ── Store helpers ─────────────────────────────────────────────────────────────

def active_subscriptions_due_on(
    db: Session, user_id: uuid.UUID, target: date
) -> list[Subscription]:
    return list(
        db.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status == "active",
                Subscription.next_payment_date == target,
            )
        ).scalars().all()
    )


def _claim(db: Session, sub: Subscription, target: date) -> bool:
    result = db.execute(
        update(Subscription)
        .where(
            Subscription.id == sub.id,
            or_(
                Subscription.last_notified_for.is_(None),
                Subscription.last_notified_for != target,
            ),
        )
        .values(last_notified_for=target)
    )
    db.commit()
    return result.rowcount == 1


def _release(db: Session, sub_id: uuid.UUID, target: date, previous: date | None) -> None:
    db.execute(
        update(Subscription)
        .where(Subscription.id == sub_id, Subscription.last_notified_for == target)
        .values(last_notified_for=previous)
    )
    db.commit()


# ── Message ───────────────────────────────────────────────────────────────────

def compose_reminder(sub: Subscription, lead_days: int) -> tuple[str, str]:
    subject = f"Subscription Reminder: {sub.name}"
    plural = "s" if lead_days != 1 else ""
    body = (
        "Hello!\n\n"
        f'This is a reminder that your subscription for "{sub.name}" is due on '
        f"{sub.next_payment_date.isoformat()}.\n\n"
        f"Amount: {sub.amount:.2f}\n\n"
        f"You requested to be notified {lead_days} day{plural} before payment.\n\n"
        "Please ensure you have sufficient funds in your account.\n\n"
        "Best regards,\nTracksub Team"
    )
    return subject, body


def _deliver(sender: EmailSender, to: str, subject: str, body: str) -> None:
    try:
        sent = sender(to, subject, body)
    except Exception as exc:  # a raising sender counts as a failed send
        raise DeliveryFailure(f"sender raised {exc!r}") from exc
    if not sent:
        raise DeliveryFailure(f"sender reported failure for {to}")


# ── Dispatcher ────────────────────────────────────────────────────────────────

def check_and_send_notifications(
    db: Session,
    today: date | None = None,
    sender: EmailSender | None = None,
) -> int:
    """Send every reminder due `today`. Returns the number of emails delivered."""
    today = today or utc_today()
    sender = sender or send_email
    sent_total = 0

    users = db.execute(select(User)).scalars().all()
    logger.info("Checking payment reminders for %d user(s) on %s", len(users), today)

    for user in users:
        lead_days = user.notification_days or settings.default_notification_days
        target = reminder_target(today, lead_days, settings.default_notification_days)
        user_id, email = user.id, user.email

        try:
            due = active_subscriptions_due_on(db, user_id, target)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not load subscriptions for user %s", user_id)
            continue

        if due:
            logger.info("User %s: %d subscription(s) due on %s", user_id, len(due), target)

        for sub in due:
            sub_id, previous = sub.id, sub.last_notified_for
            subject, body = compose_reminder(sub, lead_days)
            try:
                if not _claim(db, sub, target):
                    logger.info("Reminder for subscription %s on %s already sent", sub_id, target)
                    continue
                _deliver(sender, email, subject, body)
            except DeliveryFailure as exc:
                logger.warning("Reminder for subscription %s not delivered: %s", sub_id, exc)
                try:
                    _release(db, sub_id, target, previous)
                except SQLAlchemyError:
                    db.rollback()
                    logger.exception("Could not release reminder claim for %s", sub_id)
                continue
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Could not claim reminder for subscription %s", sub_id)
                continue
            sent_total += 1

    logger.info("Payment reminders sent: %d", sent_total)
    return sent_total


# ── Celery entry point ────────────────────────────────────────────────────────

@celery_app.task(name="tracksub.services.notifications.send_reminders")
def send_reminders() -> int:
    """Daily reminder run, 00:00 UTC."""
    with sync_session_factory()() as db:
        return check_and_send_notifications(db, utc_today())
