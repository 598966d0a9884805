"""
Email delivery client.

Uses the MailerSend HTTP API when an API key is configured and plain SMTP
otherwise.  All failures are logged and swallowed: callers only ever see a
boolean, so one bad address never breaks a reminder run.
"""

import html
import logging
import smtplib
from email.message import EmailMessage

import requests

from tracksub.core.config import settings

logger = logging.getLogger(__name__)


def _html_body(text: str) -> str:
    return "<p>" + html.escape(text).replace("\n", "<br>") + "</p>"


def _send_mailersend(to: str, subject: str, body: str) -> bool:
    resp = requests.post(
        settings.mailersend_url,
        json={
            "from": {"email": settings.email_from, "name": settings.email_from_name},
            "to": [{"email": to}],
            "subject": subject,
            "text": body,
            "html": _html_body(body),
        },
        headers={"Authorization": f"Bearer {settings.mailersend_api_key}"},
        timeout=settings.email_timeout_seconds,
    )
    if resp.status_code in (200, 202):
        return True
    logger.warning("MailerSend returned %d: %s", resp.status_code, resp.text[:200])
    return False


def _send_smtp(to: str, subject: str, body: str) -> bool:
    msg = EmailMessage()
    msg["From"] = f"{settings.email_from_name} <{settings.email_from}>"
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)
    msg.add_alternative(_html_body(body), subtype="html")

    with smtplib.SMTP(
        settings.smtp_host, settings.smtp_port, timeout=settings.email_timeout_seconds
    ) as server:
        server.starttls()
        if settings.smtp_user:
            server.login(settings.smtp_user, settings.smtp_password)
        server.send_message(msg)
    return True


def send_email(to: str, subject: str, body: str) -> bool:
    """
    Send a plain-text email (with an HTML copy) to `to`.

    Returns True on success, False on any error (logs the reason).
    """
    if not to or not subject:
        return False
    try:
        if settings.mailersend_api_key:
            sent = _send_mailersend(to, subject, body)
        else:
            sent = _send_smtp(to, subject, body)
    except (requests.RequestException, smtplib.SMTPException, OSError) as exc:
        logger.warning("Email send failed (to=%s): %s", to, exc)
        return False
    if sent:
        logger.info("Email sent to %s: %s", to, subject)
    return sent
