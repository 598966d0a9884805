"""
Bank transaction feed.

`FinancialFeed` is the narrow interface the reconciliation importer talks to;
`PlaidFinancialFeed` implements it on top of the Plaid API.  Every provider
call carries a timeout and every provider failure surfaces as
`ExternalFeedError`.
"""
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Protocol

from cryptography.fernet import InvalidToken

from tracksub.core.config import settings
from tracksub.core.security import decrypt_value
from tracksub.services.errors import AccountNotLinked, ExternalFeedError

logger = logging.getLogger(__name__)

# Plaid serves at most 24 months of history
MAX_HISTORY_DAYS = 730


@dataclass(frozen=True)
class FeedTransaction:
    id: str
    account: str
    amount: Decimal  # positive = money out
    currency: str
    description: str | None
    status: str  # posted | pending
    transacted_at: datetime  # tz-aware UTC


class FinancialFeed(Protocol):
    def refresh_account(self, account_id: str) -> None:
        ...

    def list_transactions(
        self, account_id: str, since: datetime | None, page_size: int
    ) -> Iterator[FeedTransaction]:
        ...


# ─── Plaid ───────────────────────────────────────────────────────────────────

def _build_plaid_client():
    if not settings.plaid_client_id or not settings.plaid_secret:
        raise ExternalFeedError("Plaid is not configured")

    import plaid
    from plaid.api import plaid_api

    configuration = plaid.Configuration(
        host=getattr(plaid.Environment, settings.plaid_env.capitalize()),
        api_key={
            "clientId": settings.plaid_client_id,
            "secret": settings.plaid_secret,
        },
    )
    return plaid_api.PlaidApi(plaid.ApiClient(configuration))


def _to_feed_transaction(pt: Any) -> FeedTransaction:
    moment = getattr(pt, "datetime", None)
    if moment is None:
        d = pt.date
        moment = datetime.combine(d, time.min, tzinfo=timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)

    return FeedTransaction(
        id=pt.transaction_id,
        account=pt.account_id,
        amount=Decimal(str(pt.amount)).quantize(Decimal("0.01")),
        currency=(pt.iso_currency_code or "USD").upper(),
        description=pt.merchant_name or pt.name,
        status="pending" if pt.pending else "posted",
        transacted_at=moment.astimezone(timezone.utc),
    )


class PlaidFinancialFeed:
    """Plaid `/transactions/get` with offset pagination for one linked item."""

    def __init__(self, access_token: str, client=None, timeout: float | None = None):
        self._access_token = access_token
        self._client = client
        self._timeout = timeout or settings.financial_feed_timeout_seconds

    @property
    def client(self):
        if self._client is None:
            self._client = _build_plaid_client()
        return self._client

    def refresh_account(self, account_id: str) -> None:
        from plaid.model.transactions_refresh_request import TransactionsRefreshRequest

        try:
            self.client.transactions_refresh(
                TransactionsRefreshRequest(access_token=self._access_token),
                _request_timeout=self._timeout,
            )
        except ExternalFeedError:
            raise
        except Exception as exc:
            logger.warning("Plaid refresh failed for account %s: %s", account_id, exc)
            raise ExternalFeedError(f"Bank refresh failed: {exc}") from exc

    def list_transactions(
        self, account_id: str, since: datetime | None, page_size: int
    ) -> Iterator[FeedTransaction]:
        from plaid.model.transactions_get_request import TransactionsGetRequest
        from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions

        end_date = datetime.now(timezone.utc).date()
        if since is not None:
            # Plaid filters by whole days; the importer drops ids it already has
            start_date = since.astimezone(timezone.utc).date()
        else:
            start_date = end_date - timedelta(days=MAX_HISTORY_DAYS)

        offset = 0
        while True:
            request = TransactionsGetRequest(
                access_token=self._access_token,
                start_date=start_date,
                end_date=end_date,
                options=TransactionsGetRequestOptions(
                    account_ids=[account_id],
                    count=page_size,
                    offset=offset,
                ),
            )
            try:
                resp = self.client.transactions_get(request, _request_timeout=self._timeout)
            except ExternalFeedError:
                raise
            except Exception as exc:
                logger.warning("Plaid transactions page at offset %d failed: %s", offset, exc)
                raise ExternalFeedError(f"Bank transaction fetch failed: {exc}") from exc

            page = resp.transactions or []
            for pt in page:
                tx = _to_feed_transaction(pt)
                if since is None or tx.transacted_at >= since:
                    yield tx

            offset += len(page)
            if not page or offset >= resp.total_transactions:
                return


# ─── Linking ─────────────────────────────────────────────────────────────────

def create_link_token(client_user_id: str, client=None) -> str:
    from plaid.model.country_code import CountryCode
    from plaid.model.link_token_create_request import LinkTokenCreateRequest
    from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
    from plaid.model.products import Products

    client = client or _build_plaid_client()
    request = LinkTokenCreateRequest(
        user=LinkTokenCreateRequestUser(client_user_id=client_user_id),
        client_name="Tracksub",
        products=[Products("transactions")],
        country_codes=[CountryCode("US")],
        language="en",
    )
    try:
        response = client.link_token_create(
            request, _request_timeout=settings.financial_feed_timeout_seconds
        )
    except Exception as exc:
        raise ExternalFeedError(f"Could not start bank linking: {exc}") from exc
    return response.link_token


def exchange_public_token(public_token: str, client=None) -> str:
    """Swap a Link public token for a long-lived access token."""
    from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest

    client = client or _build_plaid_client()
    try:
        response = client.item_public_token_exchange(
            ItemPublicTokenExchangeRequest(public_token=public_token),
            _request_timeout=settings.financial_feed_timeout_seconds,
        )
    except Exception as exc:
        raise ExternalFeedError(f"Could not link bank account: {exc}") from exc
    return response.access_token


def feed_for_user(user) -> PlaidFinancialFeed:
    if not user.financial_account_id or not user.financial_access_token:
        raise AccountNotLinked("No financial account linked to this user.")
    try:
        access_token = decrypt_value(user.financial_access_token)
    except InvalidToken:
        raise AccountNotLinked("Stored bank credentials are unreadable; link the account again.") from None
    return PlaidFinancialFeed(access_token)
