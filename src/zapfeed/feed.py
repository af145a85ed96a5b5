# ABOUTME: Feed assembly and presentation for reconciled zaps
# ABOUTME: Fetches directory and payments, reconciles, sorts, paginates, and drops superseded loads

import logging
import math
from typing import TYPE_CHECKING, Literal

from zapfeed.directory import load_directory
from zapfeed.exceptions import ValidationError
from zapfeed.payments import fetch_wallet_payments
from zapfeed.reconciliation import FEED_ROLES, MAX_RECORDS, reconcile
from zapfeed.types import FeedPage, ReconciledTransfer

if TYPE_CHECKING:
    from zapfeed.auth import LNbitsSession

logger = logging.getLogger(__name__)

SortField = Literal["time", "from", "to", "amount"]
SortOrder = Literal["asc", "desc"]

SORT_FIELDS = ("time", "from", "to", "amount")
SORT_ORDERS = ("asc", "desc")
PAGE_SIZE = 10


def _sort_value(transfer: ReconciledTransfer, field: str) -> int | str:
    if field == "time":
        return transfer.transaction.epoch
    if field == "from":
        return transfer.from_user.display_name if transfer.from_user else ""
    if field == "to":
        return transfer.to_user.display_name if transfer.to_user else ""
    return transfer.transaction.amount


def sort_transfers(
    transfers: list[ReconciledTransfer],
    field: SortField = "time",
    order: SortOrder = "desc",
) -> list[ReconciledTransfer]:
    """
    Stable sort by one column.

    ``from``/``to`` compare display names, with unresolved users as the
    empty string.
    """
    if field not in SORT_FIELDS:
        raise ValidationError(f"Unknown sort field {field!r}; expected one of {SORT_FIELDS}")
    if order not in SORT_ORDERS:
        raise ValidationError(f"Unknown sort order {order!r}; expected 'asc' or 'desc'")

    return sorted(transfers, key=lambda t: _sort_value(t, field), reverse=order == "desc")


def paginate(
    transfers: list[ReconciledTransfer],
    page: int = 1,
    page_size: int = PAGE_SIZE,
    sort_field: SortField = "time",
    sort_order: SortOrder = "desc",
) -> FeedPage:
    """Sort and slice one page; ``page`` is clamped into range."""
    if page_size <= 0:
        raise ValidationError("page_size must be positive")

    ordered = sort_transfers(transfers, sort_field, sort_order)
    total_pages = max(1, math.ceil(len(ordered) / page_size))
    page = min(max(page, 1), total_pages)
    start = (page - 1) * page_size

    return FeedPage(
        items=ordered[start:start + page_size],
        page=page,
        page_size=page_size,
        total_items=len(ordered),
        total_pages=total_pages,
        sort_field=sort_field,
        sort_order=sort_order,
    )


async def assemble_feed(
    session: "LNbitsSession",
    since: int | None = None,
    max_records: int = MAX_RECORDS,
    parallel: bool = False,
) -> list[ReconciledTransfer]:
    """
    Fetch everything needed and reconcile it into the zap feed.

    The full directory is loaded before any payment is matched. Users that
    cannot be listed abort the feed; one user's wallets or one wallet's
    payments failing only drops that resource.
    """
    directory = await load_directory(session)

    feed_wallets = [
        wallet
        for _, wallets in directory
        for wallet in wallets
        if wallet.roles & FEED_ROLES
    ]
    logger.info(f"Fetching payments for {len(feed_wallets)} allowance/private wallets")

    payments = await fetch_wallet_payments(session, feed_wallets, since, parallel=parallel)
    return reconcile(directory, payments, since=since, max_records=max_records)


class FeedTracker:
    """
    Keeps the latest feed for one consumer, last request wins.

    A load started before a newer one finishes is discarded: it returns None
    and never replaces ``latest``. Meant for long-lived callers that keep
    state between requests; the stateless MCP tools call ``assemble_feed``.
    """

    def __init__(self, session: "LNbitsSession", max_records: int = MAX_RECORDS,
                 parallel: bool = False) -> None:
        self._session = session
        self._max_records = max_records
        self._parallel = parallel
        self._generation = 0
        self.latest: list[ReconciledTransfer] = []
        self.since: int | None = None

    async def load(self, since: int | None = None) -> list[ReconciledTransfer] | None:
        self._generation += 1
        generation = self._generation

        transfers = await assemble_feed(
            self._session, since, max_records=self._max_records, parallel=self._parallel
        )

        if generation != self._generation:
            logger.debug(f"Discarding superseded feed load (since={since})")
            return None

        self.latest = transfers
        self.since = since
        return transfers
