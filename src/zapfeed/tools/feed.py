# ABOUTME: Zap feed tools for LNbits
# ABOUTME: Reconciled team-wide zap feed and per-wallet transaction logs

import time
from typing import TYPE_CHECKING

from zapfeed.client import with_auth_retry
from zapfeed.directory import load_directory, pick_wallet
from zapfeed.exceptions import ValidationError
from zapfeed.feed import SortField, SortOrder, assemble_feed, paginate
from zapfeed.payments import fetch_wallet_payments, list_payments
from zapfeed.reconciliation import FEED_ROLES, attribute_wallet_log
from zapfeed.types import WalletRole

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastmcp import FastMCP

    from zapfeed.auth import LNbitsSession


def register_feed_tools(mcp: "FastMCP", get_client: "Callable") -> None:
    """Register zap feed tools with the MCP server."""

    @mcp.tool
    @with_auth_retry
    async def get_zap_feed(
        since: int | None = None,
        sort_field: SortField = "time",
        sort_order: SortOrder = "desc",
        page: int = 1,
        page_size: int | None = None,
    ) -> dict:
        """
        Get the reconciled feed of zaps between teammates.

        Each zap is reported once with its sender and receiver. Either side
        may be null when LNbits gives no way to tell who it was; in that case
        counterparty_hint may carry a raw name for display.

        Args:
            since: Only zaps at or after this Unix timestamp (seconds)
            sort_field: One of time, from, to, amount
            sort_order: asc or desc
            page: Page number (1-indexed)
            page_size: Results per page (default from ZAPFEED_PAGE_SIZE)

        Returns:
            Dict with the page of zaps and pagination info
        """
        session: LNbitsSession = await get_client()
        settings = session.settings

        transfers = await assemble_feed(session, since, max_records=settings.max_records)
        result = paginate(
            transfers,
            page=page,
            page_size=page_size or settings.page_size,
            sort_field=sort_field,
            sort_order=sort_order,
        )
        return result.model_dump()

    @mcp.tool
    @with_auth_retry
    async def get_wallet_transactions(
        user_id: str,
        wallet_role: str = "allowance",
        days: int = 30,
    ) -> list[dict]:
        """
        Get the transaction log of one user's allowance or private wallet.

        Every payment is shown with the user on its own side and the other
        party inferred from paired records, payment hints, or the memo.

        Args:
            user_id: LNbits user ID
            wallet_role: allowance or private
            days: How many days back to look

        Returns:
            List of transactions, newest first
        """
        try:
            role = WalletRole(wallet_role.lower())
        except ValueError:
            raise ValidationError(f"Unknown wallet role {wallet_role!r}")
        if role not in FEED_ROLES:
            raise ValidationError("wallet_role must be allowance or private")

        session: LNbitsSession = await get_client()
        since = int(time.time()) - days * 24 * 60 * 60

        directory = await load_directory(session)
        owner, wallets = next(
            ((user, wallets) for user, wallets in directory if user.id == user_id),
            (None, []),
        )
        if owner is None:
            raise ValidationError(f"User {user_id} not found")

        wallet = pick_wallet(list(wallets), role)
        if wallet is None:
            raise ValidationError(f"{role.value.capitalize()} wallet not found for user {user_id}")

        wallet_payments = await list_payments(session, wallet.inkey, since, wallet_id=wallet.id)

        feed_wallets = [
            w for _, ws in directory for w in ws if w.roles & FEED_ROLES
        ]
        all_payments = await fetch_wallet_payments(session, feed_wallets, since)

        log = attribute_wallet_log(owner, wallet_payments, all_payments, directory)
        return [entry.model_dump() for entry in log]
