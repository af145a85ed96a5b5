# ABOUTME: User and wallet tools for LNbits
# ABOUTME: List users, show wallet balances, and summarize allowance usage

from typing import TYPE_CHECKING

from zapfeed.allowance import DEFAULT_WINDOW_DAYS, summarize_allowance
from zapfeed.client import with_auth_retry
from zapfeed.directory import list_users, list_wallets, pick_wallet
from zapfeed.exceptions import ValidationError
from zapfeed.payments import list_payments
from zapfeed.types import WalletRole

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastmcp import FastMCP

    from zapfeed.auth import LNbitsSession

# Wallet keys never leave the server
KEY_FIELDS = {"inkey", "adminkey"}


def register_wallet_tools(mcp: "FastMCP", get_client: "Callable") -> None:
    """Register user and wallet tools with the MCP server."""

    @mcp.tool
    @with_auth_retry
    async def list_team_users(aad_object_id: str | None = None) -> list[dict]:
        """
        List LNbits users.

        Args:
            aad_object_id: Only the user linked to this Entra ID object

        Returns:
            Users with id, display name, email and type
        """
        session: LNbitsSession = await get_client()
        filter_by_extra = {"aadObjectId": aad_object_id} if aad_object_id else None
        users = await list_users(session, filter_by_extra)
        return [user.model_dump() for user in users]

    @mcp.tool
    @with_auth_retry
    async def get_user_wallets(user_id: str) -> list[dict]:
        """
        List a user's wallets with balances and roles.

        Args:
            user_id: LNbits user ID

        Returns:
            Non-deleted wallets with balance in sats
        """
        session: LNbitsSession = await get_client()
        wallets = await list_wallets(session, user_id)

        return [
            {
                **wallet.model_dump(exclude=KEY_FIELDS),
                "balance_sats": wallet.balance_sats,
                "roles": sorted(role.value for role in wallet.roles),
            }
            for wallet in wallets
        ]

    @mcp.tool
    @with_auth_retry
    async def get_allowance_summary(user_id: str, days: int = DEFAULT_WINDOW_DAYS) -> dict:
        """
        Summarize a user's allowance: balance left, amount sent, and reset dates.

        Args:
            user_id: LNbits user ID
            days: Window for counting sent zaps

        Returns:
            Allowance summary
        """
        session: LNbitsSession = await get_client()

        users = await list_users(session)
        user = next((u for u in users if u.id == user_id), None)
        if user is None:
            raise ValidationError(f"User {user_id} not found")

        wallet = pick_wallet(await list_wallets(session, user_id), WalletRole.ALLOWANCE)
        if wallet is None:
            raise ValidationError(f"Allowance wallet not found for user {user_id}")

        payments = await list_payments(session, wallet.inkey, wallet_id=wallet.id)
        summary = summarize_allowance(
            user, wallet, payments, session.settings.allowance_sats, window_days=days
        )
        return summary.model_dump(mode="json")
