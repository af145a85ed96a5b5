# ABOUTME: Transfer tools for LNbits
# ABOUTME: Send a zap from one user's allowance wallet to another user's private wallet

import logging
from typing import TYPE_CHECKING

from zapfeed.client import with_auth_retry
from zapfeed.directory import find_user_wallet
from zapfeed.exceptions import ValidationError
from zapfeed.payments import send_transfer
from zapfeed.types import WalletRole

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastmcp import FastMCP

    from zapfeed.auth import LNbitsSession

logger = logging.getLogger(__name__)

DEFAULT_MEMO = "Zap payment"


def register_transfer_tools(mcp: "FastMCP", get_client: "Callable") -> None:
    """Register transfer tools with the MCP server."""

    @mcp.tool
    async def send_zap(
        from_user_id: str,
        to_user_id: str,
        amount_sats: int,
        memo: str = DEFAULT_MEMO,
    ) -> dict:
        """
        Send a zap from one teammate's allowance to another's private wallet.

        This creates an invoice on the recipient's wallet and then pays it.
        The two steps are not atomic; if paying fails, the error names the
        unpaid invoice and nothing is rolled back.

        Args:
            from_user_id: Sender's LNbits user ID
            to_user_id: Recipient's LNbits user ID
            amount_sats: Amount in sats
            memo: Message shown with the zap

        Returns:
            Payment hash and invoice of the completed zap
        """
        if from_user_id == to_user_id:
            raise ValidationError("Cannot zap yourself")
        if amount_sats <= 0:
            raise ValidationError("Amount must be a positive number of sats")

        # Lookups retry on auth failure; the payment itself never does
        from_wallet, to_wallet = await _resolve_wallets(from_user_id, to_user_id)

        if amount_sats > from_wallet.balance_sats:
            raise ValidationError(
                f"Insufficient balance. {from_wallet.balance_sats} sats available."
            )

        session: LNbitsSession = await get_client()
        result = await send_transfer(session, from_wallet, to_wallet, amount_sats, memo)
        return result.model_dump()

    @with_auth_retry
    async def _resolve_wallets(from_user_id: str, to_user_id: str):
        session: LNbitsSession = await get_client()

        from_wallet = await find_user_wallet(session, from_user_id, WalletRole.ALLOWANCE)
        if from_wallet is None:
            raise ValidationError(f"Allowance wallet not found for user {from_user_id}")

        to_wallet = await find_user_wallet(session, to_user_id, WalletRole.PRIVATE)
        if to_wallet is None:
            raise ValidationError(f"Private wallet not found for user {to_user_id}")

        return from_wallet, to_wallet
