# ABOUTME: Payment fetcher and transfer sender for LNbits wallets
# ABOUTME: Reads raw payments per wallet key and sends zaps as invoice-then-pay

import asyncio
import logging
from typing import TYPE_CHECKING

from zapfeed.exceptions import FetchError, TransferError, ValidationError
from zapfeed.types import RawPayment, TransferResult, Wallet, msat_to_sats

if TYPE_CHECKING:
    from collections.abc import Iterable

    from zapfeed.auth import LNbitsSession

logger = logging.getLogger(__name__)

PAYMENTS_PATH = "/api/v1/payments"
WALLET_PATH = "/api/v1/wallet"

# LNbits returns at most this many records; older ones are not paged in
PAGE_LIMIT = 100

ZAP_TAG = "zap"


def _redact(key: str) -> str:
    return f"{key[:4]}..." if key else "<none>"


def filter_since(payments: list[RawPayment], since: int | None) -> list[RawPayment]:
    """Keep payments at or after ``since``; unparseable times are kept."""
    if not since:
        return payments
    return [p for p in payments if not p.time_valid or p.epoch >= since]


async def list_payments(
    session: "LNbitsSession",
    wallet_key: str,
    since: int | None = None,
    limit: int = PAGE_LIMIT,
    wallet_id: str | None = None,
) -> list[RawPayment]:
    """
    List payments visible to one wallet key.

    LNbits has no server-side time filter on this endpoint, so the most
    recent ``limit`` records are fetched and ``since`` is applied here.

    Args:
        session: LNbits session
        wallet_key: The wallet's inkey (or adminkey)
        since: Epoch seconds lower bound, advisory
        limit: Page size requested from LNbits
        wallet_id: Attached to errors for diagnostics

    Raises:
        FetchError: if the wallet's payments cannot be read
    """
    resource_id = wallet_id or _redact(wallet_key)
    data = await session.wallet_get(
        PAYMENTS_PATH, wallet_key, resource_id=resource_id, params={"limit": limit}
    )
    if not isinstance(data, list):
        raise FetchError("Unexpected payments response shape", resource_id=resource_id)

    payments = []
    for raw in data:
        try:
            payments.append(RawPayment.from_api(raw))
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed payment for wallet {resource_id}: {e}")

    return filter_since(payments, since)


async def fetch_wallet_payments(
    session: "LNbitsSession",
    wallets: "Iterable[Wallet]",
    since: int | None = None,
    parallel: bool = False,
) -> list[RawPayment]:
    """
    Fetch payments for several wallets, skipping the ones that fail.

    Returns:
        The union of every readable wallet's payments, in wallet order
    """

    async def _one(wallet: Wallet) -> list[RawPayment]:
        try:
            return await list_payments(session, wallet.inkey, since, wallet_id=wallet.id)
        except FetchError as e:
            logger.warning(f"Skipping payments for wallet {wallet.id}: {e}")
            return []

    wallets = list(wallets)
    if parallel:
        results = await asyncio.gather(*(_one(w) for w in wallets))
    else:
        results = [await _one(w) for w in wallets]

    payments: list[RawPayment] = []
    for batch in results:
        payments.extend(batch)
    return payments


async def get_wallet_balance(session: "LNbitsSession", wallet_key: str) -> int:
    """Current wallet balance in sats."""
    resource_id = _redact(wallet_key)
    data = await session.wallet_get(WALLET_PATH, wallet_key, resource_id=resource_id)
    if not isinstance(data, dict):
        raise FetchError("Unexpected wallet response shape", resource_id=resource_id)
    try:
        balance_msat = int(data.get("balance") or 0)
    except (TypeError, ValueError) as e:
        raise FetchError(f"Invalid wallet balance: {e}", resource_id=resource_id) from e
    return msat_to_sats(balance_msat)


def _zap_extra(from_wallet: Wallet, to_wallet: Wallet) -> dict:
    return {
        "tag": ZAP_TAG,
        "from": {"id": from_wallet.id, "user": from_wallet.user},
        "to": {"id": to_wallet.id, "user": to_wallet.user},
    }


async def send_transfer(
    session: "LNbitsSession",
    from_wallet: Wallet,
    to_wallet: Wallet,
    amount_sats: int,
    memo: str = "",
) -> TransferResult:
    """
    Send sats from one wallet to another.

    Creates an invoice on the recipient wallet, then pays it from the sender.
    The two calls are not atomic: if payment fails the invoice is left
    unpaid and reported on the raised ``TransferError``.

    Raises:
        ValidationError: for a non-positive amount or a sender without an admin key
        TransferError: if either step fails
    """
    if amount_sats <= 0:
        raise ValidationError("Amount must be a positive number of sats")
    if not from_wallet.adminkey:
        raise ValidationError(f"Wallet {from_wallet.id} has no admin key to pay from")

    extra = _zap_extra(from_wallet, to_wallet)

    try:
        invoice = await session.wallet_post(
            PAYMENTS_PATH,
            to_wallet.inkey,
            resource_id=to_wallet.id,
            json={"out": False, "amount": amount_sats, "memo": memo, "extra": extra},
        )
    except FetchError as e:
        raise TransferError(f"Failed to create invoice on wallet {to_wallet.id}: {e}") from e

    payment_request = None
    if isinstance(invoice, dict):
        payment_request = invoice.get("payment_request") or invoice.get("bolt11")
    if not payment_request:
        raise TransferError(f"Invoice response from wallet {to_wallet.id} had no payment request")

    logger.info(f"Created invoice for {amount_sats} sats on wallet {to_wallet.id}")

    try:
        paid = await session.wallet_post(
            PAYMENTS_PATH,
            from_wallet.adminkey,
            resource_id=from_wallet.id,
            json={"out": True, "bolt11": payment_request, "extra": extra},
        )
    except FetchError as e:
        raise TransferError(
            f"Failed to pay invoice from wallet {from_wallet.id}: {e}",
            payment_request=payment_request,
        ) from e

    payment_hash = paid.get("payment_hash") if isinstance(paid, dict) else None
    if not payment_hash:
        raise TransferError("Payment response had no payment hash", payment_request=payment_request)

    logger.info(f"Paid {amount_sats} sats from wallet {from_wallet.id} to {to_wallet.id}")
    return TransferResult(
        payment_hash=payment_hash,
        checking_id=paid.get("checking_id"),
        payment_request=payment_request,
        amount_sats=amount_sats,
        memo=memo,
    )
