# ABOUTME: Allowance wallet summary for one user
# ABOUTME: Balance against the configured allowance, recent spend, and weekly reset dates

from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone

from zapfeed.reconciliation import is_housekeeping
from zapfeed.types import AllowanceSummary, RawPayment, User, Wallet, msat_to_sats

DEFAULT_WINDOW_DAYS = 30


def reset_dates(today: date) -> tuple[date, date]:
    """Allowances reset on Mondays: (most recent Monday, next Monday)."""
    last_reset = today - timedelta(days=today.weekday())
    return last_reset, last_reset + timedelta(days=7)


def summarize_allowance(
    user: User,
    wallet: Wallet,
    payments: Iterable[RawPayment],
    allowance_sats: int,
    window_days: int = DEFAULT_WINDOW_DAYS,
    now: datetime | None = None,
) -> AllowanceSummary:
    """
    Summarize a user's allowance wallet.

    ``spent_sats`` counts outgoing zaps from this wallet inside the window;
    the clearing job's housekeeping records are not spending.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = int(now.timestamp()) - window_days * 24 * 60 * 60

    spent_msat = sum(
        -p.amount
        for p in payments
        if p.wallet_id == wallet.id
        and p.is_outgoing
        and p.epoch >= cutoff
        and not is_housekeeping(p)
    )

    balance = wallet.balance_sats
    remaining = round(balance / allowance_sats * 100, 1) if allowance_sats else 0.0
    last_reset, next_reset = reset_dates(now.date())

    return AllowanceSummary(
        user_id=user.id,
        wallet_id=wallet.id,
        balance_sats=balance,
        allowance_sats=allowance_sats,
        remaining_percent=remaining,
        spent_sats=msat_to_sats(spent_msat),
        window_days=window_days,
        last_reset=last_reset,
        next_reset=next_reset,
    )
