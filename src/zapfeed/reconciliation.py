# ABOUTME: Reconciliation engine that turns raw LNbits payments into zaps
# ABOUTME: Pairs internal-transfer records, deduplicates them, and attributes sender and receiver

import logging
from collections.abc import Iterable, Sequence

from zapfeed.types import RawPayment, ReconciledTransfer, User, Wallet, WalletRole

logger = logging.getLogger(__name__)

# LNbits records an internal transfer twice; one side's checking_id carries this prefix
INTERNAL_MARKER = "internal_"

# Memo text written by the weekly allowance clearing job
HOUSEKEEPING_MARKERS = ("weekly allowance cleared",)

FEED_ROLES = frozenset({WalletRole.ALLOWANCE, WalletRole.PRIVATE})

MAX_RECORDS = 100

Directory = Sequence[tuple[User, Sequence[Wallet]]]


def strip_internal_marker(checking_id: str | None) -> str:
    """
    Normalize a checking id so both records of an internal transfer match.

    ``internal_abc`` and ``abc`` both normalize to ``abc``. Empty or missing
    ids normalize to ``""`` and never pair with anything.
    """
    if not checking_id:
        return ""
    if checking_id.startswith(INTERNAL_MARKER):
        return checking_id[len(INTERNAL_MARKER):]
    return checking_id


def is_housekeeping(payment: RawPayment) -> bool:
    """True for allowance top-up and clearing records, which are not zaps."""
    memo = payment.memo.lower()
    return any(marker in memo for marker in HOUSEKEEPING_MARKERS)


class WalletIndex:
    """
    Lookup from wallet id to owner and roles.

    Built once from the whole directory before any matching happens.
    Deleted wallets are left out entirely.
    """

    def __init__(self, directory: Directory) -> None:
        self.owners: dict[str, User] = {}
        self.roles: dict[str, set[WalletRole]] = {}
        self.users: dict[str, User] = {}

        for user, wallets in directory:
            self.users[user.id] = user
            for wallet in wallets:
                if wallet.deleted:
                    continue
                self.owners[wallet.id] = user
                self.roles[wallet.id] = wallet.roles

    def owner(self, wallet_id: str | None) -> User | None:
        if not wallet_id:
            return None
        return self.owners.get(wallet_id)

    def user(self, user_id: str | None) -> User | None:
        if not user_id:
            return None
        return self.users.get(user_id)

    def is_feed_wallet(self, wallet_id: str) -> bool:
        return bool(self.roles.get(wallet_id, set()) & FEED_ROLES)


def group_by_clean_id(payments: Iterable[RawPayment]) -> dict[str, list[RawPayment]]:
    """Group payments by normalized checking id, skipping unpairable ones."""
    groups: dict[str, list[RawPayment]] = {}
    for payment in payments:
        clean_id = strip_internal_marker(payment.checking_id)
        if clean_id:
            groups.setdefault(clean_id, []).append(payment)
    return groups


def find_counterparty(
    payment: RawPayment, groups: dict[str, list[RawPayment]]
) -> RawPayment | None:
    """The first record sharing ``payment``'s clean id on a different wallet."""
    clean_id = strip_internal_marker(payment.checking_id)
    if not clean_id:
        return None
    for other in groups.get(clean_id, []):
        if other.wallet_id != payment.wallet_id:
            return other
    return None


def _hinted_user(index: WalletIndex, user_id: str | None, wallet_id: str | None) -> User | None:
    return index.user(user_id) or index.owner(wallet_id)


def _select_canonical(candidates: list[RawPayment]) -> list[RawPayment]:
    """One record per clean id: the debit side when present, else the first seen."""
    chosen: dict[str, RawPayment] = {}
    order: list[str | RawPayment] = []

    for payment in candidates:
        clean_id = strip_internal_marker(payment.checking_id)
        if not clean_id:
            order.append(payment)
            continue
        current = chosen.get(clean_id)
        if current is None:
            chosen[clean_id] = payment
            order.append(clean_id)
        elif payment.is_outgoing and not current.is_outgoing:
            chosen[clean_id] = payment

    return [chosen[item] if isinstance(item, str) else item for item in order]


def attribute(
    payment: RawPayment,
    counterparty: RawPayment | None,
    index: WalletIndex,
) -> ReconciledTransfer:
    """
    Resolve sender and receiver for one payment.

    The payment's own wallet owner sits on the debit side for outgoing
    records and the credit side for incoming ones; the counterparty wallet's
    owner fills the other side. Sides still unknown fall back to the
    ``extra`` hints, and otherwise stay None.
    """
    own = index.owner(payment.wallet_id)
    other = index.owner(counterparty.wallet_id) if counterparty else None

    if payment.is_outgoing:
        from_user, to_user = own, other
    else:
        from_user, to_user = other, own

    extra = payment.extra
    if from_user is None:
        from_user = _hinted_user(index, extra.from_user_id, extra.from_wallet_id)
    if to_user is None:
        to_user = _hinted_user(index, extra.to_user_id, extra.to_wallet_id)

    hint = None
    if to_user is None and extra.to_name:
        hint = extra.to_name
    elif from_user is None and extra.from_name:
        hint = extra.from_name

    if to_user is None or from_user is None:
        logger.debug(f"Could not fully attribute payment {payment.checking_id or '<no id>'}")

    return ReconciledTransfer(
        from_user=from_user,
        to_user=to_user,
        transaction=payment,
        counterparty_hint=hint,
    )


def _feed_order(transfer: ReconciledTransfer) -> tuple[int, str, str]:
    payment = transfer.transaction
    return (-payment.epoch, strip_internal_marker(payment.checking_id), payment.wallet_id)


def reconcile(
    directory: Directory,
    payments: Iterable[RawPayment],
    since: int | None = None,
    max_records: int = MAX_RECORDS,
) -> list[ReconciledTransfer]:
    """
    Build the zap feed from the directory and every fetched payment.

    Args:
        directory: (user, wallets) pairs for every known user
        payments: Raw payments from all fetched wallets, any order
        since: Epoch seconds lower bound; records with unparseable time are kept
        max_records: Maximum transfers returned, newest first

    Returns:
        Deduplicated transfers sorted newest first. Running this twice on the
        same input gives the same list.
    """
    index = WalletIndex(directory)
    payments = list(payments)
    groups = group_by_clean_id(payments)

    candidates = [
        p for p in payments
        if index.is_feed_wallet(p.wallet_id) and not is_housekeeping(p)
    ]

    transfers = []
    for payment in _select_canonical(candidates):
        if since and payment.time_valid and payment.epoch < since:
            continue
        transfers.append(attribute(payment, find_counterparty(payment, groups), index))

    transfers.sort(key=_feed_order)
    logger.debug(
        f"Reconciled {len(transfers)} transfers from {len(candidates)} candidate payments"
    )
    return transfers[:max_records]


def _memo_mentions(memo: str, user: User) -> bool:
    memo = memo.lower()
    names = [user.display_name.lower(), user.email.lower()]
    if "@" in user.email:
        names.append(user.email.split("@")[0].lower())
    return any(name and name in memo for name in names)


def attribute_wallet_log(
    owner: User,
    wallet_payments: Iterable[RawPayment],
    all_payments: Iterable[RawPayment],
    directory: Directory,
) -> list[ReconciledTransfer]:
    """
    Attribute every payment of one wallet for that wallet's transaction log.

    ``owner`` always sits on the wallet's own side. The other side comes from
    pairing against ``all_payments``, then the ``extra`` hints, then the first
    other user whose display name, email or email local part appears in the
    memo.
    """
    index = WalletIndex(directory)
    groups = group_by_clean_id(all_payments)
    others = [user for user in index.users.values() if user.id != owner.id]

    log = []
    for payment in wallet_payments:
        counterparty = find_counterparty(payment, groups)
        other = index.owner(counterparty.wallet_id) if counterparty else None

        extra = payment.extra
        if other is None:
            if payment.is_outgoing:
                other = _hinted_user(index, extra.to_user_id, extra.to_wallet_id)
            else:
                other = _hinted_user(index, extra.from_user_id, extra.from_wallet_id)
        if other is None and payment.memo:
            other = next((u for u in others if _memo_mentions(payment.memo, u)), None)

        hint = None
        if other is None:
            hint = extra.to_name if payment.is_outgoing else extra.from_name

        if payment.is_outgoing:
            from_user, to_user = owner, other
        else:
            from_user, to_user = other, owner

        log.append(
            ReconciledTransfer(
                from_user=from_user,
                to_user=to_user,
                transaction=payment,
                counterparty_hint=hint,
            )
        )

    log.sort(key=_feed_order)
    return log
