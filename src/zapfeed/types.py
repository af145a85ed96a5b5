# ABOUTME: Pydantic models for zapfeed tool I/O
# ABOUTME: Defines User, Wallet, RawPayment, ReconciledTransfer, and related types

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field, model_validator


def msat_to_sats(msat: int | None) -> int:
    """Convert millisatoshis to whole satoshis, truncating toward zero."""
    if not msat:
        return 0
    if msat < 0:
        return -(-msat // 1000)
    return msat // 1000


def normalize_time(value: Any) -> int | None:
    """
    Normalize a payment time to epoch seconds.

    Accepts Unix seconds (int, float or numeric string) and ISO-8601
    strings. Naive ISO timestamps are taken as UTC.

    Returns:
        Epoch seconds, or None when the value cannot be parsed
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return int(value)
        except (ValueError, OverflowError):
            return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(float(text))
        except (ValueError, OverflowError):
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def display_name_from_username(username: str) -> str:
    """Turn ``jane.doe@example.com`` into ``Jane Doe``; other names pass through."""
    if "@" not in username:
        return username
    local = username.split("@")[0].replace(".", " ")
    return " ".join(word[:1].upper() + word[1:] for word in local.split(" ") if word)


class WalletRole(str, Enum):
    """Semantic wallet role inferred from the wallet name."""

    ALLOWANCE = "allowance"
    PRIVATE = "private"
    OTHER = "other"


class User(BaseModel):
    """An LNbits user account."""

    id: str
    username: str = ""
    display_name: str = ""
    email: str = ""
    aad_object_id: str | None = None
    type: str = "Teammate"

    @model_validator(mode="after")
    def _default_display_name(self) -> "User":
        if not self.display_name:
            self.display_name = display_name_from_username(self.username or self.id)
        return self


class Wallet(BaseModel):
    """A wallet owned by an LNbits user."""

    id: str
    name: str = ""
    user: str
    inkey: str = ""
    adminkey: str = ""
    balance_msat: int = 0
    deleted: bool = False

    @property
    def roles(self) -> set[WalletRole]:
        """Roles whose marker appears in the name, case-insensitively."""
        lowered = self.name.lower()
        roles = {
            role
            for role in (WalletRole.ALLOWANCE, WalletRole.PRIVATE)
            if role.value in lowered
        }
        return roles or {WalletRole.OTHER}

    def has_role(self, role: WalletRole) -> bool:
        return role in self.roles

    @property
    def balance_sats(self) -> int:
        return msat_to_sats(self.balance_msat)


def _hint_side(value: Any) -> tuple[str | None, str | None, str | None]:
    """Pull (user id, wallet id, name) out of one side of a raw ``extra`` map."""
    if isinstance(value, str):
        return None, None, value or None
    if not isinstance(value, dict):
        return None, None, None

    user = value.get("user")
    wallet = value.get("id")
    name = value.get("name") or value.get("displayName")
    return (
        str(user) if user else None,
        str(wallet) if wallet else None,
        str(name) if name else None,
    )


class PaymentExtra(BaseModel):
    """
    Hint fields carried in a payment's ``extra`` map.

    Populated unreliably by whoever created the payment, so these are
    fallbacks only and never the primary source of identity.
    """

    from_user_id: str | None = None
    to_user_id: str | None = None
    from_wallet_id: str | None = None
    to_wallet_id: str | None = None
    from_name: str | None = None
    to_name: str | None = None
    tag: str | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> "PaymentExtra":
        """Build from the free-form ``extra`` map returned by LNbits."""
        if not isinstance(raw, dict):
            return cls()

        from_user, from_wallet, from_name = _hint_side(raw.get("from"))
        to_user, to_wallet, to_name = _hint_side(raw.get("to"))
        tag = raw.get("tag")

        return cls(
            from_user_id=from_user,
            to_user_id=to_user,
            from_wallet_id=from_wallet,
            to_wallet_id=to_wallet,
            from_name=from_name,
            to_name=to_name,
            tag=str(tag) if tag else None,
        )


class RawPayment(BaseModel):
    """A payment record as returned by LNbits for one wallet."""

    checking_id: str = ""
    payment_hash: str | None = None
    wallet_id: str
    amount: int = Field(description="Signed millisatoshis; negative is outgoing")
    memo: str = ""
    time: int | float | str | None = None
    pending: bool = False
    extra: PaymentExtra = Field(default_factory=PaymentExtra)

    @classmethod
    def from_api(cls, data: dict) -> "RawPayment":
        """Parse one element of ``GET /api/v1/payments``."""
        checking_id = data.get("checking_id") or data.get("id") or ""
        return cls(
            checking_id=str(checking_id),
            payment_hash=data.get("payment_hash"),
            wallet_id=str(data.get("wallet_id", "")),
            amount=int(data.get("amount") or 0),
            memo=data.get("memo") or "",
            time=data.get("time"),
            pending=bool(data.get("pending", False)),
            extra=PaymentExtra.from_raw(data.get("extra")),
        )

    @property
    def epoch(self) -> int:
        """Epoch seconds; 0 when the time cannot be parsed."""
        return normalize_time(self.time) or 0

    @computed_field
    @property
    def time_valid(self) -> bool:
        return normalize_time(self.time) is not None

    @property
    def is_outgoing(self) -> bool:
        return self.amount < 0

    @property
    def amount_sats(self) -> int:
        return msat_to_sats(self.amount)


class ReconciledTransfer(BaseModel):
    """One peer-to-peer zap with best-effort sender and receiver."""

    from_user: User | None = None
    to_user: User | None = None
    transaction: RawPayment
    counterparty_hint: str | None = Field(
        default=None, description="Raw name hint for an unresolved side, display only"
    )

    @computed_field
    @property
    def time_valid(self) -> bool:
        """False when the payment time could not be parsed and sorts as 0."""
        return self.transaction.time_valid


class TransferResult(BaseModel):
    """Outcome of a successful zap."""

    payment_hash: str
    checking_id: str | None = None
    payment_request: str
    amount_sats: int
    memo: str = ""


class FeedPage(BaseModel):
    """One page of a sorted transfer feed."""

    items: list[ReconciledTransfer] = Field(default_factory=list)
    page: int
    page_size: int
    total_items: int
    total_pages: int
    sort_field: str
    sort_order: str


class AllowanceSummary(BaseModel):
    """How much of a user's allowance is left and how much was sent recently."""

    user_id: str
    wallet_id: str
    balance_sats: int
    allowance_sats: int
    remaining_percent: float
    spent_sats: int
    window_days: int
    last_reset: date
    next_reset: date
