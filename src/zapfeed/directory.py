# ABOUTME: Directory fetcher for LNbits users and their wallets
# ABOUTME: Lists users, lists non-deleted wallets per user, and picks wallets by role

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from zapfeed.exceptions import FetchError
from zapfeed.types import User, Wallet, WalletRole

if TYPE_CHECKING:
    from zapfeed.auth import LNbitsSession

logger = logging.getLogger(__name__)

USERS_PATH = "/users/api/v1/user"


def _unwrap(data: Any, resource_id: str) -> list:
    """Accept either a bare list or a ``{"data": [...]}`` envelope."""
    if isinstance(data, dict):
        data = data.get("data", [])
    if not isinstance(data, list):
        raise FetchError(f"Unexpected response shape for {resource_id}", resource_id=resource_id)
    return data


def _extra(raw: dict) -> dict:
    extra = raw.get("extra")
    return extra if isinstance(extra, dict) else {}


def parse_user(raw: dict) -> User:
    if not isinstance(raw, dict):
        raise ValueError(f"expected an object, got {type(raw).__name__}")
    extra = _extra(raw)
    username = raw.get("username") or raw.get("name") or raw["id"]
    return User(
        id=raw["id"],
        username=username,
        display_name=extra.get("displayName") or "",
        email=raw.get("email") or extra.get("email") or "",
        aad_object_id=extra.get("aadObjectId") or None,
        type=extra.get("type") or "Teammate",
    )


def parse_wallet(raw: dict) -> Wallet:
    if not isinstance(raw, dict):
        raise ValueError(f"expected an object, got {type(raw).__name__}")
    return Wallet(
        id=raw["id"],
        name=raw.get("name") or "",
        user=raw.get("user") or "",
        inkey=raw.get("inkey") or "",
        adminkey=raw.get("adminkey") or "",
        balance_msat=raw.get("balance_msat") or 0,
        deleted=bool(raw.get("deleted", False)),
    )


async def list_users(
    session: "LNbitsSession",
    filter_by_extra: Mapping[str, str] | None = None,
) -> list[User]:
    """
    List all LNbits users.

    Args:
        session: Authenticated LNbits session
        filter_by_extra: Keep only users whose raw ``extra`` matches every key

    Returns:
        Users in API order

    Raises:
        FetchError: if the listing cannot be read
    """
    data = await session.admin_get(USERS_PATH, resource_id="users")
    raw_users = _unwrap(data, "users")

    users = []
    for raw in raw_users:
        if filter_by_extra:
            extra = _extra(raw) if isinstance(raw, dict) else {}
            if not all(extra.get(key) == value for key, value in filter_by_extra.items()):
                continue
        try:
            users.append(parse_user(raw))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed user record: {e}")

    logger.debug(f"Listed {len(users)} users")
    return users


async def list_wallets(session: "LNbitsSession", user_id: str) -> list[Wallet]:
    """
    List a user's wallets, excluding deleted ones.

    Raises:
        FetchError: with ``resource_id`` set to the user id
    """
    data = await session.admin_get(f"{USERS_PATH}/{user_id}/wallet", resource_id=user_id)
    raw_wallets = _unwrap(data, user_id)

    wallets = []
    for raw in raw_wallets:
        try:
            wallet = parse_wallet(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed wallet record for user {user_id}: {e}")
            continue
        if wallet.deleted:
            continue
        wallets.append(wallet)
    return wallets


def pick_wallet(wallets: list[Wallet], role: WalletRole) -> Wallet | None:
    """First wallet with ``role``, preferring one named exactly after the role."""
    exact = [w for w in wallets if w.name.strip().lower() == role.value]
    if exact:
        return exact[0]
    for wallet in wallets:
        if wallet.has_role(role):
            return wallet
    return None


async def find_user_wallet(
    session: "LNbitsSession", user_id: str, role: WalletRole
) -> Wallet | None:
    """Fetch a user's wallets and return the one playing ``role``."""
    return pick_wallet(await list_wallets(session, user_id), role)


async def load_directory(session: "LNbitsSession") -> list[tuple[User, list[Wallet]]]:
    """
    Fetch every user and their wallets.

    A failure listing users is fatal. A failure listing one user's wallets
    is logged and that user is kept with no wallets.
    """
    users = await list_users(session)

    directory: list[tuple[User, list[Wallet]]] = []
    for user in users:
        try:
            wallets = await list_wallets(session, user.id)
        except FetchError as e:
            logger.warning(f"Skipping wallets for user {e.resource_id}: {e}")
            wallets = []
        directory.append((user, wallets))
    return directory
