# ABOUTME: Pytest fixtures for zapfeed tests
# ABOUTME: Provides a fake LNbits node on httpx.MockTransport and a sample team directory

import json

import httpx
import pytest

from zapfeed.auth import LNbitsSession
from zapfeed.config import Settings
from zapfeed.types import RawPayment, User, Wallet

NODE_URL = "http://lnbits.test"


class FakeLNbits:
    """In-memory LNbits node answering the endpoints zapfeed calls."""

    def __init__(self) -> None:
        self.token = "test-token"
        self.users: list[dict] = []
        self.wallets: dict[str, list[dict]] = {}
        self.payments: dict[str, list[dict]] = {}
        self.failing_paths: dict[str, int] = {}
        self.failing_keys: set[str] = set()
        self.fail_payment = False
        self.wallet_info: object = {"name": "Allowance", "balance": 25_000_000}
        self.requests: list[httpx.Request] = []

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.failing_paths:
            return httpx.Response(self.failing_paths[path], json={"detail": "failure"})

        if path == "/api/v1/auth":
            return httpx.Response(200, json={"access_token": self.token})

        if path.startswith("/users/api/v1/user"):
            if request.headers.get("Authorization") != f"Bearer {self.token}":
                return httpx.Response(401, json={"detail": "unauthorized"})
            parts = path.strip("/").split("/")
            if len(parts) == 4:
                return httpx.Response(200, json={"data": self.users, "total": len(self.users)})
            return httpx.Response(200, json=self.wallets.get(parts[4], []))

        if path == "/api/v1/payments":
            key = request.headers.get("X-Api-Key", "")
            if request.method == "GET":
                if key in self.failing_keys:
                    return httpx.Response(500, json={"detail": "failure"})
                return httpx.Response(200, json=self.payments.get(key, []))

            body = json.loads(request.content)
            if not body["out"]:
                return httpx.Response(
                    201, json={"payment_hash": "invoice-hash", "payment_request": "lnbc50n1test"}
                )
            if self.fail_payment:
                return httpx.Response(520, json={"detail": "Insufficient balance."})
            return httpx.Response(
                201, json={"payment_hash": "paid-hash", "checking_id": "internal_paid-hash"}
            )

        if path == "/api/v1/wallet":
            return httpx.Response(200, json=self.wallet_info)

        return httpx.Response(404, json={"detail": "not found"})


@pytest.fixture
def fake_lnbits():
    return FakeLNbits()


@pytest.fixture
def settings():
    return Settings(node_url=NODE_URL, username="admin", password="secret")


@pytest.fixture
async def session(settings, fake_lnbits):
    """An LNbitsSession wired to the fake node."""
    lnbits_session = LNbitsSession(settings, transport=httpx.MockTransport(fake_lnbits.handler))
    yield lnbits_session
    await lnbits_session.close()


def make_payment(
    wallet_id: str,
    amount: int,
    checking_id: str = "",
    memo: str = "",
    time=1700000000,
    extra: dict | None = None,
) -> RawPayment:
    return RawPayment.from_api(
        {
            "checking_id": checking_id,
            "wallet_id": wallet_id,
            "amount": amount,
            "memo": memo,
            "time": time,
            "extra": extra or {},
        }
    )


@pytest.fixture
def alice():
    return User(id="alice-id", username="alice@example.com", email="alice@example.com")


@pytest.fixture
def bob():
    return User(id="bob-id", username="bob.builder@example.com", email="bob.builder@example.com")


@pytest.fixture
def directory(alice, bob):
    """Alice and Bob each own an Allowance and a Private wallet."""
    return [
        (
            alice,
            [
                Wallet(id="A", name="Allowance", user="alice-id", inkey="alice-in-a"),
                Wallet(id="PA", name="Private", user="alice-id", inkey="alice-in-p"),
            ],
        ),
        (
            bob,
            [
                Wallet(id="BA", name="Allowance", user="bob-id", inkey="bob-in-a"),
                Wallet(id="B", name="Private", user="bob-id", inkey="bob-in-p"),
            ],
        ),
    ]


@pytest.fixture
def seeded_lnbits(fake_lnbits):
    """The fake node holding the sample team and one Alice-to-Bob zap."""
    fake_lnbits.users = [
        {"id": "alice-id", "username": "alice@example.com", "email": "alice@example.com",
         "extra": {"aadObjectId": "aad-alice"}},
        {"id": "bob-id", "username": "bob.builder@example.com", "email": "bob.builder@example.com",
         "extra": {"aadObjectId": "aad-bob"}},
    ]
    fake_lnbits.wallets = {
        "alice-id": [
            {"id": "A", "name": "Allowance", "user": "alice-id", "inkey": "alice-in-a",
             "adminkey": "alice-admin-a", "balance_msat": 20_000_000, "deleted": False},
            {"id": "PA", "name": "Private", "user": "alice-id", "inkey": "alice-in-p",
             "adminkey": "alice-admin-p", "balance_msat": 0, "deleted": False},
            {"id": "OLD", "name": "Old Allowance", "user": "alice-id", "inkey": "alice-in-old",
             "adminkey": "alice-admin-old", "balance_msat": 0, "deleted": True},
        ],
        "bob-id": [
            {"id": "BA", "name": "Allowance", "user": "bob-id", "inkey": "bob-in-a",
             "adminkey": "bob-admin-a", "balance_msat": 25_000_000, "deleted": False},
            {"id": "B", "name": "Private", "user": "bob-id", "inkey": "bob-in-p",
             "adminkey": "bob-admin-p", "balance_msat": 5_000_000, "deleted": False},
        ],
    }
    fake_lnbits.payments = {
        "alice-in-a": [
            {"checking_id": "x", "wallet_id": "A", "amount": -5_000_000, "memo": "Thanks!",
             "time": 1700000000, "extra": {"tag": "zap"}},
        ],
        "bob-in-p": [
            {"checking_id": "internal_x", "wallet_id": "B", "amount": 5_000_000, "memo": "Thanks!",
             "time": 1700000000, "extra": {"tag": "zap"}},
        ],
    }
    return fake_lnbits
