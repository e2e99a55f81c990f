import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure the project root is on ``sys.path`` so the ``dreamsquare`` package can
# be imported when tests are executed from the ``tests`` directory.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from dreamsquare import auth  # noqa: E402
from dreamsquare.payments import PaymentGateway  # noqa: E402
from dreamsquare.store import Store  # noqa: E402
from dreamsquare.web_app import create_app  # noqa: E402


class FakeGateway(PaymentGateway):
    def __init__(self):
        self.amounts = []

    def create_intent(self, amount):
        self.amounts.append(amount)
        return f"pi_{amount}_secret_test"


class FakeDirectory(auth.IdentityDirectory):
    def __init__(self):
        self.deleted = []

    def delete_user_by_email(self, email):
        self.deleted.append(email)
        return True


class StaticVerifier(auth.TokenVerifier):
    """Accept only the tokens it was built with."""

    def __init__(self, tokens):
        self.tokens = tokens

    def verify(self, token):
        try:
            return self.tokens[token]
        except KeyError:
            raise auth.InvalidToken("unknown token") from None


@pytest.fixture
def store(tmp_path):
    return Store.from_url(f"sqlite:///{tmp_path}/dreamsquare.db")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def app(store, gateway, directory, monkeypatch):
    monkeypatch.delenv("BOOTSTRAP_ADMIN_EMAIL", raising=False)
    verifier = StaticVerifier({"buyer-token": {"sub": "buyer-1", "email": "buyer@example.com"}})
    app = create_app(
        store,
        token_verifier=verifier,
        payment_gateway=gateway,
        identity_directory=directory,
    )
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


def override_user(email, sub="user-1"):
    def _user():
        return {"sub": sub, "email": email}
    return _user


@pytest.fixture
def login(app):
    """Authenticate subsequent requests as the given email."""

    def _login(email):
        app.dependency_overrides[auth.get_current_user] = override_user(email)

    return _login


@pytest.fixture
def admin(store, login):
    user = store.insert_user({"email": "admin@example.com", "role": "admin"})
    login("admin@example.com")
    return user


@pytest.fixture
def make_property(store):
    def _make(agent_email="agent@example.com", min_price=100000, max_price=150000, **extra):
        payload = {
            "agentEmail": agent_email,
            "agentName": "Agent Smith",
            "title": "Lake House",
            "location": "Austin, TX",
            "image": "https://img.example.com/lake.jpg",
            "minPrice": min_price,
            "maxPrice": max_price,
        }
        payload.update(extra)
        return store.insert_property(payload)

    return _make


@pytest.fixture
def make_offer(store):
    def _make(prop, amount=120000, buyer="buyer@example.com", status="pending"):
        return store.insert_offer(
            {
                "property_id": prop["id"],
                "title": prop["title"],
                "location": prop["location"],
                "agent_name": prop["agentName"],
                "agent_email": prop["agentEmail"],
                "offer_amount": amount,
                "buyer_email": buyer,
                "buyer_name": "Buyer",
                "buying_date": "2026-12-01",
                "status": status,
            }
        )

    return _make
