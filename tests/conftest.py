import hashlib
import hmac
import json
import time
from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from core.entities.membership_plan import MembershipPlan
from core.entities.workspace import Workspace
from core.services.notifier import Notifier
from core.use_cases import credit_use_cases
from core.use_cases.user_use_cases import get_password_hash, claims_for
from infrastructure.db.sqlite import init_db, connect, SQLiteUnitOfWork
from infrastructure.payments.stub_provider import StubPaymentProvider
from infrastructure.security.jwt_tokens import JoseTokenService
from main import create_app

WEBHOOK_SECRET = "whsec_test_secret"
PASSWORD = "correct-horse-battery"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    def publish(self, channel, event, data):
        self.events.append((channel, event, data))

    def names(self):
        return [(channel, event) for channel, event, _ in self.events]


class FailingNotifier(Notifier):
    def publish(self, channel, event, data):
        raise ConnectionError("pusher unavailable")


def days_ahead(days: int) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    c = connect(db_path)
    yield c
    c.close()


@pytest.fixture
def uow(conn):
    return SQLiteUnitOfWork(conn)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def provider():
    return StubPaymentProvider(WEBHOOK_SECRET)


@pytest.fixture
def settings(db_path):
    return Settings(
        SECRET_KEY="test-secret-key-that-is-long-enough",
        DB_PATH=db_path,
        STRIPE_SECRET_KEY="",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        PUSHER_APP_ID="",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def tokens(settings):
    return JoseTokenService(settings.SECRET_KEY, issuer=settings.TOKEN_ISSUER, audience=settings.TOKEN_AUDIENCE)


@pytest.fixture
def client(settings, provider, notifier, tokens):
    app = create_app(settings, payment_provider=provider, notifier=notifier, token_service=tokens)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(uow):
    counter = {"n": 0}

    def factory(role="user", nft_holder=False, email=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        user = uow.users.create_user(email=email, password_hash=get_password_hash(PASSWORD), role=role)
        if nft_holder:
            user = uow.users.update_user(user.id, nft_holder=True)
        return user

    return factory


@pytest.fixture
def make_workspace(uow):
    def factory(category="meeting-room", rate="20", capacity=8, name=None, available=True):
        return uow.catalog.create_workspace(Workspace(
            id=None,
            name=name or f"Test {category}",
            resource_category=category,
            capacity=capacity,
            hourly_rate=Decimal(rate),
            available=available,
        ))

    return factory


@pytest.fixture
def make_plan(uow):
    def factory(hours="10", printing="50", guests="2", name="Member"):
        return uow.catalog.create_plan(MembershipPlan(
            id=None,
            name=name,
            base_price=Decimal("199"),
            nft_holder_price=Decimal("99"),
            meeting_room_credits_hours=Decimal(hours),
            printing_credits=Decimal(printing),
            guest_passes=Decimal(guests),
            stripe_price_id="price_member",
            nft_stripe_price_id="price_member_nft",
        ))

    return factory


@pytest.fixture
def make_member(uow, make_user, make_plan):
    """User with an active membership and the given meeting-room balance."""

    def factory(hours="5", nft_holder=False):
        user = make_user(nft_holder=nft_holder)
        plan = make_plan()
        uow.users.update_user(user.id, membership_plan_id=plan.id, membership_status="active")
        if Decimal(hours) > 0:
            credit_use_cases.grant_credits(uow, user.id, "meeting-room", Decimal(hours))
        return uow.users.get_by_id(user.id)

    return factory


@pytest.fixture
def auth_headers(tokens):
    def factory(user, token_type="access"):
        return {"Authorization": f"Bearer {tokens.issue(claims_for(user), token_type=token_type)}"}

    return factory


@pytest.fixture
def post_webhook(client):
    def send(event, secret=WEBHOOK_SECRET, signature=None):
        payload = json.dumps(event).encode()
        headers = {"Stripe-Signature": signature or sign_payload(payload, secret),
                   "Content-Type": "application/json"}
        return client.post("/webhooks/stripe", content=payload, headers=headers)

    return send
