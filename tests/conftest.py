"""Shared fixtures: in-memory SQLite, a fake Paystack provider and a controllable clock."""
import hashlib
import hmac
import json
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.session import Base
import app.models  # noqa: F401
from app.models.cooperative import Cooperative
from app.models.member import Member, MemberRole, MemberStatus
from app.models.user import User
from app.schemas.paystack import PaymentInitiation, ProviderTransaction
from app.services.plan_catalog import upsert_plans
from app.services.subscription_lifecycle import SubscriptionService
from app.core.rate_limit import reset_rate_limits

WEBHOOK_SECRET = "sk_test_secret"


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

    def set(self, now: datetime):
        self.now = now


class FakeProvider:
    """Stands in for PaystackClient. Records calls; verify returns what was paid."""

    def __init__(self):
        self.secret_key = WEBHOOK_SECRET
        self.public_key = "pk_test_123"
        self.initialized = []
        self.verified = []
        self.transactions = {}
        self.initialize_error = None

    def initialize_transaction(self, email, amount, reference, metadata=None, callback_url=None, plan_code=None):
        if self.initialize_error is not None:
            raise self.initialize_error
        self.initialized.append({
            "email": email,
            "amount": amount,
            "reference": reference,
            "metadata": metadata,
            "callback_url": callback_url,
            "plan_code": plan_code,
        })
        return PaymentInitiation(
            authorization_url=f"https://checkout.paystack.com/{reference}",
            access_code=f"access_{reference[-6:]}",
            reference=reference,
        )

    def settle(self, reference, status="success", amount=None, customer_code="CUS_test"):
        """Decide what verify_transaction will report for a reference."""
        if amount is None:
            amount = next(call["amount"] for call in self.initialized if call["reference"] == reference)
        self.transactions[reference] = ProviderTransaction(
            reference=reference,
            status=status,
            amount=amount,
            transaction_id="4099260516",
            paid_at=datetime(2025, 1, 15, 10, 5) if status == "success" else None,
            channel="card",
            customer_code=customer_code,
            card_last4="4081",
            card_brand="visa",
            card_exp_month="12",
            card_exp_year="2030",
            gateway_response="Approved" if status == "success" else "Declined",
        )

    def verify_transaction(self, reference):
        self.verified.append(reference)
        if reference not in self.transactions:
            self.settle(reference)
        return self.transactions[reference]

    def verify_webhook_signature(self, raw_body, signature):
        if not signature:
            return False
        expected = hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    def get_public_key(self):
        return self.public_key


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def charge_success_event(reference, amount, transaction_id=4099260516, customer_code="CUS_test"):
    return {
        "event": "charge.success",
        "data": {
            "id": transaction_id,
            "reference": reference,
            "status": "success",
            "amount": amount,
            "paid_at": "2025-01-15T10:05:00.000Z",
            "channel": "card",
            "customer": {"customer_code": customer_code, "email": "admin@coop.ng"},
            "authorization": {"last4": "4081", "card_type": "visa ", "exp_month": "12", "exp_year": "2030"},
        },
    }


def event_body(event) -> bytes:
    return json.dumps(event).encode("utf-8")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy drive transactions so SAVEPOINTs work on pysqlite
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def plans(db):
    upsert_plans(db)
    from app.models.plan import SubscriptionPlan
    return {plan.name: plan for plan in db.query(SubscriptionPlan).all()}


@pytest.fixture
def clock():
    return Clock(datetime(2025, 1, 15, 10, 0, 0))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def service(db, provider, clock):
    return SubscriptionService(db, provider=provider, clock=clock)


def add_user(db, email):
    user = User(email=email, first_name="Ada", last_name="Obi")
    db.add(user)
    db.commit()
    return user


def add_member(db, cooperative_id, user=None, role=MemberRole.MEMBER, status=MemberStatus.ACTIVE):
    member = Member(
        cooperative_id=cooperative_id,
        user_id=user.id if user else None,
        role=role.value,
        status=status.value,
    )
    db.add(member)
    db.commit()
    return member


@pytest.fixture
def coop(db, plans):
    """A cooperative with one active admin and one active ordinary member."""
    admin = add_user(db, "admin@coop.ng")
    member_user = add_user(db, "member@coop.ng")
    cooperative = Cooperative(name="Ikeja Traders Cooperative")
    db.add(cooperative)
    db.commit()
    add_member(db, cooperative.id, admin, role=MemberRole.ADMIN)
    add_member(db, cooperative.id, member_user, role=MemberRole.MEMBER)
    return SimpleNamespace(
        id=cooperative.id,
        admin_id=admin.id,
        member_id=member_user.id,
        admin=admin,
        member=member_user,
    )


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()
