from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from main import app
from core.config import settings
from core.db import Base, get_db
from models.booking import Booking
from models.business import Business, ManagerProfile
from models.order import Order
from models.user import User, UserRole
from routes.payments import get_notification_gateway, get_payment_gateway
from services import notifications as notification_service
from services.notifications import NotificationGateway
from services.paystack import VerificationResult


class FakeGateway:
    """Stands in for Paystack; unknown references are declined."""

    def __init__(self):
        self.results = {}
        self.calls = []

    def succeed(self, reference, amount, currency="NGN", metadata=None):
        minor = int(Decimal(str(amount)) * 100)
        self.results[reference] = VerificationResult(reference, "success", minor, currency, metadata or {})

    def decline(self, reference, status="failed"):
        self.results[reference] = VerificationResult(reference=reference, status=status)

    def verify(self, reference):
        self.calls.append(reference)
        return self.results.get(reference, VerificationResult(reference=reference, status="failed"))


class RecordingNotifier(NotificationGateway):
    def __init__(self):
        self.sent = []

    def notify(self, destination, title, body, data=None):
        self.sent.append({"to": destination, "title": title, "body": body, "data": data or {}})


@pytest.fixture(autouse=True)
def queued_pushes(monkeypatch):
    """Never talk to a real broker; remember what would have been queued."""
    queued = []

    def _fake_delay(*args, **kwargs):
        queued.append(args)

    monkeypatch.setattr(notification_service.send_push_notification_task, "delay", _fake_delay)
    return queued


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    """Create a fresh database for each test."""
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    db_session = TestingSessionLocal()
    yield db_session
    db_session.close()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def client(db, gateway, notifier):
    def _get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notification_gateway] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _add(db, *objs):
    db.add_all(objs)
    db.commit()
    return objs[0] if len(objs) == 1 else objs


@pytest.fixture
def customer(db):
    return _add(db, User(id="u1", name="Ada Customer", email="ada@example.com", role=UserRole.USER.value))


@pytest.fixture
def manager_user(db):
    return _add(
        db,
        User(
            id="mu1",
            name="Mo Manager",
            email="mo@example.com",
            role=UserRole.MANAGER.value,
            push_token="ExponentPushToken[mo]",
        ),
    )


@pytest.fixture
def manager(db, manager_user):
    return _add(db, ManagerProfile(id="m1", user_id=manager_user.id))


@pytest.fixture
def business(db, manager):
    return _add(db, Business(id="biz1", name="Lagoon Hotel", manager_id=manager.id))


@pytest.fixture
def orphan_business(db):
    """A business nobody manages yet."""
    return _add(db, Business(id="biz2", name="Unclaimed Grill", manager_id=None))


@pytest.fixture
def booking(db, business, customer):
    return _add(db, Booking(id="b1", business_id=business.id, user_id=customer.id, total_amount=Decimal("120.00")))


@pytest.fixture
def order(db, business, customer):
    return _add(db, Order(id="o1", business_id=business.id, user_id=customer.id, total_amount=Decimal("35.50")))


@pytest.fixture
def admin_user(db):
    return _add(db, User(id="a1", name="Root Admin", email="root@example.com", role=UserRole.ADMIN.value))


def access_token(user_id, expires_in=timedelta(minutes=15)):
    """Token as the auth service would issue it; this service only decodes them."""
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "type": "access", "iat": int(now.timestamp()), "exp": int((now + expires_in).timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def bearer(user, expires_in=timedelta(minutes=15)):
    return {"Authorization": f"Bearer {access_token(user.id, expires_in)}"}


@pytest.fixture
def admin_headers(admin_user):
    return bearer(admin_user)


@pytest.fixture
def manager_headers(manager, manager_user):
    return bearer(manager_user)


@pytest.fixture
def customer_headers(customer):
    return bearer(customer)


@pytest.fixture
def expired_customer_headers(customer):
    return bearer(customer, expires_in=timedelta(minutes=-5))
