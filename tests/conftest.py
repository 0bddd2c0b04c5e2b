import os
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ["APP_ENV"] = "dev"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("WHATSAPP_VERIFY_TOKEN", "test_token")
os.environ.setdefault("WHATSAPP_ACCESS_TOKEN", "test_token")
os.environ.setdefault("WHATSAPP_PHONE_NUMBER_ID", "test_id")
# Note: WHATSAPP_APP_SECRET not set by default - allows tests without signature verification
os.environ.setdefault("WHATSAPP_DRY_RUN", "true")
os.environ.setdefault("DEFAULT_COUNTRY_CODE", "54")

from app.db.base import Base  # noqa: E402
from app.db.deps import get_db  # noqa: E402
import app.db.models as _models  # noqa: E402,F401
from app.db.models import Provider  # noqa: E402
from app.main import app  # noqa: E402
from app.schemas.orders import OrderItem, OrderSnapshot  # noqa: E402
from app.services.messaging.whatsapp_client import SEND_SENT, SendResult  # noqa: E402
from app.services.provider_directory import normalize_provider_phone  # noqa: E402

# Test database URL (in-memory SQLite for fast tests)
SQLALCHEMY_DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///:memory:")


def is_sqlite() -> bool:
    return (SQLALCHEMY_DATABASE_URL or "").startswith("sqlite")


# SQLite needs check_same_thread=False and StaticPool; Postgres does not support check_same_thread
if is_sqlite():
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

import app.db.session as _db_session  # noqa: E402

_db_session.engine = engine
_db_session.SessionLocal = TestingSessionLocal


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Create a test client with database dependency override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_provider(db):
    """Factory: persisted Provider with derived phone columns filled."""

    def _make(
        phone: str = "+54 9 11 3556-2673",
        name: str = "Lácteos del Sur",
        contact_name: str | None = "Marta",
        user_id: str = "user-1",
    ) -> Provider:
        provider = Provider(user_id=user_id, name=name, contact_name=contact_name, phone=phone)
        normalize_provider_phone(provider)
        db.add(provider)
        db.commit()
        db.refresh(provider)
        return provider

    return _make


@pytest.fixture
def make_order():
    """Factory: OrderSnapshot with a couple of items."""

    def _make(order_id: str = "ORD-1", **overrides) -> OrderSnapshot:
        data = {
            "order_id": order_id,
            "user_id": "user-1",
            "order_number": None,
            "items": [
                OrderItem(name="Leche entera", quantity=12, unit="litros", price=950),
                OrderItem(name="Manteca", quantity=2, unit="kg"),
            ],
            "notes": "Entregar por la mañana",
            "payment_method": "Transferencia",
        }
        data.update(overrides)
        return OrderSnapshot(**data)

    return _make


@pytest.fixture
def sender():
    """Send capability double: every send succeeds unless a test says otherwise."""
    mock = AsyncMock()
    mock.send_template.return_value = SendResult(status=SEND_SENT, message_id="wamid.template")
    mock.send_text.return_value = SendResult(status=SEND_SENT, message_id="wamid.text")
    return mock
