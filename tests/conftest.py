import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
import models  # noqa: F401
from models.account import UserRole
from services.auth_service import AuthService
from services.location_pipeline import location_throttler
from services.realtime_store import RealtimeStore, get_store
from utils.logger import DatabaseLogger


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    previous = DatabaseLogger.session_factory
    DatabaseLogger.session_factory = factory
    yield factory
    DatabaseLogger.session_factory = previous
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return RealtimeStore(session_factory)


@pytest.fixture
def seed(store):
    """Write vehicles and user profiles straight into the store"""

    class Seeder:
        def vehicle(self, vehicle_id, **fields):
            record = {"name": f"Truck {vehicle_id}", "type": "truck", "available": True, "pricePerKm": 20}
            record.update(fields)
            store.set(f"vehicles/{vehicle_id}", record)
            return record

        def user(self, uid, role="driver", **fields):
            record = {"email": f"{uid}@example.com", "name": uid, "role": role}
            record.update(fields)
            store.set(f"users/{uid}", record)
            return record

    return Seeder()


@pytest.fixture
def client(session_factory, store, monkeypatch):
    import database
    from main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_store] = lambda: store
    # Socket handlers open their own short-lived sessions
    monkeypatch.setattr(database, "SessionLocal", session_factory)
    location_throttler.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()
    location_throttler.reset()


@pytest.fixture
def make_account(session_factory, store):
    """Create an account and return (uid, bearer headers, raw token)"""

    def _make(email, role=UserRole.CUSTOMER, password="secret123", name="Test User"):
        db = session_factory()
        try:
            account = AuthService.create_account(db, store, email, password, name, role)
            token = AuthService.generate_token(account, role.value)
            return account.uid, {"Authorization": f"Bearer {token}"}, token
        finally:
            db.close()

    return _make
