"""
Pytest configuration and fixtures
"""
import os

# Settings are read at import time; provide the required values before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-biometric-sync")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.engine import Engine
from app.main import app
from app.db.base import Base
from app.core.deps import get_db, get_device_transport
from app.core.security import create_access_token, encrypt_device_secret
from app.services.device_transport import DeviceTransport, DeviceUser, TransportError

# Import all models to ensure they're registered with Base.metadata
from app.models import (
    Employee,
    DailyTimeRecord,
    BiometricDevice,
    StagedSyncBatch,
    EnrollmentSession,
    AuditLog,
)  # noqa


# Use in-memory SQLite for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

COMPANY_ID = 1
OTHER_COMPANY_ID = 2


# Enable foreign keys for SQLite
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeTransport(DeviceTransport):
    """In-memory terminal: tests set rows/users or an error to raise"""

    def __init__(self):
        self.rows = []
        self.users = []
        self.error = None
        self.cancel_error = None
        self.enroll_result = True
        self.enroll_requests = []
        self.calls = []
        self.last_params = None

    def _call(self, name, params):
        self.calls.append(name)
        self.last_params = params
        if self.error is not None:
            raise self.error

    def health_check(self, params):
        self._call("health_check", params)

    def fetch_attendance(self, params, date_from=None, date_to=None):
        self._call("fetch_attendance", params)
        return list(self.rows)

    def fetch_users(self, params):
        self._call("fetch_users", params)
        return list(self.users)

    def cancel_capture(self, params):
        self._call("cancel_capture", params)
        if self.cancel_error is not None:
            raise self.cancel_error

    def start_enroll(self, params, uid, user_id, finger_index=0, deadline_ms=None):
        self._call("start_enroll", params)
        self.enroll_requests.append({"uid": uid, "user_id": user_id, "finger_index": finger_index, "deadline_ms": deadline_ms})
        return self.enroll_result

    def fail(self, kind="UNREACHABLE", message="Device is unreachable: connection refused"):
        self.error = TransportError(kind, message)


def _make_users(*user_ids):
    return [DeviceUser(uid=index + 1, user_id=str(user_id), name=f"User {user_id}") for index, user_id in enumerate(user_ids)]


@pytest.fixture
def make_users():
    """Build terminal user lists; uid follows list order"""
    return _make_users


def auth_headers(user_id=1, company_id=COMPANY_ID, role="HR"):
    token = create_access_token({"sub": str(user_id), "company_id": company_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def transport():
    """Fake terminal shared by the client and the test"""
    return FakeTransport()


@pytest.fixture(scope="function")
def client(db, transport):
    """Test client fixture with database and terminal overrides"""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_device_transport] = lambda: transport
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def hr_headers():
    return auth_headers(user_id=10, role="HR")


@pytest.fixture
def admin_headers():
    return auth_headers(user_id=11, role="ADMIN")


@pytest.fixture
def employee_headers():
    return auth_headers(user_id=12, role="EMPLOYEE")


@pytest.fixture
def other_company_headers():
    return auth_headers(user_id=20, company_id=OTHER_COMPANY_ID, role="HR")


@pytest.fixture
def device(db):
    """A registered terminal with a comm key"""
    device = BiometricDevice(
        company_id=COMPANY_ID,
        code="MAIN-01",
        name="Main Entrance",
        device_model="ZK-F18",
        ip_address="192.168.1.201",
        port=4370,
        timeout_ms=5000,
        secret_encrypted=encrypt_device_secret("123456"),
        is_active=True,
        is_online=False,
    )
    db.add(device)
    db.commit()
    db.refresh(device)
    return device


@pytest.fixture
def employees(db):
    """Three active employees in the test company"""
    people = [
        Employee(company_id=COMPANY_ID, employee_number="1001", first_name="Ana", last_name="Cruz", active=True),
        Employee(company_id=COMPANY_ID, employee_number="1002", first_name="Ben", last_name="Reyes", active=True),
        Employee(company_id=COMPANY_ID, employee_number="1003", first_name="Carla", last_name="Santos", active=True),
    ]
    db.add_all(people)
    db.commit()
    for person in people:
        db.refresh(person)
    return people
