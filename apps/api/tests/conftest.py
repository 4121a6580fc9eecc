"""
Pytest configuration and fixtures

IMPORTANT: All tests use transactional rollback isolation.
Nothing created during tests persists to the database.
Application code may commit freely; commits only release a savepoint.
"""
import pytest
import sys
import os
import tempfile
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import uuid4

# Configure the app for tests BEFORE anything imports core.config.
_TEST_DIR = tempfile.mkdtemp(prefix="stakewise-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DIR}/test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters-long")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:6399/0")
os.environ.setdefault("UPLOAD_BACKEND", "local")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TEST_DIR, "uploads"))

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture(scope="session", autouse=True)
def _ensure_db_schema_is_at_head():
    """Apply the Alembic migrations to the test database once per session."""
    try:
        from alembic import command
        from run_migrations import alembic_config

        command.upgrade(alembic_config(), "head")
    except Exception as e:
        raise RuntimeError(f"Failed to upgrade DB to Alembic head: {e}") from e


from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from core import account_security
from core.auth import RequestContext
from core.database import engine, get_db
from core.security import create_access_token, get_password_hash
from main import app
from models import Goal, GoalStatus, Payment, PaymentProvider, PaymentStatus, Role, User
from services.blob_storage import LocalBlobStorage, get_blob_storage
from services.payment_gateway import PaymentGateway, get_gateway_resolver


@pytest.fixture(scope="function")
def db_session():
    """
    Session bound to an outer transaction that is rolled back after the test.

    commit() inside application code only releases a SAVEPOINT, so services
    behave exactly as in production while nothing persists.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        autoflush=False,
        expire_on_commit=False,
    )

    yield session

    session.close()
    transaction.rollback()
    connection.close()


class FakeGateway(PaymentGateway):
    """In-memory gateway. Set fail_on to make one operation raise PaymentError."""

    provider = PaymentProvider.STRIPE

    def __init__(self):
        self.holds: List[Tuple[Decimal, str, str]] = []
        self.refunds: List[Tuple[str, Optional[str]]] = []
        self.captures: List[Tuple[str, Optional[str]]] = []
        self.fail_on: Optional[str] = None
        self._next = 0

    def _maybe_fail(self, op: str) -> None:
        if self.fail_on == op:
            from core.exceptions import PaymentError

            raise PaymentError(f"{op} declined by fake gateway", gateway_status=402)

    def hold(self, *, amount, source_token, description, metadata=None) -> str:
        self._maybe_fail("hold")
        self._next += 1
        charge_id = f"ch_fake_{self._next}"
        self.holds.append((Decimal(amount), source_token, description))
        return charge_id

    def refund(self, charge_id, *, idempotency_key=None) -> None:
        self._maybe_fail("refund")
        self.refunds.append((charge_id, idempotency_key))

    def capture(self, charge_id, *, idempotency_key=None) -> None:
        self._maybe_fail("capture")
        self.captures.append((charge_id, idempotency_key))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def resolve_gateway(gateway):
    return lambda provider: gateway


@pytest.fixture
def upload_root(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def client(db_session, resolve_gateway, upload_root):
    """TestClient wired to the rollback session, the fake gateway and a temp upload dir."""

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway_resolver] = lambda: resolve_gateway
    app.dependency_overrides[get_blob_storage] = lambda: LocalBlobStorage(upload_root, "/uploads")
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_login_attempts():
    account_security._login_attempts.clear()
    yield
    account_security._login_attempts.clear()


def make_user(db: Session, role: Role = Role.STUDENT, *, password: str = "Str0ngPass!", timezone: Optional[str] = None) -> User:
    user = User(
        email=f"{role.value.lower()}_{uuid4().hex[:10]}@example.com",
        name=f"Test {role.value.title()}",
        password_hash=get_password_hash(password),
        role=role,
        timezone=timezone,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


def ctx_for(user: User) -> RequestContext:
    return RequestContext.for_user(user)


def make_goal(
    db: Session,
    owner: User,
    *,
    status: GoalStatus = GoalStatus.PENDING_INSTRUCTOR_ASSIGNMENT,
    instructor: Optional[User] = None,
    duration_days: int = 7,
    stake: str = "10.00",
    payment_status: Optional[PaymentStatus] = PaymentStatus.HELD,
) -> Goal:
    """Insert a goal directly (bypassing the gateway) in any state."""
    goal = Goal(
        title="Run every day",
        description="At least 3km",
        duration_days=duration_days,
        stake_amount=Decimal(stake),
        status=status,
        user_id=owner.id,
        instructor_id=instructor.id if instructor else None,
    )
    if payment_status is not None:
        goal.payment = Payment(
            provider=PaymentProvider.STRIPE,
            provider_charge_id=f"ch_seed_{uuid4().hex[:8]}",
            amount=Decimal(stake),
            status=payment_status,
            recipient_id=owner.id,
        )
    db.add(goal)
    db.commit()
    db.refresh(goal)
    return goal


@pytest.fixture
def student(db_session):
    return make_user(db_session, Role.STUDENT)


@pytest.fixture
def other_student(db_session):
    return make_user(db_session, Role.STUDENT)


@pytest.fixture
def instructor(db_session):
    return make_user(db_session, Role.INSTRUCTOR)


@pytest.fixture
def other_instructor(db_session):
    return make_user(db_session, Role.INSTRUCTOR)


@pytest.fixture
def admin(db_session):
    return make_user(db_session, Role.ADMIN)
