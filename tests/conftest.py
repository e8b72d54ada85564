"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default env, set before the app reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./hubx_test.db")
os.environ.setdefault("HUBX_ENV", "dev")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test-key-secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("MAIL_API_KEY", "")

from app.main import app  # noqa: E402
from app.core.clients import get_gateway, get_mailer  # noqa: E402
from app.db import enable_sqlite_savepoints, get_db  # noqa: E402
from app.models import (  # noqa: E402
    ApiKey,
    Base,
    Organization,
    OrganizationMember,
    Paper,
    PaperStatus,
    User,
    UserRole,
)
from app.services.psp_razorpay import GatewayError, GatewayOrder, GatewayPayment  # noqa: E402
from app.utils.apikey import hash_key  # noqa: E402

DB_PATH = Path("./hubx_test.db")

# --- (1) Fresh file DB for the session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
enable_sqlite_savepoints(engine)
TestingSessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False
)

# --- (2) Schema straight from the models
Base.metadata.create_all(bind=engine)


class FakeGateway:
    """In-memory stand-in for the Razorpay client."""

    key_id = "rzp_test_key"

    def __init__(self) -> None:
        self.orders: list[dict] = []
        self.payments: dict[str, GatewayPayment] = {}
        self.fail_create = False
        self.fail_fetch = False
        self.fetch_calls: list[str] = []

    def create_order(self, *, amount, currency, receipt, notes) -> GatewayOrder:
        if self.fail_create:
            raise GatewayError("gateway timeout")
        order_id = f"order_{uuid4().hex[:14]}"
        self.orders.append(
            {"id": order_id, "amount": amount, "currency": currency, "receipt": receipt, "notes": dict(notes)}
        )
        return GatewayOrder(id=order_id, amount=amount, currency=currency)

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        self.fetch_calls.append(payment_id)
        if self.fail_fetch:
            raise GatewayError("gateway timeout")
        return self.payments.get(payment_id, GatewayPayment(id=payment_id, status="captured"))


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send(self, *, to: str, subject: str, html: str) -> bool:
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True


@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection, join_transaction_mode="create_savepoint")
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture(autouse=True)
def override_dependencies(db_session: Session, gateway: FakeGateway, mailer: RecordingMailer) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(role: UserRole = UserRole.STUDENT, *, first_name: str = "Test", is_active: bool = True) -> User:
        user = User(
            email=f"{role.value.lower()}-{uuid4().hex[:8]}@example.com",
            first_name=first_name,
            last_name="User",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _factory


@pytest.fixture
def headers_for(db_session: Session) -> Callable[[User], dict[str, str]]:
    def _factory(user: User) -> dict[str, str]:
        token = f"hubx_{uuid4().hex}"
        db_session.add(
            ApiKey(
                name=f"key-{uuid4().hex}",
                prefix=token[:10],
                key_hash=hash_key(token),
                user_id=user.id,
                is_active=True,
            )
        )
        db_session.commit()
        return {"Authorization": f"Bearer {token}"}

    return _factory


@pytest.fixture
def student(make_user) -> User:
    return make_user(UserRole.STUDENT)


@pytest.fixture
def teacher(make_user) -> User:
    return make_user(UserRole.TEACHER)


@pytest.fixture
def student_headers(student, headers_for) -> dict[str, str]:
    return headers_for(student)


@pytest.fixture
def teacher_headers(teacher, headers_for) -> dict[str, str]:
    return headers_for(teacher)


@pytest.fixture
def make_paper(db_session: Session, teacher: User) -> Callable[..., Paper]:
    def _factory(
        *,
        title: str = "Math Final Exam",
        price: int | None = 500,
        is_public: bool = True,
        status: PaperStatus = PaperStatus.PUBLISHED,
        owner: User | None = None,
        standard: int | None = 10,
    ) -> Paper:
        paper = Paper(
            title=title,
            subject="Mathematics",
            standard=standard,
            price=price,
            is_public=is_public,
            status=status,
            teacher_id=(owner or teacher).id,
        )
        db_session.add(paper)
        db_session.commit()
        db_session.refresh(paper)
        return paper

    return _factory


@pytest.fixture
def make_organization(db_session: Session) -> Callable[..., Organization]:
    """Factory creating an organization with the given (user, role, active) members."""

    def _factory(*members: tuple[User, UserRole, bool], name: str = "Sunrise Academy") -> Organization:
        org = Organization(name=name)
        db_session.add(org)
        db_session.flush()
        for user, role, active in members:
            db_session.add(
                OrganizationMember(organization_id=org.id, user_id=user.id, role=role, is_active=active)
            )
        db_session.commit()
        db_session.refresh(org)
        return org

    return _factory
