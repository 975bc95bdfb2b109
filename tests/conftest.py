import os

# Settings are read at import time; configure before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["EMAIL_ENABLED"] = "false"

from datetime import datetime
from typing import AsyncGenerator, Dict, List

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.models import User
from app.auth.security import create_access_token, hash_password
from app.core.enums import UserRole
from app.core.models import Organization
from app.db.session import Base, get_db
from app.main import app
from app.notifications import GuardianCredentialsEmail, get_notifier


FIXED_NOW = datetime(2025, 1, 10, 9, 0, 0)
ADMIN_PASSWORD = "AdminPass123!"


class FakeNotifier:
    """Records outgoing guardian emails instead of sending them."""

    def __init__(self, fail: bool = False, raise_error: bool = False) -> None:
        self.fail = fail
        self.raise_error = raise_error
        self.sent: List[GuardianCredentialsEmail] = []

    async def send_guardian_credentials(self, message: GuardianCredentialsEmail) -> bool:
        if self.raise_error:
            raise ConnectionError("SMTP server unreachable")
        if self.fail:
            return False
        self.sent.append(message)
        return True


@pytest.fixture()
async def engine(tmp_path):
    """File-backed SQLite so separate sessions (and connections) see the same data."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, future=True)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
async def organization(db_session: AsyncSession) -> Organization:
    org = Organization(name="Accra Academy", contact_email="office@accra-academy.org")
    db_session.add(org)
    await db_session.commit()
    return org


@pytest.fixture()
async def other_organization(db_session: AsyncSession) -> Organization:
    org = Organization(name="Kumasi High", contact_email="office@kumasi-high.org", status="ACTIVE")
    db_session.add(org)
    await db_session.commit()
    return org


@pytest.fixture()
async def org_admin(db_session: AsyncSession, organization: Organization) -> User:
    admin = User(
        organization_id=organization.id,
        username="akosua.admin",
        first_name="Akosua",
        last_name="Owusu",
        email="akosua@accra-academy.org",
        password_hash=hash_password(ADMIN_PASSWORD),
        role=UserRole.ORG_ADMIN.value,
        is_active=True,
        credentials_set=True,
    )
    db_session.add(admin)
    await db_session.commit()
    return admin


@pytest.fixture()
def auth_headers(org_admin: User) -> Dict[str, str]:
    token = create_access_token(
        subject={
            "sub": str(org_admin.id),
            "user_id": str(org_admin.id),
            "organization_id": str(org_admin.organization_id),
            "role": org_admin.role,
        }
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
async def client(db_session: AsyncSession, notifier: FakeNotifier) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, sharing the test session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def enrollment_payload(
    student_first: str = "Ama",
    student_last: str = "Boateng",
    guardian_first: str = "Kofi",
    guardian_last: str = "Boateng",
    guardian_email: str = "kofi.boateng@mail.com",
    relation: str = "Father",
    age=40,
    grade_level: str = "5",
    academic_year: str = "2024-2025",
) -> dict:
    return {
        "student": {
            "first_name": student_first,
            "last_name": student_last,
            "date_of_birth": "2014-03-21",
            "gender": "Female",
            "email": "",
            "phone": "",
            "address": "12 Ring Road, Accra",
        },
        "guardian": {
            "first_name": guardian_first,
            "last_name": guardian_last,
            "email": guardian_email,
            "phone": "+233201234567",
            "relation": relation,
            "age": age,
        },
        "enrollment": {
            "grade_level": grade_level,
            "academic_year": academic_year,
        },
    }


@pytest.fixture()
def make_payload():
    return enrollment_payload


@pytest.fixture()
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture()
def notifier_factory():
    return FakeNotifier
