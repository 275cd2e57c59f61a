"""
Shared fixtures: in-memory database, fake revocation store, directory rows
and bearer tokens.
"""

import itertools
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from ledger_backend.app.main import app
from ledger_backend.app.db.session import get_db, Base
from ledger_backend.app.core.jwt import create_access_token
from ledger_backend.app.models.employee import Employee
from ledger_backend.app.models.enums import EmployeeRole
from ledger_backend.app.services.ledger_locks import reset_locks
import ledger_backend.app.core.redis_client as redis_client_module

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enforce foreign keys so orphaned entries fail like they do on PostgreSQL."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class MockRedis:
    """In-memory stand-in for the identity service's revocation store."""

    def __init__(self):
        self.store = {}

    async def ping(self):
        return True

    async def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    async def exists(self, key):
        return 1 if key in self.store else 0

    async def flushdb(self):
        self.store = {}

    async def aclose(self):
        self.store = {}


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Point the app at the test database and the fake revocation store."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Fresh schema, lock registry and revocation store for every test."""
    reset_locks()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    """Sessionmaker for tests that need several independent sessions."""
    return TestingSessionLocal


# Directory fixtures

_employee_numbers = itertools.count(1)


@pytest.fixture
def make_employee(db_session):
    """Factory inserting an employee row."""
    async def _make(role: EmployeeRole = EmployeeRole.EMPLOYEE, email: str = None,
                    full_name: str = None, is_active: bool = True) -> Employee:
        count = next(_employee_numbers)
        employee = Employee(
            email=email or f"{role.value.lower()}{count}@example.com",
            full_name=full_name or f"{role.value.title()} {count}",
            role=role,
            is_active=is_active,
        )
        db_session.add(employee)
        await db_session.commit()
        return employee

    return _make


@pytest.fixture
async def employee(make_employee):
    return await make_employee(EmployeeRole.EMPLOYEE, email="employee@example.com", full_name="Asha Rao")


@pytest.fixture
async def other_employee(make_employee):
    return await make_employee(EmployeeRole.EMPLOYEE, email="other@example.com", full_name="Ben Ortiz")


@pytest.fixture
async def finance_user(make_employee):
    return await make_employee(EmployeeRole.FINANCE, email="finance@example.com", full_name="Finance Desk")


@pytest.fixture
async def manager_user(make_employee):
    return await make_employee(EmployeeRole.MANAGER, email="manager@example.com", full_name="Team Manager")


@pytest.fixture
async def admin_user(make_employee):
    return await make_employee(EmployeeRole.ADMIN, email="admin@example.com", full_name="Ledger Admin")


def token_for(employee: Employee) -> str:
    return create_access_token(data={
        "sub": employee.email,
        "user_id": employee.id,
        "role": employee.role.value,
    })


@pytest.fixture
def auth_headers():
    """Bearer headers for an employee row."""
    def _headers(employee: Employee) -> dict:
        return {"Authorization": f"Bearer {token_for(employee)}"}

    return _headers
