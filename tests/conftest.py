"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default env, before anything under app/ is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./billflow_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BILLFLOW_ENV", "test")

from app.main import app  # noqa: E402
from app.db import get_db  # noqa: E402
from app.models import ApiKey, Base, Bill, Mda, Role, User  # noqa: E402
from app.schemas.bill import BillCreate  # noqa: E402
from app.services import lifecycle  # noqa: E402
from app.services.lifecycle import Actor  # noqa: E402
from app.utils.apikey import hash_key  # noqa: E402

DB_PATH = Path("./billflow_test.db")

# --- Fresh file DB per session; schema from metadata (migrations have their own test)
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)
Base.metadata.create_all(bind=engine)


@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session
    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_mda(db_session: Session) -> Callable[..., Mda]:
    def _factory(code: str | None = None, name: str = "Federal Ministry of Works") -> Mda:
        mda = Mda(code=code or f"MDA-{uuid4().hex[:6].upper()}", name=name)
        db_session.add(mda)
        db_session.commit()
        return mda

    return _factory


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(role: Role, *, mda: Mda | None = None, is_active: bool = True) -> User:
        handle = f"{role.value}-{uuid4().hex[:8]}"
        user = User(
            username=handle,
            email=f"{handle}@example.com",
            role=role,
            role_scope_id=mda.id if mda is not None else None,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _factory


@pytest.fixture
def headers_for(db_session: Session) -> Callable[[User], dict[str, str]]:
    def _factory(user: User) -> dict[str, str]:
        token = f"{user.role.value}-{uuid4().hex}"
        db_session.add(
            ApiKey(
                name=f"key-{uuid4().hex}",
                prefix=f"test_{user.role.value}",
                key_hash=hash_key(token),
                user_id=user.id,
                is_active=True,
            )
        )
        db_session.commit()
        return {"Authorization": f"Bearer {token}"}

    return _factory


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=user.role, role_scope_id=user.role_scope_id)


@dataclass
class Parties:
    """One user per role plus the MDA the bills are drawn on."""

    mda: Mda
    other_mda: Mda
    supplier: User
    spv: User
    mda_user: User
    other_mda_user: User
    treasury: User
    admin: User

    @property
    def supplier_actor(self) -> Actor:
        return actor_for(self.supplier)

    @property
    def spv_actor(self) -> Actor:
        return actor_for(self.spv)

    @property
    def mda_actor(self) -> Actor:
        return actor_for(self.mda_user)

    @property
    def other_mda_actor(self) -> Actor:
        return actor_for(self.other_mda_user)

    @property
    def treasury_actor(self) -> Actor:
        return actor_for(self.treasury)

    @property
    def admin_actor(self) -> Actor:
        return actor_for(self.admin)


@pytest.fixture
def parties(make_mda: Callable[..., Mda], make_user: Callable[..., User]) -> Parties:
    mda = make_mda(name="Federal Ministry of Health")
    other_mda = make_mda(name="Federal Ministry of Education")
    return Parties(
        mda=mda,
        other_mda=other_mda,
        supplier=make_user(Role.SUPPLIER),
        spv=make_user(Role.SPV),
        mda_user=make_user(Role.MDA, mda=mda),
        other_mda_user=make_user(Role.MDA, mda=other_mda),
        treasury=make_user(Role.TREASURY),
        admin=make_user(Role.ADMIN),
    )


@pytest.fixture
def make_bill(db_session: Session, parties: Parties) -> Callable[..., Bill]:
    """Submit a bill through the engine (status ``submitted``)."""

    def _factory(amount: str = "1000000.00", *, supplier: User | None = None, mda: Mda | None = None) -> Bill:
        supplier_user = supplier or parties.supplier
        payload = BillCreate(
            mda_id=(mda or parties.mda).id,
            invoice_number=f"INV-{uuid4().hex[:8].upper()}",
            invoice_date=date(2025, 1, 10),
            amount=Decimal(amount),
        )
        return lifecycle.submit_bill(db_session, actor_for(supplier_user), payload)

    return _factory
