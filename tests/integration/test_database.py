"""Integration tests for the database models and SQLAlchemy repositories.

Runs against an in-memory SQLite database so the uniqueness constraints and
the partial index on active investigations are exercised for real.
"""

from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.models import Base, CustomerRecord, InvestigationRecord, TransactionRecord
from src.db.repositories import (
    SqlAlchemyCustomerRepository,
    SqlAlchemyInvestigationRepository,
    SqlAlchemyTransactionRepository,
)
from src.domains.compliance.errors import (
    ConflictError,
    DuplicateCreationError,
    NotFoundError,
    StaleStateError,
)
from src.domains.compliance.models import (
    Investigation,
    InvestigationStatus,
    Party,
    Transaction,
    TransactionDirection,
)

pytestmark = pytest.mark.integration

TENANT = "tenant-a"
AT = datetime(2025, 3, 3, 2, 0, tzinfo=UTC)


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


def _party(party_id: str, **kwargs) -> Party:
    defaults = {"id": party_id, "tenant_id": TENANT, "first_name": "Ana", "last_name": "Silva"}
    defaults.update(kwargs)
    return Party(**defaults)


def _tx(tx_id: str, **kwargs) -> Transaction:
    defaults = {
        "id": tx_id,
        "tenant_id": TENANT,
        "customer_id": "c-1",
        "amount": Decimal("250.00"),
        "currency": "AUD",
        "direction": TransactionDirection.INCOMING,
        "occurred_at": AT,
    }
    defaults.update(kwargs)
    return Transaction(**defaults)


def _investigation(inv_id: str, customer_id: str = "c-1", **kwargs) -> Investigation:
    defaults = {
        "id": inv_id,
        "tenant_id": TENANT,
        "customer_id": customer_id,
        "trigger_reason": "High risk score 75",
        "created_at": AT,
        "updated_at": AT,
    }
    defaults.update(kwargs)
    return Investigation(**defaults)


class TestModels:
    def test_tables(self):
        assert CustomerRecord.__tablename__ == "customers"
        assert TransactionRecord.__tablename__ == "transactions"
        assert InvestigationRecord.__tablename__ == "edd_investigations"

    def test_investigation_columns(self):
        columns = {c.name for c in InvestigationRecord.__table__.columns}
        assert {"tenant_id", "customer_id", "status", "version", "payload"} <= columns


class TestCustomerRepository:
    @pytest.mark.asyncio
    async def test_create_and_lookup(self, session_factory):
        repo = SqlAlchemyCustomerRepository(session_factory)
        await repo.create(_party("c-1", email=" Ana@Example.COM", external_id="CRM-1",
                                 date_of_birth=date(1990, 1, 2)))

        assert (await repo.get(TENANT, "c-1")).email == "ana@example.com"
        assert (await repo.find_by_email(TENANT, "ANA@example.com")).id == "c-1"
        assert (await repo.find_by_external_id(TENANT, "CRM-1")).id == "c-1"
        found = await repo.find_by_name_dob(TENANT, "Ana", "Silva", date(1990, 1, 2))
        assert found.id == "c-1"
        assert await repo.get("tenant-b", "c-1") is None

    @pytest.mark.asyncio
    async def test_duplicate_external_id(self, session_factory):
        repo = SqlAlchemyCustomerRepository(session_factory)
        await repo.create(_party("c-1", external_id="CRM-1"))
        with pytest.raises(DuplicateCreationError) as exc_info:
            await repo.create(_party("c-2", external_id="CRM-1", first_name="Other"))
        assert exc_info.value.existing_id == "c-1"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, session_factory):
        repo = SqlAlchemyCustomerRepository(session_factory)
        await repo.create(_party("c-1", email="ana@example.com"))
        with pytest.raises(DuplicateCreationError) as exc_info:
            await repo.create(_party("c-2", email="ANA@example.com"))
        assert exc_info.value.existing_id == "c-1"

    @pytest.mark.asyncio
    async def test_same_email_in_other_tenant(self, session_factory):
        repo = SqlAlchemyCustomerRepository(session_factory)
        await repo.create(_party("c-1", email="ana@example.com"))
        await repo.create(_party("c-2", tenant_id="tenant-b", email="ana@example.com"))
        assert (await repo.find_by_email("tenant-b", "ana@example.com")).id == "c-2"


class TestTransactionRepository:
    @pytest.mark.asyncio
    async def test_external_id_unique(self, session_factory):
        repo = SqlAlchemyTransactionRepository(session_factory)
        await repo.add(_tx("t-1", external_id="BANK-1"))
        with pytest.raises(DuplicateCreationError) as exc_info:
            await repo.add(_tx("t-2", external_id="BANK-1"))
        assert exc_info.value.existing_id == "t-1"

    @pytest.mark.asyncio
    async def test_find_near_match_window(self, session_factory):
        repo = SqlAlchemyTransactionRepository(session_factory)
        await repo.add(_tx("t-1"))
        window = timedelta(hours=1)

        async def near(at: datetime, **kwargs):
            params = {"amount": Decimal("250.00"), "currency": "aud",
                      "direction": TransactionDirection.INCOMING}
            params.update(kwargs)
            return await repo.find_near_match(
                TENANT, "c-1", params["amount"], params["currency"], params["direction"],
                at - window, at + window,
            )

        assert (await near(AT + window)).id == "t-1"
        assert await near(AT + window + timedelta(seconds=1)) is None
        assert await near(AT, direction=TransactionDirection.OUTGOING) is None
        assert await near(AT, amount=Decimal("250.01")) is None

    @pytest.mark.asyncio
    async def test_list_for_customer_is_ordered(self, session_factory):
        repo = SqlAlchemyTransactionRepository(session_factory)
        await repo.add(_tx("t-2", occurred_at=AT + timedelta(days=1)))
        await repo.add(_tx("t-1"))
        await repo.add(_tx("t-3", customer_id="c-2"))
        assert [t.id for t in await repo.list_for_customer(TENANT, "c-1")] == ["t-1", "t-2"]
        since = await repo.list_for_customer(TENANT, "c-1", since=AT + timedelta(hours=1))
        assert [t.id for t in since] == ["t-2"]


class TestInvestigationRepository:
    @pytest.mark.asyncio
    async def test_one_active_per_customer(self, session_factory):
        repo = SqlAlchemyInvestigationRepository(session_factory)
        await repo.create(_investigation("inv-1"))
        with pytest.raises(ConflictError) as exc_info:
            await repo.create(_investigation("inv-2"))
        assert exc_info.value.existing_id == "inv-1"

    @pytest.mark.asyncio
    async def test_closed_investigation_frees_customer(self, session_factory):
        repo = SqlAlchemyInvestigationRepository(session_factory)
        inv = await repo.create(_investigation("inv-1"))
        await repo.update(inv.model_copy(update={"status": InvestigationStatus.CANCELLED}),
                          expected_version=1)
        await repo.create(_investigation("inv-2"))
        assert (await repo.find_active(TENANT, "c-1")).id == "inv-2"

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, session_factory):
        repo = SqlAlchemyInvestigationRepository(session_factory)
        inv = await repo.create(_investigation("inv-1"))
        updated = await repo.update(inv.model_copy(update={"assigned_to": "a"}),
                                    expected_version=1)
        assert updated.version == 2
        with pytest.raises(StaleStateError) as exc_info:
            await repo.update(inv.model_copy(update={"assigned_to": "b"}), expected_version=1)
        assert exc_info.value.actual_version == 2
        stored = await repo.get(TENANT, "inv-1")
        assert stored.assigned_to == "a"
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_update_missing(self, session_factory):
        repo = SqlAlchemyInvestigationRepository(session_factory)
        with pytest.raises(NotFoundError):
            await repo.update(_investigation("ghost"), expected_version=1)

    @pytest.mark.asyncio
    async def test_get_is_tenant_scoped(self, session_factory):
        repo = SqlAlchemyInvestigationRepository(session_factory)
        await repo.create(_investigation("inv-1"))
        assert await repo.get("tenant-b", "inv-1") is None
