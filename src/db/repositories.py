"""SQLAlchemy-backed implementations of the compliance repository protocols.

Each call runs in its own session so concurrent workers never share
transaction state. Integrity violations from the uniqueness constraints
are translated into the engine's conflict errors.
"""

from datetime import UTC, date, datetime
from decimal import Decimal

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import ACTIVE_STATUSES, CustomerRecord, InvestigationRecord, TransactionRecord
from src.domains.compliance.errors import (
    ConflictError,
    DuplicateCreationError,
    NotFoundError,
    StaleStateError,
)
from src.domains.compliance.models import Investigation, Party, Transaction, TransactionDirection

logger = structlog.get_logger()


def _utc(moment: datetime) -> datetime:
    return moment.astimezone(UTC) if moment.tzinfo else moment.replace(tzinfo=UTC)


def _to_party(row: CustomerRecord) -> Party:
    return Party.model_validate(row.payload)


def _to_transaction(row: TransactionRecord) -> Transaction:
    return Transaction.model_validate(row.payload)


def _to_investigation(row: InvestigationRecord) -> Investigation:
    return Investigation.model_validate({**row.payload, "version": row.version})


class SqlAlchemyCustomerRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def _one(self, *criteria) -> Party | None:
        async with self._sessions() as session:
            row = (await session.execute(select(CustomerRecord).where(*criteria).limit(1))).scalar()
            return _to_party(row) if row is not None else None

    async def get(self, tenant_id: str, customer_id: str) -> Party | None:
        return await self._one(
            CustomerRecord.tenant_id == tenant_id, CustomerRecord.id == customer_id
        )

    async def find_by_external_id(self, tenant_id: str, external_id: str) -> Party | None:
        return await self._one(
            CustomerRecord.tenant_id == tenant_id, CustomerRecord.external_id == external_id
        )

    async def find_by_email(self, tenant_id: str, email: str) -> Party | None:
        return await self._one(
            CustomerRecord.tenant_id == tenant_id, CustomerRecord.email == email.strip().lower()
        )

    async def find_by_name_dob(
        self, tenant_id: str, first_name: str, last_name: str, date_of_birth: date
    ) -> Party | None:
        return await self._one(
            CustomerRecord.tenant_id == tenant_id,
            CustomerRecord.first_name == first_name,
            CustomerRecord.last_name == last_name,
            CustomerRecord.date_of_birth == date_of_birth,
        )

    async def create(self, party: Party) -> Party:
        email = party.email.strip().lower() if party.email and party.email.strip() else None
        stored = party.model_copy(update={"email": email})
        record = CustomerRecord(
            id=stored.id,
            tenant_id=stored.tenant_id,
            external_id=stored.external_id,
            email=email,
            first_name=stored.first_name,
            last_name=stored.last_name,
            date_of_birth=stored.date_of_birth,
            entity_type=stored.entity_type.value,
            payload=stored.model_dump(mode="json"),
            created_at=_utc(stored.created_at) if stored.created_at else None,
        )
        async with self._sessions() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self._find_conflict(stored)
                logger.info("customer_creation_conflict", tenant_id=stored.tenant_id,
                            existing_id=existing)
                raise DuplicateCreationError(
                    f"customer already exists for tenant {stored.tenant_id}", existing_id=existing
                ) from None
        return stored

    async def _find_conflict(self, party: Party) -> str | None:
        candidates = []
        if party.external_id:
            candidates.append(await self.find_by_external_id(party.tenant_id, party.external_id))
        if party.email:
            candidates.append(await self.find_by_email(party.tenant_id, party.email))
        if party.first_name and party.last_name and party.date_of_birth:
            candidates.append(await self.find_by_name_dob(
                party.tenant_id, party.first_name, party.last_name, party.date_of_birth
            ))
        candidates.append(await self.get(party.tenant_id, party.id))
        return next((c.id for c in candidates if c is not None), None)


class SqlAlchemyTransactionRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def find_by_external_id(self, tenant_id: str, external_id: str) -> Transaction | None:
        async with self._sessions() as session:
            row = (await session.execute(
                select(TransactionRecord).where(
                    TransactionRecord.tenant_id == tenant_id,
                    TransactionRecord.external_id == external_id,
                )
            )).scalar()
            return _to_transaction(row) if row is not None else None

    async def find_near_match(
        self,
        tenant_id: str,
        customer_id: str,
        amount: Decimal,
        currency: str,
        direction: TransactionDirection,
        start: datetime,
        end: datetime,
    ) -> Transaction | None:
        async with self._sessions() as session:
            row = (await session.execute(
                select(TransactionRecord)
                .where(
                    and_(
                        TransactionRecord.tenant_id == tenant_id,
                        TransactionRecord.customer_id == customer_id,
                        TransactionRecord.amount == amount,
                        TransactionRecord.currency == currency.upper(),
                        TransactionRecord.direction == direction.value,
                        TransactionRecord.occurred_at >= _utc(start),
                        TransactionRecord.occurred_at <= _utc(end),
                    )
                )
                .order_by(TransactionRecord.occurred_at, TransactionRecord.id)
                .limit(1)
            )).scalar()
            return _to_transaction(row) if row is not None else None

    async def list_for_customer(
        self, tenant_id: str, customer_id: str, since: datetime | None = None
    ) -> list[Transaction]:
        query = select(TransactionRecord).where(
            TransactionRecord.tenant_id == tenant_id,
            TransactionRecord.customer_id == customer_id,
        )
        if since is not None:
            query = query.where(TransactionRecord.occurred_at >= _utc(since))
        async with self._sessions() as session:
            rows = (await session.execute(
                query.order_by(TransactionRecord.occurred_at, TransactionRecord.id)
            )).scalars()
            return [_to_transaction(r) for r in rows]

    async def add(self, transaction: Transaction) -> Transaction:
        record = TransactionRecord(
            id=transaction.id,
            tenant_id=transaction.tenant_id,
            customer_id=transaction.customer_id,
            external_id=transaction.external_id,
            amount=transaction.amount,
            currency=transaction.currency.upper(),
            direction=transaction.direction.value,
            occurred_at=_utc(transaction.occurred_at),
            payload=transaction.model_dump(mode="json"),
        )
        async with self._sessions() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = (
                    await self.find_by_external_id(transaction.tenant_id, transaction.external_id)
                    if transaction.external_id else None
                )
                raise DuplicateCreationError(
                    f"transaction {transaction.external_id or transaction.id} already imported",
                    existing_id=existing.id if existing else transaction.id,
                ) from None
        return transaction


class SqlAlchemyInvestigationRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get(self, tenant_id: str, investigation_id: str) -> Investigation | None:
        async with self._sessions() as session:
            row = await session.get(InvestigationRecord, investigation_id)
            if row is None or row.tenant_id != tenant_id:
                return None
            return _to_investigation(row)

    async def find_active(self, tenant_id: str, customer_id: str) -> Investigation | None:
        async with self._sessions() as session:
            row = (await session.execute(
                select(InvestigationRecord).where(
                    InvestigationRecord.tenant_id == tenant_id,
                    InvestigationRecord.customer_id == customer_id,
                    InvestigationRecord.status.in_(ACTIVE_STATUSES),
                )
            )).scalar()
            return _to_investigation(row) if row is not None else None

    async def create(self, investigation: Investigation) -> Investigation:
        record = InvestigationRecord(
            id=investigation.id,
            tenant_id=investigation.tenant_id,
            customer_id=investigation.customer_id,
            status=investigation.status.value,
            version=investigation.version,
            payload=investigation.model_dump(mode="json", exclude={"version"}),
            created_at=_utc(investigation.created_at),
            updated_at=_utc(investigation.updated_at),
        )
        async with self._sessions() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self.find_active(investigation.tenant_id, investigation.customer_id)
                raise ConflictError(
                    f"customer {investigation.customer_id} already has an active investigation",
                    existing_id=existing.id if existing else None,
                ) from None
        return investigation

    async def update(self, investigation: Investigation, expected_version: int) -> Investigation:
        new_version = expected_version + 1
        stored = investigation.model_copy(update={"version": new_version})
        async with self._sessions() as session:
            result = await session.execute(
                update(InvestigationRecord)
                .where(
                    InvestigationRecord.id == investigation.id,
                    InvestigationRecord.tenant_id == investigation.tenant_id,
                    InvestigationRecord.version == expected_version,
                )
                .values(
                    status=stored.status.value,
                    version=new_version,
                    payload=stored.model_dump(mode="json", exclude={"version"}),
                    updated_at=_utc(stored.updated_at),
                )
            )
            await session.commit()

        if result.rowcount == 0:
            current = await self.get(investigation.tenant_id, investigation.id)
            if current is None:
                raise NotFoundError("investigation", investigation.id)
            raise StaleStateError(investigation.id, expected_version, current.version)
        return stored
