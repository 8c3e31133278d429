"""Storage interfaces for the compliance engine, plus an in-memory implementation.

The store is the final arbiter for idempotent creation: implementations
must enforce the uniqueness constraints below atomically and surface a
violation as DuplicateCreationError / ConflictError carrying the id of
the entity that won.

Customers are unique per tenant on each of:
  external_id
  email (case-insensitive)
  (first_name, last_name, date_of_birth)
Transactions are unique per tenant on external_id. At most one active
investigation exists per (tenant, customer). Investigation updates are
compare-and-swap on ``version``.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from .errors import ConflictError, DuplicateCreationError, NotFoundError, StaleStateError
from .models import Investigation, Party, Transaction, TransactionDirection


class CustomerRepository(Protocol):
    async def get(self, tenant_id: str, customer_id: str) -> Party | None: ...

    async def find_by_external_id(self, tenant_id: str, external_id: str) -> Party | None: ...

    async def find_by_email(self, tenant_id: str, email: str) -> Party | None: ...

    async def find_by_name_dob(
        self, tenant_id: str, first_name: str, last_name: str, date_of_birth: object
    ) -> Party | None: ...

    async def create(self, party: Party) -> Party: ...


class TransactionRepository(Protocol):
    async def find_by_external_id(self, tenant_id: str, external_id: str) -> Transaction | None: ...

    async def find_near_match(
        self,
        tenant_id: str,
        customer_id: str,
        amount: Decimal,
        currency: str,
        direction: TransactionDirection,
        start: datetime,
        end: datetime,
    ) -> Transaction | None: ...

    async def list_for_customer(
        self, tenant_id: str, customer_id: str, since: datetime | None = None
    ) -> list[Transaction]: ...

    async def add(self, transaction: Transaction) -> Transaction: ...


class InvestigationRepository(Protocol):
    async def get(self, tenant_id: str, investigation_id: str) -> Investigation | None: ...

    async def find_active(self, tenant_id: str, customer_id: str) -> Investigation | None: ...

    async def create(self, investigation: Investigation) -> Investigation: ...

    async def update(self, investigation: Investigation, expected_version: int) -> Investigation: ...


def _email_key(email: str | None) -> str | None:
    return email.strip().lower() if email and email.strip() else None


class InMemoryCustomerRepository:
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], Party] = {}
        self._lock = asyncio.Lock()

    async def get(self, tenant_id: str, customer_id: str) -> Party | None:
        return self._rows.get((tenant_id, customer_id))

    def _scan(self, tenant_id: str, predicate) -> Party | None:
        for (tid, _), party in self._rows.items():
            if tid == tenant_id and predicate(party):
                return party
        return None

    async def find_by_external_id(self, tenant_id: str, external_id: str) -> Party | None:
        return self._scan(tenant_id, lambda p: p.external_id == external_id)

    async def find_by_email(self, tenant_id: str, email: str) -> Party | None:
        key = _email_key(email)
        return self._scan(tenant_id, lambda p: _email_key(p.email) == key)

    async def find_by_name_dob(
        self, tenant_id: str, first_name: str, last_name: str, date_of_birth: object
    ) -> Party | None:
        return self._scan(
            tenant_id,
            lambda p: (p.first_name, p.last_name, p.date_of_birth)
            == (first_name, last_name, date_of_birth),
        )

    async def create(self, party: Party) -> Party:
        if party.tenant_id is None:
            raise ValueError("party.tenant_id is required")
        async with self._lock:
            tenant = party.tenant_id
            existing = None
            if party.external_id:
                existing = await self.find_by_external_id(tenant, party.external_id)
            if existing is None and _email_key(party.email):
                existing = await self.find_by_email(tenant, party.email)
            if existing is None and party.first_name and party.last_name and party.date_of_birth:
                existing = await self.find_by_name_dob(
                    tenant, party.first_name, party.last_name, party.date_of_birth
                )
            if existing is not None or (tenant, party.id) in self._rows:
                existing_id = existing.id if existing is not None else party.id
                raise DuplicateCreationError(
                    f"customer already exists for tenant {tenant}", existing_id=existing_id
                )
            stored = party.model_copy(update={"email": _email_key(party.email)})
            self._rows[(tenant, party.id)] = stored
            return stored


class InMemoryTransactionRepository:
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], Transaction] = {}
        self._lock = asyncio.Lock()

    async def find_by_external_id(self, tenant_id: str, external_id: str) -> Transaction | None:
        for (tid, _), tx in self._rows.items():
            if tid == tenant_id and tx.external_id == external_id:
                return tx
        return None

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
        candidates = sorted(
            (
                tx for (tid, _), tx in self._rows.items()
                if tid == tenant_id
                and tx.customer_id == customer_id
                and tx.amount == amount
                and tx.currency.upper() == currency.upper()
                and tx.direction == direction
                and start <= tx.occurred_at <= end
            ),
            key=lambda tx: (tx.occurred_at, tx.id),
        )
        return candidates[0] if candidates else None

    async def list_for_customer(
        self, tenant_id: str, customer_id: str, since: datetime | None = None
    ) -> list[Transaction]:
        return sorted(
            (
                tx for (tid, _), tx in self._rows.items()
                if tid == tenant_id
                and tx.customer_id == customer_id
                and (since is None or tx.occurred_at >= since)
            ),
            key=lambda tx: (tx.occurred_at, tx.id),
        )

    async def add(self, transaction: Transaction) -> Transaction:
        if transaction.tenant_id is None:
            raise ValueError("transaction.tenant_id is required")
        async with self._lock:
            if transaction.external_id:
                existing = await self.find_by_external_id(
                    transaction.tenant_id, transaction.external_id
                )
                if existing is not None:
                    raise DuplicateCreationError(
                        f"transaction {transaction.external_id} already imported",
                        existing_id=existing.id,
                    )
            self._rows[(transaction.tenant_id, transaction.id)] = transaction
            return transaction


class InMemoryInvestigationRepository:
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], Investigation] = {}
        self._lock = asyncio.Lock()

    async def get(self, tenant_id: str, investigation_id: str) -> Investigation | None:
        return self._rows.get((tenant_id, investigation_id))

    async def find_active(self, tenant_id: str, customer_id: str) -> Investigation | None:
        for (tid, _), inv in self._rows.items():
            if tid == tenant_id and inv.customer_id == customer_id and inv.is_active:
                return inv
        return None

    async def create(self, investigation: Investigation) -> Investigation:
        async with self._lock:
            existing = await self.find_active(investigation.tenant_id, investigation.customer_id)
            if existing is not None:
                raise ConflictError(
                    f"customer {investigation.customer_id} already has an active investigation",
                    existing_id=existing.id,
                )
            self._rows[(investigation.tenant_id, investigation.id)] = investigation
            return investigation

    async def update(self, investigation: Investigation, expected_version: int) -> Investigation:
        async with self._lock:
            key = (investigation.tenant_id, investigation.id)
            current = self._rows.get(key)
            if current is None:
                raise NotFoundError("investigation", investigation.id)
            if current.version != expected_version:
                raise StaleStateError(investigation.id, expected_version, current.version)
            stored = investigation.model_copy(update={"version": expected_version + 1})
            self._rows[key] = stored
            return stored
