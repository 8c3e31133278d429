"""Import reconciliation: identity resolution and duplicate-transaction detection.

Customer resolution tries, in order, stopping at the first hit:
  1. internal customer id
  2. external (source-system) id
  3. email, case-insensitive
  4. exact (first name, last name, date of birth)
then creates a customer when both names are present. Creation relies on
the store's uniqueness constraints; losing a creation race surfaces as
DuplicateCreationError carrying the winner's id.

Duplicate detection compares a candidate against the customer's existing
transactions: identical external id first, then equal amount, currency
and direction within ``duplicate_time_tolerance`` (inclusive).

Batch helpers run rows concurrently under a bounded semaphore and
serialise rows that share an identity key within the batch.
"""

import asyncio
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable, Hashable, Sequence
from datetime import UTC, datetime

import structlog

from .config import ReconciliationConfig
from .errors import ComplianceError, ValidationError
from .models import (
    CandidateTransaction,
    CustomerMatchMethod,
    CustomerRow,
    DuplicateCheckResult,
    DuplicateMatchMethod,
    Party,
    ResolutionResult,
    RowOutcome,
    VerificationStatus,
)
from .repository import CustomerRepository, TransactionRepository

logger = structlog.get_logger()


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def identity_key(row: CustomerRow) -> Hashable | None:
    """The key two rows must share to possibly resolve to the same new customer."""
    if external_id := _clean(row.external_id):
        return ("external_id", external_id)
    if email := _clean(row.email):
        return ("email", email.lower())
    first, last = _clean(row.first_name), _clean(row.last_name)
    if first and last:
        return ("name", first, last, row.date_of_birth)
    if customer_id := _clean(row.customer_id):
        return ("customer_id", customer_id)
    return None


def duplicate_key(customer_id: str, candidate: CandidateTransaction) -> Hashable:
    if external_id := _clean(candidate.external_id):
        return ("external_id", external_id)
    return (
        "fields", customer_id, candidate.amount, candidate.currency.upper(), candidate.direction,
    )


class ImportReconciler:
    def __init__(
        self,
        customers: CustomerRepository,
        transactions: TransactionRepository,
        config: ReconciliationConfig | None = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._customers = customers
        self._transactions = transactions
        self._config = config or ReconciliationConfig()
        self._id_factory = id_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Customer resolution
    # ------------------------------------------------------------------

    async def resolve(self, tenant_id: str, row: CustomerRow) -> ResolutionResult:
        customer_id = _clean(row.customer_id)
        external_id = _clean(row.external_id)
        email = _clean(row.email)
        first, last = _clean(row.first_name), _clean(row.last_name)

        lookups: list[tuple[CustomerMatchMethod, Callable[[], Awaitable[Party | None]]]] = []
        if customer_id:
            lookups.append((CustomerMatchMethod.CUSTOMER_ID,
                            lambda: self._customers.get(tenant_id, customer_id)))
        if external_id:
            lookups.append((CustomerMatchMethod.EXTERNAL_ID,
                            lambda: self._customers.find_by_external_id(tenant_id, external_id)))
        if email:
            lookups.append((CustomerMatchMethod.EMAIL,
                            lambda: self._customers.find_by_email(tenant_id, email.lower())))
        if first and last and row.date_of_birth:
            lookups.append((CustomerMatchMethod.NAME_DOB,
                            lambda: self._customers.find_by_name_dob(
                                tenant_id, first, last, row.date_of_birth)))

        for method, lookup in lookups:
            found = await lookup()
            if found is not None:
                logger.info("customer_resolved", tenant_id=tenant_id,
                            customer_id=found.id, match_method=method.value)
                return ResolutionResult(matched=True, customer_id=found.id, match_method=method)

        if not (first and last):
            raise ValidationError(
                "customer",
                "Insufficient customer information to match or create customer "
                "(need customer id, external id, email, or first and last name)",
            )

        party = Party(
            id=self._id_factory(),
            tenant_id=tenant_id,
            external_id=external_id,
            first_name=first,
            last_name=last,
            date_of_birth=row.date_of_birth,
            email=email.lower() if email else None,
            phone=_clean(row.phone),
            address=row.address,
            verification_status=VerificationStatus.UNVERIFIED,
            created_at=self._clock(),
        )
        created = await self._customers.create(party)
        logger.info("customer_created", tenant_id=tenant_id, customer_id=created.id,
                    match_method=CustomerMatchMethod.CREATED.value)
        return ResolutionResult(
            matched=True, customer_id=created.id, match_method=CustomerMatchMethod.CREATED
        )

    # ------------------------------------------------------------------
    # Duplicate detection
    # ------------------------------------------------------------------

    async def check_duplicate(
        self, tenant_id: str, customer_id: str, candidate: CandidateTransaction
    ) -> DuplicateCheckResult:
        if external_id := _clean(candidate.external_id):
            existing = await self._transactions.find_by_external_id(tenant_id, external_id)
            if existing is not None:
                return DuplicateCheckResult(
                    is_duplicate=True,
                    duplicate_id=existing.id,
                    match_method=DuplicateMatchMethod.EXTERNAL_ID,
                )

        tolerance = self._config.duplicate_time_tolerance
        existing = await self._transactions.find_near_match(
            tenant_id,
            customer_id,
            candidate.amount,
            candidate.currency,
            candidate.direction,
            candidate.occurred_at - tolerance,
            candidate.occurred_at + tolerance,
        )
        if existing is not None:
            logger.info("duplicate_transaction_detected", tenant_id=tenant_id,
                        customer_id=customer_id, duplicate_id=existing.id)
            return DuplicateCheckResult(
                is_duplicate=True,
                duplicate_id=existing.id,
                match_method=DuplicateMatchMethod.AMOUNT_DATE_CUSTOMER,
            )
        return DuplicateCheckResult(is_duplicate=False)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _run_batch(
        self,
        keys: Sequence[Hashable | None],
        work: Callable[[int], Awaitable[ResolutionResult | DuplicateCheckResult]],
    ) -> list[RowOutcome]:
        semaphore = asyncio.Semaphore(self._config.max_concurrency)
        locks: defaultdict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)

        async def _one(index: int) -> RowOutcome:
            async with semaphore:
                key = keys[index]
                try:
                    if key is None:
                        result = await work(index)
                    else:
                        async with locks[key]:
                            result = await work(index)
                except ComplianceError as exc:
                    logger.warning("import_row_failed", row_index=index,
                                   error_type=type(exc).__name__, error=str(exc))
                    return RowOutcome(index=index, error=str(exc),
                                      error_type=type(exc).__name__)
                return RowOutcome(index=index, result=result)

        return list(await asyncio.gather(*(_one(i) for i in range(len(keys)))))

    async def reconcile_batch(
        self, tenant_id: str, rows: Sequence[CustomerRow]
    ) -> list[RowOutcome]:
        """Resolve every row; one outcome per row, in input order."""
        outcomes = await self._run_batch(
            [identity_key(r) for r in rows],
            lambda i: self.resolve(tenant_id, rows[i]),
        )
        logger.info(
            "import_batch_reconciled",
            tenant_id=tenant_id,
            row_count=len(rows),
            error_count=sum(1 for o in outcomes if o.error),
        )
        return outcomes

    async def check_duplicates_batch(
        self, tenant_id: str, items: Sequence[tuple[str, CandidateTransaction]]
    ) -> list[RowOutcome]:
        """Check ``(customer_id, candidate)`` pairs; one outcome per pair, in input order."""
        return await self._run_batch(
            [duplicate_key(cid, c) for cid, c in items],
            lambda i: self.check_duplicate(tenant_id, items[i][0], items[i][1]),
        )
