"""Tests for import reconciliation: customer resolution and duplicate detection."""

import asyncio
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from src.domains.compliance.config import ReconciliationConfig
from src.domains.compliance.errors import DuplicateCreationError, ValidationError
from src.domains.compliance.models import (
    CandidateTransaction,
    CustomerMatchMethod,
    CustomerRow,
    DuplicateMatchMethod,
    Party,
    Transaction,
    TransactionDirection,
)
from src.domains.compliance.reconciliation import ImportReconciler, identity_key

TENANT = "tenant-a"
AT = datetime(2025, 3, 3, 2, 0, tzinfo=UTC)


def _party(party_id: str, **kwargs) -> Party:
    defaults = {"id": party_id, "tenant_id": TENANT, "first_name": "Ana", "last_name": "Silva"}
    defaults.update(kwargs)
    return Party(**defaults)


def _candidate(**kwargs) -> CandidateTransaction:
    defaults = {
        "amount": Decimal("250.00"),
        "currency": "AUD",
        "direction": TransactionDirection.INCOMING,
        "occurred_at": AT,
    }
    defaults.update(kwargs)
    return CandidateTransaction(**defaults)


@pytest.fixture
def reconciler(customer_repo, transaction_repo, ids, clock) -> ImportReconciler:
    return ImportReconciler(customer_repo, transaction_repo, ReconciliationConfig(),
                            id_factory=ids, clock=clock)


class TestIdentityKey:
    def test_precedence(self):
        assert identity_key(CustomerRow(external_id=" X1 ", email="a@b.c")) == ("external_id", "X1")
        assert identity_key(CustomerRow(email="A@B.C")) == ("email", "a@b.c")
        assert identity_key(CustomerRow(first_name="Ana", last_name="Silva")) == (
            "name", "Ana", "Silva", None
        )
        assert identity_key(CustomerRow(customer_id="c-1")) == ("customer_id", "c-1")
        assert identity_key(CustomerRow()) is None


class TestResolve:
    @pytest.mark.asyncio
    async def test_by_customer_id(self, reconciler, customer_repo):
        await customer_repo.create(_party("c-1"))
        result = await reconciler.resolve(TENANT, CustomerRow(customer_id="c-1"))
        assert result.matched
        assert result.customer_id == "c-1"
        assert result.match_method == CustomerMatchMethod.CUSTOMER_ID

    @pytest.mark.asyncio
    async def test_by_external_id(self, reconciler, customer_repo):
        await customer_repo.create(_party("c-1", external_id="CRM-9"))
        result = await reconciler.resolve(TENANT, CustomerRow(external_id="CRM-9"))
        assert result.match_method == CustomerMatchMethod.EXTERNAL_ID

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, reconciler, customer_repo):
        await customer_repo.create(_party("c-1", email="ana@example.com"))
        result = await reconciler.resolve(TENANT, CustomerRow(email="  ANA@Example.COM "))
        assert result.customer_id == "c-1"
        assert result.match_method == CustomerMatchMethod.EMAIL

    @pytest.mark.asyncio
    async def test_by_name_and_dob(self, reconciler, customer_repo):
        await customer_repo.create(_party("c-1", date_of_birth=date(1990, 1, 2)))
        result = await reconciler.resolve(
            TENANT, CustomerRow(first_name="Ana", last_name="Silva", date_of_birth=date(1990, 1, 2))
        )
        assert result.match_method == CustomerMatchMethod.NAME_DOB

    @pytest.mark.asyncio
    async def test_earlier_strategy_wins(self, reconciler, customer_repo):
        await customer_repo.create(_party("c-1", external_id="CRM-9", first_name="A"))
        await customer_repo.create(_party("c-2", email="ana@example.com", first_name="B"))
        result = await reconciler.resolve(
            TENANT, CustomerRow(external_id="CRM-9", email="ana@example.com")
        )
        assert result.customer_id == "c-1"

    @pytest.mark.asyncio
    async def test_creates_when_no_match(self, reconciler, customer_repo):
        result = await reconciler.resolve(
            TENANT, CustomerRow(first_name="Ana", last_name="Silva", email="Ana@Example.com")
        )
        assert result.matched
        assert result.match_method == CustomerMatchMethod.CREATED
        assert result.customer_id == "id-0001"
        created = await customer_repo.get(TENANT, "id-0001")
        assert created.email == "ana@example.com"

    @pytest.mark.asyncio
    async def test_insufficient_information(self, reconciler):
        with pytest.raises(ValidationError, match="Insufficient customer information"):
            await reconciler.resolve(TENANT, CustomerRow(first_name="Ana"))

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, reconciler, customer_repo):
        await customer_repo.create(_party("c-1", email="ana@example.com"))
        result = await reconciler.resolve(
            "tenant-b", CustomerRow(email="ana@example.com", first_name="Ana", last_name="Silva")
        )
        assert result.match_method == CustomerMatchMethod.CREATED


class TestConcurrentCreation:
    @pytest.mark.asyncio
    async def test_store_rejects_second_creation(self, customer_repo):
        await customer_repo.create(_party("c-1", external_id="CRM-1"))
        with pytest.raises(DuplicateCreationError) as exc_info:
            await customer_repo.create(_party("c-2", external_id="CRM-1"))
        assert exc_info.value.existing_id == "c-1"

    @pytest.mark.asyncio
    async def test_batch_rows_for_same_person_resolve_to_one_customer(
        self, reconciler, customer_repo
    ):
        rows = [CustomerRow(first_name="Ana", last_name="Silva", email="ana@example.com")] * 10
        outcomes = await reconciler.reconcile_batch(TENANT, rows)
        assert [o.index for o in outcomes] == list(range(10))
        assert all(o.error is None for o in outcomes)
        customer_ids = {o.result.customer_id for o in outcomes}
        assert len(customer_ids) == 1
        methods = [o.result.match_method for o in outcomes]
        assert methods.count(CustomerMatchMethod.CREATED) == 1
        assert methods.count(CustomerMatchMethod.EMAIL) == 9

    @pytest.mark.asyncio
    async def test_gathered_resolves_never_create_twice(self, customer_repo, transaction_repo):
        # Independent reconcilers share only the store
        counter = iter(range(100))
        reconcilers = [
            ImportReconciler(customer_repo, transaction_repo,
                             id_factory=lambda: f"c-{next(counter)}")
            for _ in range(5)
        ]
        row = CustomerRow(external_id="CRM-7", first_name="Ana", last_name="Silva")
        results = await asyncio.gather(
            *(r.resolve(TENANT, row) for r in reconcilers), return_exceptions=True
        )
        winners = {r.customer_id for r in results if not isinstance(r, Exception)}
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert all(isinstance(e, DuplicateCreationError) for e in losers)
        assert all(e.existing_id in winners for e in losers)

    @pytest.mark.asyncio
    async def test_batch_collects_row_errors(self, reconciler):
        rows = [
            CustomerRow(first_name="Ana", last_name="Silva"),
            CustomerRow(email=None, first_name="Bob"),
        ]
        outcomes = await reconciler.reconcile_batch(TENANT, rows)
        assert outcomes[0].result is not None
        assert outcomes[1].error_type == "ValidationError"
        assert outcomes[1].result is None


class TestDuplicateDetection:
    async def _seed(self, transaction_repo, **kwargs) -> Transaction:
        defaults = {
            "id": "t-1",
            "tenant_id": TENANT,
            "customer_id": "c-1",
            "amount": Decimal("250.00"),
            "currency": "AUD",
            "direction": TransactionDirection.INCOMING,
            "occurred_at": AT,
        }
        defaults.update(kwargs)
        return await transaction_repo.add(Transaction(**defaults))

    @pytest.mark.asyncio
    async def test_external_id(self, reconciler, transaction_repo):
        await self._seed(transaction_repo, external_id="BANK-1")
        result = await reconciler.check_duplicate(
            TENANT, "c-1", _candidate(external_id="BANK-1", amount=Decimal("999.00"))
        )
        assert result.is_duplicate
        assert result.duplicate_id == "t-1"
        assert result.match_method == DuplicateMatchMethod.EXTERNAL_ID

    @pytest.mark.asyncio
    async def test_tolerance_is_inclusive(self, reconciler, transaction_repo):
        await self._seed(transaction_repo)
        at_edge = await reconciler.check_duplicate(
            TENANT, "c-1", _candidate(occurred_at=AT + timedelta(hours=1))
        )
        past_edge = await reconciler.check_duplicate(
            TENANT, "c-1", _candidate(occurred_at=AT + timedelta(hours=1, seconds=1))
        )
        assert at_edge.is_duplicate
        assert at_edge.match_method == DuplicateMatchMethod.AMOUNT_DATE_CUSTOMER
        assert not past_edge.is_duplicate

    @pytest.mark.asyncio
    async def test_naive_candidate_time_is_taken_as_utc(self, reconciler, transaction_repo):
        await self._seed(transaction_repo)
        candidate = _candidate(occurred_at=datetime(2025, 3, 3, 2, 30))
        assert candidate.occurred_at.tzinfo is UTC
        result = await reconciler.check_duplicate(TENANT, "c-1", candidate)
        assert result.is_duplicate
        assert result.duplicate_id == "t-1"

    @pytest.mark.asyncio
    async def test_direction_and_amount_must_match(self, reconciler, transaction_repo):
        await self._seed(transaction_repo)
        outgoing = await reconciler.check_duplicate(
            TENANT, "c-1", _candidate(direction=TransactionDirection.OUTGOING)
        )
        other_amount = await reconciler.check_duplicate(
            TENANT, "c-1", _candidate(amount=Decimal("250.01"))
        )
        other_customer = await reconciler.check_duplicate(TENANT, "c-2", _candidate())
        assert not outgoing.is_duplicate
        assert not other_amount.is_duplicate
        assert not other_customer.is_duplicate

    @pytest.mark.asyncio
    async def test_configurable_tolerance(self, customer_repo, transaction_repo):
        await self._seed(transaction_repo)
        strict = ImportReconciler(
            customer_repo, transaction_repo,
            ReconciliationConfig(duplicate_time_tolerance=timedelta(minutes=5)),
        )
        result = await strict.check_duplicate(
            TENANT, "c-1", _candidate(occurred_at=AT + timedelta(minutes=10))
        )
        assert not result.is_duplicate

    @pytest.mark.asyncio
    async def test_batch_preserves_order(self, reconciler, transaction_repo):
        await self._seed(transaction_repo)
        outcomes = await reconciler.check_duplicates_batch(
            TENANT,
            [("c-1", _candidate()), ("c-1", _candidate(amount=Decimal("1.00"))), ("c-2", _candidate())],
        )
        assert [o.result.is_duplicate for o in outcomes] == [True, False, False]

    @pytest.mark.asyncio
    async def test_store_rejects_duplicate_external_id(self, transaction_repo):
        await self._seed(transaction_repo, external_id="BANK-1")
        with pytest.raises(DuplicateCreationError) as exc_info:
            await self._seed(transaction_repo, id="t-2", external_id="BANK-1")
        assert exc_info.value.existing_id == "t-1"
