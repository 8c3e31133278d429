"""Shared test fixtures for compliance engine tests."""

import os
from datetime import UTC, datetime

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_JSON", "false")

from src.domains.compliance.config import RegionalConfig, get_regional_config  # noqa: E402
from src.domains.compliance.repository import (  # noqa: E402
    InMemoryCustomerRepository,
    InMemoryInvestigationRepository,
    InMemoryTransactionRepository,
)

FIXED_NOW = datetime(2025, 3, 3, 1, 0, tzinfo=UTC)  # Monday 12:00 in Sydney


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class SequentialIds:
    def __init__(self, prefix: str = "id") -> None:
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}-{self.count:04d}"


@pytest.fixture
def au_config() -> RegionalConfig:
    return get_regional_config("AU")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def customer_repo() -> InMemoryCustomerRepository:
    return InMemoryCustomerRepository()


@pytest.fixture
def transaction_repo() -> InMemoryTransactionRepository:
    return InMemoryTransactionRepository()


@pytest.fixture
def investigation_repo() -> InMemoryInvestigationRepository:
    return InMemoryInvestigationRepository()
