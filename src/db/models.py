"""SQLAlchemy ORM models for compliance engine state.

Rows keep the full domain model as a JSON payload; the indexed columns
exist for lookups and for the uniqueness constraints that arbitrate
concurrent creation.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Date, DateTime, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.domains.compliance.models import ACTIVE_INVESTIGATION_STATUSES

JSONType = JSON().with_variant(JSONB(), "postgresql")

ACTIVE_STATUSES = tuple(sorted(s.value for s in ACTIVE_INVESTIGATION_STATUSES))


class Base(DeclarativeBase):
    pass


class CustomerRecord(Base):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_customers_tenant_external_id"),
        UniqueConstraint("tenant_id", "email", name="uq_customers_tenant_email"),
        UniqueConstraint(
            "tenant_id", "first_name", "last_name", "date_of_birth",
            name="uq_customers_tenant_name_dob",
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    external_id: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    entity_type: Mapped[str] = mapped_column(String, default="individual")
    payload: Mapped[dict] = mapped_column(JSONType)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TransactionRecord(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_transactions_tenant_external_id"),
        Index("ix_transactions_dedup", "tenant_id", "customer_id", "amount", "currency",
              "direction", "occurred_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    customer_id: Mapped[str] = mapped_column(String, index=True)
    external_id: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 4))
    currency: Mapped[str] = mapped_column(String(3))
    direction: Mapped[str] = mapped_column(String)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    payload: Mapped[dict] = mapped_column(JSONType)


class InvestigationRecord(Base):
    __tablename__ = "edd_investigations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    customer_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, index=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    payload: Mapped[dict] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


# One active investigation per customer, enforced by the database.
Index(
    "uq_edd_investigations_active_customer",
    InvestigationRecord.tenant_id,
    InvestigationRecord.customer_id,
    unique=True,
    postgresql_where=InvestigationRecord.status.in_(ACTIVE_STATUSES),
    sqlite_where=InvestigationRecord.status.in_(ACTIVE_STATUSES),
)
