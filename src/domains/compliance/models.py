"""Pydantic models for the compliance domain."""

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EntityType(StrEnum):
    INDIVIDUAL = "individual"
    COMPANY = "company"
    SOLE_TRADER = "sole_trader"
    PARTNERSHIP = "partnership"
    TRUST = "trust"
    SMSF = "smsf"


class VerificationStatus(StrEnum):
    VERIFIED = "verified"
    PENDING = "pending"
    UNVERIFIED = "unverified"
    FAILED = "failed"


class RegistrationStatus(StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class TransactionDirection(StrEnum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class ScreeningStatus(StrEnum):
    CLEAR = "clear"
    POTENTIAL_MATCH = "potential_match"
    MATCH = "match"


class ReportType(StrEnum):
    TTR = "ttr"
    SMR = "smr"
    IFTI = "ifti"


class SMRActivityType(StrEnum):
    MONEY_LAUNDERING = "money_laundering"
    TERRORISM_FINANCING = "terrorism_financing"
    OTHER = "other"


class DeadlineStatus(StrEnum):
    OVERDUE = "overdue"
    CRITICAL = "critical"
    WARNING = "warning"
    OK = "ok"


class InvestigationStatus(StrEnum):
    OPEN = "open"
    AWAITING_CUSTOMER_INFO = "awaiting_customer_info"
    UNDER_REVIEW = "under_review"
    ESCALATED = "escalated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_INVESTIGATION_STATUSES = frozenset({
    InvestigationStatus.OPEN,
    InvestigationStatus.AWAITING_CUSTOMER_INFO,
    InvestigationStatus.UNDER_REVIEW,
    InvestigationStatus.ESCALATED,
})


class Recommendation(StrEnum):
    APPROVE_RELATIONSHIP = "approve_relationship"
    ONGOING_MONITORING = "ongoing_monitoring"
    ENHANCED_MONITORING = "enhanced_monitoring"
    REJECT_RELATIONSHIP = "reject_relationship"
    ESCALATE_TO_SMR = "escalate_to_smr"


class MonitoringLevel(StrEnum):
    STANDARD = "standard"
    ONGOING_REVIEW = "ongoing_review"
    ENHANCED = "enhanced"
    BLOCKED = "blocked"


class ChecklistSection(StrEnum):
    CUSTOMER_INFORMATION_REVIEW = "customer_information_review"
    EMPLOYMENT_VERIFICATION = "employment_verification"
    SOURCE_OF_WEALTH = "source_of_wealth"
    SOURCE_OF_FUNDS = "source_of_funds"
    TRANSACTION_PATTERN_ANALYSIS = "transaction_pattern_analysis"
    ADDITIONAL_INFORMATION = "additional_information"


class CustomerMatchMethod(StrEnum):
    CUSTOMER_ID = "customer_id"
    EXTERNAL_ID = "external_id"
    EMAIL = "email"
    NAME_DOB = "name_dob"
    CREATED = "created"


class DuplicateMatchMethod(StrEnum):
    EXTERNAL_ID = "external_id"
    AMOUNT_DATE_CUSTOMER = "amount_date_customer"


def as_utc_if_naive(moment: datetime) -> datetime:
    """Naive timestamps are taken to be UTC so all comparisons are offset-aware."""
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Parties and transactions
# ---------------------------------------------------------------------------


class Address(BaseModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postcode: str | None = None
    country: str | None = None


class BeneficialOwner(BaseModel):
    name: str
    ownership_percentage: Decimal = Decimal("0")
    has_control: bool = False
    identified: bool = True
    is_pep: bool = False
    is_sanctioned: bool = False
    country: str | None = None


class Party(BaseModel):
    """A natural person or business entity that is screened and scored."""

    id: str
    tenant_id: str | None = None
    entity_type: EntityType = EntityType.INDIVIDUAL
    external_id: str | None = None

    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    date_of_birth: date | None = None
    occupation: str | None = None

    business_name: str | None = None
    registration_number: str | None = None

    email: str | None = None
    phone: str | None = None
    address: Address = Field(default_factory=Address)
    nationality: str | None = None

    is_pep: bool = False
    is_sanctioned: bool = False
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    risk_level: RiskLevel | None = None
    risk_score: int | None = None
    monitoring_level: MonitoringLevel = MonitoringLevel.STANDARD
    created_at: datetime | None = None

    @property
    def full_name(self) -> str:
        if self.entity_type != EntityType.INDIVIDUAL and self.business_name:
            return self.business_name
        parts = (self.first_name, self.middle_name, self.last_name)
        return " ".join(p for p in parts if p)

    @property
    def country(self) -> str | None:
        return self.address.country or self.nationality


class Transaction(BaseModel):
    id: str
    tenant_id: str | None = None
    customer_id: str
    external_id: str | None = None
    amount: Decimal = Field(ge=0)
    currency: str = "AUD"
    direction: TransactionDirection = TransactionDirection.OUTGOING
    transaction_type: str = "transfer"
    occurred_at: datetime
    description: str | None = None
    is_international: bool = False
    counterparty_name: str | None = None
    counterparty_country: str | None = None

    @field_validator("occurred_at")
    @classmethod
    def _aware_occurred_at(cls, v: datetime) -> datetime:
        return as_utc_if_naive(v)


# ---------------------------------------------------------------------------
# Risk scoring
# ---------------------------------------------------------------------------


class RiskFactor(BaseModel):
    """One additive contributor to a risk score."""

    model_config = ConfigDict(frozen=True)

    factor: str
    weight: int = Field(ge=0, le=100)
    triggered_reason: str


class IndividualRiskFactors(BaseModel):
    transaction_amount: Decimal | None = None
    account_age_days: int | None = Field(default=None, ge=0)
    recent_transaction_count: int = Field(default=0, ge=0)
    has_unusual_pattern: bool = False
    is_pep: bool = False
    is_sanctioned: bool = False
    screening_status: ScreeningStatus = ScreeningStatus.CLEAR
    verification_status: VerificationStatus = VerificationStatus.VERIFIED
    country: str | None = None
    occupation_high_risk: bool = False


class BusinessRiskFactors(BaseModel):
    entity_type: EntityType = EntityType.COMPANY
    years_in_operation: float | None = Field(default=None, ge=0)
    registration_status: RegistrationStatus = RegistrationStatus.ACTIVE
    country: str | None = None
    industry: str | None = None
    beneficial_owners: list[BeneficialOwner] = Field(default_factory=list)
    ownership_layers: int = Field(default=1, ge=1)
    transaction_amount: Decimal | None = None
    is_sanctioned: bool = False
    screening_status: ScreeningStatus = ScreeningStatus.CLEAR


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    level: RiskLevel
    breakdown: tuple[RiskFactor, ...] = ()


class BlockDecision(NamedTuple):
    blocked: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Screening
# ---------------------------------------------------------------------------


class ScreeningQuery(BaseModel):
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    date_of_birth: date | None = None
    country: str | None = None


class ReferenceEntity(BaseModel):
    """A sanctions / PEP list entry from a reference source snapshot."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    aliases: tuple[str, ...] = ()
    # Full date or year-only ("1980" / "1980-01-01"); lists carry both.
    date_of_birth: str | None = None
    nationality: str | None = None
    source: str
    listing_info: str = ""
    entity_type: str = "individual"


class CandidateMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    name: str
    matched_name: str
    score: float = Field(ge=0.0, le=1.0)
    name_score: float = Field(ge=0.0, le=1.0)
    source: str
    listing_info: str = ""
    date_of_birth: str | None = None
    nationality: str | None = None


class ScreeningResult(BaseModel):
    """Immutable audit record of one screening call."""

    model_config = ConfigDict(frozen=True)

    is_match: bool
    match_score: float = Field(ge=0.0, le=1.0)
    status: ScreeningStatus
    matches: tuple[CandidateMatch, ...] = ()
    sources: tuple[str, ...] = ()
    unavailable_sources: tuple[str, ...] = ()
    screened_at: datetime


# ---------------------------------------------------------------------------
# Threshold monitoring
# ---------------------------------------------------------------------------


class StructuringResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_suspicious: bool
    transaction_count: int = 0
    total_amount: Decimal = Decimal("0")
    transaction_ids: tuple[str, ...] = ()
    indicators: tuple[str, ...] = ()
    window_start: datetime | None = None
    window_end: datetime | None = None


class SMRTrigger(BaseModel):
    """Operator- or event-raised grounds for suspicion."""

    reason: str
    activity_type: SMRActivityType = SMRActivityType.MONEY_LAUNDERING
    raised_by: str | None = None
    # When the suspicion was formed; defaults to the transaction time.
    formed_at: datetime | None = None

    @field_validator("formed_at")
    @classmethod
    def _aware_formed_at(cls, v: datetime | None) -> datetime | None:
        return as_utc_if_naive(v) if v is not None else None


class EvaluationContext(BaseModel):
    """Everything a threshold evaluation may consume beyond the transaction itself."""

    # Prior transactions of the same party; the evaluated one may be included.
    history: list[Transaction] = Field(default_factory=list)
    risk: RiskAssessment | None = None
    block: BlockDecision | None = None
    screening: ScreeningResult | None = None
    smr_trigger: SMRTrigger | None = None
    has_existing_suspicion: bool = False


class ThresholdDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: str
    requires_ttr: bool = False
    requires_smr_review: bool = False
    requires_ifti: bool = False
    requires_edd: bool = False
    requires_kyc: bool = False
    smr_urgent: bool = False
    reporting_currency: str
    # None when no exchange rate to the reporting currency is known
    normalized_amount: Decimal | None
    cumulative_total: Decimal | None
    deadlines: dict[ReportType, datetime] = Field(default_factory=dict)
    reasons: tuple[str, ...] = ()
    structuring: StructuringResult | None = None
    ttr_reference: str | None = None


# ---------------------------------------------------------------------------
# Import reconciliation
# ---------------------------------------------------------------------------


class CustomerRow(BaseModel):
    """Identity fields from one imported row."""

    customer_id: str | None = None
    external_id: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    date_of_birth: date | None = None
    phone: str | None = None
    address: Address = Field(default_factory=Address)


class ResolutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    matched: bool
    customer_id: str | None = None
    match_method: CustomerMatchMethod | None = None


class CandidateTransaction(BaseModel):
    external_id: str | None = None
    amount: Decimal
    currency: str
    direction: TransactionDirection
    occurred_at: datetime

    @field_validator("occurred_at")
    @classmethod
    def _aware_occurred_at(cls, v: datetime) -> datetime:
        return as_utc_if_naive(v)


class DuplicateCheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_duplicate: bool
    duplicate_id: str | None = None
    match_method: DuplicateMatchMethod | None = None


class RowOutcome(BaseModel):
    """Per-row result of a batch operation. Exactly one of result/error is set."""

    index: int
    result: ResolutionResult | DuplicateCheckResult | None = None
    error: str | None = None
    error_type: str | None = None


# ---------------------------------------------------------------------------
# EDD investigations
# ---------------------------------------------------------------------------


class InformationRequest(BaseModel):
    id: str
    requested_at: datetime
    requested_by: str
    items: list[str]
    deadline: datetime | None = None
    status: str = "pending"
    received_at: datetime | None = None


class Escalation(BaseModel):
    id: str
    escalated_at: datetime
    escalated_by: str
    escalated_to: str = "management"
    reason: str


class ChecklistEntry(BaseModel):
    fields: dict[str, Any] = Field(default_factory=dict)
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None


class Investigation(BaseModel):
    id: str
    tenant_id: str
    customer_id: str
    transaction_id: str | None = None
    trigger_reason: str
    triggered_by: str | None = None
    status: InvestigationStatus = InvestigationStatus.OPEN
    assigned_to: str | None = None
    checklist: dict[ChecklistSection, ChecklistEntry] = Field(default_factory=dict)
    information_requests: list[InformationRequest] = Field(default_factory=list)
    escalations: list[Escalation] = Field(default_factory=list)
    findings: str | None = None
    risk_summary: str | None = None
    recommendation: Recommendation | None = None
    monitoring_level: MonitoringLevel | None = None
    next_review_at: datetime | None = None
    cancellation_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_INVESTIGATION_STATUSES


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportingEntity(BaseModel):
    name: str
    identifier: str
    contact_name: str | None = None
    contact_email: str | None = None


class ReportingOfficer(BaseModel):
    name: str
    position: str
    contact_number: str | None = None


class FinancialInstitution(BaseModel):
    name: str
    bic: str | None = None
    country: str


class IFTIDetails(BaseModel):
    ordering_institution: FinancialInstitution
    beneficiary_institution: FinancialInstitution
    beneficiary_name: str
    beneficiary_account: str | None = None
    beneficiary_address: Address = Field(default_factory=Address)
    remittance_information: str | None = None


class ReportData(BaseModel):
    """Immutable regulator report snapshot. A state change produces a new one."""

    model_config = ConfigDict(frozen=True)

    report_id: str
    report_type: ReportType
    report_reference: str
    region: str
    regulator: str
    generated_at: datetime
    submission_deadline: datetime
    reporting_entity: ReportingEntity
    party: Party
    transactions: tuple[Transaction, ...]
    currency: str
    total_amount: Decimal
    # SMR
    activity_type: SMRActivityType | None = None
    grounds_for_suspicion: str | None = None
    action_taken: str | None = None
    reporting_officer: ReportingOfficer | None = None
    investigation_id: str | None = None
    # IFTI
    ifti: IFTIDetails | None = None
