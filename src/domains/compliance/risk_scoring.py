"""Customer risk scoring for individuals and businesses.

Each factor contributes a non-negative number of points; contributions
are summed and the total is clamped to [0, 100]. Level cut-offs come from
``RiskScoringConfig``:
  low     score < medium_threshold (default 30)
  medium  medium_threshold <= score < high_threshold (default 60)
  high    score >= high_threshold

Hard stops (confirmed sanctions, disallowed jurisdiction, cancelled
registration) are evaluated by ``should_block`` independently of the
additive score.

Regulatory basis:
  AML/CTF Rules Ch. 4: Customer due diligence, risk-based systems
  AML/CTF Rules Ch. 15: Ongoing customer due diligence
  FATF Recommendation 10 / 24: CDD and beneficial ownership
"""

from datetime import datetime, timedelta
from decimal import Decimal

import structlog

from .config import RegionalConfig
from .models import (
    BlockDecision,
    BusinessRiskFactors,
    EntityType,
    IndividualRiskFactors,
    RegistrationStatus,
    RiskAssessment,
    RiskFactor,
    RiskLevel,
    ScreeningStatus,
    VerificationStatus,
)

logger = structlog.get_logger()

HIGH_RISK_INDUSTRIES = frozenset({
    "gambling",
    "cryptocurrency",
    "digital_currency_exchange",
    "money_service_business",
    "remittance",
    "precious_metals",
    "arms",
    "cash_intensive",
})

_ENTITY_TYPE_POINTS = {
    EntityType.COMPANY: 0,
    EntityType.SOLE_TRADER: 5,
    EntityType.PARTNERSHIP: 10,
    EntityType.SMSF: 10,
    EntityType.TRUST: 20,
}

_VERIFICATION_POINTS = {
    VerificationStatus.VERIFIED: 0,
    VerificationStatus.PENDING: 5,
    VerificationStatus.UNVERIFIED: 10,
    VerificationStatus.FAILED: 15,
}

_REGISTRATION_POINTS = {
    RegistrationStatus.ACTIVE: 0,
    RegistrationStatus.UNKNOWN: 15,
    RegistrationStatus.SUSPENDED: 25,
    RegistrationStatus.CANCELLED: 40,
}


# ---------------------------------------------------------------------------
# Individual factor scoring functions
# ---------------------------------------------------------------------------


def _score_amount_factors(
    amount: Decimal | None, config: RegionalConfig
) -> list[RiskFactor]:
    """Transaction amount band relative to the KYC / TTR / EDD thresholds."""
    if amount is None:
        return []
    t = config.thresholds
    if amount > t.enhanced_dd_required:
        return [RiskFactor(
            factor="large_transaction",
            weight=30,
            triggered_reason=f"Amount {amount} exceeds enhanced DD threshold {t.enhanced_dd_required}",
        )]
    if amount > t.ttr_required:
        return [RiskFactor(
            factor="ttr_threshold",
            weight=20,
            triggered_reason=f"Amount {amount} exceeds TTR threshold {t.ttr_required}",
        )]
    if amount > t.kyc_required:
        return [RiskFactor(
            factor="kyc_threshold",
            weight=10,
            triggered_reason=f"Amount {amount} exceeds KYC threshold {t.kyc_required}",
        )]
    return []


def _score_account_factors(
    account_age_days: int | None, recent_transaction_count: int, has_unusual_pattern: bool
) -> list[RiskFactor]:
    factors: list[RiskFactor] = []

    if account_age_days is not None and account_age_days < 7:
        factors.append(RiskFactor(
            factor="new_account",
            weight=15,
            triggered_reason=f"Account is {account_age_days} day(s) old",
        ))
    elif account_age_days is not None and account_age_days < 30:
        factors.append(RiskFactor(
            factor="recent_account",
            weight=10,
            triggered_reason=f"Account is {account_age_days} days old",
        ))

    if recent_transaction_count >= 3:
        factors.append(RiskFactor(
            factor="high_velocity",
            weight=20,
            triggered_reason=f"{recent_transaction_count} transactions in the recent window",
        ))

    if has_unusual_pattern:
        factors.append(RiskFactor(
            factor="unusual_pattern",
            weight=25,
            triggered_reason="Transaction pattern deviates from customer profile",
        ))

    return factors


def _score_screening_factors(
    is_pep: bool, is_sanctioned: bool, screening_status: ScreeningStatus
) -> list[RiskFactor]:
    factors: list[RiskFactor] = []
    if is_pep:
        factors.append(RiskFactor(
            factor="pep",
            weight=30,
            triggered_reason="Politically exposed person",
        ))
    if is_sanctioned or screening_status == ScreeningStatus.MATCH:
        factors.append(RiskFactor(
            factor="sanctions_match",
            weight=50,
            triggered_reason="Confirmed sanctions list match",
        ))
    elif screening_status == ScreeningStatus.POTENTIAL_MATCH:
        factors.append(RiskFactor(
            factor="potential_screening_match",
            weight=20,
            triggered_reason="Potential sanctions/PEP match pending review",
        ))
    return factors


def _score_jurisdiction_factors(country: str | None, config: RegionalConfig) -> list[RiskFactor]:
    if config.is_blocked_country(country):
        return [RiskFactor(
            factor="prohibited_jurisdiction",
            weight=40,
            triggered_reason=f"{country} is subject to an FATF call for action",
        )]
    if config.is_high_risk_country(country):
        return [RiskFactor(
            factor="high_risk_jurisdiction",
            weight=20,
            triggered_reason=f"{country} is under FATF increased monitoring",
        )]
    return []


# ---------------------------------------------------------------------------
# Business factor scoring functions
# ---------------------------------------------------------------------------


def _score_entity_factors(factors: BusinessRiskFactors) -> list[RiskFactor]:
    result: list[RiskFactor] = []

    if points := _ENTITY_TYPE_POINTS.get(factors.entity_type, 0):
        result.append(RiskFactor(
            factor="entity_type",
            weight=points,
            triggered_reason=f"Entity type {factors.entity_type.value}",
        ))

    years = factors.years_in_operation
    if years is None or years < 1:
        reason = "Trading history unknown" if years is None else "Trading for less than 1 year"
        result.append(RiskFactor(factor="years_in_operation", weight=15, triggered_reason=reason))
    elif years < 2:
        result.append(RiskFactor(
            factor="years_in_operation", weight=10, triggered_reason="Trading for less than 2 years"
        ))
    elif years < 5:
        result.append(RiskFactor(
            factor="years_in_operation", weight=5, triggered_reason="Trading for less than 5 years"
        ))

    if points := _REGISTRATION_POINTS[factors.registration_status]:
        result.append(RiskFactor(
            factor="registration_status",
            weight=points,
            triggered_reason=f"Business registration {factors.registration_status.value}",
        ))

    if factors.industry and factors.industry.lower() in HIGH_RISK_INDUSTRIES:
        result.append(RiskFactor(
            factor="industry_risk",
            weight=20,
            triggered_reason=f"High-risk industry: {factors.industry}",
        ))

    if factors.ownership_layers >= 3:
        result.append(RiskFactor(
            factor="ownership_complexity",
            weight=15,
            triggered_reason=f"{factors.ownership_layers} layers of ownership",
        ))
    elif factors.ownership_layers == 2:
        result.append(RiskFactor(
            factor="ownership_complexity",
            weight=5,
            triggered_reason="Intermediate holding entity in ownership chain",
        ))

    return result


def _score_ubo_factors(factors: BusinessRiskFactors, config: RegionalConfig) -> list[RiskFactor]:
    """Beneficial ownership: identification gaps and UBO exposure."""
    result: list[RiskFactor] = []
    owners = factors.beneficial_owners

    if not owners:
        result.append(RiskFactor(
            factor="ubo_not_identified",
            weight=20,
            triggered_reason="No beneficial owners recorded",
        ))
    else:
        unidentified = [
            o.name for o in owners
            if not o.identified and (
                o.ownership_percentage >= config.ubo.ownership_threshold or o.has_control
            )
        ]
        if unidentified:
            result.append(RiskFactor(
                factor="ubo_not_identified",
                weight=20,
                triggered_reason=f"Unverified beneficial owner(s): {', '.join(unidentified)}",
            ))

    if any(o.is_pep for o in owners):
        result.append(RiskFactor(
            factor="ubo_pep",
            weight=30,
            triggered_reason="Beneficial owner is a politically exposed person",
        ))
    if any(o.is_sanctioned for o in owners):
        result.append(RiskFactor(
            factor="ubo_sanctioned",
            weight=50,
            triggered_reason="Beneficial owner matches a sanctions list",
        ))
    ubo_countries = sorted({o.country for o in owners if config.is_high_risk_country(o.country)})
    if ubo_countries:
        result.append(RiskFactor(
            factor="ubo_jurisdiction",
            weight=15,
            triggered_reason=f"Beneficial owner(s) in high-risk jurisdiction: {', '.join(ubo_countries)}",
        ))
    return result


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def level_for_score(score: int, config: RegionalConfig) -> RiskLevel:
    rc = config.risk_scoring
    if score >= rc.high_threshold:
        return RiskLevel.HIGH
    if score >= rc.medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _assess(factors: list[RiskFactor], config: RegionalConfig) -> RiskAssessment:
    score = max(0, min(100, sum(f.weight for f in factors)))
    return RiskAssessment(
        score=score,
        level=level_for_score(score, config),
        breakdown=tuple(factors),
    )


def score_individual(factors: IndividualRiskFactors, config: RegionalConfig) -> RiskAssessment:
    """Score a natural person. Deterministic: no clock, no randomness."""
    breakdown = (
        _score_amount_factors(factors.transaction_amount, config)
        + _score_account_factors(
            factors.account_age_days, factors.recent_transaction_count, factors.has_unusual_pattern
        )
        + _score_screening_factors(factors.is_pep, factors.is_sanctioned, factors.screening_status)
        + _score_jurisdiction_factors(factors.country, config)
    )
    if points := _VERIFICATION_POINTS[factors.verification_status]:
        breakdown.append(RiskFactor(
            factor="verification_status",
            weight=points,
            triggered_reason=f"Identity {factors.verification_status.value}",
        ))
    if factors.occupation_high_risk:
        breakdown.append(RiskFactor(
            factor="occupation_risk",
            weight=10,
            triggered_reason="Occupation associated with elevated ML/TF risk",
        ))

    assessment = _assess(breakdown, config)
    logger.info(
        "risk_score_computed",
        entity_type="individual",
        risk_score=assessment.score,
        risk_level=assessment.level.value,
        factor_count=len(breakdown),
    )
    return assessment


def score_business(factors: BusinessRiskFactors, config: RegionalConfig) -> RiskAssessment:
    """Score a business entity, including its beneficial owners."""
    breakdown = (
        _score_amount_factors(factors.transaction_amount, config)
        + _score_entity_factors(factors)
        + _score_ubo_factors(factors, config)
        + _score_screening_factors(False, factors.is_sanctioned, factors.screening_status)
        + _score_jurisdiction_factors(factors.country, config)
    )

    assessment = _assess(breakdown, config)
    logger.info(
        "risk_score_computed",
        entity_type=factors.entity_type.value,
        risk_score=assessment.score,
        risk_level=assessment.level.value,
        factor_count=len(breakdown),
    )
    return assessment


def should_block(
    factors: IndividualRiskFactors | BusinessRiskFactors, config: RegionalConfig
) -> BlockDecision:
    """Hard-stop conditions, independent of the numeric score."""
    if factors.is_sanctioned or factors.screening_status == ScreeningStatus.MATCH:
        decision = BlockDecision(True, "Confirmed sanctions match")
    elif config.is_blocked_country(factors.country):
        decision = BlockDecision(True, f"Disallowed jurisdiction: {factors.country}")
    elif isinstance(factors, BusinessRiskFactors) and (
        factors.registration_status == RegistrationStatus.CANCELLED
    ):
        decision = BlockDecision(True, "Business registration cancelled")
    elif isinstance(factors, BusinessRiskFactors) and any(
        o.is_sanctioned for o in factors.beneficial_owners
    ):
        decision = BlockDecision(True, "Beneficial owner sanctions match")
    else:
        return BlockDecision(False, None)

    logger.warning("customer_blocked", reason=decision.reason)
    return decision


def next_review_at(level: RiskLevel, as_of: datetime, config: RegionalConfig) -> datetime:
    """Next periodic (OCDD) review date for a risk level."""
    return as_of + timedelta(days=config.ocdd_review_days(level))
