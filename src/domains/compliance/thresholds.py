"""Threshold monitor: decides which regulatory obligations a transaction triggers.

Rules are independent and order-free; a transaction may trigger several:
  TTR   normalized amount >= thresholds.ttr_required
  IFTI  cross-border (flagged international, foreign counterparty, or
        non-domestic currency), regardless of amount
  SMR   operator trigger, a screening match, or a structuring suspicion.
        Terrorism-financing grounds use the urgent (clock-hour) deadline.
  EDD   high risk level, a hard block, or an SMR / structuring suspicion
        for the party
  KYC   cumulative total (supplied history plus this transaction) >=
        thresholds.kyc_required

``evaluate`` is pure: identical inputs give an identical ThresholdDecision.
A currency with no rate to the reporting currency leaves TTR, structuring
and KYC unevaluated (``normalized_amount`` is None, with a reason); IFTI,
SMR and EDD are still decided.
"""

from datetime import datetime
from decimal import Decimal

import structlog

from .config import RegionalConfig
from .currency import CurrencyConverter, default_converter
from .deadlines import calculate_ifti_deadline, calculate_smr_deadline, calculate_ttr_deadline
from .models import (
    EvaluationContext,
    ReportType,
    RiskLevel,
    SMRActivityType,
    ThresholdDecision,
    Transaction,
)
from .structuring import detect_structuring

logger = structlog.get_logger()


def generate_ttr_reference(transaction: Transaction, config: RegionalConfig) -> str:
    """``TTR-YYYYMMDD-<first 8 of transaction id>``, dated in the region's timezone."""
    occurred = transaction.occurred_at
    local = occurred.astimezone(config.tz) if occurred.tzinfo else occurred
    return f"TTR-{local:%Y%m%d}-{transaction.id[:8]}"


def is_cross_border(transaction: Transaction, config: RegionalConfig) -> bool:
    if transaction.is_international:
        return True
    if not config.is_domestic_country(transaction.counterparty_country):
        return True
    return transaction.currency.upper() != config.currency.upper()


def requires_ttr(amount: Decimal, config: RegionalConfig) -> bool:
    return amount >= config.thresholds.ttr_required


def cumulative_total(
    transaction: Transaction,
    normalized_amount: Decimal,
    context: EvaluationContext,
    config: RegionalConfig,
    converter: CurrencyConverter,
) -> Decimal:
    prior = Decimal("0")
    for tx in context.history:
        if tx.customer_id != transaction.customer_id or tx.id == transaction.id:
            continue
        if not converter.has_rate(tx.currency, config.currency):
            logger.warning(
                "cumulative_total_skipped_transaction",
                transaction_id=tx.id,
                currency=tx.currency,
                reporting_currency=config.currency,
            )
            continue
        prior += converter.convert(tx.amount, tx.currency, config.currency)
    return prior + normalized_amount


def evaluate(
    transaction: Transaction,
    config: RegionalConfig,
    context: EvaluationContext | None = None,
    converter: CurrencyConverter = default_converter,
) -> ThresholdDecision:
    context = context or EvaluationContext()
    reasons: list[str] = []
    deadlines: dict[ReportType, datetime] = {}

    # Amount-based rules (TTR, structuring, KYC) need a rate; the rest do not
    normalized: Decimal | None = None
    if converter.has_rate(transaction.currency, config.currency):
        normalized = converter.convert(transaction.amount, transaction.currency, config.currency)
    else:
        logger.warning(
            "threshold_rate_missing",
            transaction_id=transaction.id,
            currency=transaction.currency,
            reporting_currency=config.currency,
        )
        reasons.append(
            f"No exchange rate from {transaction.currency.upper()} to {config.currency}; "
            f"amount-based rules not evaluated"
        )

    # TTR
    ttr = normalized is not None and requires_ttr(normalized, config)
    ttr_reference = None
    if ttr:
        deadlines[ReportType.TTR] = calculate_ttr_deadline(transaction.occurred_at, config)
        ttr_reference = generate_ttr_reference(transaction, config)
        reasons.append(
            f"Amount {normalized} {config.currency} meets TTR threshold "
            f"{config.thresholds.ttr_required}"
        )

    # Structuring
    structuring = (
        detect_structuring(transaction, context.history, config, converter)
        if normalized is not None
        else None
    )

    # IFTI
    ifti = is_cross_border(transaction, config)
    if ifti:
        deadlines[ReportType.IFTI] = calculate_ifti_deadline(transaction.occurred_at, config)
        reasons.append("Cross-border transfer requires IFTI")

    # SMR grounds
    smr_grounds: list[str] = []
    if context.smr_trigger is not None:
        smr_grounds.append(f"Operator raised suspicion: {context.smr_trigger.reason}")
    if context.screening is not None and context.screening.is_match:
        smr_grounds.append(f"Screening {context.screening.status.value}")
    if structuring is not None and structuring.is_suspicious:
        smr_grounds.append("Structuring suspicion")
    smr = bool(smr_grounds)
    urgent = (
        context.smr_trigger is not None
        and context.smr_trigger.activity_type == SMRActivityType.TERRORISM_FINANCING
    )
    if smr:
        formed_at = (
            context.smr_trigger.formed_at
            if context.smr_trigger is not None and context.smr_trigger.formed_at
            else transaction.occurred_at
        )
        deadlines[ReportType.SMR] = calculate_smr_deadline(formed_at, config, urgent=urgent)
        reasons.extend(smr_grounds)

    # EDD
    edd_grounds: list[str] = []
    if context.risk is not None and context.risk.level == RiskLevel.HIGH:
        edd_grounds.append(f"High risk score {context.risk.score}")
    if context.block is not None and context.block.blocked:
        edd_grounds.append(f"Blocked: {context.block.reason}")
    if context.has_existing_suspicion or smr:
        edd_grounds.append("Suspicion on record for party")
    edd = bool(edd_grounds)
    reasons.extend(f"EDD: {g}" for g in edd_grounds)

    total = None
    kyc = False
    if normalized is not None:
        total = cumulative_total(transaction, normalized, context, config, converter)
        kyc = total >= config.thresholds.kyc_required

    decision = ThresholdDecision(
        transaction_id=transaction.id,
        requires_ttr=ttr,
        requires_smr_review=smr,
        requires_ifti=ifti,
        requires_edd=edd,
        requires_kyc=kyc,
        smr_urgent=smr and urgent,
        reporting_currency=config.currency,
        normalized_amount=normalized,
        cumulative_total=total,
        deadlines=deadlines,
        reasons=tuple(reasons),
        structuring=structuring,
        ttr_reference=ttr_reference,
    )

    triggered = ttr or smr or ifti or edd
    log = logger.warning if triggered else logger.info
    log(
        "threshold_evaluated",
        transaction_id=transaction.id,
        customer_id=transaction.customer_id,
        requires_ttr=ttr,
        requires_smr_review=smr,
        requires_ifti=ifti,
        requires_edd=edd,
        requires_kyc=kyc,
    )
    return decision
