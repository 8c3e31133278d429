"""Structuring detection: splitting deposits to stay under the TTR threshold.

A party is flagged when, within ``structuring_window_days`` ending at the
evaluated transaction, at least ``structuring_min_tx_count`` of its
transactions (the evaluated one included) each fall inside
``[structuring_amount_min, structuring_amount_max)`` and together reach
``ttr_required``. The window is anchored on the transaction timestamp,
never on wall-clock time, so re-evaluation is reproducible.

A structuring flag feeds SMR grounds; it never files a report by itself.

Regulatory basis:
  AML/CTF Act 2006 s142: Conducting transactions to avoid reporting requirements
"""

from collections.abc import Sequence
from datetime import timedelta
from decimal import Decimal

import structlog

from .config import RegionalConfig
from .currency import CurrencyConverter, default_converter
from .models import StructuringResult, Transaction

logger = structlog.get_logger()


def window_transactions(
    transaction: Transaction, history: Sequence[Transaction], config: RegionalConfig
) -> list[Transaction]:
    """Same-customer history inside the look-back window, excluding ``transaction``."""
    window_start = transaction.occurred_at - timedelta(
        days=config.thresholds.structuring_window_days
    )
    return [
        tx for tx in history
        if tx.id != transaction.id
        and tx.customer_id == transaction.customer_id
        and window_start <= tx.occurred_at <= transaction.occurred_at
    ]


def detect_structuring(
    transaction: Transaction,
    history: Sequence[Transaction],
    config: RegionalConfig,
    converter: CurrencyConverter = default_converter,
) -> StructuringResult:
    t = config.thresholds
    in_window = window_transactions(transaction, history, config)

    def _in_range(tx: Transaction) -> Decimal | None:
        if not converter.has_rate(tx.currency, config.currency):
            return None
        amount = converter.convert(tx.amount, tx.currency, config.currency)
        return amount if t.structuring_amount_min <= amount < t.structuring_amount_max else None

    suspicious: list[tuple[Transaction, Decimal]] = []
    for tx in sorted([*in_window, transaction], key=lambda x: (x.occurred_at, x.id)):
        amount = _in_range(tx)
        if amount is not None:
            suspicious.append((tx, amount))

    count = len(suspicious)
    total = sum((amount for _, amount in suspicious), Decimal("0"))
    current_in_range = any(tx.id == transaction.id for tx, _ in suspicious)

    indicators: list[str] = []
    if count >= t.structuring_min_tx_count:
        indicators.append(
            f"{count} transactions between {config.currency_symbol}{t.structuring_amount_min:,} "
            f"and {config.currency_symbol}{t.structuring_amount_max:,} "
            f"in {t.structuring_window_days} days"
        )
    if total >= t.ttr_required and count >= 2:
        indicators.append(
            f"Cumulative total {config.currency_symbol}{total:,} of threshold-adjacent "
            f"transactions reaches the TTR threshold"
        )
    if current_in_range and count >= 2:
        indicators.append(
            f"Current transaction of {config.currency_symbol}{transaction.amount:,} "
            f"continues pattern of threshold-adjacent amounts"
        )

    is_suspicious = count >= t.structuring_min_tx_count and total >= t.ttr_required
    result = StructuringResult(
        is_suspicious=is_suspicious,
        transaction_count=count,
        total_amount=total,
        transaction_ids=tuple(tx.id for tx, _ in suspicious),
        indicators=tuple(indicators) if is_suspicious else (),
        window_start=transaction.occurred_at - timedelta(days=t.structuring_window_days),
        window_end=transaction.occurred_at,
    )

    if is_suspicious:
        logger.warning(
            "structuring_detected",
            customer_id=transaction.customer_id,
            transaction_id=transaction.id,
            transaction_count=count,
            total_amount=str(total),
            window_days=t.structuring_window_days,
        )
    return result
