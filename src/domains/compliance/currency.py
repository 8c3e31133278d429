"""Currency precision, normalisation and display.

Amounts are ``Decimal`` throughout. Conversion quantizes to the target
currency's minor unit with ROUND_HALF_UP; serialisation never rounds and
rejects amounts carrying more precision than the currency allows.
"""

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import ValidationError

# ISO 4217 minor units
MINOR_UNITS: dict[str, int] = {
    "AUD": 2,
    "NZD": 2,
    "GBP": 2,
    "USD": 2,
    "EUR": 2,
    "SGD": 2,
    "JPY": 0,
    "KRW": 0,
    "BHD": 3,
    "KWD": 3,
}

# Indicative cross rates: 1 unit of FROM buys RATE units of TO.
DEFAULT_RATES: dict[str, dict[str, Decimal]] = {
    "AUD": {"USD": Decimal("0.65"), "EUR": Decimal("0.60"), "GBP": Decimal("0.52"),
            "NZD": Decimal("1.08"), "SGD": Decimal("0.87")},
    "USD": {"AUD": Decimal("1.54"), "EUR": Decimal("0.92"), "GBP": Decimal("0.80"),
            "NZD": Decimal("1.67"), "SGD": Decimal("1.34")},
    "EUR": {"AUD": Decimal("1.67"), "USD": Decimal("1.09"), "GBP": Decimal("0.87"),
            "NZD": Decimal("1.81"), "SGD": Decimal("1.45")},
    "GBP": {"AUD": Decimal("1.92"), "USD": Decimal("1.25"), "EUR": Decimal("1.15"),
            "NZD": Decimal("2.08"), "SGD": Decimal("1.67")},
    "NZD": {"AUD": Decimal("0.93"), "USD": Decimal("0.60"), "EUR": Decimal("0.55"),
            "GBP": Decimal("0.48"), "SGD": Decimal("0.81")},
    "SGD": {"AUD": Decimal("1.15"), "USD": Decimal("0.75"), "EUR": Decimal("0.69"),
            "GBP": Decimal("0.60"), "NZD": Decimal("1.24")},
}


def minor_units(currency: str) -> int:
    return MINOR_UNITS.get(currency.upper(), 2)


def quantum(currency: str) -> Decimal:
    return Decimal(1).scaleb(-minor_units(currency))


def to_decimal(value: object, field: str = "amount") -> Decimal:
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(field, "must be a number")
    elif isinstance(value, int | float | str):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(field, f"not a number: {value!r}") from None
    else:
        raise ValidationError(field, "must be a number")
    if not result.is_finite():
        raise ValidationError(field, "must be finite")
    return result


def check_precision(amount: Decimal, currency: str, field: str = "amount") -> Decimal:
    """Return ``amount`` unchanged, or raise if it exceeds the currency's precision."""
    places = minor_units(currency)
    if amount != amount.quantize(quantum(currency), rounding=ROUND_HALF_UP):
        raise ValidationError(
            field, f"{amount} has more than {places} decimal places for {currency.upper()}"
        )
    return amount


def format_amount(amount: Decimal, currency: str) -> str:
    """Fixed-point string at the currency's precision, e.g. ``10000.00``.

    Never rounds: an amount finer than the minor unit is a ValidationError.
    """
    check_precision(amount, currency)
    return f"{amount.quantize(quantum(currency)):f}"


def display_amount(amount: Decimal, currency: str, symbol: str = "") -> str:
    """Human-readable amount with grouping, e.g. ``$10,000.00 AUD``."""
    places = minor_units(currency)
    return f"{symbol}{amount:,.{places}f} {currency.upper()}".strip()


class CurrencyConverter:
    """Normalises amounts to a reporting currency using a fixed rate table.

    Rates are injected so callers can supply a dated snapshot; the default
    table is indicative only.
    """

    def __init__(self, rates: Mapping[str, Mapping[str, Decimal]] | None = None) -> None:
        self._rates = rates if rates is not None else DEFAULT_RATES

    def supported_currencies(self) -> list[str]:
        return sorted(self._rates)

    def has_rate(self, from_currency: str, to_currency: str) -> bool:
        src, dst = from_currency.upper(), to_currency.upper()
        return src == dst or dst in self._rates.get(src, {})

    def rate(self, from_currency: str, to_currency: str) -> Decimal:
        src, dst = from_currency.upper(), to_currency.upper()
        if src == dst:
            return Decimal(1)
        try:
            return Decimal(self._rates[src][dst])
        except KeyError:
            raise ValidationError(
                "currency", f"no exchange rate from {src} to {dst}"
            ) from None

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return amount
        converted = amount * self.rate(from_currency, to_currency)
        return converted.quantize(quantum(to_currency), rounding=ROUND_HALF_UP)


default_converter = CurrencyConverter()
