"""Regional compliance configuration with regulator defaults.

Every threshold, deadline, and review interval is configurable per tenant.
Presets carry the published defaults for each supported jurisdiction;
tenant overrides are deep-merged on top and the result is validated once,
at construction time.

References:
- AML/CTF Act 2006 (Cth) s43 (TTR), s41 (SMR), s45 (IFTI): AUSTRAC
- AML/CFT Act 2009 (NZ): Prescribed transaction reporting
- Money Laundering Regulations 2017 (UK): FCA / NCA SARs
- 31 CFR § 1010.311 (CTR), § 1020.320 (SAR): FinCEN
- AMLD6 (EU) 2024/1640
- MAS Notice 626 / CDSA (SG)
- FATF public statements (call for action / increased monitoring)
"""

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigurationError
from .holidays import parse_holiday_pattern

# FATF "call for action" jurisdictions. Hard stop for onboarding.
FATF_HIGH_RISK_COUNTRIES = frozenset({"IR", "KP", "MM"})

# FATF "increased monitoring" (grey list).
FATF_INCREASED_MONITORING = frozenset({
    "BF", "CM", "CD", "HT", "KE", "ML", "MZ", "NG",
    "PH", "SN", "ZA", "SS", "SY", "TZ", "VN", "YE",
})

EU_MEMBER_STATES = frozenset({
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU", "IE",
    "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE",
})


@dataclass(frozen=True)
class ThresholdConfig:
    """Monetary thresholds, in the region's reporting currency."""

    ttr_required: Decimal = Decimal("10000")
    kyc_required: Decimal = Decimal("5000")
    enhanced_dd_required: Decimal = Decimal("50000")

    # Structuring: >= min_tx_count transactions inside window_days whose
    # amounts each fall in [amount_min, amount_max) and sum to >= ttr_required.
    structuring_window_days: int = 7
    structuring_min_tx_count: int = 3
    structuring_amount_min: Decimal = Decimal("7000")
    structuring_amount_max: Decimal = Decimal("9999")

    # Informational. Cross-border transfers require an IFTI regardless of
    # amount; this records the regulator's published de-minimis, if any.
    international_transfer: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        for name in ("ttr_required", "kyc_required", "enhanced_dd_required"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"thresholds.{name} must be positive")
        if self.international_transfer < 0:
            raise ConfigurationError("thresholds.international_transfer must be >= 0")
        if self.structuring_window_days < 1:
            raise ConfigurationError("thresholds.structuring_window_days must be >= 1")
        if self.structuring_min_tx_count < 1:
            raise ConfigurationError("thresholds.structuring_min_tx_count must be >= 1")
        if not 0 <= self.structuring_amount_min < self.structuring_amount_max:
            raise ConfigurationError(
                "thresholds.structuring amount range must satisfy 0 <= min < max"
            )


@dataclass(frozen=True)
class DeadlineConfig:
    """Reporting deadlines in business days (urgent SMR in clock hours)."""

    ttr_submission_days: int = 10
    smr_submission_days: int = 3
    smr_urgent_hours: int = 24
    ifti_submission_days: int = 10

    def __post_init__(self) -> None:
        for f in dataclasses.fields(self):
            if getattr(self, f.name) < 0:
                raise ConfigurationError(f"deadlines.{f.name} must be >= 0")


@dataclass(frozen=True)
class OCDDConfig:
    """Ongoing customer due diligence review intervals, in calendar days."""

    low_risk_days: int = 365
    medium_risk_days: int = 180
    high_risk_days: int = 90
    document_expiry_warning_days: int = 30

    def __post_init__(self) -> None:
        for f in dataclasses.fields(self):
            if getattr(self, f.name) < 1:
                raise ConfigurationError(f"ocdd.{f.name} must be >= 1")


@dataclass(frozen=True)
class UBOConfig:
    """Ultimate beneficial owner identification thresholds (percent)."""

    ownership_threshold: Decimal = Decimal("25")
    control_threshold: Decimal = Decimal("25")

    def __post_init__(self) -> None:
        for f in dataclasses.fields(self):
            if not 0 < getattr(self, f.name) <= 100:
                raise ConfigurationError(f"ubo.{f.name} must be in (0, 100]")


@dataclass(frozen=True)
class RiskScoringConfig:
    """Score -> level cut-offs. low < medium_threshold <= medium < high_threshold <= high."""

    medium_threshold: int = 30
    high_threshold: int = 60

    def __post_init__(self) -> None:
        if not 0 < self.medium_threshold < self.high_threshold <= 100:
            raise ConfigurationError(
                "risk_scoring thresholds must satisfy 0 < medium < high <= 100"
            )


@dataclass(frozen=True)
class ScreeningConfig:
    """Two-threshold screening: >= minimum is a potential match, >= confirmed a match."""

    sources: tuple[str, ...] = ("UN",)
    minimum_match_score: float = 0.7
    confirmed_match_score: float = 0.9
    source_timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.minimum_match_score < 0:
            raise ConfigurationError("screening.minimum_match_score must be >= 0")
        if not 0 < self.confirmed_match_score <= 1:
            raise ConfigurationError("screening.confirmed_match_score must be in (0, 1]")
        if self.source_timeout_seconds <= 0:
            raise ConfigurationError("screening.source_timeout_seconds must be positive")


@dataclass(frozen=True)
class ReconciliationConfig:
    """Import reconciliation tuning.

    duplicate_time_tolerance: two transactions with equal amount, currency
    and direction for the same customer are duplicates when their
    timestamps differ by at most this much (inclusive).
    """

    duplicate_time_tolerance: timedelta = timedelta(hours=1)
    max_concurrency: int = 50

    def __post_init__(self) -> None:
        if self.duplicate_time_tolerance < timedelta(0):
            raise ConfigurationError("reconciliation.duplicate_time_tolerance must be >= 0")
        if not 1 <= self.max_concurrency <= 50:
            raise ConfigurationError("reconciliation.max_concurrency must be in [1, 50]")


@dataclass(frozen=True)
class RegionalConfig:
    """Immutable per-jurisdiction configuration. Loaded once per tenant."""

    region: str
    country: str | None
    currency: str
    currency_symbol: str
    timezone: str
    regulator: str
    regulator_full_name: str
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    deadlines: DeadlineConfig = field(default_factory=DeadlineConfig)
    ocdd: OCDDConfig = field(default_factory=OCDDConfig)
    ubo: UBOConfig = field(default_factory=UBOConfig)
    risk_scoring: RiskScoringConfig = field(default_factory=RiskScoringConfig)
    screening: ScreeningConfig = field(default_factory=ScreeningConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    holidays: tuple[str, ...] = ()
    # Python weekday numbering: 0=Monday .. 6=Sunday
    workweek: frozenset[int] = frozenset({0, 1, 2, 3, 4})
    # Countries treated as domestic for cross-border detection. Defaults to {country}.
    domestic_countries: frozenset[str] = frozenset()
    high_risk_countries: frozenset[str] = FATF_HIGH_RISK_COUNTRIES | FATF_INCREASED_MONITORING
    blocked_countries: frozenset[str] = FATF_HIGH_RISK_COUNTRIES
    reporting_format: str = "XML"

    def __post_init__(self) -> None:
        if not self.workweek:
            raise ConfigurationError(f"{self.region}: workweek must contain at least one day")
        if not self.workweek <= frozenset(range(7)):
            raise ConfigurationError(f"{self.region}: workweek days must be in 0..6")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"{self.region}: unknown timezone {self.timezone!r}") from exc
        for pattern in self.holidays:
            parse_holiday_pattern(pattern)
        if not self.domestic_countries and self.country:
            object.__setattr__(self, "domestic_countries", frozenset({self.country}))

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_high_risk_country(self, country: str | None) -> bool:
        return bool(country) and country.upper() in self.high_risk_countries

    def is_blocked_country(self, country: str | None) -> bool:
        return bool(country) and country.upper() in self.blocked_countries

    def is_domestic_country(self, country: str | None) -> bool:
        return not country or country.upper() in self.domestic_countries

    def ocdd_review_days(self, risk_level: str) -> int:
        """Calendar days until the next periodic review for a risk level."""
        return {
            "low": self.ocdd.low_risk_days,
            "medium": self.ocdd.medium_risk_days,
            "high": self.ocdd.high_risk_days,
        }.get(str(risk_level), self.ocdd.medium_risk_days)

    def reporting_deadline_days(self, report_type: str) -> int:
        days = {
            "ttr": self.deadlines.ttr_submission_days,
            "smr": self.deadlines.smr_submission_days,
            "ifti": self.deadlines.ifti_submission_days,
        }
        try:
            return days[str(report_type).lower()]
        except KeyError:
            raise ConfigurationError(f"unknown report type {report_type!r}") from None

    @classmethod
    def from_env(cls, region: str | None = None) -> "RegionalConfig":
        """Load a preset with env var overrides (COMPLIANCE_ prefix)."""
        region = region or os.getenv("COMPLIANCE_REGION", "AU")
        overrides: dict[str, Any] = {}

        thresholds: dict[str, Any] = {}
        if v := os.getenv("COMPLIANCE_TTR_THRESHOLD"):
            thresholds["ttr_required"] = v
        if v := os.getenv("COMPLIANCE_KYC_THRESHOLD"):
            thresholds["kyc_required"] = v
        if v := os.getenv("COMPLIANCE_EDD_THRESHOLD"):
            thresholds["enhanced_dd_required"] = v
        if v := os.getenv("COMPLIANCE_STRUCTURING_WINDOW_DAYS"):
            thresholds["structuring_window_days"] = int(v)
        if thresholds:
            overrides["thresholds"] = thresholds

        risk: dict[str, Any] = {}
        if v := os.getenv("COMPLIANCE_RISK_MEDIUM_MIN"):
            risk["medium_threshold"] = int(v)
        if v := os.getenv("COMPLIANCE_RISK_HIGH_MIN"):
            risk["high_threshold"] = int(v)
        if risk:
            overrides["risk_scoring"] = risk

        screening: dict[str, Any] = {}
        if v := os.getenv("COMPLIANCE_SCREENING_MIN_SCORE"):
            screening["minimum_match_score"] = float(v)
        if v := os.getenv("COMPLIANCE_SCREENING_TIMEOUT_SECONDS"):
            screening["source_timeout_seconds"] = float(v)
        if screening:
            overrides["screening"] = screening

        if v := os.getenv("COMPLIANCE_DUPLICATE_TOLERANCE_SECONDS"):
            overrides["reconciliation"] = {"duplicate_time_tolerance": float(v)}
        if v := os.getenv("COMPLIANCE_EXTRA_HOLIDAYS"):
            preset = get_regional_config(region)
            extra = tuple(p.strip() for p in v.split(",") if p.strip())
            overrides["holidays"] = preset.holidays + extra

        return get_regional_config(region, overrides)


def _coerce(current: Any, value: Any, path: str) -> Any:
    """Coerce an override value to the type of the field it replaces."""
    try:
        if isinstance(current, bool):
            return value if isinstance(value, bool) else str(value).lower() in ("true", "1", "yes")
        if isinstance(current, Decimal):
            return Decimal(str(value))
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
        if isinstance(current, timedelta):
            return value if isinstance(value, timedelta) else timedelta(seconds=float(value))
        if isinstance(current, frozenset | tuple):
            # A bare string is one element, not a sequence of characters
            items = (value,) if isinstance(value, str) else tuple(value)
            if isinstance(current, tuple):
                return tuple(i.strip() if isinstance(i, str) else i for i in items)
            return frozenset(i.strip().upper() if isinstance(i, str) else i for i in items)
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise ConfigurationError(f"invalid value for {path}: {value!r}") from exc
    return value


def _merge(base: Any, overrides: Mapping[str, Any], path: str = "") -> Any:
    names = {f.name for f in dataclasses.fields(base)}
    changes: dict[str, Any] = {}
    for key, value in overrides.items():
        full = f"{path}{key}"
        if key not in names:
            raise ConfigurationError(f"unknown configuration key {full!r}")
        current = getattr(base, key)
        if dataclasses.is_dataclass(current) and isinstance(value, Mapping):
            changes[key] = _merge(current, value, f"{full}.")
        else:
            changes[key] = _coerce(current, value, full)
    return dataclasses.replace(base, **changes)


_WEEKDAYS = frozenset({0, 1, 2, 3, 4})

REGIONAL_CONFIGS: dict[str, RegionalConfig] = {
    "AU": RegionalConfig(
        region="AU",
        country="AU",
        currency="AUD",
        currency_symbol="$",
        timezone="Australia/Sydney",
        regulator="AUSTRAC",
        regulator_full_name="Australian Transaction Reports and Analysis Centre",
        thresholds=ThresholdConfig(),
        deadlines=DeadlineConfig(),
        screening=ScreeningConfig(sources=("DFAT", "UN")),
        holidays=(
            "FIXED:01-01",
            "FIXED:01-26",
            "EASTER_FRIDAY",
            "EASTER_MONDAY",
            "FIXED:04-25",
            "FIXED:12-25",
            "FIXED:12-26",
        ),
        workweek=_WEEKDAYS,
    ),
    "NZ": RegionalConfig(
        region="NZ",
        country="NZ",
        currency="NZD",
        currency_symbol="$",
        timezone="Pacific/Auckland",
        regulator="NZ_FIU",
        regulator_full_name="New Zealand Financial Intelligence Unit",
        thresholds=ThresholdConfig(international_transfer=Decimal("1000")),
        screening=ScreeningConfig(sources=("UN", "NZ_DIA")),
        holidays=(
            "FIXED:01-01",
            "FIXED:02-06",
            "EASTER_FRIDAY",
            "EASTER_MONDAY",
            "FIXED:04-25",
            "FIXED:12-25",
            "FIXED:12-26",
        ),
        workweek=_WEEKDAYS,
    ),
    "GB": RegionalConfig(
        region="GB",
        country="GB",
        currency="GBP",
        currency_symbol="£",
        timezone="Europe/London",
        regulator="FCA",
        regulator_full_name="Financial Conduct Authority",
        thresholds=ThresholdConfig(
            kyc_required=Decimal("1000"),
            enhanced_dd_required=Decimal("25000"),
            structuring_amount_min=Decimal("8000"),
            structuring_amount_max=Decimal("10000"),
            international_transfer=Decimal("1000"),
        ),
        deadlines=DeadlineConfig(
            ttr_submission_days=14, smr_submission_days=7, ifti_submission_days=14
        ),
        screening=ScreeningConfig(sources=("UK_HMT", "OFSI", "UN", "EU")),
        holidays=(
            "FIXED:01-01",
            "EASTER_FRIDAY",
            "EASTER_MONDAY",
            "FIRST_MON_MAY",
            "LAST_MON_MAY",
            "LAST_MON_AUG",
            "FIXED:12-25",
            "FIXED:12-26",
        ),
        workweek=_WEEKDAYS,
    ),
    "US": RegionalConfig(
        region="US",
        country="US",
        currency="USD",
        currency_symbol="$",
        timezone="America/New_York",
        regulator="FinCEN",
        regulator_full_name="Financial Crimes Enforcement Network",
        thresholds=ThresholdConfig(
            kyc_required=Decimal("3000"),
            enhanced_dd_required=Decimal("25000"),
            structuring_amount_min=Decimal("8000"),
            structuring_amount_max=Decimal("10000"),
            international_transfer=Decimal("3000"),
        ),
        deadlines=DeadlineConfig(
            ttr_submission_days=15, smr_submission_days=30, ifti_submission_days=15
        ),
        screening=ScreeningConfig(sources=("OFAC", "UN")),
        holidays=(
            "FIXED:01-01",
            "THIRD_MON_JAN",
            "THIRD_MON_FEB",
            "LAST_MON_MAY",
            "FIXED:07-04",
            "FIRST_MON_SEP",
            "FOURTH_THU_NOV",
            "FIXED:12-25",
        ),
        workweek=_WEEKDAYS,
    ),
    "EU": RegionalConfig(
        region="EU",
        country=None,
        currency="EUR",
        currency_symbol="€",
        timezone="Europe/Brussels",
        regulator="AMLA",
        regulator_full_name="Anti-Money Laundering Authority",
        thresholds=ThresholdConfig(
            kyc_required=Decimal("1000"),
            enhanced_dd_required=Decimal("15000"),
            structuring_amount_min=Decimal("8000"),
            structuring_amount_max=Decimal("10000"),
            international_transfer=Decimal("1000"),
        ),
        deadlines=DeadlineConfig(
            ttr_submission_days=14, smr_submission_days=7, ifti_submission_days=14
        ),
        screening=ScreeningConfig(sources=("EU_SANCTIONS", "UN")),
        # Member-state calendars differ; TARGET2 closing days only.
        holidays=("FIXED:01-01", "EASTER_FRIDAY", "EASTER_MONDAY", "FIXED:05-01",
                  "FIXED:12-25", "FIXED:12-26"),
        workweek=_WEEKDAYS,
        domestic_countries=EU_MEMBER_STATES,
    ),
    "SG": RegionalConfig(
        region="SG",
        country="SG",
        currency="SGD",
        currency_symbol="S$",
        timezone="Asia/Singapore",
        regulator="STRO",
        regulator_full_name="Suspicious Transaction Reporting Office",
        thresholds=ThresholdConfig(
            ttr_required=Decimal("20000"),
            structuring_amount_min=Decimal("15000"),
            structuring_amount_max=Decimal("20000"),
            international_transfer=Decimal("5000"),
        ),
        deadlines=DeadlineConfig(
            ttr_submission_days=15, smr_submission_days=15, ifti_submission_days=15
        ),
        screening=ScreeningConfig(sources=("UN", "MAS_SANCTIONS")),
        # Lunar holidays are gazetted yearly and listed explicitly.
        holidays=(
            "FIXED:01-01",
            "EASTER_FRIDAY",
            "FIXED:05-01",
            "FIXED:08-09",
            "FIXED:12-25",
            "2025-01-29", "2025-01-30", "2025-03-31", "2025-05-12", "2025-06-07", "2025-10-20",
            "2026-02-17", "2026-02-18", "2026-03-21", "2026-05-31", "2026-05-27", "2026-11-08",
        ),
        workweek=_WEEKDAYS,
    ),
}
REGIONAL_CONFIGS["UK"] = REGIONAL_CONFIGS["GB"]


def get_regional_config(
    region: str, overrides: Mapping[str, Any] | None = None
) -> RegionalConfig:
    """Return a preset, deep-merged with tenant ``overrides`` and re-validated."""
    try:
        preset = REGIONAL_CONFIGS[region.upper()]
    except KeyError:
        raise ConfigurationError(f"unsupported region {region!r}") from None
    if not overrides:
        return preset
    return _merge(preset, overrides)


def supported_regions() -> list[str]:
    return sorted(REGIONAL_CONFIGS)
