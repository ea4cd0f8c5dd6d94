"""Housing eligibility score, eligibility check and fee schedule."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from app.core.errors import ValidationError
from app.core.models import Application, Program
from app.core.utils import money, quantize_money, to_decimal
from app.review.config_store import ScoringConfig

HUNDRED = Decimal("100")
ZERO = Decimal("0")
SENIOR_AGE = 60

# housing_type -> vulnerability points
VULNERABILITY_POINTS: dict[str, Decimal] = {
    "informal": Decimal("25"),
    "squatting": Decimal("50"),
}


@dataclass(frozen=True)
class ScoreBreakdown:
    factors: dict[str, Decimal]
    weighted: Decimal
    bonus: Decimal
    total: Decimal


@dataclass(frozen=True)
class FeeBreakdown:
    base: Decimal
    processing: Decimal
    total: Decimal

    def to_dict(self) -> dict[str, str]:
        return {
            "base": f"{self.base:.2f}",
            "processing": f"{self.processing:.2f}",
            "total": f"{self.total:.2f}",
            "display": money(self.total),
        }


@dataclass(frozen=True)
class EligibilityResult:
    passed: bool
    reasons: list[str] = field(default_factory=list)


def _clamp(value: Decimal) -> Decimal:
    return max(ZERO, min(HUNDRED, value))


def _reference_date(application: Application) -> date | None:
    moment = application.submitted_at or application.created_at
    return moment.date() if moment else None


def age_on(birthdate: date | None, reference: date | None) -> int | None:
    if birthdate is None or reference is None:
        return None
    years = reference.year - birthdate.year
    if (reference.month, reference.day) < (birthdate.month, birthdate.day):
        years -= 1
    return years


def is_senior(application: Application) -> bool:
    age = age_on(application.birthdate, _reference_date(application))
    return age is not None and age >= SENIOR_AGE


def _household_income(application: Application) -> Decimal:
    if application.total_household_income is not None:
        return to_decimal(application.total_household_income)
    return to_decimal(application.monthly_income or 0)


def factor_scores(application: Application) -> dict[str, Decimal]:
    household_size = application.household_size or 0

    housing_condition = ZERO
    floor_area = to_decimal(application.floor_area or 0)
    if application.rooms and floor_area > 0:
        density = Decimal(household_size) / (floor_area / Decimal("10"))
        housing_condition = _clamp(HUNDRED - density * Decimal("10"))

    return {
        "income": _clamp(HUNDRED - _household_income(application) / Decimal("1000")),
        "household_size": min(HUNDRED, Decimal(household_size) * Decimal("10")),
        "vulnerability": _clamp(VULNERABILITY_POINTS.get((application.housing_type or "").lower(), ZERO)),
        "residency": min(HUNDRED, Decimal(application.years_at_address or 0) * Decimal("5")),
        "housing_condition": housing_condition,
    }


def bonus_points(application: Application, config: ScoringConfig) -> Decimal:
    bonus = ZERO
    if is_senior(application):
        bonus += config.senior_bonus
    if application.is_pwd:
        bonus += config.pwd_bonus
    if application.is_solo_parent:
        bonus += config.solo_parent_bonus
    if application.is_ofw:
        bonus += config.ofw_bonus
    if config.max_bonus_points is not None:
        bonus = min(bonus, config.max_bonus_points)
    return bonus


def score_breakdown(application: Application, config: ScoringConfig) -> ScoreBreakdown:
    factors = factor_scores(application)
    weighted = sum(
        (factors[name] * config.weights[f"{name}_weight"] for name in factors),
        ZERO,
    )
    bonus = bonus_points(application, config)
    return ScoreBreakdown(
        factors={name: quantize_money(value) for name, value in factors.items()},
        weighted=quantize_money(weighted),
        bonus=quantize_money(bonus),
        total=quantize_money(weighted + bonus),
    )


def score(application: Application, config: ScoringConfig) -> Decimal:
    return score_breakdown(application, config).total


def compute_fee(application: Application, config: ScoringConfig) -> FeeBreakdown:
    if application.program == Program.ZONING_CLEARANCE:
        base = config.zoning_base_fee
        processing = config.zoning_fee_per_sqm * to_decimal(application.total_floor_area_sqm or 0)
    else:
        program_type = application.program_type or ""
        if program_type not in config.housing_base_fees:
            raise ValidationError(f"Unknown housing program type: {program_type or '(empty)'}")
        units = application.requested_units or 1
        base = config.housing_base_fees[program_type]
        processing = config.housing_processing_fee_per_unit * Decimal(units)

    base = quantize_money(base)
    processing = quantize_money(processing)
    return FeeBreakdown(base=base, processing=processing, total=base + processing)


def check_eligibility(application: Application, config: ScoringConfig) -> EligibilityResult:
    if application.program != Program.HOUSING_ASSISTANCE:
        return EligibilityResult(passed=True)

    reasons: list[str] = []
    threshold = config.income_thresholds.get(application.program_type or "")
    if threshold is None:
        reasons.append(f"Unknown housing program type: {application.program_type or '(empty)'}")
    elif application.monthly_income is None:
        reasons.append("Monthly income is required")
    elif to_decimal(application.monthly_income) > threshold:
        reasons.append(f"Monthly income exceeds the {quantize_money(threshold):,.2f} ceiling for this program")

    size = application.household_size
    if size is None or not (config.min_household_size <= size <= config.max_household_size):
        reasons.append(
            f"Household size must be between {config.min_household_size} and {config.max_household_size}"
        )

    years = application.years_at_address
    if years is None or years < config.min_residency_years:
        reasons.append(f"At least {config.min_residency_years} years of residency are required")

    return EligibilityResult(passed=not reasons, reasons=reasons)
