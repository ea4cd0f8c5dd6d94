from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from app.core.context import RequestContext
from app.core.errors import AuthorizationError, ConfigurationError, ValidationError
from app.core.extensions import db
from app.core.models import ConfigDataType, ConfigValue

logger = logging.getLogger(__name__)

WEIGHT_KEYS = (
    "income_weight",
    "household_size_weight",
    "vulnerability_weight",
    "residency_weight",
    "housing_condition_weight",
)
WEIGHT_TOLERANCE = Decimal("0.001")


@dataclass(frozen=True)
class ScoringConfig:
    weights: dict[str, Decimal]
    senior_bonus: Decimal
    pwd_bonus: Decimal
    solo_parent_bonus: Decimal
    ofw_bonus: Decimal
    max_bonus_points: Decimal | None
    income_thresholds: dict[str, Decimal]
    min_household_size: int
    max_household_size: int
    min_residency_years: int
    zoning_base_fee: Decimal
    zoning_fee_per_sqm: Decimal
    housing_base_fees: dict[str, Decimal] = field(default_factory=dict)
    housing_processing_fee_per_unit: Decimal = Decimal("0")


def cast_value(raw: str | None, data_type: ConfigDataType, key: str = "") -> object:
    text = (raw or "").strip()
    if data_type == ConfigDataType.NUMBER:
        if not text:
            return None
        try:
            return Decimal(text)
        except InvalidOperation as exc:
            raise ValidationError(f"Configuration value {key} must be a number") from exc
    if data_type == ConfigDataType.BOOLEAN:
        lowered = text.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off", ""}:
            return False
        raise ValidationError(f"Configuration value {key} must be a boolean")
    if data_type == ConfigDataType.JSON:
        if not text:
            return []
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Configuration value {key} must be valid JSON") from exc
    if data_type == ConfigDataType.STRING:
        return raw or ""
    raise ValidationError(f"Unknown data type for configuration value {key}")


def _row(key: str) -> ConfigValue | None:
    return ConfigValue.query.filter_by(config_key=key).first()


def get_value(key: str, default: object = None) -> object:
    row = _row(key)
    if row is None:
        return default
    value = cast_value(row.config_value, row.data_type, key)
    return default if value is None else value


def snapshot(public_only: bool = False) -> dict[str, object]:
    query = ConfigValue.query
    if public_only:
        query = query.filter_by(is_public=True)
    return {
        row.config_key: cast_value(row.config_value, row.data_type, row.config_key)
        for row in query.order_by(ConfigValue.config_key.asc()).all()
    }


def _decimal(values: dict[str, object], key: str, default: str = "0") -> Decimal:
    value = values.get(key)
    return value if isinstance(value, Decimal) else Decimal(default)


def build_scoring_config(values: dict[str, object]) -> ScoringConfig:
    weights = {key: _decimal(values, key) for key in WEIGHT_KEYS}
    total = sum(weights.values(), Decimal("0"))
    if abs(total - Decimal("1")) > WEIGHT_TOLERANCE:
        raise ConfigurationError(f"Scoring weights must sum to 1.0 (got {total})")

    program_types = values.get("housing_program_types") or []
    income_thresholds: dict[str, Decimal] = {}
    base_fees: dict[str, Decimal] = {}
    for program_type in program_types:
        income_thresholds[program_type] = _decimal(values, f"max_monthly_income_{program_type}")
        base_fees[program_type] = _decimal(values, f"housing_base_fee_{program_type}")

    max_bonus = values.get("max_bonus_points")
    return ScoringConfig(
        weights=weights,
        senior_bonus=_decimal(values, "senior_citizen_bonus"),
        pwd_bonus=_decimal(values, "pwd_bonus"),
        solo_parent_bonus=_decimal(values, "solo_parent_bonus"),
        ofw_bonus=_decimal(values, "ofw_bonus"),
        max_bonus_points=max_bonus if isinstance(max_bonus, Decimal) else None,
        income_thresholds=income_thresholds,
        min_household_size=int(_decimal(values, "min_household_size", "1")),
        max_household_size=int(_decimal(values, "max_household_size", "99")),
        min_residency_years=int(_decimal(values, "min_residency_years")),
        zoning_base_fee=_decimal(values, "zoning_base_fee"),
        zoning_fee_per_sqm=_decimal(values, "zoning_fee_per_sqm"),
        housing_base_fees=base_fees,
        housing_processing_fee_per_unit=_decimal(values, "housing_processing_fee_per_unit"),
    )


def load_scoring_config() -> ScoringConfig:
    return build_scoring_config(snapshot())


def set_values(changes: dict[str, object], ctx: RequestContext) -> dict[str, object]:
    if not ctx.is_admin:
        raise AuthorizationError("Only administrators can change configuration")
    if not changes:
        raise ValidationError("No configuration values supplied")

    try:
        for key, raw in changes.items():
            row = _row(key)
            if row is None:
                raise ValidationError(f"Unknown configuration key: {key}")
            if isinstance(raw, bool):
                text = "true" if raw else "false"
            elif isinstance(raw, (list, dict)):
                text = json.dumps(raw)
            else:
                text = "" if raw is None else str(raw)
            cast_value(text, row.data_type, key)
            row.config_value = text
            db.session.add(row)
        load_scoring_config()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Configuration updated by user %s: %s", ctx.actor_id, ", ".join(sorted(changes)))
    return snapshot()
