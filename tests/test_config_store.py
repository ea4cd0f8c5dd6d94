from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.errors import AuthorizationError, ConfigurationError, ValidationError
from app.core.extensions import db
from app.core.models import ConfigValue
from app.review import config_store


def test_typed_reads(app):
    assert config_store.get_value("info_request_timeout_days") == Decimal("45")
    assert config_store.get_value("email_notifications_enabled") is True
    assert config_store.get_value("zoning_number_prefix") == "ZC"
    assert config_store.get_value("housing_program_types") == [
        "rental_subsidy",
        "socialized_housing",
        "in_city_relocation",
    ]
    assert config_store.get_value("max_bonus_points", "uncapped") == "uncapped"
    assert config_store.get_value("no_such_key", 7) == 7


def test_public_snapshot_hides_private_keys(app):
    public = config_store.snapshot(public_only=True)
    assert "pwd_bonus" in public
    assert "income_weight" not in public
    assert "income_weight" in config_store.snapshot()


def test_uncastable_stored_value_is_a_validation_error(app):
    row = ConfigValue.query.filter_by(config_key="pwd_bonus").one()
    row.config_value = "lots"
    db.session.commit()
    with pytest.raises(ValidationError):
        config_store.get_value("pwd_bonus")


def test_load_scoring_config_uses_seeded_values(app):
    config = config_store.load_scoring_config()
    assert sum(config.weights.values()) == Decimal("1.00")
    assert config.income_thresholds["socialized_housing"] == Decimal("20000")
    assert config.housing_base_fees["in_city_relocation"] == Decimal("750.00")
    assert config.max_bonus_points is None


def test_set_values_is_admin_only(app, ctx_for):
    with pytest.raises(AuthorizationError):
        config_store.set_values({"pwd_bonus": "20"}, ctx_for("zoning@portal.local"))


def test_set_values_validates_each_value(app, ctx_for):
    admin = ctx_for("admin@portal.local")
    with pytest.raises(ValidationError):
        config_store.set_values({"pwd_bonus": "twenty"}, admin)
    with pytest.raises(ValidationError):
        config_store.set_values({"made_up_key": "1"}, admin)
    assert config_store.get_value("pwd_bonus") == Decimal("15")


def test_set_values_rejects_weights_that_do_not_sum_to_one(app, ctx_for):
    admin = ctx_for("admin@portal.local")
    with pytest.raises(ConfigurationError):
        config_store.set_values({"income_weight": "0.45"}, admin)
    assert config_store.get_value("income_weight") == Decimal("0.40")

    values = config_store.set_values({"income_weight": "0.45", "residency_weight": "0.05", "max_bonus_points": 25}, admin)
    assert values["income_weight"] == Decimal("0.45")
    assert config_store.load_scoring_config().max_bonus_points == Decimal("25")
