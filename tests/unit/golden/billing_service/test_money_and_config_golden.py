"""
Money and Configuration Golden Tests

🔒 GOLDEN: rounding helpers and BillingConfig loading/validation.

Usage:
    pytest tests/unit/golden -v
"""
from dataclasses import fields
from decimal import Decimal

import pytest

from core.config import BillingConfig
from core.money import from_minor_units, round_money, to_decimal, to_minor_units

pytestmark = [pytest.mark.unit, pytest.mark.golden]


class TestRounding:

    @pytest.mark.parametrize("amount,expected", [
        ("0.005", "0.01"),
        ("0.004", "0.00"),
        ("2.675", "2.68"),
        ("-0.005", "-0.01"),
    ])
    def test_half_up_to_cents(self, amount, expected):
        assert round_money(Decimal(amount)) == Decimal(expected)

    def test_zero_and_three_decimal_currencies(self):
        assert round_money(Decimal("10.5"), "JPY") == Decimal("11")
        assert round_money(Decimal("1.2345"), "KWD") == Decimal("1.235")

    def test_minor_units(self):
        assert to_minor_units(Decimal("110.00")) == 11000
        assert to_minor_units(Decimal("500"), "JPY") == 500
        assert from_minor_units(11050) == Decimal("110.50")

    def test_to_decimal_avoids_float_artifacts(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(None) == Decimal("0")


class TestBillingConfig:

    def test_defaults(self):
        config = BillingConfig()
        assert config.invoice_due_days == 30
        assert config.invoice_number_prefix == "INV-"
        assert config.tax_rate == Decimal("0.00")
        assert config.enable_auto_payment is True
        config.validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("INVOICE_DUE_DAYS", "14")
        monkeypatch.setenv("INVOICE_TAX_RATE", "0.08")
        monkeypatch.setenv("FEATURE_AUTO_PAYMENT", "false")

        config = BillingConfig.from_env()

        assert config.invoice_due_days == 14
        assert config.tax_rate == Decimal("0.08")
        assert config.enable_auto_payment is False

    def test_usage_settings_are_only_the_query_timeout(self, monkeypatch):
        monkeypatch.setenv("USAGE_QUERY_TIMEOUT_SECONDS", "2.5")

        config = BillingConfig.from_env()

        assert config.usage_query_timeout_seconds == 2.5
        assert [f.name for f in fields(BillingConfig) if f.name.startswith("usage_")] == [
            "usage_query_timeout_seconds"
        ]

    def test_unparseable_env_falls_back_to_default(self, monkeypatch):
        monkeypatch.setenv("INVOICE_DUE_DAYS", "soon")
        assert BillingConfig.from_env().invoice_due_days == 30

    @pytest.mark.parametrize("overrides", [
        {"invoice_due_days": 0},
        {"invoice_number_prefix": ""},
        {"tax_rate": Decimal("1.5")},
        {"tax_rate": Decimal("-0.1")},
        {"default_currency": "US"},
        {"invoice_number_max_retries": 0},
    ])
    def test_validate_rejects(self, overrides):
        with pytest.raises(ValueError):
            BillingConfig(**overrides).validate()
