"""Tests for loading restaurant settings from YAML."""

from datetime import datetime, timezone
from decimal import Decimal
from textwrap import dedent

import pytest
import yaml

from restaurant_config import get_active_settings
from restaurant_config.loader import compute_checksum, parse_decimal, parse_settings
from restaurant_kernel.domain.models import (
    LoyaltyProgramType,
    StockDeductionPolicy,
    SubscriptionTier,
)


def _write(tmp_path, text):
    path = tmp_path / "settings.yaml"
    path.write_text(dedent(text), encoding="utf-8")
    return path


class TestDefaultSettings:
    """The packaged default.yaml loads and is traced."""

    def test_defaults(self):
        settings = get_active_settings()
        assert settings.stock_deduction_policy is StockDeductionPolicy.ALLOW_NEGATIVE
        assert settings.tax_rate == 0
        assert not settings.loyalty.enabled
        assert settings.subscription.tier is SubscriptionTier.FREE_TRIAL

    def test_config_trace_logged(self, captured_logs):
        get_active_settings()
        (trace,) = [r for r in captured_logs() if r["message"] == "RESTAURANT_CONFIG_TRACE"]
        assert trace["logger"] == "restaurant_kernel.config"
        assert trace["config_version"] == 1
        assert trace["stock_deduction_policy"] == "ALLOW_NEGATIVE"
        assert len(trace["checksum"]) == 64


class TestCustomFile:

    def test_full_file(self, tmp_path):
        path = _write(tmp_path, """
            version: 3
            settings:
              restaurant_name: Cafe Nine
              currency_unit: IRR
              tax_rate: 9.5
              stock_deduction_policy: ALLOW_BUT_REQUIRE_CONFIRMATION
              loyalty:
                enabled: true
                program_type: points
                points_rate: 5000
              subscription:
                tier: pro
                start_date: 2024-01-01
                expiry_date: "2025-01-01T00:00:00+03:30"
                is_active: true
        """)

        settings = get_active_settings(path)

        assert settings.restaurant_name == "Cafe Nine"
        assert settings.tax_rate == Decimal("9.5")
        assert settings.stock_deduction_policy is StockDeductionPolicy.ALLOW_BUT_REQUIRE_CONFIRMATION
        assert settings.loyalty.program_type is LoyaltyProgramType.POINTS
        assert settings.loyalty.points_rate == Decimal("5000")
        assert settings.loyalty.cashback_percentage == Decimal("5")
        assert settings.subscription.start_date == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert settings.subscription.expiry_date.utcoffset().total_seconds() == 12600
        assert settings.subscription.is_active

    def test_missing_keys_take_defaults(self, tmp_path):
        settings = get_active_settings(_write(tmp_path, "settings: {tax_rate: 9}\n"))
        assert settings.tax_rate == Decimal("9")
        assert settings.stock_deduction_policy is StockDeductionPolicy.ALLOW_NEGATIVE

    @pytest.mark.parametrize("text", ["version: 1\n", "", "settings: [1, 2]\n"])
    def test_settings_section_required(self, tmp_path, text):
        with pytest.raises(ValueError, match="no 'settings' mapping"):
            get_active_settings(_write(tmp_path, text))

    @pytest.mark.parametrize("section", [
        {"tax_rate": 150},
        {"tax_rate": -1},
        {"stock_deduction_policy": "SOMETIMES"},
        {"restaurant_name": " "},
        {"loyalty": {"program_type": "stamps"}},
        {"tax_rate": True},
    ])
    def test_invalid_values(self, section):
        with pytest.raises(ValueError):
            parse_settings(section)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(yaml.YAMLError):
            get_active_settings(_write(tmp_path, "settings: [unclosed\n"))


class TestHelpers:

    def test_parse_decimal_keeps_text_precision(self):
        assert parse_decimal(0.1) == Decimal("0.1")
        assert parse_decimal("12.50") == Decimal("12.50")

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})
