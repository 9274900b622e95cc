"""
Tests for ledger settings loading.

Verifies:
- The shipped default.yaml parses to the documented defaults
- COMPLETION_LEDGER_<KEY> environment overrides are applied and typed
- Unknown keys and unparseable or out-of-range values raise ValueError
- The checksum ignores the database URL
- Settings bridge into a PaymentPolicy
- Every load is traced
"""

from decimal import Decimal

import pytest

from ledger_config import get_active_settings
from ledger_config.bridges import build_payment_policy
from ledger_config.loader import compute_checksum, parse_settings
from ledger_config.schema import LedgerSettings


class TestDefaults:
    def test_default_file(self):
        settings = get_active_settings(environ={})

        assert settings.settings_id == "default"
        assert settings.invoice_due_days == 14
        assert settings.platform_fee_rate == Decimal("0.05")
        assert settings.max_conflict_retries == 3
        assert settings.invoice_prefix_fallback == "COMP"
        assert not settings.echo_sql

    def test_fee_rate_is_decimal(self):
        settings = get_active_settings(environ={})
        assert isinstance(settings.platform_fee_rate, Decimal)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(path=tmp_path / "absent.yaml", environ={})


class TestSettingsFile:
    def test_custom_file(self, tmp_path):
        path = tmp_path / "staging.yaml"
        path.write_text(
            "settings_id: staging\n"
            "invoice_due_days: 30\n"
            "platform_fee_rate: '0.10'\n"
            "echo_sql: true\n"
        )

        settings = get_active_settings(path=path, environ={})

        assert settings.settings_id == "staging"
        assert settings.invoice_due_days == 30
        assert settings.platform_fee_rate == Decimal("0.10")
        assert settings.echo_sql is True
        assert settings.max_read_retries == 2

    def test_unknown_key_in_file(self, tmp_path):
        path = tmp_path / "typo.yaml"
        path.write_text("invoice_due_dayz: 30\n")

        with pytest.raises(ValueError, match="invoice_due_dayz"):
            get_active_settings(path=path, environ={})

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ValueError):
            get_active_settings(path=path, environ={})


class TestEnvironmentOverrides:
    def test_overrides_applied(self):
        settings = get_active_settings(
            environ={
                "COMPLETION_LEDGER_INVOICE_DUE_DAYS": "7",
                "COMPLETION_LEDGER_ECHO_SQL": "yes",
                "COMPLETION_LEDGER_PLATFORM_FEE_RATE": "0.08",
                "COMPLETION_LEDGER_DATABASE_URL": "postgresql://ledger@db/ledger",
            }
        )

        assert settings.invoice_due_days == 7
        assert settings.echo_sql is True
        assert settings.platform_fee_rate == Decimal("0.08")
        assert settings.database_url == "postgresql://ledger@db/ledger"

    def test_unrelated_variables_ignored(self):
        settings = get_active_settings(environ={"COMPLETION_LEDGER": "x", "HOME": "/root"})
        assert settings == get_active_settings(environ={})

    def test_bad_integer(self):
        with pytest.raises(ValueError, match="invoice_due_days"):
            get_active_settings(environ={"COMPLETION_LEDGER_INVOICE_DUE_DAYS": "two weeks"})

    def test_bad_boolean(self):
        with pytest.raises(ValueError, match="echo_sql"):
            get_active_settings(environ={"COMPLETION_LEDGER_ECHO_SQL": "maybe"})


class TestParseSettings:
    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown settings keys"):
            parse_settings({"fee": "0.05"})

    def test_fee_rate_out_of_range(self):
        with pytest.raises(ValueError, match="platform_fee_rate"):
            parse_settings({"platform_fee_rate": "1.5"})

    def test_infinite_fee_rate(self):
        with pytest.raises(ValueError):
            parse_settings({"platform_fee_rate": "Infinity"})

    def test_negative_retries(self):
        with pytest.raises(ValueError, match="max_conflict_retries"):
            parse_settings({"max_conflict_retries": -1})

    def test_zero_settlement_claim(self):
        with pytest.raises(ValueError, match="settlement_claim_seconds"):
            parse_settings({"settlement_claim_seconds": 0})

    def test_bool_is_not_an_integer(self):
        with pytest.raises(ValueError):
            parse_settings({"pool_size": True})

    def test_bad_log_level(self):
        with pytest.raises(ValueError, match="log_level"):
            parse_settings({"log_level": "LOUD"})

    def test_on_top_of_base(self):
        base = parse_settings({"invoice_due_days": 21})
        settings = parse_settings({"currency": "EUR"}, base=base)
        assert settings.invoice_due_days == 21
        assert settings.currency == "EUR"


class TestChecksum:
    def test_database_url_excluded(self):
        a = LedgerSettings(database_url="sqlite:///a.db")
        b = LedgerSettings(database_url="postgresql://ledger@db/ledger")
        assert compute_checksum(a) == compute_checksum(b)

    def test_policy_fields_included(self):
        a = LedgerSettings()
        b = LedgerSettings(invoice_due_days=30)
        assert compute_checksum(a) != compute_checksum(b)


class TestBridges:
    def test_payment_policy(self):
        settings = parse_settings(
            {"invoice_due_days": 30, "platform_fee_rate": "0.10", "max_conflict_retries": 5}
        )

        policy = build_payment_policy(settings)

        assert policy.invoice_due_days == 30
        assert policy.platform_fee_rate == Decimal("0.10")
        assert policy.max_conflict_retries == 5
        assert policy.invoice_prefix_fallback == "COMP"
        assert policy.settlement_claim_seconds == 300

    def test_settlement_claim_carried(self):
        settings = parse_settings({"settlement_claim_seconds": 90})
        assert build_payment_policy(settings).settlement_claim_seconds == 90


class TestTrace:
    def test_load_traced(self, captured_logs):
        get_active_settings(environ={"COMPLETION_LEDGER_INVOICE_DUE_DAYS": "7"})

        [trace] = [r for r in captured_logs() if r["message"] == "LEDGER_CONFIG_TRACE"]
        assert trace["logger"] == "completion_ledger.config"
        assert trace["settings_id"] == "default"
        assert trace["overridden_keys"] == ["invoice_due_days"]
        assert len(trace["checksum"]) == 64
