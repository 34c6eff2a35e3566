"""
Tests for ledger_config: defaults, overrides and validation.

Edited configurations are written to ``tmp_path`` from the shipped defaults,
so every test sees a complete, otherwise valid directory.
"""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from ledger_config import DATABASE_URL_ENV, OverpaymentPolicy, get_active_config
from ledger_config.loader import compute_checksum, load_yaml_file, parse_decimal

DEFAULTS = Path(__file__).resolve().parents[2] / "ledger_config" / "defaults"


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch):
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)


@pytest.fixture
def config_dir(tmp_path):
    """Copy of the default configuration; returns an editor for ledger.yaml."""
    (tmp_path / "chart_of_accounts.yaml").write_text(
        (DEFAULTS / "chart_of_accounts.yaml").read_text()
    )
    ledger = load_yaml_file(DEFAULTS / "ledger.yaml")
    (tmp_path / "ledger.yaml").write_text(yaml.safe_dump(ledger))

    def _edit(update):
        data = load_yaml_file(tmp_path / "ledger.yaml")
        update(data)
        (tmp_path / "ledger.yaml").write_text(yaml.safe_dump(data))
        return tmp_path

    _edit.path = tmp_path
    return _edit


class TestDefaults:

    def test_default_config_loads(self):
        config = get_active_config()

        assert config.config_id == "rental-ledger-default"
        assert config.overpayment_policy is OverpaymentPolicy.REJECT
        assert config.guest_overpayment_account == "231"
        assert config.default_cleaning_hourly_rate == Decimal("5.00")
        assert config.retry.max_attempts == 3
        assert config.history_page_size == 50

    def test_default_prefixes_and_roles(self):
        policy = get_active_config().account_policy

        assert policy.prefixes.cash_register == "10"
        assert policy.prefixes.cleaner_payable == "20"
        assert policy.prefixes.net_salary == "75"
        assert policy.prefixes.apartment_revenue == "601-"
        assert policy.prefixes.owner_rent == "701-"
        assert policy.has_cash_register("HOST")
        assert not policy.has_cash_register("HANDY_MAN")
        assert policy.is_payroll_role("CLEANING_LADY")

    def test_chart_parsed(self):
        chart = {a.code: a for a in get_active_config().account_policy.chart}

        assert chart["111"].is_cash_register
        assert chart["231"].account_type == "liability"
        assert chart["692"].account_type == "revenue"

    def test_checksum_stable(self):
        assert get_active_config().checksum == get_active_config().checksum

    def test_config_trace_logged(self, captured_logs):
        get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_CONFIG_TRACE"]
        assert traces[0]["config_id"] == "rental-ledger-default"
        assert traces[0]["overpayment_policy"] == "reject"


class TestOverrides:

    def test_env_overrides_database_url(self, monkeypatch):
        monkeypatch.setenv(DATABASE_URL_ENV, "postgresql+psycopg2://ledger@db/ledger")

        assert get_active_config().database_url == "postgresql+psycopg2://ledger@db/ledger"

    def test_overpayment_policy_from_yaml(self, config_dir):
        directory = config_dir(
            lambda d: d["payments"].update(overpayment_policy="accept_as_credit")
        )

        config = get_active_config(directory)

        assert config.overpayment_policy is OverpaymentPolicy.ACCEPT_AS_CREDIT

    def test_checksum_changes_with_content(self, config_dir):
        before = get_active_config(config_dir.path).checksum
        directory = config_dir(lambda d: d["cleaning"].update(default_hourly_rate="6.50"))

        after = get_active_config(directory)

        assert after.checksum != before
        assert after.default_cleaning_hourly_rate == Decimal("6.50")


class TestValidation:

    def test_unknown_role(self, config_dir):
        directory = config_dir(lambda d: d["accounts"]["payroll_roles"].append("JANITOR"))

        with pytest.raises(ValueError, match="Unknown role 'JANITOR'"):
            get_active_config(directory)

    def test_empty_prefix(self, config_dir):
        directory = config_dir(lambda d: d["accounts"]["prefixes"].update(net_salary=""))

        with pytest.raises(ValueError, match="Empty code prefix for net_salary"):
            get_active_config(directory)

    def test_overpayment_account_must_exist(self, config_dir):
        directory = config_dir(
            lambda d: d["payments"].update(guest_overpayment_account="299")
        )

        with pytest.raises(ValueError, match="Guest overpayment account 299"):
            get_active_config(directory)

    def test_non_positive_rate(self, config_dir):
        directory = config_dir(lambda d: d["cleaning"].update(default_hourly_rate="0"))

        with pytest.raises(ValueError, match="default_hourly_rate must be positive"):
            get_active_config(directory)

    def test_retry_attempts(self, config_dir):
        directory = config_dir(lambda d: d["retry"].update(max_attempts=0))

        with pytest.raises(ValueError, match="max_attempts must be at least 1"):
            get_active_config(directory)

    def test_unknown_overpayment_policy(self, config_dir):
        directory = config_dir(lambda d: d["payments"].update(overpayment_policy="keep_it"))

        with pytest.raises(ValueError):
            get_active_config(directory)

    def test_missing_required_key(self, config_dir):
        directory = config_dir(lambda d: d.pop("config_id"))

        with pytest.raises(KeyError):
            get_active_config(directory)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path)

    def test_bad_decimal(self):
        with pytest.raises(ValueError, match="cannot parse decimal"):
            parse_decimal("five", "cleaning.default_hourly_rate")


class TestChecksum:

    def test_key_order_irrelevant(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
