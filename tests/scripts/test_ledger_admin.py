"""
Smoke tests for scripts/ledger_admin.py against a file-backed SQLite database.

The script owns the global engine; these tests do not use the db fixtures.
"""

import importlib.util
from pathlib import Path

import pytest

from ledger_kernel.db.engine import reset_engine

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "ledger_admin.py"


def _load_admin():
    spec = importlib.util.spec_from_file_location("ledger_admin", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def admin(tmp_path):
    module = _load_admin()
    url = f"sqlite:///{tmp_path / 'ledger.db'}"

    def run(*argv):
        return module.main(["--db-url", url, *argv])

    yield run
    reset_engine()


class TestLedgerAdmin:

    def test_init_db_seeds_chart(self, admin, config, capsys):
        assert admin("init-db") == 0

        out = capsys.readouterr().out
        chart_size = len(config.account_policy.chart)
        assert f"Created {chart_size} of {chart_size} chart accounts." in out

    def test_init_db_twice_creates_nothing(self, admin, config, capsys):
        admin("init-db")
        capsys.readouterr()

        assert admin("init-db") == 0
        assert f"Created 0 of {len(config.account_policy.chart)}" in capsys.readouterr().out

    def test_accounts_by_type(self, admin, capsys):
        admin("init-db")
        capsys.readouterr()

        assert admin("accounts", "--type", "revenue") == 0

        out = capsys.readouterr().out
        assert "692" in out
        assert "111" not in out

    def test_validate_clean_database(self, admin, capsys):
        admin("init-db")
        capsys.readouterr()

        assert admin("validate") == 0
        out = capsys.readouterr().out
        assert "Checked" in out
        assert "MISMATCH" not in out

    def test_history_of_empty_account(self, admin, capsys):
        admin("init-db")
        capsys.readouterr()

        assert admin("history", "111") == 0
        out = capsys.readouterr().out
        assert "opening balance 0.00" in out
        assert "closing balance 0.00" in out

    def test_postings_of_empty_account(self, admin, capsys):
        admin("init-db")
        capsys.readouterr()

        assert admin("postings", "111") == 0
        assert "(0 postings)" in capsys.readouterr().out
