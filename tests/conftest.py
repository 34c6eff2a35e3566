"""
Pytest fixtures for the rental ledger test suite.

Provides:
- In-memory SQLite database, fresh schema per test
- Sessions, session factory and a deterministic clock
- The default configuration and kernel/orchestrator services built from it
- Account, actor and stay builders

Tests that go through ``session_scope`` (retry runner, sweep) must use
``session_factory`` only: the in-memory database lives on one shared
connection, so a second open ``session`` would share its transaction.
"""

import json
import logging
from io import StringIO
from datetime import date
from decimal import Decimal
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from ledger_config import get_active_config
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import Actor, ActorRole, Stay
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.selectors.posting_selector import PostingSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.reconciliation_service import ReconciliationService
from ledger_services.cleaning_payroll_service import CleaningPayrollService
from ledger_services.stay_payment_service import StayPaymentService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

TEST_DATABASE_URL = "sqlite://"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.post_group(...)
            logs = captured_logs()
            assert any(r["message"] == "posting_group_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db_engine():
    """Fresh in-memory database with all tables and immutability listeners."""
    engine = init_engine_from_url(TEST_DATABASE_URL)
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture(scope="function")
def session(session_factory) -> Generator[Session, None, None]:
    """Session for service-level tests; rolled back at teardown."""
    sess = session_factory()
    yield sess
    try:
        sess.rollback()
    finally:
        sess.close()


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing (2025-01-01 12:00 UTC)."""
    return DeterministicClock()


# =============================================================================
# Configuration and services
# =============================================================================


@pytest.fixture
def config():
    """The shipped default configuration."""
    return get_active_config()


@pytest.fixture
def registry(session, config) -> AccountRegistry:
    return AccountRegistry(session, config.account_policy, actor_id=TEST_ACTOR_ID)


@pytest.fixture
def seeded_chart(registry):
    """Seed the default chart of accounts; returns the created accounts."""
    return registry.seed_chart_of_accounts()


@pytest.fixture
def ledger(session, deterministic_clock) -> LedgerService:
    return LedgerService(session, deterministic_clock)


@pytest.fixture
def posting_selector(session) -> PostingSelector:
    return PostingSelector(session)


@pytest.fixture
def reconciliation(session, deterministic_clock) -> ReconciliationService:
    return ReconciliationService(session, deterministic_clock, actor_id=TEST_ACTOR_ID)


@pytest.fixture
def payments(session, deterministic_clock, config, seeded_chart) -> StayPaymentService:
    return StayPaymentService(session, deterministic_clock, config)


@pytest.fixture
def payroll(session, deterministic_clock, config, seeded_chart) -> CleaningPayrollService:
    return CleaningPayrollService(session, deterministic_clock, config)


# =============================================================================
# Domain builders
# =============================================================================


@pytest.fixture
def host(registry) -> Actor:
    """A host with a cash register."""
    actor = Actor(actor_id=uuid4(), name="Hana Host", role=ActorRole.HOST.value)
    registry.ensure_employee_accounts(actor.actor_id, actor.name, actor.role)
    return actor


@pytest.fixture
def cleaner(registry) -> Actor:
    """A cleaning lady with a cash register and payroll accounts."""
    actor = Actor(actor_id=uuid4(), name="Ana Clean", role=ActorRole.CLEANING_LADY.value)
    registry.ensure_employee_accounts(actor.actor_id, actor.name, actor.role)
    return actor


@pytest.fixture
def apartment(registry):
    """Apartment id, name and its revenue/rent accounts."""
    apartment_id = uuid4()
    accounts = registry.create_apartment_accounts(apartment_id, "Sunny Loft")
    return apartment_id, "Sunny Loft", accounts


@pytest.fixture
def make_stay(apartment):
    """Build a Stay in the ``apartment`` fixture's apartment."""
    apartment_id, apartment_name, _ = apartment

    def _make(
        check_in: date = date(2025, 10, 30),
        check_out: date = date(2025, 11, 1),
        nightly_rate: Decimal = Decimal("65.00"),
        stay_id: UUID | None = None,
    ) -> Stay:
        return Stay(
            stay_id=stay_id or uuid4(),
            apartment_id=apartment_id,
            apartment_name=apartment_name,
            check_in=check_in,
            check_out=check_out,
            nightly_rate=nightly_rate,
        )

    return _make
