"""
Shared fixtures: in-memory storage, a frozen clock and wired ledgers
"""

import pytest
from datetime import datetime, timezone

from retail_credit.audit import AuditTrail
from retail_credit.clock import FixedClock
from retail_credit.config import FinancingConfig
from retail_credit.loans import LoanLedger
from retail_credit.receivables import ReceivableLedger
from retail_credit.storage import InMemoryStorage


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return FinancingConfig(_env_file=None)


@pytest.fixture
def audit_trail(storage, clock):
    return AuditTrail(storage, clock)


@pytest.fixture
def loan_ledger(storage, audit_trail, clock, config):
    return LoanLedger(storage, audit_trail, clock, config)


@pytest.fixture
def receivable_ledger(storage, audit_trail, clock, config):
    return ReceivableLedger(storage, audit_trail, clock, config)
