"""
Test suite for configuration, structured logging, clocks and errors
"""

import json
import logging
import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from retail_credit.clock import FixedClock, SystemClock
from retail_credit.config import FinancingConfig, reload_config
from retail_credit.currency import Currency
from retail_credit.errors import FinancingError, LoanNotFound, OverPayment
from retail_credit.logging_config import (
    JSONFormatter, get_logger, log_action, setup_logging, setup_logging_from_config
)


@pytest.fixture
def engine_logger():
    """The engine's root logger, restored after the test"""
    logger = logging.getLogger("retail_credit")
    saved = (logger.handlers[:], logger.level, logger.propagate)
    yield logger
    handlers, level, propagate = saved
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


class TestFinancingConfig:
    """Test settings defaults and environment overrides"""

    def test_defaults(self):
        config = FinancingConfig(_env_file=None)
        assert config.currency_enum is Currency.DOP
        assert config.monthly_rate == Decimal("0.05")
        assert config.default_term == 6
        assert config.min_term == 2
        assert config.max_term == 48
        assert config.grace_period_days == 0
        assert config.overpay_tolerance_amount == Decimal("0.00")
        assert config.enable_audit_logging

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("RETAIL_CREDIT_DEFAULT_MONTHLY_RATE", "0.04")
        monkeypatch.setenv("RETAIL_CREDIT_GRACE_PERIOD_DAYS", "3")
        monkeypatch.setenv("RETAIL_CREDIT_CURRENCY", "usd")

        config = FinancingConfig(_env_file=None)
        assert config.monthly_rate == Decimal("0.04")
        assert config.grace_period_days == 3
        assert config.currency_enum is Currency.USD

    def test_reload_config(self, monkeypatch):
        monkeypatch.setenv("RETAIL_CREDIT_MAX_TERM", "24")
        try:
            assert reload_config().max_term == 24
        finally:
            monkeypatch.delenv("RETAIL_CREDIT_MAX_TERM")
            reload_config()


class TestLogging:
    """Test structured JSON logging"""

    def _record(self, **extra):
        record = logging.LogRecord("retail_credit.loans", logging.WARNING, __file__, 1,
                                   "Loan apply_payment rejected", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter(self):
        output = JSONFormatter().format(self._record(
            action="apply_payment", resource="loan:1", error_code="over_payment",
            extra_fields={"sequence": 1}
        ))
        entry = json.loads(output)

        assert entry["level"] == "WARNING"
        assert entry["logger"] == "retail_credit.loans"
        assert entry["action"] == "apply_payment"
        assert entry["error_code"] == "over_payment"
        assert entry["extra"] == {"sequence": 1}

    def test_formatter_drops_empty_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        assert "action" not in entry
        assert "error_code" not in entry

    def test_get_logger_namespacing(self):
        assert get_logger("loans").name == "retail_credit.loans"
        assert get_logger("retail_credit.audit").name == "retail_credit.audit"
        assert get_logger().name == "retail_credit"

    def test_setup_logging(self):
        logger = setup_logging(level="DEBUG", log_format="text", logger_name="retail_credit_test")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

        logger = setup_logging(level="INFO", logger_name="retail_credit_test")
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_setup_from_config(self, engine_logger):
        config = FinancingConfig(_env_file=None, log_level="WARNING")
        logger = setup_logging_from_config(config)
        assert logger is engine_logger
        assert logger.level == logging.WARNING

    def test_log_action_fields(self, caplog):
        logger = logging.getLogger("retail_credit_caplog")
        with caplog.at_level(logging.INFO, logger="retail_credit_caplog"):
            log_action(logger, "info", "Receivable payment applied",
                       action="apply_payment", resource="receivable:1",
                       extra={"status": "pagado"})

        record = caplog.records[-1]
        assert record.action == "apply_payment"
        assert record.resource == "receivable:1"
        assert record.extra_fields == {"status": "pagado"}

    def test_rejections_logged_as_warnings(self, loan_ledger, caplog, engine_logger):
        engine_logger.propagate = True
        with caplog.at_level(logging.WARNING, logger="retail_credit"):
            with pytest.raises(LoanNotFound):
                loan_ledger.apply_payment("missing", 1, "10")

        rejected = [r for r in caplog.records if getattr(r, "error_code", None) == "loan_not_found"]
        assert len(rejected) == 1
        assert rejected[0].levelno == logging.WARNING


class TestClock:
    """Test clock implementations"""

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo is timezone.utc

    def test_fixed_clock(self):
        clock = FixedClock(datetime(2024, 1, 31, 23, 0))
        assert clock.now().tzinfo == timezone.utc
        assert clock.today() == date(2024, 1, 31)

        clock.advance(hours=2)
        assert clock.today() == date(2024, 2, 1)

        clock.set(datetime(2025, 6, 1, tzinfo=timezone.utc))
        assert clock.today() == date(2025, 6, 1)


class TestErrors:
    """Test error taxonomy"""

    def test_codes_and_details(self):
        error = OverPayment("too much", {"amount": "10"})
        assert isinstance(error, FinancingError)
        assert error.code == "over_payment"
        assert error.to_dict() == {"code": "over_payment", "message": "too much",
                                   "details": {"amount": "10"}}
        assert str(error) == "too much"
