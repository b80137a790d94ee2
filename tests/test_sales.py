"""
Test suite for sale intake
"""

import pytest
from decimal import Decimal
from datetime import date

from pydantic import ValidationError

from retail_credit.currency import Money
from retail_credit.errors import InvalidTerms
from retail_credit.loans import Loan
from retail_credit.receivables import Receivable, ReceivableStatus
from retail_credit.sales import SaleCompleted, SaleIntake, SalePaymentMethod
from retail_credit.schedule import Cadence


@pytest.fixture
def intake(loan_ledger, receivable_ledger):
    return SaleIntake(loan_ledger, receivable_ledger)


class TestSaleCompleted:
    """Test event parsing"""

    def test_parse_wire_form(self):
        event = SaleCompleted.model_validate({
            "saleId": "s-1",
            "totalAmount": "15000",
            "downPayment": "3000",
            "paymentMethod": "financing",
            "customerId": "c-1",
            "installments": 12,
            "paymentPeriod": "biweekly",
        })
        assert event.sale_id == "s-1"
        assert event.total_amount == Decimal("15000")
        assert event.payment_method is SalePaymentMethod.FINANCING
        assert event.cadence is Cadence.BIWEEKLY
        assert event.term == 12

    def test_field_names_accepted(self):
        event = SaleCompleted(sale_id="s-2", total_amount=Decimal("100"), payment_method="credit")
        assert event.down_payment == Decimal("0")
        assert event.customer_id is None

    def test_model_config_allows_field_names(self):
        assert SaleCompleted.model_config["populate_by_name"] is True
        assert "Config" not in vars(SaleCompleted)

    def test_blank_down_payment(self):
        event = SaleCompleted(sale_id="s-3", total_amount="100", payment_method="cash", down_payment="")
        assert event.down_payment == Decimal("0")

    def test_unknown_payment_method(self):
        with pytest.raises(ValidationError):
            SaleCompleted(sale_id="s-4", total_amount="100", payment_method="barter")


class TestSaleIntake:
    """Test routing of completed sales"""

    def test_financing_opens_loan(self, intake, loan_ledger):
        loan = intake.handle(SaleCompleted(
            sale_id="s-10", total_amount="12000", down_payment="2000",
            payment_method="financing", customer_id="c-1",
            monthly_rate="0.05", term=6, start_date=date(2024, 1, 15),
        ))

        assert isinstance(loan, Loan)
        assert loan.principal == Money("10000.00")
        assert loan.sale_id == "s-10"
        assert loan.level_payment == Money("1970.17")
        assert loan_ledger.get_loan(loan.id).customer_id == "c-1"

    def test_credit_opens_receivable_with_advance(self, intake):
        receivable = intake.handle({
            "saleId": "s-11", "totalAmount": "900", "downPayment": "100",
            "paymentMethod": "credit", "customerId": "c-2",
        })

        assert isinstance(receivable, Receivable)
        assert receivable.original_amount == Money("900")
        assert receivable.paid_amount == Money("100")
        assert receivable.status == ReceivableStatus.PARTIAL
        assert receivable.description == "Venta a crédito"

    @pytest.mark.parametrize("method", ["cash", "card", "transfer"])
    def test_paid_sales_open_nothing(self, intake, loan_ledger, receivable_ledger, method):
        assert intake.handle({"saleId": "s-12", "totalAmount": "50", "paymentMethod": method}) is None
        assert loan_ledger.get_all_loans() == []
        assert receivable_ledger.get_all_receivables() == []

    def test_ledger_rejection_propagates(self, intake):
        with pytest.raises(InvalidTerms):
            intake.handle({"saleId": "s-13", "totalAmount": "100", "downPayment": "100",
                           "paymentMethod": "financing"})
