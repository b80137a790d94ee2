"""
Sale Intake Module

Turns a completed point-of-sale event into the matching credit aggregate:
financed sales open a Loan, open-credit sales open a Receivable, and cash or
card sales create nothing. The sale itself is not validated here beyond the
shape of the event.
"""

from decimal import Decimal
from datetime import date
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .loans import Loan, LoanLedger
from .logging_config import get_logger, log_action
from .receivables import Receivable, ReceivableLedger
from .schedule import Cadence


class SalePaymentMethod(Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    FINANCING = "financing"  # Installment loan
    CREDIT = "credit"        # Open tab, no schedule


class SaleCompleted(BaseModel):
    """Sale completion event as published by the point of sale"""
    model_config = ConfigDict(populate_by_name=True)

    sale_id: str = Field(..., alias="saleId")
    total_amount: Decimal = Field(..., alias="totalAmount", description="Sale total")
    down_payment: Decimal = Field(Decimal("0"), alias="downPayment",
                                  description="Down payment, or advance on a credit sale")
    payment_method: SalePaymentMethod = Field(..., alias="paymentMethod")
    customer_id: Optional[str] = Field(None, alias="customerId")

    # Financing terms; ledger defaults apply when omitted
    monthly_rate: Optional[Decimal] = Field(None, alias="monthlyRate",
                                            description="Nominal monthly rate fraction, e.g. 0.05")
    term: Optional[int] = Field(None, alias="installments")
    cadence: Cadence = Field(Cadence.MONTHLY, alias="paymentPeriod")
    start_date: Optional[date] = Field(None, alias="startDate")
    description: str = ""

    @field_validator("down_payment", mode="before")
    @classmethod
    def _blank_down_payment(cls, value):
        return Decimal("0") if value in (None, "") else value


class SaleIntake:
    """Routes sale completion events to the loan or receivable ledger"""

    def __init__(self, loan_ledger: LoanLedger, receivable_ledger: ReceivableLedger):
        self.loan_ledger = loan_ledger
        self.receivable_ledger = receivable_ledger
        self.logger = get_logger("sales")

    def handle(self, event: Union[SaleCompleted, dict]) -> Optional[Union[Loan, Receivable]]:
        """
        Create the credit aggregate for a completed sale

        Args:
            event: SaleCompleted, or its raw dictionary form

        Returns:
            Loan for financed sales, Receivable for credit sales, None otherwise

        Raises:
            pydantic.ValidationError: malformed event
            InvalidAmount, InvalidTerms: rejected by the ledger
        """
        if not isinstance(event, SaleCompleted):
            event = SaleCompleted.model_validate(event)

        if event.payment_method is SalePaymentMethod.FINANCING:
            return self.loan_ledger.create_loan(
                total_amount=event.total_amount,
                down_payment=event.down_payment,
                monthly_rate=event.monthly_rate,
                term=event.term,
                cadence=event.cadence,
                start_date=event.start_date,
                customer_id=event.customer_id,
                sale_id=event.sale_id,
            )

        if event.payment_method is SalePaymentMethod.CREDIT:
            return self.receivable_ledger.create_receivable(
                original_amount=event.total_amount,
                advance=event.down_payment,
                customer_id=event.customer_id,
                sale_id=event.sale_id,
                description=event.description or "Venta a crédito",
            )

        log_action(self.logger, "debug", f"Sale {event.sale_id} paid in full, no credit opened",
                   action="handle_sale", resource=f"sale:{event.sale_id}",
                   extra={"payment_method": event.payment_method.value})
        return None
