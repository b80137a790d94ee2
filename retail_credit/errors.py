"""
Error Taxonomy

Typed failures raised by the financing engine. Each carries a stable ``code``
so the calling layer can map it to a user-facing message.
"""

from typing import Any, Dict, Optional


class FinancingError(Exception):
    """Base class for all financing engine failures"""

    code = "financing_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidAmount(FinancingError):
    """Non-positive, non-finite or malformed money input"""

    code = "invalid_amount"


class InvalidTerms(FinancingError):
    """Financing terms outside the accepted bounds"""

    code = "invalid_terms"


class OverPayment(FinancingError):
    """Payment exceeds what is owed on the target installment or balance"""

    code = "over_payment"


class UnknownInstallment(FinancingError):
    """Installment sequence number is not part of the loan"""

    code = "unknown_installment"


class LoanClosed(FinancingError):
    """Operation attempted on a liquidated or cancelled loan"""

    code = "loan_closed"


class AlreadySettled(FinancingError):
    """Payment attempted on a receivable that is already paid"""

    code = "already_settled"


class ReconciliationFailure(FinancingError):
    """Internal invariant violated while generating a schedule.

    Indicates a defect, never a user error.
    """

    code = "reconciliation_failure"


class LoanNotFound(FinancingError):
    code = "loan_not_found"


class ReceivableNotFound(FinancingError):
    code = "receivable_not_found"
