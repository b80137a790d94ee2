"""
Retail Credit Engine

Installment financing and on-account credit for retail point-of-sale,
with Decimal money, reconciled amortization schedules and hash-chained audit.
"""

__version__ = "1.0.0"
