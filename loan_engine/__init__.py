"""
Loan Engine

Fixed-term loan repayment engine: exact-sum weekly repayment schedules,
installment payment tracking and the all-paid loan settlement rule.
"""

__version__ = "1.0.0"
