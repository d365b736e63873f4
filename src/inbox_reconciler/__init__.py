"""
Inbox → Bank Transaction Reconciliation

Matches captured financial documents (receipts, invoices, bills) against
bank transactions using amount, currency, date and embedding signals,
with calibrated confidence scoring and a reviewable suggestion lifecycle.
"""

__version__ = "0.1.0"
