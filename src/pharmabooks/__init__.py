"""
Pharma Books - Pharmacy Finance Tracker

Income/expense bookkeeping for a small pharmacy: categories, ledger
transactions, recurring (auto-generated) transactions, dashboard and reports,
served as a Flask JSON API over SQLite.

License: MIT
"""

__version__ = "1.0.0"
