"""Scholarship aid API: application lifecycle, committee review and budget ledger."""

__version__ = "0.1.0"
