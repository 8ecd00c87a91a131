"""Utility helpers for the ledger kernel."""
