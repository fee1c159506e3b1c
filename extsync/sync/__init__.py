"""Reconciliation between the declared plugins array and recorded state.

This package provides:
- Drift calculation: which declared plugins are missing and which experimental ones to drop
- Commands: try, adopt, sync, status, diff and the startup load
"""
