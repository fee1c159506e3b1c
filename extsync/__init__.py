"""extsync — declarative reconciliation for shell plugin declarations."""

__version__ = "0.1.0"
