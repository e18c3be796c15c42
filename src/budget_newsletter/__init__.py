"""Weekly household-finance newsletter built from budget data."""

__version__ = "1.0.0"
