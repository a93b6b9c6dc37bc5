"""High-score ledger for the Dappy browser game."""

__version__ = "0.1.0"
