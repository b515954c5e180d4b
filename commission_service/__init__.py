"""Commission rule engine: fee rules, fee calculation and commission ledger."""

__version__ = "1.0.0"
