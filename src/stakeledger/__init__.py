"""Share-based staking and reward ledger."""

__version__ = "0.1.0"
