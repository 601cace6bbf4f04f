"""Persistence for prices, accounts, positions, trades and bot status."""

from crossbot.storage.database import Database, LedgerTransaction

__all__ = [
    "Database",
    "LedgerTransaction",
]
