"""
Repositories Module

Repository pattern implementation for the Redis trade store.
"""

from app.repositories.trade_store import TradeStore

__all__ = [
    "TradeStore",
]
