"""
History Package

Bounded, searchable record of past recognitions with optional SQLite
persistence.

    from smartshot.history import HistoryStore, HistoryRepository

    store = HistoryStore.load(HistoryRepository.from_url("sqlite:///history.db"), capacity=100)
"""
from smartshot.history.repository import HistoryRepository
from smartshot.history.store import ClipboardItem, HistoryItemNotFound, HistoryStore, content_hash

__all__ = [
    "ClipboardItem",
    "HistoryItemNotFound",
    "HistoryRepository",
    "HistoryStore",
    "content_hash",
]
