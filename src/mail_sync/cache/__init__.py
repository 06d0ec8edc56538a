"""Local record cache.

This package holds cached records, their statuses and the per-type change
cursor the sync controller reconciles against.
"""

from .store import CacheEntry, RecordCache

__all__ = ["CacheEntry", "RecordCache"]
