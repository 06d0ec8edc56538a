"""Mail Sync - incremental synchronization of a local mail cache.

This package keeps a local cache of message state consistent with a JMAP-style
mail server that can only report changes since a state cursor, in bounded and
possibly partial batches.
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from mail_sync.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__", "__author__"]
