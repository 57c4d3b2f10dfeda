"""
Concurrency helpers for request-scoped serialization.
"""

from common.concurrency.keyed_lock import KeyedLock

__all__ = ["KeyedLock"]
