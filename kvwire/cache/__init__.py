"""Cache module for kvwire."""

from .reaper import ExpirationReaper
from .store import KVStore, StoreEntry

__all__ = ["KVStore", "StoreEntry", "ExpirationReaper"]
