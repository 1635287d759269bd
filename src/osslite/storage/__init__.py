"""Object byte storage backends for osslite."""

from osslite.storage.backend import StorageBackend
from osslite.storage.local import LocalStorageBackend
from osslite.storage.memory import MemoryCapacityError, MemoryStorageBackend

__all__ = [
    "LocalStorageBackend",
    "MemoryCapacityError",
    "MemoryStorageBackend",
    "StorageBackend",
]
