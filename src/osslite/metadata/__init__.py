"""Metadata store backends for osslite."""

from typing import TYPE_CHECKING

from osslite.metadata.store import MetadataStore

if TYPE_CHECKING:
    from osslite.config import MetadataConfig

__all__ = [
    "create_metadata_store",
    "MetadataStore",
]


def create_metadata_store(config: "MetadataConfig") -> MetadataStore:
    """Create a metadata store instance based on configuration.

    Args:
        config: The metadata configuration.

    Returns:
        A metadata store instance implementing the MetadataStore protocol.

    Raises:
        ValueError: If the engine is unknown.
    """
    engine = config.engine

    if engine == "sqlite":
        from osslite.metadata.sqlite import SQLiteMetadataStore

        return SQLiteMetadataStore(config.sqlite.path)

    elif engine == "memory":
        from osslite.metadata.memory import MemoryMetadataStore

        return MemoryMetadataStore()

    else:
        raise ValueError(f"Unknown metadata engine: {engine}")
