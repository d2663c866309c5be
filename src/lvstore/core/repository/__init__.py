"""Metadata repository: interface plus in-memory and SQL backends."""

from lvstore.core.repository.base import KINDS, EntityKind, MetadataRepository
from lvstore.core.repository.memory import InMemoryMetadataRepository
from lvstore.core.repository.sql import SqlMetadataRepository


def create_repository(url: str | None) -> MetadataRepository:
    """Build a repository from a URL; ``None`` or ``memory://`` is in-process."""
    if url is None or url == "memory://":
        return InMemoryMetadataRepository()
    return SqlMetadataRepository(url)


__all__ = [
    "KINDS",
    "EntityKind",
    "MetadataRepository",
    "InMemoryMetadataRepository",
    "SqlMetadataRepository",
    "create_repository",
]
