"""Registry of tracked repos and the hosting servers derived from them."""

from anchor_indexer.registry.repository import RegistryRepository
from anchor_indexer.registry.schemas import HostingServerRef, RegistryStats, TrackedRepo

__all__ = [
    "HostingServerRef",
    "RegistryRepository",
    "RegistryStats",
    "TrackedRepo",
]
