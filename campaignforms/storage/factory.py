"""
Builds the configured Repository from settings.

Modes:
- tiered (default): SQLite -> JSON files -> memory. Tiers that cannot be
  initialized are skipped with a warning; memory always succeeds.
- sqlite / file / memory: a single backend.
"""

import logging
from pathlib import Path

from campaignforms.core.errors import PersistenceError
from campaignforms.storage.base import DEFAULT_SHARE_BASE_URL, Repository
from campaignforms.storage.jsonfile import JSONFileRepository
from campaignforms.storage.memory import InMemoryRepository
from campaignforms.storage.sqlite import SQLiteRepository
from campaignforms.storage.tiered import TieredRepository

logger = logging.getLogger(__name__)

STORAGE_MODES = ("tiered", "sqlite", "file", "memory")


def build_repository(
    mode: str = "tiered",
    database_path: str | Path = "data/campaignforms.db",
    data_dir: str | Path = "data",
    share_base_url: str = DEFAULT_SHARE_BASE_URL,
) -> Repository:
    """Create the repository for a storage mode.

    Raises:
        ValueError: On an unknown mode.
        PersistenceError: If a single-backend mode cannot initialize.
    """
    mode = mode.strip().lower()
    if mode not in STORAGE_MODES:
        raise ValueError(f"Unknown storage mode '{mode}'. Choose from: {STORAGE_MODES}")

    if mode == "sqlite":
        return SQLiteRepository(database_path, share_base_url)
    if mode == "file":
        return JSONFileRepository(data_dir, share_base_url)
    if mode == "memory":
        return InMemoryRepository(share_base_url)

    tiers: list[Repository] = []
    try:
        tiers.append(SQLiteRepository(database_path, share_base_url))
    except PersistenceError as e:
        logger.warning("SQLite tier unavailable, continuing without it: %s", e)
    try:
        tiers.append(JSONFileRepository(data_dir, share_base_url))
    except PersistenceError as e:
        logger.warning("File tier unavailable, continuing without it: %s", e)
    tiers.append(InMemoryRepository(share_base_url))

    logger.info("Storage tiers: %s", " -> ".join(t.name for t in tiers))
    return TieredRepository(tiers)


def describe_storage(repository: Repository) -> str:
    if isinstance(repository, TieredRepository):
        return " -> ".join(t.name for t in repository.tiers)
    return repository.name
