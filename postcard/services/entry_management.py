"""
Entry management: create, read, list and delete a user's entries.
"""

import uuid
from typing import List, Optional, Tuple

from ..models.core import Entity, Entry
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import to_datetime

logger = get_logger(__name__)


class EntryManagementError(Exception):
    """Custom exception for entry management errors."""
    pass


class EntryManagementService:
    """Owner-scoped entry operations over the entry store and entity graph."""

    def __init__(self, entry_store: Optional[OpenSearchClient] = None, graph: Optional[NeptuneClient] = None):
        """Initialize the entry management service."""
        self.entry_store = entry_store or OpenSearchClient(config.opensearch)
        self.graph = graph or NeptuneClient(config.neptune)

        logger.info('Initialized EntryManagementService')

    def create_entry(self, user_id: str, raw_text: str) -> Entry:
        """Store a new entry with empty derived fields.

        Args:
            user_id: Owner of the entry
            raw_text: Note text as written; stored verbatim

        Returns:
            The created Entry

        Raises:
            EntryManagementError: If the entry cannot be stored
        """
        entry = Entry(id=str(uuid.uuid4()), user_id=user_id, raw_text=raw_text or '', created_at=to_datetime())

        try:
            self.entry_store.insert_entry(entry)
        except OpenSearchError as e:
            logger.error(f'Error creating entry for user {user_id}: {e}')
            raise EntryManagementError(f'Entry create failed: {e}')

        logger.info(f'Created entry {entry.id} for user {user_id}')
        return entry

    def get_entry(self, entry_id: str, user_id: str) -> Optional[Tuple[Entry, List[Entity]]]:
        """Load an owned entry together with the entities it mentions.

        Returns:
            (Entry, entities) or None when the entry does not exist or belongs to someone else
        """
        try:
            entry = self.entry_store.get_entry(entry_id)
        except OpenSearchError as e:
            logger.error(f'Error loading entry {entry_id}: {e}')
            raise EntryManagementError(f'Entry read failed: {e}')

        if entry is None or entry.user_id != user_id:
            return None

        try:
            entities = self.graph.get_entry_entities(entry_id)
        except NeptuneError as e:
            logger.warning(f'Could not load entities for {entry_id}: {e}')
            entities = []

        return entry, entities

    def list_entries(self, user_id: str, limit: int = 50) -> List[Entry]:
        """List the user's entries, newest first."""
        try:
            return self.entry_store.list_entries(user_id, limit)
        except OpenSearchError as e:
            logger.error(f'Error listing entries for user {user_id}: {e}')
            raise EntryManagementError(f'Entry list failed: {e}')

    def delete_entry(self, entry_id: str, user_id: str) -> bool:
        """Delete an owned entry and cascade to its relationship edges.

        Entities stay, since they are shared. A graph failure after the entry is
        gone is logged and leaves orphaned edges rather than failing the delete.

        Returns:
            True if the entry was deleted, False if it was not found for this user
        """
        if not entry_id or not entry_id.strip():
            logger.warning('Empty entry ID provided for deletion')
            return False

        try:
            deleted = self.entry_store.delete_entry(entry_id, user_id)
        except OpenSearchError as e:
            logger.error(f'Error deleting entry {entry_id}: {e}')
            raise EntryManagementError(f'Entry delete failed: {e}')

        if not deleted:
            return False

        try:
            removed = self.graph.delete_entry(entry_id)
            logger.debug(f'Removed {removed} relationships of entry {entry_id}')
        except NeptuneError as e:
            logger.error(f'Entry {entry_id} deleted but its relationships were not: {e}')

        logger.info(f'Deleted entry {entry_id} for user {user_id}')
        return True
