"""
Enrichment pipeline: fetch -> embed -> generate -> persist -> entity graph.

Runs once per newly created entry. Embedding and persistence failures abort
the run; generation failures fall back to the raw text; graph failures are
logged per item. Every step is safe to repeat for the same entry.
"""

from typing import Any, Dict, List, Optional, Tuple

from ..models.core import MENTIONS, Entry, StructuredNote
from ..models.results import EnrichmentResult, Fatal, Ok, Skipped, StepResult
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import config
from ..utils.logging_config import get_logger, preview
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from .entity_extraction import EntityExtractionService, validate_entities

logger = get_logger(__name__)

NO_ENTRY_ID_MESSAGE = 'Payload received, but no entry ID found.'


def extract_entry_id(payload: Any) -> Optional[str]:
    """Pull the entry ID out of a trigger payload.

    Accepts a change-event record (`{"record": {"id": ...}}`, optionally with
    `"type": "INSERT"`) or a minimal `{"id": ...}` object.

    Args:
        payload: Decoded trigger body

    Returns:
        Entry ID as a string, or None if absent
    """
    if not isinstance(payload, dict):
        return None

    record = payload.get('record')
    entry_id = record.get('id') if isinstance(record, dict) else None
    if entry_id in (None, ''):
        entry_id = payload.get('id')

    if entry_id in (None, '') or isinstance(entry_id, (dict, list, bool)):
        return None
    return str(entry_id)


class EnrichmentService:
    """Turns one entry's raw text into derived fields and entity graph edges."""

    def __init__(self,
                 entry_store: Optional[OpenSearchClient] = None,
                 graph: Optional[NeptuneClient] = None,
                 embed: Optional[BedrockEmbed] = None,
                 extraction: Optional[EntityExtractionService] = None):
        """Initialize the enrichment service."""
        self.entry_store = entry_store or OpenSearchClient(config.opensearch)
        self.graph = graph or NeptuneClient(config.neptune)
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.extraction = extraction or EntityExtractionService()

        logger.info('Initialized EnrichmentService')

    def process_payload(self, payload: Any) -> EnrichmentResult:
        """Enrich the entry named by a trigger payload.

        A payload without an entry ID is acknowledged as a no-op.
        """
        entry_id = extract_entry_id(payload)
        if entry_id is None:
            logger.warning(f'Trigger received without entry ID: {payload!r}')
            return EnrichmentResult(success=True, entry_id=None, message=NO_ENTRY_ID_MESSAGE)

        return self.process_entry(entry_id)

    def process_entry(self, entry_id: str, entry: Optional[Entry] = None) -> EnrichmentResult:
        """Run the full pipeline for one entry.

        Args:
            entry_id: Entry ID
            entry: The stored record when the caller has just written it; skips the store lookup

        Returns:
            EnrichmentResult; success unless the fetch, embedding or persist step failed
        """
        logger.info(f'Processing entry {entry_id}')

        fetched = self._fetch(entry_id, entry)
        if not isinstance(fetched, Ok):
            return EnrichmentResult.from_step(entry_id, fetched)
        entry = fetched.value

        embedded = self._embed(entry)
        if not isinstance(embedded, Ok):
            return EnrichmentResult.from_step(entry_id, embedded)

        note = self._generate(entry)

        persisted = self._persist(entry, note.processed_text, embedded.value)
        if not isinstance(persisted, Ok):
            return EnrichmentResult.from_step(entry_id, persisted)

        linked = self._update_graph(entry, note.entities)

        logger.info(f'Processing complete for {entry_id} (fallback={note.fallback}, entities linked={linked})')
        return EnrichmentResult(success=True, entry_id=entry_id)

    def _fetch(self, entry_id: str, entry: Optional[Entry] = None) -> StepResult:
        if entry is None:
            try:
                entry = self.entry_store.get_entry(entry_id, wait=True)
            except OpenSearchError as e:
                logger.error(f'Error fetching entry {entry_id}: {e}')
                return Fatal(f'Failed to fetch entry: {e}')

        if entry is None:
            logger.warning(f'Entry {entry_id} not found.')
            return Skipped(f'Entry {entry_id} not found.')
        if entry.is_blank:
            logger.info(f'Entry {entry_id} has empty raw_text, skipping AI processing.')
            return Skipped(f'Skipped empty entry {entry_id}')

        logger.debug(f'Fetched raw text for {entry_id}: "{preview(entry.raw_text)}"')
        return Ok(entry)

    def _embed(self, entry: Entry) -> StepResult:
        try:
            embedding = self.embed.embed_document(entry.raw_text)
        except BedrockEmbedError as e:
            logger.error(f'Error generating embedding for {entry.id}: {e}')
            return Fatal(f'Failed to generate embedding: {e}')

        logger.debug(f'Generated embedding for {entry.id}')
        return Ok(embedding)

    def _generate(self, entry: Entry) -> StructuredNote:
        note = self.extraction.structure_note(entry.raw_text, context=entry.id)
        if note.fallback:
            logger.warning(f'Using raw text for {entry.id}; no entities will be linked')
        return note

    def _persist(self, entry: Entry, processed_text: str, embedding: List[float]) -> StepResult:
        try:
            self.entry_store.update_entry(entry.id, processed_text, embedding)
        except OpenSearchError as e:
            logger.error(f'Error updating entry {entry.id}: {e}')
            return Fatal(f'Failed to update entry: {e}')

        logger.info(f'Successfully updated entry {entry.id}')
        return Ok(entry.id)

    def _update_graph(self, entry: Entry, raw_entities: List[Any]) -> int:
        """Upsert entities and link them to the entry. Returns the number of entities linked."""
        entities = validate_entities(raw_entities, context=entry.id)
        if not entities:
            return 0

        entity_ids = self._upsert_entities(entry.id, entities)

        linked = 0
        for name, entity_id in entity_ids.items():
            try:
                created = self.graph.add_relationship(entry.id, entry.user_id, entity_id, MENTIONS)
                linked += 1
                if not created:
                    logger.debug(f"Relationship {entry.id} -> '{name}' already present")
            except NeptuneError as e:
                logger.error(f"Error linking entity '{name}' to {entry.id}: {e}")

        return linked

    def _upsert_entities(self, entry_id: str, entities: List[Tuple[str, str]]) -> Dict[str, str]:
        """Upsert each entity by name; failures skip that entity only."""
        entity_ids: Dict[str, str] = {}
        for name, entity_type in entities:
            try:
                entity_id = self.graph.upsert_entity(name, entity_type)
            except NeptuneError as e:
                logger.error(f"Error upserting entity '{name}' for {entry_id}: {e}")
                continue

            if entity_id and entity_id not in entity_ids.values():
                entity_ids[name] = entity_id

        logger.debug(f'Upserted {len(entity_ids)} of {len(entities)} entities for {entry_id}')
        return entity_ids
