"""Shared fixtures: in-memory stand-ins for the entry store, entity graph and Bedrock clients."""

import json
import math
import uuid
from typing import Dict, List, Optional, Set, Tuple

import pytest

from postcard.models.core import MENTIONS, Entity, Entry, MatchedEntry, normalize_entity_name
from postcard.services.entity_extraction import EntityExtractionService
from postcard.services.enrichment import EnrichmentService
from postcard.services.entry_management import EntryManagementService
from postcard.services.query import QueryService
from postcard.utils.bedrock_embed import validate_embedding
from postcard.utils.neptune_client import NeptuneError
from postcard.utils.opensearch_client import OpenSearchError
from postcard.utils.timestamp_utils import to_datetime

DIMENSION = 384


def unit_vector(index: int, dimension: int = DIMENSION) -> List[float]:
    vector = [0.0] * dimension
    vector[index % dimension] = 1.0
    return vector


class FakeEntryStore:
    """Entry store with the same contract as OpenSearchClient."""

    def __init__(self):
        self.entries: Dict[str, Entry] = {}
        self.fail_fetch = False
        self.fail_update = False
        self.fail_search = False
        self.update_calls = 0

    def add(self, raw_text: str, user_id: str = 'user-1', embedding: Optional[List[float]] = None,
            processed_text: Optional[str] = None) -> Entry:
        entry = Entry(id=str(uuid.uuid4()),
                      user_id=user_id,
                      raw_text=raw_text,
                      created_at=to_datetime(1700000000 + len(self.entries)),
                      processed_text=processed_text,
                      embedding=embedding)
        self.entries[entry.id] = entry
        return entry

    def insert_entry(self, entry: Entry) -> Entry:
        self.entries[entry.id] = entry
        return entry

    def get_entry(self, entry_id: str, wait: bool = False) -> Optional[Entry]:
        if self.fail_fetch:
            raise OpenSearchError('connection refused')
        return self.entries.get(entry_id)

    def update_entry(self, entry_id: str, processed_text: str, embedding: List[float]) -> None:
        self.update_calls += 1
        if self.fail_update:
            raise OpenSearchError('write rejected')
        entry = self.entries[entry_id]
        entry.processed_text = processed_text
        entry.embedding = embedding

    def list_entries(self, user_id: str, limit: int = 50) -> List[Entry]:
        owned = [e for e in self.entries.values() if e.user_id == user_id]
        return sorted(owned, key=lambda e: e.created_at, reverse=True)[:limit]

    def delete_entry(self, entry_id: str, user_id: str) -> bool:
        entry = self.entries.get(entry_id)
        if entry is None or entry.user_id != user_id:
            return False
        del self.entries[entry_id]
        return True

    def match_entries(self, query_vector: List[float], user_id: str, match_threshold: float = 0.7,
                      match_count: int = 5) -> List[MatchedEntry]:
        if self.fail_search:
            raise OpenSearchError('search failed')
        matches = []
        for entry in self.entries.values():
            if entry.user_id != user_id or entry.embedding is None:
                continue
            similarity = cosine(query_vector, entry.embedding)
            if similarity >= match_threshold:
                matches.append(MatchedEntry(id=entry.id, content=entry.processed_text or entry.raw_text,
                                            similarity=similarity))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:match_count]


def cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeGraph:
    """Entity graph with upsert-by-name and conflict-ignored relationship inserts."""

    def __init__(self):
        self.entities: Dict[str, Entity] = {}
        self.edges: Set[Tuple[str, str, str]] = set()
        self.entry_owners: Dict[str, str] = {}
        self.fail_names: Set[str] = set()
        self.fail_relationships = False

    def upsert_entity(self, name: str, entity_type: str) -> str:
        if name in self.fail_names:
            raise NeptuneError(f'Failed to upsert_entity: {name}')
        key = normalize_entity_name(name)
        entity = self.entities.get(key)
        if entity is None:
            entity = Entity(id=str(uuid.uuid4()), name=name, type=entity_type)
            self.entities[key] = entity
        entity.type = entity_type
        return entity.id

    def add_relationship(self, entry_id: str, user_id: str, entity_id: str, relationship_type: str = MENTIONS) -> bool:
        if self.fail_relationships:
            raise NeptuneError('Failed to add_relationship')
        self.entry_owners.setdefault(entry_id, user_id)
        triple = (entry_id, entity_id, relationship_type)
        if triple in self.edges:
            return False
        self.edges.add(triple)
        return True

    def get_entry_entities(self, entry_id: str, relationship_type: str = MENTIONS) -> List[Entity]:
        ids = {entity_id for e_id, entity_id, rel in self.edges if e_id == entry_id and rel == relationship_type}
        return [entity for entity in self.entities.values() if entity.id in ids]

    def delete_entry(self, entry_id: str) -> int:
        removed = {edge for edge in self.edges if edge[0] == entry_id}
        self.edges -= removed
        self.entry_owners.pop(entry_id, None)
        return len(removed)

    def entity_named(self, name: str) -> Optional[Entity]:
        return self.entities.get(normalize_entity_name(name))


class FakeEmbed:
    """Embedding client that validates its canned output like BedrockEmbed does."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.vectors: Dict[str, List[float]] = {}
        self.output_length = dimension
        self.error: Optional[Exception] = None
        self.calls: List[Tuple[str, str]] = []

    def _embed(self, text: str, input_type: str) -> List[float]:
        self.calls.append((input_type, text))
        if self.error is not None:
            raise self.error
        values = self.vectors.get(text, unit_vector(0, self.output_length))
        return validate_embedding(values, self.dimension)

    def embed_document(self, text: str) -> List[float]:
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text, 'search_query')


class FakeLLM:
    """LLM client returning a canned response (or raising) and recording prompts."""

    def __init__(self, response: Optional[str] = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []

    def generate_text(self, prompt: str, system_prompt: str, prefill: Optional[str] = None, **kwargs) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


def structured_response(processed_text: str, entities: list, relationships: Optional[list] = None) -> str:
    return json.dumps({'processed_text': processed_text, 'entities': entities, 'relationships': relationships or []})


@pytest.fixture
def entry_store():
    return FakeEntryStore()


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def embed():
    return FakeEmbed()


@pytest.fixture
def llm():
    return FakeLLM(response=structured_response(
        '### Login Fix\n\n- Fixed the login bug in **AuthService**.',
        [{'name': 'AuthService', 'type': 'component'}, {'name': 'login bug', 'type': 'bug'}]))


@pytest.fixture
def enrichment(entry_store, graph, embed, llm):
    return EnrichmentService(entry_store=entry_store,
                             graph=graph,
                             embed=embed,
                             extraction=EntityExtractionService(llm=llm))


@pytest.fixture
def query_service(entry_store, embed):
    return QueryService(entry_store=entry_store, embed=embed, llm=FakeLLM(response='You fixed the login bug.'))


@pytest.fixture
def entry_service(entry_store, graph):
    return EntryManagementService(entry_store=entry_store, graph=graph)
