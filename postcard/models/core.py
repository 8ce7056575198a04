"""
Core data models for the journaling and enrichment system.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..utils.timestamp_utils import parse_datetime

MENTIONS = 'mentions'


def normalize_entity_name(name: str) -> str:
    """Deduplication key for entity names: trimmed, whitespace collapsed, case-folded."""
    return re.sub(r'\s+', ' ', name.strip()).casefold()


@dataclass
class Entry:
    """A single journal note owned by one user.

    processed_text and embedding stay None until enrichment completes.
    """
    id: str
    user_id: str
    raw_text: str
    created_at: datetime
    processed_text: Optional[str] = None
    embedding: Optional[List[float]] = None

    @property
    def is_blank(self) -> bool:
        return not self.raw_text or not self.raw_text.strip()

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'raw_text': self.raw_text,
            'processed_text': self.processed_text,
            'embedding': self.embedding,
            'created_at': self.created_at.isoformat()
        }

    def to_response(self) -> Dict[str, Any]:
        """Client-facing representation without the embedding.

        Derived fields are written together, so processed_text marks enrichment.
        """
        return {
            'id': self.id,
            'userId': self.user_id,
            'rawText': self.raw_text,
            'processedText': self.processed_text,
            'enriched': self.processed_text is not None,
            'createdAt': self.created_at.isoformat()
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'Entry':
        return cls(id=doc.get('id', ''),
                   user_id=doc.get('user_id', ''),
                   raw_text=doc.get('raw_text') or '',
                   processed_text=doc.get('processed_text'),
                   embedding=doc.get('embedding'),
                   created_at=parse_datetime(doc.get('created_at')))


@dataclass
class Entity:
    """A named concept shared across all entries and users."""
    id: str
    name: str
    type: str


@dataclass
class Relationship:
    """Edge recording that an entry mentions an entity. The triple is unique."""
    entry_id: str
    entity_id: str
    relationship_type: str = MENTIONS


@dataclass
class MatchedEntry:
    """A similarity search hit scoped to the requesting user."""
    id: str
    content: str
    similarity: float


@dataclass
class StructuredNote:
    """Generation output: refined markdown plus extracted entities.

    fallback is True when generation failed and raw text was kept as-is.
    """
    processed_text: str
    entities: List[Any] = field(default_factory=list)
    relationships: List[Any] = field(default_factory=list)
    fallback: bool = False
