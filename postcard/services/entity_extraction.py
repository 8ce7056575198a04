"""
Note structuring: one LLM call that refines a note into markdown and extracts entities.
"""

from typing import Any, List, Optional, Tuple

from ..models.core import StructuredNote
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.json_utils import parse_json_object
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are an assistant that turns developer notes into knowledge base documentation.
You only use information present in the note and you always answer with a single JSON object."""

STRUCTURE_PROMPT = """Analyze the following developer note:
\"\"\"
{raw_text}
\"\"\"

Based ONLY on the text provided, perform the following tasks:
1. **Refine Text:** Rewrite the note into clear, structured documentation suitable for a knowledge base. Use markdown formatting (like headings, lists, code blocks if appropriate). If the input is already well-structured, just return it.
2. **Extract Entities:** Identify key entities (projects, technologies, components, concepts, people, bug IDs, etc.) mentioned. For each entity, provide its name and a general type (e.g., 'project', 'technology', 'concept', 'person', 'bug_id').
3. **Extract Relationships:** Describe the relationships between the identified entities within the context of this note, for example "Entity A uses Technology B".

Format the output STRICTLY as a JSON object with the following keys:
- "processed_text": (string) The refined documentation text.
- "entities": (array of objects) Each object should have "name" (string) and "type" (string).
- "relationships": (array of objects) Each object should have "subject_entity" (string), "relationship_type" (string), and "object_entity" (string).

Example output format:
{{
  "processed_text": "### Authentication Flow Bug Fix\\n\\n- **Issue:** Annoying bug in the authentication flow.\\n- **Solution:** Added proper error handling to the login form component.",
  "entities": [
    {{ "name": "authentication flow", "type": "concept" }},
    {{ "name": "login form", "type": "component" }},
    {{ "name": "error handling", "type": "concept" }}
  ],
  "relationships": [
    {{ "subject_entity": "error handling", "relationship_type": "fixed", "object_entity": "authentication flow" }}
  ]
}}

If no entities or relationships can be reliably extracted from the text, return empty arrays for those keys. Provide only the JSON object in your response."""  # noqa: E501


def validate_entities(raw_entities: List[Any], context: str = '') -> List[Tuple[str, str]]:
    """Keep entities whose name and type are non-empty strings.

    Args:
        raw_entities: Entity objects as returned by the LLM
        context: Label for log lines (usually the entry ID)

    Returns:
        List of (name, type) tuples, trimmed
    """
    valid = []
    for entity in raw_entities:
        if not isinstance(entity, dict):
            logger.warning(f'Skipping invalid entity format for {context}: {entity!r}')
            continue

        name, entity_type = entity.get('name'), entity.get('type')
        if not isinstance(name, str) or not isinstance(entity_type, str) or not name.strip() or not entity_type.strip():
            logger.warning(f'Skipping invalid entity format for {context}: {entity!r}')
            continue

        valid.append((name.strip(), entity_type.strip()))
    return valid


class EntityExtractionService:
    """Refine note text and extract entities using a Bedrock LLM."""

    def __init__(self, llm: Optional[BedrockLLM] = None):
        """Initialize the entity extraction service."""
        self.llm = llm or BedrockLLM(config.bedrock_llm)

        logger.info('Initialized EntityExtractionService')

    def structure_note(self, raw_text: str, context: str = '') -> StructuredNote:
        """Refine a note and extract its entities.

        Never raises: when the call fails, returns no text, or returns text that
        is not a JSON object, the raw text is kept and no entities are returned.

        Args:
            raw_text: Note text as written by the user
            context: Label for log lines (usually the entry ID)

        Returns:
            StructuredNote, with fallback=True when generation did not succeed
        """
        fallback = StructuredNote(processed_text=raw_text, fallback=True)

        try:
            response = self.llm.generate_text(STRUCTURE_PROMPT.format(raw_text=raw_text),
                                              system_prompt=SYSTEM_PROMPT,
                                              prefill='{')
        except BedrockLLMError as e:
            logger.error(f'Error during text generation for {context}: {e}')
            return fallback
        except Exception as e:
            logger.error(f'Unexpected error during text generation for {context}: {e}')
            return fallback

        if not response or response.strip() in ('', '{'):
            logger.warning(f'Received no text response for {context}. Falling back to raw text.')
            return fallback

        data = parse_json_object(response)
        if data is None:
            logger.error(f'Failed to parse structured output for {context}. Falling back to raw text.')
            return fallback

        processed_text = data.get('processed_text')
        if not isinstance(processed_text, str) or not processed_text.strip():
            processed_text = raw_text

        entities = data.get('entities')
        if not isinstance(entities, list):
            entities = []

        relationships = data.get('relationships')
        if not isinstance(relationships, list):
            relationships = []

        logger.debug(f'Generated structured data for {context}. Entities: {len(entities)}')
        return StructuredNote(processed_text=processed_text, entities=entities, relationships=relationships)
