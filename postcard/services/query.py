"""
Query pipeline: answer a question from one user's entries with retrieval-augmented generation.
"""

from typing import List, Optional

from ..models.core import MatchedEntry
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.logging_config import get_logger, preview
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError

logger = get_logger(__name__)

NO_CONTEXT_MARKER = 'No relevant documents found.'
FALLBACK_ANSWER = "Sorry, I couldn't generate an answer right now. Please try again later."
NO_DATA_ANSWER = ("I couldn't find any entries related to your question, "
                  "so I don't have enough information to answer it.")

SYSTEM_PROMPT = """You are a helpful assistant answering questions about a developer's personal notes.
Answer using ONLY the information in the provided context.
If the context does not contain enough information to answer, say so explicitly."""

ANSWER_PROMPT = """Context:
{context}

Question: {query}

Answer:"""


class InvalidQueryError(ValueError):
    """Raised when the query text or user ID is missing."""
    pass


class QueryError(Exception):
    """Raised when the query cannot be embedded or retrieval fails."""
    pass


def build_context(matches: List[MatchedEntry]) -> str:
    """Concatenate retrieved entries in descending relevance order.

    Args:
        matches: Similarity search results

    Returns:
        Context block, or NO_CONTEXT_MARKER when nothing was retrieved
    """
    if not matches:
        return NO_CONTEXT_MARKER

    ordered = sorted(matches, key=lambda m: m.similarity, reverse=True)
    return '\n\n---\n\n'.join(f'Document {i} (similarity: {m.similarity:.2f}):\n{m.content}'
                              for i, m in enumerate(ordered, start=1))


class QueryService:
    """Embeds the question, retrieves the user's closest entries and synthesizes an answer."""

    def __init__(self,
                 entry_store: Optional[OpenSearchClient] = None,
                 embed: Optional[BedrockEmbed] = None,
                 llm: Optional[BedrockLLM] = None):
        """Initialize the query service."""
        self.entry_store = entry_store or OpenSearchClient(config.opensearch)
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.llm = llm or BedrockLLM(config.bedrock_llm)

        logger.info('Initialized QueryService')

    def retrieve(self,
                 query: str,
                 user_id: str,
                 match_threshold: Optional[float] = None,
                 match_count: Optional[int] = None) -> List[MatchedEntry]:
        """Embed the query and fetch the user's most similar entries.

        Raises:
            QueryError: If embedding or the similarity search fails
        """
        match_threshold = config.query.match_threshold if match_threshold is None else match_threshold
        match_count = match_count or config.query.match_count

        try:
            query_embedding = self.embed.embed_query(query)
        except BedrockEmbedError as e:
            logger.error(f'Error embedding query for user {user_id}: {e}')
            raise QueryError(f'Failed to embed query: {e}')

        try:
            matches = self.entry_store.match_entries(query_embedding, user_id, match_threshold, match_count)
        except OpenSearchError as e:
            logger.error(f'Error retrieving entries for user {user_id}: {e}')
            raise QueryError(f'Failed to retrieve entries: {e}')

        logger.debug(f'Retrieved {len(matches)} entries for user {user_id}')
        return matches

    def synthesize(self, query: str, matches: List[MatchedEntry]) -> str:
        """Ask the LLM to answer from the retrieved context. Never raises."""
        prompt = ANSWER_PROMPT.format(context=build_context(matches), query=query)
        fallback = FALLBACK_ANSWER if matches else NO_DATA_ANSWER

        try:
            answer = self.llm.generate_text(prompt, system_prompt=SYSTEM_PROMPT)
        except BedrockLLMError as e:
            logger.error(f'Error synthesizing answer: {e}')
            return fallback

        if not answer or not answer.strip():
            logger.warning('Empty answer from LLM, using fallback')
            return fallback
        return answer.strip()

    def answer(self,
               query: Optional[str],
               user_id: Optional[str],
               match_threshold: Optional[float] = None,
               match_count: Optional[int] = None) -> str:
        """Answer a question against one user's entries.

        Args:
            query: Question text
            user_id: Requesting user; retrieval never crosses to other users
            match_threshold: Minimum cosine similarity (config default if None)
            match_count: Maximum entries to retrieve (config default if None)

        Returns:
            Answer text, always non-empty

        Raises:
            InvalidQueryError: If query or user_id is missing
            QueryError: If embedding or retrieval fails
        """
        if not query or not str(query).strip() or not user_id or not str(user_id).strip():
            raise InvalidQueryError('Missing query or userId')

        logger.info(f'Answering query for user {user_id}: "{preview(query)}"')
        matches = self.retrieve(query, user_id, match_threshold, match_count)
        return self.synthesize(query, matches)
