"""
MCP Interface Layer using fastmcp for agent access to journal search and enrichment.
"""
from functools import lru_cache
from typing import Any, Dict

from fastmcp import FastMCP

from .services.enrichment import EnrichmentService
from .services.query import InvalidQueryError, QueryError, QueryService
from .utils.config import config, require_config
from .utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Postcard Journal')


@lru_cache()
def get_query_service() -> QueryService:
    require_config()
    return QueryService()


@lru_cache()
def get_enrichment_service() -> EnrichmentService:
    require_config()
    return EnrichmentService()


@mcp.tool()
def search_entries(user_id: str, query: str) -> str:
    """Answer a question from a user's journal entries.

    Args:
        user_id: User ID
        query: Natural language question

    Returns:
        Answer synthesized from the user's most relevant entries

    Raises:
        Exception: If the question cannot be embedded or retrieval fails
    """
    try:
        answer = get_query_service().answer(query, user_id)
        logger.debug(f'MCP search answered for user {user_id}')
        return answer

    except InvalidQueryError as e:
        raise ValueError(str(e))
    except QueryError as e:
        logger.error(f'Query error in MCP search: {e}')
        raise Exception(f'Entry search failed: {e}')


@mcp.tool()
def process_entry(entry_id: str) -> Dict[str, Any]:
    """Run enrichment for one entry.

    Args:
        entry_id: Entry ID

    Returns:
        `{"success": true, "entryId": ...}` or `{"error": ...}`
    """
    result = get_enrichment_service().process_entry(entry_id)
    return result.to_response()


if __name__ == '__main__':
    mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
