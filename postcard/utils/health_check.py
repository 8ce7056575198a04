"""
Health probes for Bedrock, the entry store and the entity graph.
"""

from typing import Any, Callable, Dict

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def _probe(service: str, factory: Callable[[], Any], **details) -> Dict[str, Any]:
    try:
        client = factory()
        try:
            healthy = bool(client.health_check())
        finally:
            if hasattr(client, 'close'):
                client.close()
        return {'healthy': healthy, 'service': service, **details}
    except Exception as e:
        return {'healthy': False, 'service': service, 'error': str(e)}


def get_health_status() -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    return {
        'bedrock_llm': _probe('Amazon Bedrock LLM', lambda: BedrockLLM(config.bedrock_llm), model=config.bedrock_llm.model_id),
        'bedrock_embed': _probe('Amazon Bedrock Embed',
                                lambda: BedrockEmbed(config.bedrock_embed),
                                model=config.bedrock_embed.model_id,
                                dimension=config.bedrock_embed.dimension),
        'opensearch': _probe('Amazon OpenSearch', lambda: OpenSearchClient(config.opensearch), endpoint=config.opensearch.endpoint),
        'neptune': _probe('Amazon Neptune', lambda: NeptuneClient(config.neptune), endpoint=config.neptune.endpoint),
    }


def all_healthy(health_status: Dict[str, Any]) -> bool:
    """Summarize a get_health_status() result, logging the unhealthy components."""
    unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
    if unhealthy:
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')
        return False

    logger.info('All system components are healthy')
    return True
