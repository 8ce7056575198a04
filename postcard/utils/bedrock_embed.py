"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import Any, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

TITAN_V2_DIMENSIONS = (256, 512, 1024)


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class EmbeddingDimensionError(BedrockEmbedError):
    """Raised when an embedding is not a numeric vector of the configured length."""
    pass


def validate_embedding(values: Any, dimension: int) -> List[float]:
    """Check that values is a numeric vector of exactly `dimension` elements.

    Args:
        values: Raw embedding returned by the provider
        dimension: Required vector length

    Returns:
        The embedding as a list of floats

    Raises:
        EmbeddingDimensionError: If the shape or element types are wrong
    """
    if not isinstance(values, (list, tuple)):
        raise EmbeddingDimensionError(f'Invalid embedding structure received: {type(values).__name__}')
    if len(values) != dimension:
        raise EmbeddingDimensionError(f'Expected embedding of dimension {dimension}, got {len(values)}')
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        raise EmbeddingDimensionError('Embedding contains non-numeric values')
    return [float(v) for v in values]


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        # Create Bedrock runtime client
        self.bedrock = boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                accept = 'application/json'
                content_type = 'application/json'
                response = self.bedrock.invoke_model(body=body, modelId=self.model_id, accept=accept, contentType=content_type)

                result = json.loads(response.get('body').read())
                logger.debug('Bedrock Embed request successful')
                return result

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _build_request(self, text: str, input_type: str) -> dict:
        model = self.model_id.lower()
        if 'titan' in model:
            data = {'inputText': text}
            if 'v2' in model:
                if self.output_embedding_length not in TITAN_V2_DIMENSIONS:
                    logger.warning(f'Titan v2 does not list dimension {self.output_embedding_length}; '
                                   f'supported: {TITAN_V2_DIMENSIONS}')
                data['dimensions'] = self.output_embedding_length
                data['normalize'] = True
            return data
        if 'cohere' in model:
            return {'input_type': input_type, 'texts': [text]}
        raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            raise BedrockEmbedError(f'Empty text provided for {input_type} embedding')

        try:
            response = self._call_with_retry(self._build_request(text, input_type))
            if 'cohere' in self.model_id.lower():
                embeddings = response.get('embeddings') or [None]
                values = embeddings[0]
            else:
                values = response.get('embedding')
            return validate_embedding(values, self.output_embedding_length)

        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating {input_type} embedding: {e}')
            raise BedrockEmbedError(f'Embedding failed: {e}')

    def embed_document(self, text: str) -> List[float]:
        """
        Generate embeddings for document text.

        Args:
            text: Text to embed

        Returns:
            List of exactly `dimension` embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
            EmbeddingDimensionError: If the provider returns a malformed vector
        """
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Args:
            text: Query text to embed

        Returns:
            List of exactly `dimension` embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
            EmbeddingDimensionError: If the provider returns a malformed vector
        """
        return self._embed(text, 'search_query')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_document('test')
            return len(test_embedding) == self.output_embedding_length

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
