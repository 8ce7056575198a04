"""
Text generation through the Amazon Bedrock Converse streaming API.
"""

import random
import time
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Raised when no usable completion could be obtained from Bedrock."""


def read_stream(response: Dict[str, Any]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Drain a converse_stream response.

    Returns:
        Tuple of (generated text, token usage merged with latency metrics or None)
    """
    chunks = []
    usage = None
    for event in response.get('stream') or ():
        delta = event.get('contentBlockDelta')
        if delta:
            chunks.append(delta['delta'].get('text', ''))
        metadata = event.get('metadata')
        if metadata:
            usage = {**metadata.get('usage', {}), **metadata.get('metrics', {})}
    return ''.join(chunks), usage


class BedrockLLM:
    """Single-model Converse client with backoff on throttling and transport errors."""

    def __init__(self, config: BedrockLLMConfig):
        self.config = config
        self.model_id = config.model_id

        # botocore retries are off, generate_response owns the backoff
        self.bedrock_runtime = boto3.client('bedrock-runtime',
                                            region_name=config.region,
                                            config=BotoConfig(connect_timeout=config.connect_timeout,
                                                              read_timeout=config.read_timeout,
                                                              retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def _backoff(self, attempt: int) -> float:
        return self.config.retry_delay * (2**(attempt - 1)) + random.uniform(0, 1)

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Run one Converse exchange, retrying ClientError and BotoCoreError.

        Args:
            messages: Conversation turns in Converse format; a trailing assistant turn acts as a prefill
            system_prompt: Instructions sent as the system block
            max_tokens: Overrides the configured completion limit
            temperature: Overrides the configured temperature
            stop_sequences: Sequences that end generation early

        Returns:
            Tuple of (text, usage and metrics reported at the end of the stream)

        Raises:
            BedrockLLMError: When every attempt fails or the call fails for a non-retryable reason
        """
        inference = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
            'stopSequences': stop_sequences or [],
        }
        attempts = self.config.retry_attempts
        last_error = None

        for attempt in range(1, attempts + 1):
            try:
                response = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                                messages=messages,
                                                                system=[{'text': system_prompt}],
                                                                inferenceConfig=inference)
                text, usage = read_stream(response)
            except (ClientError, BotoCoreError) as e:
                last_error = e
                logger.warning(f'Converse call {attempt}/{attempts} to {self.model_id} failed: {e}')
                if attempt < attempts:
                    time.sleep(self._backoff(attempt))
                continue
            except Exception as e:
                logger.error(f'Converse call to {self.model_id} failed: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}') from e

            logger.debug(f'Generated {len(text)} characters with {self.model_id}')
            return text, usage

        raise BedrockLLMError(f'Bedrock LLM failed after {attempts} attempts: {last_error}')

    def generate_text(self, prompt: str, system_prompt: str, prefill: Optional[str] = None, **kwargs) -> str:
        """Single user turn; a prefill seeds the assistant turn and is prepended to the result."""
        messages = [{'role': 'user', 'content': [{'text': prompt}]}]
        if prefill:
            messages.append({'role': 'assistant', 'content': [{'text': prefill}]})

        text, _ = self.generate_response(messages=messages, system_prompt=system_prompt, **kwargs)
        return f'{prefill}{text}' if prefill else text

    def health_check(self) -> bool:
        try:
            reply = self.generate_text('ping', system_prompt='Reply with the single word OK.', max_tokens=5, temperature=0.0)
            return bool(reply.strip())
        except BedrockLLMError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
