"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

import boto3
from dotenv import load_dotenv

load_dotenv()


class ConfigError(Exception):
    """Raised when required configuration is missing."""
    pass


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    connect_timeout: float = 10.0
    read_timeout: float = 120.0


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str


@dataclass
class OpenSearchConfig:
    """Configuration for the OpenSearch entry store."""
    endpoint: str
    port: int
    region: str
    service: str
    index_name: str
    dimension: int
    read_attempts: int = 5
    read_delay: float = 1.0

    @property
    def entries_index(self) -> str:
        return f'{self.index_name}_entries'


@dataclass
class QueryConfig:
    """Retrieval defaults for the query pipeline."""
    match_threshold: float
    match_count: int


@dataclass
class APIConfig:
    """Configuration for the HTTP interface."""
    host: str
    port: int
    cors_origins: List[str] = field(default_factory=lambda: ['*'])


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    query: QueryConfig
    api: APIConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')
    dimension = int(os.getenv('EMBEDDING_DIMENSION', '384'))

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          connect_timeout=float(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '10')),
                                          read_timeout=float(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '120')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=dimension,
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', ''),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'))

    # Entry store configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', ''),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'postcard'),
                                         dimension=dimension,
                                         read_attempts=int(os.getenv('OPENSEARCH_READ_ATTEMPTS', '5')),
                                         read_delay=float(os.getenv('OPENSEARCH_READ_DELAY', '1.0')))

    query_config = QueryConfig(match_threshold=float(os.getenv('QUERY_MATCH_THRESHOLD', '0.7')),
                               match_count=int(os.getenv('QUERY_MATCH_COUNT', '5')))

    api_config = APIConfig(host=os.getenv('API_HOST', '127.0.0.1'),
                           port=int(os.getenv('API_PORT', '8000')),
                           cors_origins=[o.strip() for o in os.getenv('API_CORS_ORIGINS', '*').split(',') if o.strip()])

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8001')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     query=query_config,
                     api=api_config,
                     mcp=mcp_config)


def missing_settings(app_config: Optional[AppConfig] = None) -> List[str]:
    """List the required settings that are absent.

    The entry store and graph endpoints must be set, and AWS credentials must be
    resolvable since they sign requests to Bedrock, OpenSearch and Neptune alike.

    Args:
        app_config: AppConfig instance, uses default if None

    Returns:
        Names of missing settings (empty when configuration is complete)
    """
    app_config = app_config or config
    missing = []
    if not app_config.opensearch.endpoint:
        missing.append('OPENSEARCH_ENDPOINT')
    if not app_config.neptune.endpoint:
        missing.append('NEPTUNE_ENDPOINT')
    if boto3.Session().get_credentials() is None:
        missing.append('AWS credentials')
    return missing


def require_config(app_config: Optional[AppConfig] = None) -> None:
    """Raise ConfigError if any required setting is missing."""
    missing = missing_settings(app_config)
    if missing:
        raise ConfigError(f'Missing required configuration: {", ".join(missing)}')


# Global configuration instance
config = load_config()
