"""
Configuration management for AWS services, the task scheduler and application settings.
"""

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    connect_timeout: float
    read_timeout: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float
    connect_timeout: float
    read_timeout: float


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int


@dataclass
class RedisConfig:
    """Configuration for the Redis task and cache store."""
    host: str
    port: int
    password: str
    db: int
    socket_timeout: float


@dataclass
class SchedulerConfig:
    """Configuration for the recurring engine and the one-shot poller."""
    poll_interval_seconds: float
    timezone: str
    misfire_grace_seconds: int
    periodic_prefix: str
    proactive_delay_seconds: int
    proactive_fallback_message: str


@dataclass
class MemoryConfig:
    """Configuration for memory classification and routing."""
    temporary_ttl_seconds: int
    min_content_length: int
    ingest_workers: int


@dataclass
class RetrievalConfig:
    """Configuration for memory retrieval."""
    top_k: int
    top_k_per_namespace: int
    timeout_seconds: float
    high_confidence_threshold: float
    personal_scene_threshold: float
    fuzzy_threshold: float
    tech_keywords: List[str] = field(default_factory=list)


@dataclass
class NotifierConfig:
    """Configuration for the OneBot HTTP notifier."""
    base_url: str
    access_token: str
    timeout: float


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
    super_users: List[int]
    bedrock_llm: BedrockLLMConfig
    classifier_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    opensearch: OpenSearchConfig
    redis: RedisConfig
    scheduler: SchedulerConfig
    memory: MemoryConfig
    retrieval: RetrievalConfig
    notifier: NotifierConfig
    mcp: MCPConfig


def parse_id_list(value: str) -> List[int]:
    """Parse a comma separated list of numeric ids, skipping invalid items."""
    ids = []
    for item in value.split(','):
        item = item.strip()
        if item.isdigit():
            ids.append(int(item))
    return ids


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration (reply and follow-up generation)
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '512')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.5')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          connect_timeout=float(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '10')),
                                          read_timeout=float(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '120')))

    # Classifier sits upstream of a live reply, so it gets one short attempt
    classifier_llm_config = BedrockLLMConfig(region=os.getenv('CLASSIFIER_AWS_REGION', bedrock_llm_config.region),
                                             model_id=os.getenv('CLASSIFIER_MODEL_ID', bedrock_llm_config.model_id),
                                             max_tokens=int(os.getenv('CLASSIFIER_MAX_TOKENS', '64')),
                                             temperature=float(os.getenv('CLASSIFIER_TEMPERATURE', '0.1')),
                                             retry_attempts=int(os.getenv('CLASSIFIER_RETRY_ATTEMPTS', '1')),
                                             retry_delay=float(os.getenv('CLASSIFIER_RETRY_DELAY', '0.5')),
                                             connect_timeout=float(os.getenv('CLASSIFIER_CONNECT_TIMEOUT', '2')),
                                             read_timeout=float(os.getenv('CLASSIFIER_READ_TIMEOUT', '5')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '2')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '0.5')),
                                              connect_timeout=float(os.getenv('BEDROCK_EMBED_CONNECT_TIMEOUT', '2')),
                                              read_timeout=float(os.getenv('BEDROCK_EMBED_READ_TIMEOUT', '5')))

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'chatmem'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')))

    # Redis configuration
    redis_config = RedisConfig(host=os.getenv('REDIS_HOST', 'localhost'),
                               port=int(os.getenv('REDIS_PORT', '6379')),
                               password=os.getenv('REDIS_PASSWORD', ''),
                               db=int(os.getenv('REDIS_DB', '0')),
                               socket_timeout=float(os.getenv('REDIS_SOCKET_TIMEOUT', '5')))

    # Scheduler configuration
    scheduler_config = SchedulerConfig(poll_interval_seconds=float(os.getenv('SCHEDULER_POLL_INTERVAL', '5')),
                                       timezone=os.getenv('SCHEDULER_TIMEZONE', ''),
                                       misfire_grace_seconds=int(os.getenv('SCHEDULER_MISFIRE_GRACE_SECONDS', '30')),
                                       periodic_prefix=os.getenv('SCHEDULER_PERIODIC_PREFIX', '【周期提醒】'),
                                       proactive_delay_seconds=int(os.getenv('PROACTIVE_DELAY_SECONDS', str(4 * 3600))),
                                       proactive_fallback_message=os.getenv('PROACTIVE_FALLBACK_MESSAGE',
                                                                            '记得你说今天有事，一切还顺利吗？'))

    # Memory configuration
    memory_config = MemoryConfig(temporary_ttl_seconds=int(os.getenv('MEMORY_TEMPORARY_TTL_SECONDS', str(2 * 3600))),
                                 min_content_length=int(os.getenv('MEMORY_MIN_CONTENT_LENGTH', '5')),
                                 ingest_workers=int(os.getenv('MEMORY_INGEST_WORKERS', '4')))

    # Retrieval configuration
    retrieval_config = RetrievalConfig(top_k=int(os.getenv('RETRIEVAL_TOP_K', '5')),
                                       top_k_per_namespace=int(os.getenv('RETRIEVAL_TOP_K_PER_NAMESPACE', '3')),
                                       timeout_seconds=float(os.getenv('RETRIEVAL_TIMEOUT_SECONDS', '5')),
                                       high_confidence_threshold=float(os.getenv('RETRIEVAL_HIGH_CONFIDENCE', '0.85')),
                                       personal_scene_threshold=float(os.getenv('RETRIEVAL_PERSONAL_SCENE', '0.7')),
                                       fuzzy_threshold=float(os.getenv('RETRIEVAL_FUZZY_THRESHOLD', '0.6')),
                                       tech_keywords=[
                                           k.strip() for k in os.getenv('RETRIEVAL_TECH_KEYWORDS', 'err,code,api,func').split(',')
                                           if k.strip()
                                       ])

    # Notifier configuration
    notifier_config = NotifierConfig(base_url=os.getenv('ONEBOT_HTTP_URL', 'http://127.0.0.1:3000'),
                                     access_token=os.getenv('ONEBOT_ACCESS_TOKEN', ''),
                                     timeout=float(os.getenv('ONEBOT_TIMEOUT', '10')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     super_users=parse_id_list(os.getenv('BOT_SUPER_USERS', '')),
                     bedrock_llm=bedrock_llm_config,
                     classifier_llm=classifier_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     redis=redis_config,
                     scheduler=scheduler_config,
                     memory=memory_config,
                     retrieval=retrieval_config,
                     notifier=notifier_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
