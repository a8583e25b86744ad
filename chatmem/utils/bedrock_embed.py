"""
Amazon Bedrock embedding client with query and passage encoding modes.
"""

import json
import random
import time
from enum import Enum
from typing import Any, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class EmbedMode(str, Enum):
    QUERY = 'query'
    PASSAGE = 'passage'


# Cohere input types per encoding mode
COHERE_INPUT_TYPES = {EmbedMode.QUERY: 'search_query', EmbedMode.PASSAGE: 'search_document'}


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig, client: Optional[Any] = None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            client: Pre-built bedrock-runtime client, built from config if None
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        self.bedrock = client or boto3.client(service_name='bedrock-runtime',
                                              region_name=config.region,
                                              config=BotoConfig(connect_timeout=config.connect_timeout,
                                                                read_timeout=config.read_timeout,
                                                                retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data, ensure_ascii=False)
        attempts = max(1, self.config.retry_attempts)

        for attempt in range(attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{attempts}')

                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')

                result = json.loads(response.get('body').read())
                logger.debug('Bedrock Embed request successful')
                return result

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{attempts} failed: {e}')

                if attempt < attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {attempts} attempts')

    def embed(self, text: str, mode: EmbedMode = EmbedMode.PASSAGE) -> List[float]:
        """
        Generate an embedding for text.

        Args:
            text: Text to embed
            mode: Query or passage encoding

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If the text is empty or embedding generation fails
        """
        if not text or not text.strip():
            raise BedrockEmbedError(f'Empty text provided for {mode.value} embedding')

        model = self.model_id.lower()
        try:
            if 'titan' in model:
                # Titan v2 has no query/passage distinction
                response = self._call_with_retry({'inputText': text, 'dimensions': self.output_embedding_length})
                embedding = response.get('embedding')

            elif 'cohere' in model:
                if self.output_embedding_length != 1024:
                    raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')

                response = self._call_with_retry({'input_type': COHERE_INPUT_TYPES[mode], 'texts': [text]})
                embeddings = response.get('embeddings') or []
                embedding = embeddings[0] if embeddings else None

            else:
                raise BedrockEmbedError(f'Unsupported model for embedding: {self.model_id}')

        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating {mode.value} embedding: {e}')
            raise BedrockEmbedError(f'{mode.value} embedding failed: {e}')

        if not embedding:
            raise BedrockEmbedError(f'Bedrock returned no {mode.value} embedding')
        return embedding

    def embed_document(self, text: str) -> List[float]:
        return self.embed(text, EmbedMode.PASSAGE)

    def embed_query(self, text: str) -> List[float]:
        return self.embed(text, EmbedMode.QUERY)

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
