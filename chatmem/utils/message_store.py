"""
Raw-message store: durable chat transcripts and vector id -> message associations.
"""

from datetime import datetime
from typing import List, Optional

from ..models.core import HydratedMessage, MessageIdentity
from .logging_config import get_logger
from .opensearch_client import EMBEDDINGS_INDEX, MESSAGES_INDEX, OpenSearchClient, OpenSearchError
from .timestamp_utils import parse_datetime, to_datetime

logger = get_logger(__name__)


class MessageStoreError(Exception):
    """Raised when a raw message or association cannot be stored or read."""
    pass


class MessageStore:
    """Raw chat messages and their vector associations, kept in OpenSearch indices."""

    def __init__(self, opensearch: OpenSearchClient):
        self.opensearch = opensearch

    def save_raw_message(self, identity: MessageIdentity, content: str, created_at: Optional[datetime] = None) -> str:
        """
        Persist an utterance as received.

        Returns:
            Message reference of the stored utterance

        Raises:
            MessageStoreError: If the message could not be stored
        """
        created_at = created_at or to_datetime()
        document = {
            'group_id': identity.group_id,
            'user_id': identity.user_id,
            'nickname': identity.nickname,
            'content': content,
            'created_at': created_at.isoformat()
        }
        try:
            message_ref = self.opensearch.index_document(document, MESSAGES_INDEX)
        except OpenSearchError as e:
            logger.error(f'Failed to save raw message from user {identity.user_id}: {e}')
            raise MessageStoreError(f'Failed to save raw message: {e}')

        logger.debug(f'Saved raw message {message_ref} (group={identity.group_id} user={identity.user_id})')
        return message_ref

    def save_vector_association(self, vector_id: str, message_ref: str, content: str, created_at: datetime) -> None:
        """
        Record which message a stored vector was computed from.

        Raises:
            MessageStoreError: If the association could not be stored
        """
        document = {
            'vector_id': vector_id,
            'ref_msg_id': message_ref,
            'content': content,
            'created_at': created_at.isoformat()
        }
        try:
            self.opensearch.index_document(document, EMBEDDINGS_INDEX, doc_id=vector_id)
        except OpenSearchError as e:
            logger.error(f'Failed to save association {vector_id} -> {message_ref}: {e}')
            raise MessageStoreError(f'Failed to save vector association: {e}')

    def find_by_vector_ids(self, vector_ids: List[str]) -> List[HydratedMessage]:
        """
        Hydrate vector ids back into message text. Unknown ids are omitted.

        Raises:
            MessageStoreError: If the lookup fails
        """
        if not vector_ids:
            return []

        try:
            hits = self.opensearch.find_by_terms(EMBEDDINGS_INDEX, 'vector_id', vector_ids)
        except OpenSearchError as e:
            logger.error(f'Failed to hydrate {len(vector_ids)} vector ids: {e}')
            raise MessageStoreError(f'Failed to find messages by vector ids: {e}')

        messages = []
        for hit in hits:
            document = hit['document']
            try:
                messages.append(
                    HydratedMessage(vector_id=document.get('vector_id', hit['id']),
                                    message_ref=document['ref_msg_id'],
                                    content=document.get('content', ''),
                                    created_at=parse_datetime(document['created_at'])))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed association {hit['id']}: {e}")
        return messages
