"""
OpenSearch client wrapper for the long-term vector namespaces and the raw-message indices.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.core import LONG_TERM_NAMESPACES, VectorMatch
from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Index types besides the vector namespaces
MESSAGES_INDEX = 'messages'
EMBEDDINGS_INDEX = 'embeddings'

INDEX_SYNC_WAIT_SECONDS = 15


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def _knn_vector(dimension: int) -> Dict[str, Any]:
    return {
        'type': 'knn_vector',
        'dimension': dimension,
        'method': {
            'name': 'hnsw',
            'space_type': 'cosinesimil',
            'engine': 'nmslib'
        }
    }


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built OpenSearch client, built from config if None
        """
        self.config = config

        if client is None:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                # Remove protocol if present
                endpoint = endpoint.split('://', 1)[1]

            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                connection_class=RequestsHttpConnection)
        self.client = client

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def index_for(self, index_type: str) -> str:
        return f'{self.config.index_name}_{index_type}'

    def _index_body(self, index_type: str) -> Dict[str, Any]:
        if index_type in LONG_TERM_NAMESPACES:
            return {
                'mappings': {
                    'properties': {
                        'vector_id': {
                            'type': 'keyword'
                        },
                        'group_id': {
                            'type': 'long'
                        },
                        'user_id': {
                            'type': 'long'
                        },
                        'embedding': _knn_vector(self.config.dimension),
                        'created_at': {
                            'type': 'date'
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True,
                        'knn.algo_param.ef_search': 100
                    }
                }
            }

        if index_type == MESSAGES_INDEX:
            properties = {
                'group_id': {
                    'type': 'long'
                },
                'user_id': {
                    'type': 'long'
                },
                'nickname': {
                    'type': 'keyword'
                },
                'content': {
                    'type': 'text'
                },
                'created_at': {
                    'type': 'date'
                }
            }
        elif index_type == EMBEDDINGS_INDEX:
            properties = {
                'vector_id': {
                    'type': 'keyword'
                },
                'ref_msg_id': {
                    'type': 'keyword'
                },
                'content': {
                    'type': 'text'
                },
                'created_at': {
                    'type': 'date'
                }
            }
        else:
            raise OpenSearchError(f'Unknown index type: {index_type}')

        return {'mappings': {'properties': properties}}

    def create_index_if_not_exists(self, index_type: str) -> str:
        """
        Create the index of the given type if it doesn't exist.

        Args:
            index_type: A long-term namespace, 'messages' or 'embeddings'

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_for(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=self._index_body(index_type))
            logger.info(f'Created index {index_name}')
            if response.get('acknowledged', False):
                logger.info(f'Waiting {INDEX_SYNC_WAIT_SECONDS}s for index {index_name} sync-up...')
                time.sleep(INDEX_SYNC_WAIT_SECONDS)
                return 'created'
            else:
                return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')

    def ensure_indices(self) -> Dict[str, str]:
        """Create every index the memory pipeline writes to."""
        return {
            index_type: self.create_index_if_not_exists(index_type)
            for index_type in LONG_TERM_NAMESPACES + [MESSAGES_INDEX, EMBEDDINGS_INDEX]
        }

    def index_document(self, document: Dict[str, Any], index_type: str, doc_id: Optional[str] = None) -> str:
        """
        Index a document, replacing any document stored under doc_id.

        Args:
            document: Document to index
            index_type: Type of index
            doc_id: Document id, assigned by OpenSearch if None

        Returns:
            Id of the indexed document

        Raises:
            OpenSearchError: If indexing fails
        """
        index_name = self.index_for(index_type)

        try:
            if doc_id is None:
                response = self.client.index(index=index_name, body=document)
            else:
                response = self.client.index(index=index_name, body=document, id=doc_id)
        except OpenSearchException as e:
            logger.error(f'Error indexing document in {index_name}: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')

        if response.get('result') not in ['created', 'updated']:
            logger.warning(f'Unexpected result indexing document: {response}')
            raise OpenSearchError(f"Indexing into {index_name} returned {response.get('result')!r}")

        logger.debug(f"Indexed document {response['_id']} in {index_name}")
        return response['_id']

    def upsert_vector(self, namespace: str, vector_id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        """
        Store a vector in a long-term namespace under vector_id.

        Raises:
            OpenSearchError: If the namespace is unknown or indexing fails
        """
        if namespace not in LONG_TERM_NAMESPACES:
            raise OpenSearchError(f'Unknown namespace: {namespace}')

        document = dict(metadata)
        document['vector_id'] = vector_id
        document['embedding'] = vector
        self.index_document(document, namespace, doc_id=vector_id)

    def query_top_k(self,
                    namespace: str,
                    vector: List[float],
                    k: int,
                    metadata_filter: Optional[Dict[str, Any]] = None) -> List[VectorMatch]:
        """
        Perform vector similarity search in one namespace.

        Args:
            namespace: Long-term namespace to search
            vector: Query vector
            k: Number of results to return
            metadata_filter: Exact-match metadata predicates (e.g. group_id, user_id)

        Returns:
            Matches ordered by descending score

        Raises:
            OpenSearchError: If the search fails
        """
        index_name = self.index_for(namespace)
        filters = [{'term': {name: value}} for name, value in (metadata_filter or {}).items()]

        search_body: Dict[str, Any] = {
            'size': k,
            'query': {
                'bool': {
                    'must': [{
                        'knn': {
                            'embedding': {
                                'vector': vector,
                                'k': k
                            }
                        }
                    }]
                }
            },
            '_source': ['vector_id']  # Don't return embedding in results
        }
        if filters:
            search_body['query']['bool']['filter'] = filters

        try:
            response = self.client.search(index=index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error performing vector search in {index_name}: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')

        matches = []
        for hit in response['hits']['hits']:
            vector_id = hit.get('_source', {}).get('vector_id', hit['_id'])
            matches.append(VectorMatch(id=vector_id, score=float(hit['_score']), namespace=namespace))

        logger.debug(f'Vector search in {namespace} returned {len(matches)} results')
        return matches

    def find_by_terms(self, index_type: str, field: str, values: List[str]) -> List[Dict[str, Any]]:
        """
        Fetch documents whose keyword field equals any of values.

        Returns:
            List of dicts with the document id and source

        Raises:
            OpenSearchError: If the search fails
        """
        if not values:
            return []

        index_name = self.index_for(index_type)
        search_body = {'size': len(values), 'query': {'terms': {field: list(values)}}}

        try:
            response = self.client.search(index=index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error looking up {field} in {index_name}: {e}')
            raise OpenSearchError(f'Terms lookup failed: {e}')

        return [{'id': hit['_id'], 'document': hit['_source']} for hit in response['hits']['hits']]

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_for(MESSAGES_INDEX))
            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
