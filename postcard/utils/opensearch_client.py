"""
OpenSearch client wrapper for the entry store and per-user similarity search.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.core import Entry, MatchedEntry
from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch-backed entry store with AWS authentication and error handling.

    On managed domains (service `es`) the entry id is the document id, reads go
    through the realtime get API and writes wait for a refresh. Serverless vector
    collections assign their own document ids and only expose writes to search
    after a refresh, so entries are found by searching their `id` field, retried
    up to `read_attempts` times.
    """

    def __init__(self, config: OpenSearchConfig):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
        """
        self.config = config
        self.index_name = config.entries_index
        self.managed_domain = config.service == 'es'

        # Get AWS credentials and create auth
        credentials = boto3.Session().get_credentials()
        if credentials is None:
            raise OpenSearchError('No AWS credentials found')
        auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
        # Parse endpoint to get host and port
        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 connection_class=RequestsHttpConnection,
                                 max_retries=3,
                                 retry_on_timeout=True)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def create_index_if_not_exists(self) -> str:
        """
        Create the entries index if it doesn't exist.

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            index_body = {
                'mappings': {
                    'properties': {
                        'id': {
                            'type': 'keyword'
                        },
                        'user_id': {
                            'type': 'keyword'
                        },
                        'raw_text': {
                            'type': 'text'
                        },
                        'processed_text': {
                            'type': 'text'
                        },
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'faiss'
                            }
                        },
                        'created_at': {
                            'type': 'date'
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True
                    }
                }
            }

            response = self.client.indices.create(index=self.index_name, body=index_body)
            if response.get('acknowledged', False):
                logger.info(f'Created index {self.index_name}')
                return 'created'
            return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def _find_hit(self, entry_id: str, attempts: int = 1) -> Optional[Dict[str, Any]]:
        if self.managed_domain:
            try:
                return self.client.get(index=self.index_name, id=entry_id)
            except NotFoundError:
                return None

        search_body = {'size': 1, 'query': {'term': {'id': entry_id}}}
        for attempt in range(attempts):
            hits = self.client.search(index=self.index_name, body=search_body)['hits']['hits']
            if hits:
                return hits[0]
            if attempt < attempts - 1:
                logger.debug(f'Entry {entry_id} not searchable yet, retrying ({attempt + 1}/{attempts})')
                time.sleep(self.config.read_delay)
        return None

    def insert_entry(self, entry: Entry) -> Entry:
        """
        Index a new entry.

        Args:
            entry: Entry to store

        Returns:
            The stored entry

        Raises:
            OpenSearchError: If indexing fails
        """
        try:
            if self.managed_domain:
                response = self.client.index(index=self.index_name, id=entry.id, body=entry.to_document(), refresh='wait_for')
            else:
                response = self.client.index(index=self.index_name, body=entry.to_document())
            if response.get('result') not in ['created', 'updated']:
                raise OpenSearchError(f'Unexpected result indexing entry {entry.id}: {response.get("result")}')
            logger.debug(f'Indexed entry {entry.id} for user {entry.user_id}')
            return entry

        except OpenSearchError:
            raise
        except OpenSearchException as e:
            logger.error(f'Error indexing entry {entry.id}: {e}')
            raise OpenSearchError(f'Failed to insert entry: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing entry {entry.id}: {e}')
            raise OpenSearchError(f'Unexpected error inserting entry: {e}')

    def get_entry(self, entry_id: str, wait: bool = False) -> Optional[Entry]:
        """
        Load an entry by id.

        Args:
            entry_id: Entry ID
            wait: Keep retrying a not-yet-searchable entry up to read_attempts times

        Returns:
            Entry if found, None otherwise

        Raises:
            OpenSearchError: If the lookup itself fails
        """
        try:
            hit = self._find_hit(entry_id, self.config.read_attempts if wait else 1)
            return Entry.from_document(hit['_source']) if hit else None

        except NotFoundError:
            logger.warning(f'Index {self.index_name} not found while fetching entry {entry_id}')
            return None
        except OpenSearchException as e:
            logger.error(f'Error fetching entry {entry_id}: {e}')
            raise OpenSearchError(f'Failed to fetch entry: {e}')
        except Exception as e:
            logger.error(f'Unexpected error fetching entry {entry_id}: {e}')
            raise OpenSearchError(f'Unexpected error fetching entry: {e}')

    def update_entry(self, entry_id: str, processed_text: str, embedding: List[float]) -> None:
        """
        Write the derived fields of an entry in one update.

        Args:
            entry_id: Entry ID
            processed_text: Markdown rendering of the raw text
            embedding: Validated embedding vector

        Raises:
            OpenSearchError: If the entry is missing or the update fails
        """
        try:
            hit = self._find_hit(entry_id, self.config.read_attempts)
            if hit is None:
                raise OpenSearchError(f'Entry {entry_id} not found')

            self.client.update(index=self.index_name,
                               id=hit['_id'],
                               body={'doc': {
                                   'processed_text': processed_text,
                                   'embedding': embedding
                               }})
            logger.debug(f'Updated derived fields of entry {entry_id}')

        except OpenSearchError:
            raise
        except OpenSearchException as e:
            logger.error(f'Error updating entry {entry_id}: {e}')
            raise OpenSearchError(f'Failed to update entry: {e}')
        except Exception as e:
            logger.error(f'Unexpected error updating entry {entry_id}: {e}')
            raise OpenSearchError(f'Unexpected error updating entry: {e}')

    def list_entries(self, user_id: str, limit: int = 50) -> List[Entry]:
        """
        List a user's entries, newest first.

        Args:
            user_id: Owner of the entries
            limit: Maximum number of entries to return

        Returns:
            List of Entry objects without embeddings
        """
        try:
            search_body = {
                'size': limit,
                'query': {
                    'bool': {
                        'filter': [{
                            'term': {
                                'user_id': user_id
                            }
                        }]
                    }
                },
                'sort': [{
                    'created_at': {
                        'order': 'desc'
                    }
                }],
                '_source': {
                    'excludes': ['embedding']
                }
            }

            response = self.client.search(index=self.index_name, body=search_body)
            entries = [Entry.from_document(hit['_source']) for hit in response['hits']['hits']]
            logger.debug(f'Listed {len(entries)} entries for user {user_id}')
            return entries

        except OpenSearchException as e:
            logger.error(f'Error listing entries for user {user_id}: {e}')
            raise OpenSearchError(f'Failed to list entries: {e}')
        except Exception as e:
            logger.error(f'Unexpected error listing entries for user {user_id}: {e}')
            raise OpenSearchError(f'Unexpected error listing entries: {e}')

    def delete_entry(self, entry_id: str, user_id: str) -> bool:
        """
        Delete an entry owned by user_id.

        Args:
            entry_id: Entry ID to delete
            user_id: Owner; entries of other users are never deleted

        Returns:
            True if an entry was deleted, False if none matched
        """
        try:
            hit = self._find_hit(entry_id)
            if hit is None or hit['_source'].get('user_id') != user_id:
                logger.warning(f'Entry {entry_id} not found for user {user_id}')
                return False

            response = self.client.delete(index=self.index_name, id=hit['_id'])
            success = response.get('result') == 'deleted'
            if success:
                logger.debug(f'Deleted entry {entry_id}')
            return success

        except OpenSearchException as e:
            # OpenSearchException args: (status_code, error_type, error_info)
            if len(e.args) >= 2 and (e.args[0] == 404 or e.args[1] == 'not_found'):
                logger.warning(f'Entry {entry_id} not found for deletion')
                return False
            logger.error(f'Error deleting entry {entry_id}: {e}')
            raise OpenSearchError(f'Failed to delete entry: {e}')
        except Exception as e:
            logger.error(f'Unexpected error deleting entry {entry_id}: {e}')
            raise OpenSearchError(f'Unexpected error deleting entry: {e}')

    def match_entries(self,
                      query_vector: List[float],
                      user_id: str,
                      match_threshold: float = 0.7,
                      match_count: int = 5) -> List[MatchedEntry]:
        """
        Exact cosine similarity search over one user's enriched entries.

        The knn_score script scores a hit as 1 + cosine, so the threshold is
        shifted by one in min_score and subtracted back from the results.

        Args:
            query_vector: Query embedding
            user_id: Requesting user; results are restricted to their entries
            match_threshold: Minimum cosine similarity
            match_count: Maximum number of results

        Returns:
            MatchedEntry list in descending similarity order

        Raises:
            OpenSearchError: If the search fails
        """
        try:
            search_body = {
                'size': match_count,
                'min_score': 1.0 + match_threshold,
                'query': {
                    'script_score': {
                        'query': {
                            'bool': {
                                'filter': [{
                                    'term': {
                                        'user_id': user_id
                                    }
                                }, {
                                    'exists': {
                                        'field': 'embedding'
                                    }
                                }]
                            }
                        },
                        'script': {
                            'source': 'knn_score',
                            'lang': 'knn',
                            'params': {
                                'field': 'embedding',
                                'query_value': query_vector,
                                'space_type': 'cosinesimil'
                            }
                        }
                    }
                },
                '_source': {
                    'excludes': ['embedding']
                }
            }

            response = self.client.search(index=self.index_name, body=search_body)

            matches = []
            for hit in response['hits']['hits']:
                doc = hit['_source']
                if doc.get('user_id') != user_id:
                    logger.warning(f"Dropping entry {doc.get('id')} owned by another user from results for {user_id}")
                    continue
                similarity = hit['_score'] - 1.0
                if similarity < match_threshold:
                    continue
                matches.append(
                    MatchedEntry(id=doc.get('id', ''),
                                 content=doc.get('processed_text') or doc.get('raw_text') or '',
                                 similarity=similarity))

            matches.sort(key=lambda m: m.similarity, reverse=True)
            logger.debug(f'Similarity search returned {len(matches)} entries for user {user_id}')
            return matches[:match_count]

        except OpenSearchException as e:
            logger.error(f'Error performing similarity search: {e}')
            raise OpenSearchError(f'Similarity search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in similarity search: {e}')
            raise OpenSearchError(f'Unexpected error in similarity search: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
