"""
Amazon Neptune entity graph client with Gremlin Python driver and AWS SigV4 authentication.

Entities are shared across users and keyed by normalized name. Entries appear
as vertices only so that relationship edges have somewhere to start.
"""

import uuid
from functools import wraps
from typing import List

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __
from gremlin_python.process.traversal import Cardinality

from ..models.core import MENTIONS, Entity, normalize_entity_name
from .config import NeptuneConfig
from .logging_config import get_logger
from .timestamp_utils import to_seconds_str

logger = get_logger(__name__)


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations once on connection errors."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
        """
        self.config = config
        self.connection = None
        self.g = None
        self._connect()

        logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        # Build WebSocket connection string
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        # Get AWS credentials
        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = self.config.region or Session().region_name or 'us-east-1'

        # Create signed request for WebSocket connection
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=dict(request.headers.items()),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()

    @retry_on_connection_error
    def upsert_entity(self, name: str, entity_type: str) -> str:
        """
        Get-or-create an entity by normalized name and overwrite its type.

        Args:
            name: Entity name as extracted (display name on first write)
            entity_type: Category label; the latest write wins

        Returns:
            Stored entity ID
        """
        name_key = normalize_entity_name(name)

        entity_id = self.g.V().has('Entity', 'name_key', name_key).fold()\
            .coalesce(__.unfold(),
                      __.add_v('Entity')
                      .property('id', str(uuid.uuid4()))
                      .property('name_key', name_key)
                      .property('name', name)
                      .property('created_at', to_seconds_str()))\
            .property(Cardinality.single, 'type', entity_type)\
            .values('id')\
            .next()

        logger.debug(f"Upserted entity '{name}' ({entity_type}) as {entity_id}")
        return entity_id

    @retry_on_connection_error
    def add_relationship(self, entry_id: str, user_id: str, entity_id: str, relationship_type: str = MENTIONS) -> bool:
        """
        Link an entry to an entity unless the (entry, entity, type) edge already exists.

        Args:
            entry_id: Entry ID
            user_id: Entry owner, stored on the entry vertex
            entity_id: Entity ID returned by upsert_entity
            relationship_type: Edge label

        Returns:
            True if the edge was created, False if it already existed
        """
        self.g.V().has('Entry', 'id', entry_id).fold()\
            .coalesce(__.unfold(),
                      __.add_v('Entry').property('id', entry_id).property('user_id', user_id))\
            .iterate()

        try:
            created = self.g.V().has('Entry', 'id', entry_id).as_('entry')\
                .V().has('Entity', 'id', entity_id)\
                .coalesce(__.in_e(relationship_type).where(__.out_v().as_('entry')).constant(False),
                          __.add_e(relationship_type).from_('entry').property('created_at', to_seconds_str()).constant(True))\
                .next()
        except StopIteration:
            raise NeptuneError(f'Entity {entity_id} not found')

        if created:
            logger.debug(f'Created {relationship_type} edge {entry_id} -> {entity_id}')
        else:
            logger.debug(f'Edge {entry_id} -{relationship_type}-> {entity_id} already exists')
        return bool(created)

    @retry_on_connection_error
    def get_entry_entities(self, entry_id: str, relationship_type: str = MENTIONS) -> List[Entity]:
        """
        Get the entities an entry is linked to.

        Args:
            entry_id: Entry ID
            relationship_type: Edge label to follow

        Returns:
            List of Entity objects
        """
        rows = self.g.V().has('Entry', 'id', entry_id)\
            .out(relationship_type)\
            .has_label('Entity')\
            .dedup()\
            .project('id', 'name', 'type')\
            .by('id').by('name').by('type')\
            .to_list()

        return [Entity(id=row['id'], name=row['name'], type=row['type']) for row in rows]

    @retry_on_connection_error
    def delete_entry(self, entry_id: str) -> int:
        """
        Remove an entry vertex together with its relationship edges.

        Entity vertices are left in place since other entries may mention them.

        Args:
            entry_id: Entry ID

        Returns:
            Number of relationship edges removed
        """
        count = self.g.V().has('Entry', 'id', entry_id).out_e().count().next()
        self.g.V().has('Entry', 'id', entry_id).drop().iterate()

        logger.debug(f'Deleted entry vertex {entry_id} and {count} relationships')
        return int(count)

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy, False otherwise
        """
        # Simple query to test connectivity
        self.g.V().limit(1).count().next()
        return True
