"""Async Cassandra connection using cassandra-asyncio-driver.

The driver's ``Cluster`` hands out sessions exposing ``aexecute()``, which the
store awaits for every statement, including lightweight transactions and
batches.
"""

from cassandra.auth import PlainTextAuthProvider
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from internhub.certificates.models import CERTIFICATES_TABLES_CQL
from internhub.config.settings import get_settings
from internhub.core.logging import get_logger
from internhub.enrollments.models import ENROLLMENTS_TABLES_CQL
from internhub.notifications.models import NOTIFICATIONS_TABLES_CQL
from internhub.payments.models import PAYMENTS_TABLES_CQL
from internhub.tasks.models import SUBMISSIONS_TABLES_CQL


logger = get_logger(__name__)

TABLE_GROUPS: dict[str, list[str]] = {
    "enrollments": ENROLLMENTS_TABLES_CQL,
    "submissions": SUBMISSIONS_TABLES_CQL,
    "payments": PAYMENTS_TABLES_CQL,
    "certificates": CERTIFICATES_TABLES_CQL,
    "notifications": NOTIFICATIONS_TABLES_CQL,
}


class AsyncCassandraConnection:
    """Cluster and session lifecycle holder."""

    _cluster: Cluster | None = None
    _session = None

    @classmethod
    def connect(cls):
        """Connect to the cluster, reusing an open session.

        Raises:
            ConnectionError: If no contact point can be reached.
        """
        if cls._session is not None:
            return cls._session

        settings = get_settings()

        auth_provider = None
        if settings.cassandra_username and settings.cassandra_password:
            auth_provider = PlainTextAuthProvider(
                username=settings.cassandra_username,
                password=settings.cassandra_password,
            )

        cls._cluster = Cluster(
            contact_points=settings.cassandra_hosts,
            port=settings.cassandra_port,
            auth_provider=auth_provider,
            protocol_version=settings.cassandra_protocol_version,
            load_balancing_policy=TokenAwarePolicy(DCAwareRoundRobinPolicy()),
            connect_timeout=settings.cassandra_connect_timeout,
        )

        try:
            cls._session = cls._cluster.connect()
        except Exception as e:
            logger.error("cassandra_connection_failed", error=str(e))
            raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

        cls._session.default_timeout = settings.cassandra_request_timeout
        logger.info(
            "cassandra_connected",
            hosts=settings.cassandra_hosts,
            port=settings.cassandra_port,
        )
        return cls._session

    @classmethod
    def disconnect(cls) -> None:
        if cls._session is not None:
            cls._session.shutdown()
            cls._session = None
        if cls._cluster is not None:
            cls._cluster.shutdown()
            cls._cluster = None
        logger.info("cassandra_disconnected")


async def init_keyspace(session, keyspace: str) -> None:
    """Create the keyspace if it does not exist."""
    settings = get_settings()

    if settings.is_production:
        replication = "'class': 'NetworkTopologyStrategy', 'datacenter1': 3"
    else:
        replication = "'class': 'SimpleStrategy', 'replication_factor': 1"

    await session.aexecute(
        f"CREATE KEYSPACE IF NOT EXISTS {keyspace} "
        f"WITH replication = {{{replication}}} AND durable_writes = true"
    )
    logger.info("keyspace_ready", keyspace=keyspace)


async def init_tables(session, keyspace: str) -> None:
    """Create every table group registered in ``TABLE_GROUPS``."""
    for group, statements in TABLE_GROUPS.items():
        for cql_template in statements:
            await session.aexecute(cql_template.format(keyspace=keyspace))
        logger.info("tables_ready", group=group, count=len(statements))


async def init_async_cassandra():
    """Connect, create schema and return a session bound to the keyspace."""
    settings = get_settings()

    session = AsyncCassandraConnection.connect()
    await init_keyspace(session, settings.cassandra_keyspace)
    session.set_keyspace(settings.cassandra_keyspace)
    await init_tables(session, settings.cassandra_keyspace)

    logger.info("cassandra_initialized", keyspace=settings.cassandra_keyspace)
    return session


async def shutdown_async_cassandra() -> None:
    AsyncCassandraConnection.disconnect()
