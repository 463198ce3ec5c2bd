"""Neo4j driver and connection management."""

from neo4j import AsyncDriver, AsyncGraphDatabase

from semantic_memory.core.base import DatabaseErrorDetails, ErrorCode, ErrorLevel
from semantic_memory.core.decorators import with_error_handling
from semantic_memory.core.errors import DatastoreError
from semantic_memory.core.logging import get_logger

logger = get_logger(__name__)


@with_error_handling(error_level=ErrorLevel.ERROR)
async def create_neo4j_driver(
    uri: str,
    user: str,
    password: str,
    max_connection_pool_size: int = 16,
    max_connection_lifetime: int = 3600,
    connection_timeout: float = 10.0,
) -> AsyncDriver:
    """Create a Neo4j driver and verify it can reach the server.

    Args:
        uri: Bolt or neo4j URI
        user: Database user
        password: Database password
        max_connection_pool_size: Maximum size of the connection pool
        max_connection_lifetime: Maximum lifetime of connections in seconds
        connection_timeout: Seconds to wait when opening a connection

    Returns:
        Connected AsyncDriver

    Raises:
        DatastoreError: If the server cannot be reached
    """
    logger.info(
        "Creating Neo4j driver",
        uri=uri,
        pool_size=max_connection_pool_size,
        connection_lifetime=max_connection_lifetime,
    )

    driver = AsyncGraphDatabase.driver(
        uri,
        auth=(user, password),
        max_connection_pool_size=max_connection_pool_size,
        max_connection_lifetime=max_connection_lifetime,
        connection_timeout=connection_timeout,
    )

    # Verify connectivity before proceeding
    try:
        await driver.verify_connectivity()
    except Exception as e:
        await driver.close()
        raise DatastoreError(
            message=f"Cannot connect to Neo4j at {uri}: {e!s}",
            details=DatabaseErrorDetails(
                source="neo4j_driver",
                operation="verify_connectivity",
                service_name="neo4j",
                endpoint=uri,
            ),
            code=ErrorCode.DB_CONNECTION,
        ) from e

    logger.info("Neo4j connection established")
    return driver
