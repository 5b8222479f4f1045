"""
PostgreSQL persistence layer for the Incidents service.

Holds both the Record Store (``incidents``) and the Credential Store
(``users``) behind one bounded asyncpg pool.
"""

import asyncio
from contextlib import asynccontextmanager, nullcontext
from typing import AsyncIterator, List, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import DuplicateUsername, ExternalServiceError
from shared.metrics import MetricsCollector
from ..auth.models import UserRecord
from ..records.models import Incident, IncidentFields


# Failures that mean "the store could not serve the query".
STORE_FAILURES = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgreSQLPersistence:
    """PostgreSQL persistence layer for incidents and credentials."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 5.0,
        acquire_timeout: float = 5.0,
        ssl: bool = False,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.acquire_timeout = acquire_timeout
        self.ssl = ssl
        self.metrics = metrics
        self.logger = get_logger("incidents.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the pool and create tables."""
        kwargs = {}
        if self.ssl:
            # Hosted databases commonly present certificates we cannot verify.
            kwargs["ssl"] = "require"

        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
                **kwargs
            )
            await self._create_tables()
        except STORE_FAILURES as e:
            self.logger.error("Failed to connect to PostgreSQL", error=str(e))
            raise ExternalServiceError("postgres", "startup failed", {"error": str(e)}) from e

        self.logger.info("Successfully connected to PostgreSQL")

    async def stop(self):
        """Close the pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection for one query.

        Driver, network and timeout failures are re-raised as
        ``ExternalServiceError``; anything else propagates unchanged.
        """
        if self.pool is None:
            raise ExternalServiceError("postgres", "pool not started")

        if self.metrics:
            self.metrics.increment_counter("store_queries_total", operation=operation)

        timer = (
            self.metrics.time_operation("store_query_duration_seconds", operation=operation)
            if self.metrics else nullcontext()
        )
        try:
            with timer:
                async with self.pool.acquire(timeout=self.acquire_timeout) as conn:
                    yield conn
        except STORE_FAILURES as e:
            self.logger.error("PostgreSQL query failed", operation=operation, error=str(e))
            raise ExternalServiceError("postgres", f"{operation} failed", {"error": str(e)}) from e

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    username VARCHAR(255) NOT NULL UNIQUE,
                    password_hash VARCHAR(255) NOT NULL
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS incidents (
                    id SERIAL PRIMARY KEY,
                    title TEXT NOT NULL,
                    reporter TEXT,
                    type TEXT,
                    description TEXT,
                    resource_id TEXT,
                    date TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_incidents_date ON incidents(date DESC);
            """)

    # Credential Store

    async def create_user(self, username: str, password_hash: str) -> UserRecord:
        """Insert a credential; raises DuplicateUsername if the name is taken."""
        async with self._connection("create_user") as conn:
            try:
                row = await conn.fetchrow(
                    "INSERT INTO users (username, password_hash) VALUES ($1, $2) "
                    "RETURNING id, username, password_hash",
                    username, password_hash
                )
            except asyncpg.UniqueViolationError:
                raise DuplicateUsername(username)

        self.logger.info("User created", user_id=row["id"], username=row["username"])
        return UserRecord(id=row["id"], username=row["username"], password_hash=row["password_hash"])

    async def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        """Load a credential by exact username."""
        async with self._connection("get_user") as conn:
            row = await conn.fetchrow(
                "SELECT id, username, password_hash FROM users WHERE username = $1",
                username
            )

        if not row:
            return None
        return UserRecord(id=row["id"], username=row["username"], password_hash=row["password_hash"])

    # Record Store

    async def list_incidents(self) -> List[Incident]:
        """All incidents, newest first."""
        async with self._connection("list_incidents") as conn:
            rows = await conn.fetch("SELECT * FROM incidents ORDER BY date DESC, id DESC")

        return [self._row_to_incident(row) for row in rows]

    async def get_incident(self, incident_id: int) -> Optional[Incident]:
        async with self._connection("get_incident") as conn:
            row = await conn.fetchrow("SELECT * FROM incidents WHERE id = $1", incident_id)

        return self._row_to_incident(row) if row else None

    async def insert_incident(self, fields: IncidentFields) -> Incident:
        async with self._connection("insert_incident") as conn:
            row = await conn.fetchrow(
                "INSERT INTO incidents (title, reporter, type, description, resource_id) "
                "VALUES ($1, $2, $3, $4, $5) RETURNING *",
                fields.title, fields.reporter, fields.type, fields.description, fields.resource_id
            )

        return self._row_to_incident(row)

    async def update_incident(self, incident_id: int, fields: IncidentFields) -> Optional[Incident]:
        """Replace all mutable fields; None when no row matched."""
        async with self._connection("update_incident") as conn:
            row = await conn.fetchrow(
                "UPDATE incidents SET title = $1, reporter = $2, type = $3, description = $4, "
                "resource_id = $5, updated_at = NOW() WHERE id = $6 RETURNING *",
                fields.title, fields.reporter, fields.type, fields.description, fields.resource_id,
                incident_id
            )

        return self._row_to_incident(row) if row else None

    async def delete_incident(self, incident_id: int) -> bool:
        """Delete a row; False when no row matched."""
        async with self._connection("delete_incident") as conn:
            deleted_id = await conn.fetchval(
                "DELETE FROM incidents WHERE id = $1 RETURNING id", incident_id
            )

        return deleted_id is not None

    def _row_to_incident(self, row) -> Incident:
        """Convert database row to Incident."""
        return Incident.model_validate(dict(row))

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire(timeout=self.acquire_timeout) as conn:
                await conn.fetchval("SELECT 1")
                return True
        except STORE_FAILURES:
            return False
