"""
Incidents service: authenticated incident records behind a cache-aside layer.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shared.base_service import BaseService
from shared.config import DEFAULT_JWT_SECRET, ServiceConfig, get_config
from shared.logging import set_user_context

from .auth.gateway import AuthGateway
from .auth.models import CredentialsRequest, Identity, LoginResponse, UserResponse
from .cache.redis_cache import RedisCache
from .persistence.postgres import PostgreSQLPersistence
from .records.models import DeleteResponse, Incident, IncidentFields
from .records.service import RecordService


SERVICE_NAME = "incidents"
SERVICE_PORT = 3000

# Path ids must fit the int4 id column; in-range ids with no row are 404.
MIN_INCIDENT_ID = -2_147_483_648
MAX_INCIDENT_ID = 2_147_483_647

bearer_scheme = HTTPBearer(auto_error=False)


class IncidentsService(BaseService):
    """Incidents service implementation.

    ``persistence`` and ``cache`` default to the Postgres and Redis adapters
    built from configuration; tests pass in-memory substitutes.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        persistence=None,
        cache=None,
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))

        if self.config.jwt_secret == DEFAULT_JWT_SECRET and self.config.env != "local":
            self.logger.warning("Using the default JWT secret outside local environment")

        self.persistence = persistence if persistence is not None else PostgreSQLPersistence(
            self.config.postgres_dsn,
            min_size=self.config.postgres_pool_min_size,
            max_size=self.config.postgres_pool_max_size,
            command_timeout=self.config.postgres_command_timeout,
            acquire_timeout=self.config.postgres_acquire_timeout,
            ssl=self.config.postgres_ssl,
            metrics=self.metrics,
        )
        self.cache = cache if cache is not None else RedisCache(
            self.config.redis_url,
            socket_timeout=self.config.redis_socket_timeout,
        )

        self.auth = AuthGateway(
            self.persistence,
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            token_ttl_seconds=self.config.token_ttl_seconds,
            bcrypt_rounds=self.config.bcrypt_rounds,
            metrics=self.metrics,
        )
        self.records = RecordService(
            self.persistence,
            self.cache,
            ttl_seconds=self.config.cache_ttl_seconds,
            metrics=self.metrics,
        )

        self._setup_incidents_routes()

    def _setup_incidents_routes(self):
        """Set up auth and incident routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Incidents Service",
                "version": "1.0.0",
                "capabilities": ["auth", "caching", "persistence"]
            }

        async def current_identity(
            credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        ) -> Identity:
            """Gate every incident route on a valid bearer token."""
            identity = self.auth.authenticate(credentials.credentials if credentials else None)
            set_user_context(user_id=str(identity.user_id), username=identity.username)
            return identity

        router = APIRouter()

        @router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
        async def register(request: CredentialsRequest):
            """Register a new user."""
            identity = await self.auth.register(request.username, request.password)
            return UserResponse(id=identity.user_id, username=identity.username)

        @router.post("/login", response_model=LoginResponse)
        async def login(request: CredentialsRequest):
            """Exchange credentials for an access token."""
            token = await self.auth.login(request.username, request.password)
            return LoginResponse(token=token)

        @router.get("/incidents", response_model=List[Incident])
        async def list_incidents(identity: Identity = Depends(current_identity)):
            return await self.records.list_all()

        @router.get("/incidents/{incident_id}", response_model=Incident)
        async def get_incident(
            incident_id: int = Path(..., ge=MIN_INCIDENT_ID, le=MAX_INCIDENT_ID),
            identity: Identity = Depends(current_identity),
        ):
            return await self.records.get_by_id(incident_id)

        @router.post("/incidents", response_model=Incident, status_code=status.HTTP_201_CREATED)
        async def create_incident(
            fields: IncidentFields,
            identity: Identity = Depends(current_identity),
        ):
            return await self.records.create(fields)

        @router.put("/incidents/{incident_id}", response_model=Incident)
        async def update_incident(
            fields: IncidentFields,
            incident_id: int = Path(..., ge=MIN_INCIDENT_ID, le=MAX_INCIDENT_ID),
            identity: Identity = Depends(current_identity),
        ):
            return await self.records.update(incident_id, fields)

        @router.delete("/incidents/{incident_id}", response_model=DeleteResponse)
        async def delete_incident(
            incident_id: int = Path(..., ge=MIN_INCIDENT_ID, le=MAX_INCIDENT_ID),
            identity: Identity = Depends(current_identity),
        ):
            await self.records.delete(incident_id)
            return DeleteResponse(message=f"Incident with ID {incident_id} deleted.")

        self.app.include_router(router, prefix=self.config.api_prefix)

    async def _check_dependencies(self):
        """Check incidents service dependencies."""
        return {
            "postgres": "ok" if await self.persistence.health_check() else "error",
            "redis": "ok" if await self.cache.health_check() else "error",
        }

    async def start(self):
        """Start incidents service components."""
        await self.persistence.start()
        await self.cache.start()
        self.logger.info("Incidents service started", port=self.config.port)

    async def stop(self):
        """Stop incidents service components."""
        await self.cache.stop()
        await self.persistence.stop()
        self.logger.info("Incidents service stopped")


def create_app():
    """Create incidents service application."""
    service = IncidentsService()
    return service.app


if __name__ == "__main__":
    service = IncidentsService()
    service.run()
