"""
Auth Gateway: credential registration, login and bearer-token verification.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from shared.errors import InvalidCredentials, InvalidToken, MissingToken, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .models import Identity


class AuthGateway:
    """Issues and verifies access tokens against the Credential Store.

    Tokens are stateless HS256 JWTs carrying ``userId`` and ``username``;
    any correctly signed, unexpired token is accepted.
    """

    def __init__(
        self,
        credentials,
        secret: str,
        *,
        algorithm: str = "HS256",
        token_ttl_seconds: int = 3600,
        bcrypt_rounds: int = 12,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        if bcrypt_rounds < 10:
            raise ValueError("bcrypt_rounds must be at least 10")

        self.credentials = credentials
        self.secret = secret
        self.algorithm = algorithm
        self.token_ttl_seconds = token_ttl_seconds
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("incidents.auth")
        self.pwd_context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=bcrypt_rounds,
        )

    async def register(self, username: str, password: str) -> Identity:
        """Create a credential and return the new identity.

        Raises DuplicateUsername if the username is taken.
        """
        if not username or not password:
            raise ValidationError("Username and password are required.")

        password_hash = await asyncio.to_thread(self.pwd_context.hash, password)
        user = await self.credentials.create_user(username, password_hash)

        self._record("register", "ok")
        self.logger.info("User registered", user_id=user.id, username=user.username)
        return Identity(user_id=user.id, username=user.username)

    async def login(self, username: str, password: str) -> str:
        """Check a username/password pair and issue an access token."""
        if not username or not password:
            raise ValidationError("Username and password are required.")

        user = await self.credentials.get_user_by_username(username)
        if user is None:
            # Spend the same hashing time as a real check.
            await asyncio.to_thread(self.pwd_context.dummy_verify)
            self._record("login", "unknown_user")
            raise InvalidCredentials()

        if not await asyncio.to_thread(self._verify_password, password, user.password_hash):
            self._record("login", "bad_password")
            raise InvalidCredentials()

        self._record("login", "ok")
        self.logger.info("User logged in", user_id=user.id, username=user.username)
        return self.issue_token(Identity(user_id=user.id, username=user.username))

    def issue_token(self, identity: Identity) -> str:
        """Sign a token for ``identity`` expiring after ``token_ttl_seconds``."""
        now = int(self.clock())
        claims = {
            "sub": str(identity.user_id),
            "userId": identity.user_id,
            "username": identity.username,
            "iat": now,
            "exp": now + self.token_ttl_seconds,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def authenticate(self, token: Optional[str]) -> Identity:
        """Verify a bearer token and return the identity it carries."""
        if not token:
            self._record("authenticate", "missing")
            raise MissingToken()

        try:
            claims: Dict[str, Any] = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require_exp": True},
            )
        except JWTError as e:
            self._record("authenticate", "invalid")
            self.logger.info("Token rejected", error=str(e))
            raise InvalidToken()

        user_id = claims.get("userId")
        username = claims.get("username")
        if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(username, str):
            self._record("authenticate", "invalid")
            raise InvalidToken()

        self._record("authenticate", "ok")
        return Identity(user_id=user_id, username=username)

    def _verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return self.pwd_context.verify(password, password_hash)
        except ValueError:
            # Stored hash is not a recognised bcrypt hash.
            self.logger.warning("Unreadable password hash in credential store")
            return False

    def _record(self, event: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_auth_event(event, outcome)
