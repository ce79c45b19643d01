from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging
import secrets

import jwt
from fastapi import Request, Response
from passlib.context import CryptContext

from .db import Database

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_CACHE_COOKIE = "session_data"


class AuthConfigurationError(Exception):
    """Raised when a feature is used that the provider was not configured with."""


@dataclass(frozen=True)
class AuthOptions:
    password_login_enabled: bool = True
    session_cache_enabled: bool = True
    session_cache_max_age_seconds: int = 60 * 5  # 5 minutes


class AuthProvider:
    """
    Configured authentication backend.

    Credential hashing is delegated to passlib, the client-side session cache
    to signed JWT cookies, and persistence to the given ``Database``. Routes
    use this handle; sign-in flows and session storage are not implemented
    here.
    """

    def __init__(self, database: Database, options: AuthOptions, secret: str):
        self.database = database
        self.options = options
        self._secret = secret
        # Use pbkdf2_sha256 to avoid external bcrypt backend issues in some environments
        self._pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

    def _require_password_login(self) -> None:
        if not self.options.password_login_enabled:
            raise AuthConfigurationError("Password login is not enabled")

    def hash_password(self, password: str) -> str:
        self._require_password_login()
        return self._pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        self._require_password_login()
        return self._pwd_context.verify(plain_password, hashed_password)

    def encode_session_cache(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> str:
        """
        Sign session data for the client-side session cache cookie.

        Args:
            payload: JSON-serializable session data
            now: Issue time (defaults to the current UTC time)

        Returns:
            str: Token that expires after ``session_cache_max_age_seconds``

        Raises:
            AuthConfigurationError: If the session cache is disabled
        """
        if not self.options.session_cache_enabled:
            raise AuthConfigurationError("Session cache is not enabled")
        issued_at = now or datetime.now(timezone.utc)
        expire = issued_at + timedelta(seconds=self.options.session_cache_max_age_seconds)
        claims = {**payload, "iat": issued_at, "exp": expire}
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def decode_session_cache(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Read a session cache cookie.

        Returns:
            dict or None: The cached session data, or None if the cache is
            disabled or the token is expired or invalid
        """
        if not self.options.session_cache_enabled:
            return None
        try:
            claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.debug("Session cache cookie expired")
            return None
        except jwt.PyJWTError as e:
            logger.warning("Rejected session cache cookie: %s", e)
            return None
        claims.pop("iat", None)
        claims.pop("exp", None)
        return claims

    def set_session_cache_cookie(self, response: Response, payload: Dict[str, Any]) -> None:
        """Attach the signed session cache to a response as an HTTP-only cookie."""
        response.set_cookie(
            SESSION_CACHE_COOKIE,
            self.encode_session_cache(payload),
            max_age=self.options.session_cache_max_age_seconds,
            httponly=True,
            samesite="lax",
        )

    def get_cached_session(self, request: Request) -> Optional[Dict[str, Any]]:
        token = request.cookies.get(SESSION_CACHE_COOKIE)
        if not token:
            return None
        return self.decode_session_cache(token)


def create_auth(
    database: Database,
    options: AuthOptions = AuthOptions(),
    secret: Optional[str] = None,
) -> AuthProvider:
    """
    Build the auth provider for a persistence handle.

    When no secret is given a random one is generated, so cached sessions
    do not survive a restart.
    """
    if secret is None:
        secret = secrets.token_urlsafe(32)
        logger.debug("No session secret configured; generated a per-process secret")
    provider = AuthProvider(database, options, secret)
    logger.info(
        "Auth provider configured: password_login=%s session_cache=%s max_age=%ss",
        options.password_login_enabled,
        options.session_cache_enabled,
        options.session_cache_max_age_seconds,
    )
    return provider
