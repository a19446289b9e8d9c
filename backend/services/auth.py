"""Bearer token verification for Supabase-issued JWTs."""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import jwt
from jwt import InvalidTokenError, PyJWKClient

from config import SUPABASE_JWKS_URL, SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_ISSUER

logger = logging.getLogger(__name__)


class AuthVerificationError(Exception):
    """The request carries no valid credentials."""


class AuthConfigurationError(Exception):
    """The server cannot verify credentials because auth is not configured."""


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller for one request."""
    user_id: str
    email: str = ""
    access_token: Optional[str] = None


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthVerificationError("Missing Authorization header")
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthVerificationError("Authorization header must be Bearer token")
    return parts[1].strip()


class SupabaseAuthVerifier:
    """Verifies RS256 access tokens against the project's JWKS endpoint."""

    def __init__(
        self,
        jwks_url: Optional[str] = SUPABASE_JWKS_URL,
        audience: Optional[str] = SUPABASE_JWT_AUDIENCE,
        issuer: Optional[str] = SUPABASE_JWT_ISSUER
    ):
        self.jwks_url = jwks_url
        self.audience = audience
        self.issuer = issuer
        self._jwks_clients: Dict[str, PyJWKClient] = {}

    def verify(self, authorization: Optional[str]) -> AuthContext:
        """
        Verify an Authorization header and return the caller's identity.

        Raises:
            AuthVerificationError: Missing, malformed or invalid token
            AuthConfigurationError: No JWKS URL configured
        """
        token = extract_bearer_token(authorization)
        if not self.jwks_url:
            raise AuthConfigurationError(
                "Supabase auth verification is not configured (missing SUPABASE_URL or SUPABASE_JWKS_URL)"
            )

        try:
            signing_key = self._jwks_client().get_signing_key_from_jwt(token)
            decode_kwargs: Dict[str, object] = {
                "key": signing_key.key,
                "algorithms": ["RS256"],
                "options": {"verify_aud": bool(self.audience)},
            }
            if self.audience:
                decode_kwargs["audience"] = self.audience
            if self.issuer:
                decode_kwargs["issuer"] = self.issuer
            claims = jwt.decode(token, **decode_kwargs)
        except InvalidTokenError as exc:
            logger.info(f"Rejected bearer token: {exc}")
            raise AuthVerificationError("Token verification failed") from exc
        except Exception as exc:
            logger.error(f"JWKS lookup failed: {exc}", exc_info=True)
            raise AuthVerificationError("Unable to verify token with Supabase JWKS") from exc

        user_id = claims.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise AuthVerificationError("Token missing subject claim")

        email = claims.get("email")
        return AuthContext(
            user_id=user_id,
            email=email if isinstance(email, str) else "",
            access_token=token
        )

    def _jwks_client(self) -> PyJWKClient:
        client = self._jwks_clients.get(self.jwks_url)
        if client is None:
            client = PyJWKClient(self.jwks_url)
            self._jwks_clients[self.jwks_url] = client
        return client
