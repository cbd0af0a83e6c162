from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import Unauthenticated
from .models import UserEntity
from .repositories import UserRepository
from .security import CredentialService, TokenExpired, TokenError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _reject(message: str, reason: str) -> Unauthenticated:
    logger.info("Authentication rejected: %s", reason)
    return Unauthenticated(message, reason=reason)


# PUBLIC_INTERFACE
def parse_bearer(authorization: Optional[str]) -> str:
    """
    Extract the token from a raw Authorization header value.

    Raises:
        Unauthenticated: header absent or not of the form 'Bearer <token>'.
    """
    scheme, _, token = (authorization or "").strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _reject("Not authorized, no token", "missing_token")
    return token


# PUBLIC_INTERFACE
def resolve_identity(
    token: Optional[str],
    users: UserRepository,
    credentials: CredentialService,
) -> UserEntity:
    """
    Verify a bearer token and resolve its subject to a live user.

    Tokens cannot be revoked individually, so the user lookup on every request
    is what locks out deleted accounts.

    Raises:
        Unauthenticated: with reason missing_token, expired_token,
            invalid_token or user_not_found.
    """
    if not token:
        raise _reject("Not authorized, no token", "missing_token")
    try:
        claims = credentials.verify_token(token)
    except TokenExpired:
        raise _reject("Not authorized, token expired", "expired_token")
    except TokenError:
        raise _reject("Not authorized, invalid token", "invalid_token")

    user = users.get_public(claims.sub)
    if user is None:
        raise _reject("User not found", "user_not_found")
    return user


# PUBLIC_INTERFACE
def authenticate(
    authorization: Optional[str],
    users: UserRepository,
    credentials: CredentialService,
) -> UserEntity:
    """Resolve a raw Authorization header value to the calling user."""
    return resolve_identity(parse_bearer(authorization), users, credentials)


# PUBLIC_INTERFACE
def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> UserEntity:
    """
    FastAPI dependency returning the authenticated user for protected routes.

    bearer_scheme only declares the security scheme in OpenAPI; the raw
    Authorization header is parsed by parse_bearer.
    """
    state = request.app.state
    return authenticate(request.headers.get("Authorization"), state.users, state.credentials)
