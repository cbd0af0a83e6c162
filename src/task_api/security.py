"""Password hashing and bearer-token issuance/verification."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from pwdlib import PasswordHash
from pwdlib.exceptions import PwdlibError

# Tokens are only ever signed and accepted with this algorithm.
JWT_ALGORITHM = "HS256"

_password_hasher: Optional[PasswordHash] = None


def _get_password_hasher() -> PasswordHash:
    global _password_hasher
    if _password_hasher is None:
        _password_hasher = PasswordHash.recommended()
    return _password_hasher


# PUBLIC_INTERFACE
def hash_password(password: str) -> str:
    """Hash a plain text password with Argon2 (pwdlib's recommended hasher)."""
    return _get_password_hasher().hash(password)


# PUBLIC_INTERFACE
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its stored hash. Unrecognized hashes never verify."""
    try:
        return _get_password_hasher().verify(plain_password, hashed_password)
    except PwdlibError:
        return False


class TokenError(Exception):
    """Base class for bearer tokens that fail verification."""


class TokenExpired(TokenError):
    pass


class InvalidToken(TokenError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    """Decoded token payload."""

    sub: str
    iat: int
    exp: int


# PUBLIC_INTERFACE
class CredentialService:
    """
    Issues and verifies HS256 bearer tokens whose subject is a user id.

    Args:
        secret: Signing key.
        expires_in: Token lifetime in seconds.
    """

    def __init__(self, secret: str, expires_in: int = 86400) -> None:
        self._secret = secret
        self.expires_in = expires_in

    def issue_token(self, user_id: str, now: Optional[datetime] = None) -> str:
        issued = now or datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "sub": user_id,
            "iat": int(issued.timestamp()),
            "exp": int((issued + timedelta(seconds=self.expires_in)).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> TokenClaims:
        """
        Decode and validate a token, returning its claims.

        Raises:
            TokenExpired: the signature is valid but exp has passed.
            InvalidToken: bad signature, another algorithm (including 'none'),
                missing claims, or a malformed token.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidToken(str(exc)) from exc

        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise InvalidToken("Token subject is missing")
        return TokenClaims(sub=sub, iat=int(payload.get("iat", 0)), exp=int(payload["exp"]))
