from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status

from ..auth import get_current_user
from ..errors import Conflict, Unauthenticated
from ..models import UserEntity
from ..ratelimit import limit_auth_attempts
from ..repositories import DuplicateKeyError, UserRepository
from ..schemas import AuthOut, Envelope, ErrorEnvelope, UserLogin, UserOut, UserRegister
from ..security import CredentialService, hash_password, verify_password
from ..utils import envelope
from ..validation import RequestSchema, ValidatedRequest, validated

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["users"],
)

REGISTER = RequestSchema(body=UserRegister)
LOGIN = RequestSchema(body=UserLogin)


def _get_users(request: Request) -> UserRepository:
    return request.app.state.users


def _get_credentials(request: Request) -> CredentialService:
    return request.app.state.credentials


def _auth_payload(user: UserEntity, credentials: CredentialService) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "token": credentials.issue_token(user["id"]),
        "expires_in": credentials.expires_in,
    }


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=Envelope[AuthOut],
    status_code=status.HTTP_201_CREATED,
    summary="Register",
    description="Create an account and return it with a bearer token.",
    dependencies=[Depends(limit_auth_attempts)],
    responses={
        201: {"description": "User registered"},
        400: {"model": ErrorEnvelope, "description": "Validation error or email already registered"},
        429: {"model": ErrorEnvelope, "description": "Too many attempts"},
    },
)
def register_user(
    data: ValidatedRequest = Depends(validated(REGISTER)),
    users: UserRepository = Depends(_get_users),
    credentials: CredentialService = Depends(_get_credentials),
) -> Dict[str, Any]:
    """
    Register a new user. Email uniqueness is ultimately decided by the store, so
    a registration racing another with the same email still gets a clean 400.
    """
    body: UserRegister = data.body
    if users.get_by_email(body.email) is not None:
        raise Conflict("User already exists")
    try:
        user = users.create(body.name, body.email, hash_password(body.password))
    except DuplicateKeyError:
        logger.info("Concurrent registration lost for %s", body.email)
        raise Conflict("User already exists")
    logger.info("Registered user %s", user["id"])
    return envelope(_auth_payload(user, credentials))


# PUBLIC_INTERFACE
@router.post(
    "/login",
    response_model=Envelope[AuthOut],
    summary="Login",
    description="Exchange email and password for a bearer token.",
    dependencies=[Depends(limit_auth_attempts)],
    responses={
        200: {"description": "Authenticated"},
        401: {"model": ErrorEnvelope, "description": "Invalid email or password"},
        429: {"model": ErrorEnvelope, "description": "Too many attempts"},
    },
)
def login_user(
    data: ValidatedRequest = Depends(validated(LOGIN)),
    users: UserRepository = Depends(_get_users),
    credentials: CredentialService = Depends(_get_credentials),
) -> Dict[str, Any]:
    body: UserLogin = data.body
    user = users.get_by_email(body.email)
    if user is None or not verify_password(body.password, user["password_hash"]):
        raise Unauthenticated("Invalid email or password", reason="bad_credentials")
    return envelope(_auth_payload(user, credentials))


# PUBLIC_INTERFACE
@router.get(
    "/me",
    response_model=Envelope[UserOut],
    summary="Current user",
    responses={401: {"model": ErrorEnvelope, "description": "Not authenticated"}},
)
def get_me(user: UserEntity = Depends(get_current_user)) -> Dict[str, Any]:
    """Return the authenticated user's identity."""
    return envelope({"id": user["id"], "name": user["name"], "email": user["email"]})
