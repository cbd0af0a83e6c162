from __future__ import annotations

import re
import secrets
from datetime import datetime
from typing import Optional, TypedDict

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"
TASK_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED)

OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"
_OBJECT_ID_RE = re.compile(OBJECT_ID_PATTERN)


# PUBLIC_INTERFACE
def new_object_id() -> str:
    """Return a fresh opaque identifier: 24 lowercase hex characters."""
    return secrets.token_hex(12)


# PUBLIC_INTERFACE
def is_valid_object_id(value: object) -> bool:
    """True when value has the identifier format; says nothing about existence."""
    return isinstance(value, str) and _OBJECT_ID_RE.match(value) is not None


# PUBLIC_INTERFACE
class UserEntity(TypedDict):
    """
    A registered user as seen by request handlers. Never carries the password hash.

    Fields:
    - id: Opaque 24-hex identifier
    - name: Display name
    - email: Lower-cased, unique email address
    - created_at / updated_at: Timestamps (UTC)
    """

    id: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


class UserCredentials(UserEntity):
    """A user record including the stored password hash; only the login path reads it."""

    password_hash: str


# PUBLIC_INTERFACE
class TaskEntity(TypedDict):
    """
    A task owned by exactly one user.

    Fields:
    - id: Opaque 24-hex identifier
    - owner: Id of the owning user, fixed at creation
    - title: Short title (1..100 chars, trimmed on input via schemas)
    - description: Optional detailed description
    - status: One of TASK_STATUSES
    - due_date: Optional due datetime
    - is_deleted: Soft-delete flag; deleted tasks are hidden from every read
    - created_at / updated_at: Timestamps (UTC)
    """

    id: str
    owner: str
    title: str
    description: Optional[str]
    status: str
    due_date: Optional[datetime]
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
