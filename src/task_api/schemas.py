from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .models import TASK_STATUSES, is_valid_object_id

# Shared type for incoming due dates which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]
TaskStatus = Literal["pending", "in-progress", "completed"]

TITLE_MAX_LENGTH = 100
PASSWORD_MIN_LENGTH = 6
DEFAULT_MAX_PAGE_SIZE = 100

T = TypeVar("T")


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize dueDate input into a datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - If value is a datetime, return as-is.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 0, 0, 0)

    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return datetime(d.year, d.month, d.day, 0, 0, 0)
            except ValueError as e:
                raise ValueError(
                    "Invalid dueDate format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e

    raise ValueError("Invalid type for dueDate; expected date, datetime, or ISO8601 string.")


def _check_title(value: Optional[str]) -> str:
    if value is None:
        raise ValueError("Title cannot be null")
    s = value.strip()
    if not s:
        raise ValueError("Title cannot be empty")
    if len(s) > TITLE_MAX_LENGTH:
        raise ValueError("Title is too long")
    return s


def _check_status(value: Optional[str]) -> str:
    if value not in TASK_STATUSES:
        raise ValueError("Invalid status value")
    return value


class ApiModel(BaseModel):
    """
    Base for wire models: camelCase on the wire, snake_case in Python, and
    unrecognized input fields dropped.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class UserRegister(ApiModel):
    """Body for POST /users."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"name": "Ada", "email": "ada@example.com", "password": "password123"}}
    )

    name: str = Field(..., description="Display name")
    email: EmailStr = Field(..., description="Unique email address (case-insensitive)")
    password: str = Field(..., description="Plain text password (will be hashed)")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("Name is required")
        return s

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < PASSWORD_MIN_LENGTH:
            raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
        return v


# PUBLIC_INTERFACE
class UserLogin(ApiModel):
    """Body for POST /users/login."""

    email: EmailStr
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required")
        return v


class UserOut(ApiModel):
    id: str
    name: str
    email: str


class AuthOut(UserOut):
    """Identity plus a freshly issued bearer token."""

    token: str
    expires_in: int = Field(..., description="Token lifetime in seconds")


# ---------------------------------------------------------------------------
# Tasks: inputs
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class TaskCreate(ApiModel):
    """
    Schema for creating a new task. Status defaults to pending.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Write tests",
                "description": "Make them pass",
                "status": "pending",
                "dueDate": "2025-12-31",
            }
        }
    )

    title: str = Field(..., description="Short title for the task (1..100 chars)")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    status: str = Field(default="pending", description="One of pending, in-progress, completed")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )

    @field_validator("title", mode="before")
    @classmethod
    def reject_null_title(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("Title cannot be null")
        return v

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _check_title(v)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return _check_status(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)


# PUBLIC_INTERFACE
class TaskQuickCreate(ApiModel):
    """Only a title; the created task always starts in-progress."""

    title: str

    @field_validator("title", mode="before")
    @classmethod
    def reject_null_title(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("Title cannot be null")
        return v

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _check_title(v)


# PUBLIC_INTERFACE
class TaskReplace(TaskCreate):
    """
    Full replacement (PUT). Title and status are required; description and
    dueDate are cleared when omitted.
    """

    status: str = Field(..., description="One of pending, in-progress, completed")


# PUBLIC_INTERFACE
class TaskPatch(ApiModel):
    """
    Partial update (PATCH). Only fields explicitly sent are applied; at least
    one recognized field must be present.
    """

    model_config = ConfigDict(
        json_schema_extra={"example": {"status": "completed"}}
    )

    title: Optional[str] = Field(default=None, description="Short title for the task")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    status: Optional[str] = Field(default=None, description="One of pending, in-progress, completed")
    due_date: Optional[datetime] = Field(default=None, description="Due date/time; null clears it")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> str:
        return _check_title(v)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> str:
        return _check_status(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)

    @model_validator(mode="after")
    def require_some_field(self) -> "TaskPatch":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self

    def changes(self) -> Dict[str, Any]:
        """Fields the caller actually sent, keyed by their Python names."""
        return self.model_dump(exclude_unset=True, by_alias=False)


class TaskIdParams(ApiModel):
    id: str

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not is_valid_object_id(v):
            raise ValueError("Invalid task ID")
        return v


# PUBLIC_INTERFACE
class TaskListQuery(ApiModel):
    """
    Query for GET /tasks. The upper bound on limit comes from the validation
    context key 'max_page_size'.
    """

    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
    status: Optional[str] = None
    search: Optional[str] = None

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v: Optional[int], info: ValidationInfo) -> Optional[int]:
        maximum = (info.context or {}).get("max_page_size", DEFAULT_MAX_PAGE_SIZE)
        if v is not None and v > maximum:
            raise ValueError(f"Limit must not exceed {maximum}")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_status(v)

    @field_validator("search")
    @classmethod
    def normalize_search(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


# PUBLIC_INTERFACE
class BulkDeleteQuery(ApiModel):
    """Query for DELETE /tasks: a status plus an explicit confirm=true."""

    status: str
    confirm: bool = Field(default=False, validate_default=True)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return _check_status(v)

    @field_validator("confirm", mode="before")
    @classmethod
    def require_confirmation(cls, v: Any) -> bool:
        if v is True or (isinstance(v, str) and v.strip().lower() == "true"):
            return True
        raise ValueError("Confirmation required: add ?confirm=true")


# ---------------------------------------------------------------------------
# Tasks: outputs
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class TaskOut(ApiModel):
    """
    Schema returned by the API for a task.
    """

    id: str = Field(..., description="Unique identifier of the task")
    owner: str = Field(..., description="Id of the owning user")
    title: str
    description: Optional[str] = None
    status: TaskStatus
    due_date: Optional[datetime] = None
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime


class DeletedTask(ApiModel):
    id: str


class ModifiedCount(ApiModel):
    modified_count: int


class PageMeta(ApiModel):
    """Pagination details; 'pages' and 'totalPages' carry the same number."""

    count: int
    total: int
    page: int
    limit: int
    pages: int
    total_pages: int


class Envelope(ApiModel, Generic[T]):
    """Success envelope: {"success": true, "data": ...}."""

    success: bool = True
    data: T


class PageEnvelope(ApiModel, Generic[T]):
    """Success envelope carrying a page of items and its meta block."""

    success: bool = True
    data: List[T]
    meta: PageMeta


class FieldViolation(BaseModel):
    field: str
    message: str


class ErrorDetail(BaseModel):
    message: str
    details: Optional[List[FieldViolation]] = None


class ErrorEnvelope(BaseModel):
    """Failure envelope, used for OpenAPI documentation of error responses."""

    success: bool = False
    error: ErrorDetail
