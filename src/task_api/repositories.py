from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ValidationFailure
from .models import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    TaskEntity,
    UserCredentials,
    UserEntity,
    is_valid_object_id,
    new_object_id,
)
from .settings import Settings

# Fields a caller may change on an existing task; everything else is owned by the store.
PATCHABLE_FIELDS = frozenset({"title", "description", "status", "due_date"})


class DuplicateKeyError(Exception):
    """A write collided with a unique key (e.g. an email already registered)."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Largest row offset a backend is asked to skip; SQLite integers are 64-bit.
MAX_OFFSET = 2 ** 62


def next_timestamp(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Return a write timestamp strictly later than previous, even within one clock tick."""
    stamp = now or utcnow()
    if previous is not None and stamp <= previous:
        return previous + timedelta(microseconds=1)
    return stamp


@dataclass(frozen=True)
class ListQuery:
    """
    Query parameters for listing tasks.
    """
    page: int = 1
    limit: int = 10
    status: Optional[str] = None
    search: Optional[str] = None


@dataclass(frozen=True)
class TaskPage:
    """One page of a task listing plus the numbers a client needs to page through it."""

    items: List[TaskEntity]
    total: int
    page: int
    limit: int

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.limit))


def _public(user: Mapping[str, Any]) -> UserEntity:
    return {  # type: ignore[return-value]
        key: value for key, value in user.items() if key != "password_hash"
    }


# PUBLIC_INTERFACE
class UserRepository(ABC):
    """Abstract repository contract for user storage backends."""

    @abstractmethod
    def create(self, name: str, email: str, password_hash: str) -> UserEntity:
        """
        Insert a user. Email uniqueness is checked atomically with the insert.

        Raises:
            DuplicateKeyError: the email is already registered.
        """

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[UserCredentials]:
        """Return the user including the password hash, or None."""

    @abstractmethod
    def get_public(self, user_id: str) -> Optional[UserEntity]:
        """Return the user without the password hash, or None."""

    @abstractmethod
    def delete(self, user_id: str) -> bool:
        """Hard-delete a user. Administrative and test use only."""


# PUBLIC_INTERFACE
class TaskRepository(ABC):
    """
    Task storage scoped to an owner.

    Every public operation takes the authenticated owner's id first and only
    ever sees that owner's tasks; reads and writes also skip soft-deleted
    tasks. Foreign, deleted and missing tasks all look the same: None / False.

    Backends implement the underscore primitives. Each primitive that mutates
    must match and write in one atomic step.
    """

    def __init__(self, max_page_size: int = 100) -> None:
        self.max_page_size = max_page_size

    # -- primitives -------------------------------------------------------

    @abstractmethod
    def _insert(self, entity: TaskEntity) -> TaskEntity:
        """Persist a new entity and return it."""

    @abstractmethod
    def _get(self, owner_id: str, task_id: str) -> Optional[TaskEntity]:
        """Return the owned, non-deleted task or None."""

    @abstractmethod
    def _update(self, owner_id: str, task_id: str, changes: Dict[str, Any]) -> Optional[TaskEntity]:
        """Apply changes to the owned, non-deleted task; None if nothing matched."""

    @abstractmethod
    def _update_many(
        self,
        owner_id: str,
        changes: Dict[str, Any],
        *,
        status: Optional[str] = None,
        status_not: Optional[str] = None,
    ) -> int:
        """Apply changes to every owned, non-deleted task matching the status filter."""

    @abstractmethod
    def _list(
        self, owner_id: str, status: Optional[str], search: Optional[str], offset: int, limit: int
    ) -> Tuple[List[TaskEntity], int]:
        """Return (page of matches newest first, total matches)."""

    # -- operations -------------------------------------------------------

    @staticmethod
    def _require_id(task_id: str) -> None:
        if not is_valid_object_id(task_id):
            raise ValidationFailure.single("params.id", "Invalid task ID")

    def list(self, owner_id: str, query: Optional[ListQuery] = None) -> TaskPage:
        q = query or ListQuery()
        limit = min(max(q.limit, 1), self.max_page_size)
        page = max(q.page, 1)
        offset = min((page - 1) * limit, MAX_OFFSET)
        items, total = self._list(owner_id, q.status, q.search, offset, limit)
        return TaskPage(items=items, total=total, page=page, limit=limit)

    def get(self, owner_id: str, task_id: str) -> Optional[TaskEntity]:
        self._require_id(task_id)
        return self._get(owner_id, task_id)

    def create(
        self,
        owner_id: str,
        title: str,
        description: Optional[str] = None,
        status: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> TaskEntity:
        now = utcnow()
        entity: TaskEntity = {
            "id": new_object_id(),
            "owner": owner_id,
            "title": title,
            "description": description,
            "status": status or STATUS_PENDING,
            "due_date": due_date,
            "is_deleted": False,
            "created_at": now,
            "updated_at": now,
        }
        return self._insert(entity)

    def create_quick(self, owner_id: str, title: str) -> TaskEntity:
        return self.create(owner_id, title, status=STATUS_IN_PROGRESS)

    def replace(
        self,
        owner_id: str,
        task_id: str,
        title: str,
        status: str,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> Optional[TaskEntity]:
        """Overwrite every mutable field; omitted optionals are cleared."""
        self._require_id(task_id)
        changes = {"title": title, "status": status, "description": description, "due_date": due_date}
        return self._update(owner_id, task_id, changes)

    def patch(self, owner_id: str, task_id: str, fields: Mapping[str, Any]) -> Optional[TaskEntity]:
        """
        Merge the whitelisted subset of fields into the task.

        Raises:
            ValidationFailure: nothing patchable remains after whitelisting.
        """
        self._require_id(task_id)
        changes = {key: value for key, value in fields.items() if key in PATCHABLE_FIELDS}
        if not changes:
            raise ValidationFailure.single("body", "At least one field must be provided for update")
        return self._update(owner_id, task_id, changes)

    def soft_delete(self, owner_id: str, task_id: str) -> bool:
        self._require_id(task_id)
        return self._update(owner_id, task_id, {"is_deleted": True}) is not None

    def soft_delete_by_status(self, owner_id: str, status: str, confirmed: bool = False) -> int:
        """
        Soft-delete every owned task with the given status.

        Raises:
            ValidationFailure: confirmed is not True; nothing is touched.
        """
        if confirmed is not True:
            raise ValidationFailure.single("query.confirm", "Confirmation required: add ?confirm=true")
        return self._update_many(owner_id, {"is_deleted": True}, status=status)

    def complete_all(self, owner_id: str) -> int:
        return self._update_many(owner_id, {"status": STATUS_COMPLETED}, status_not=STATUS_COMPLETED)


class InMemoryUserRepository(UserRepository):
    """
    Thread-safe in-memory user store. Email uniqueness is enforced under the same
    lock as the insert.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._users: Dict[str, UserCredentials] = {}
        self._ids_by_email: Dict[str, str] = {}

    def create(self, name: str, email: str, password_hash: str) -> UserEntity:
        key = email.lower()
        now = utcnow()
        with self._lock:
            if key in self._ids_by_email:
                raise DuplicateKeyError(f"email {key!r} already registered")
            user: UserCredentials = {
                "id": new_object_id(),
                "name": name,
                "email": key,
                "password_hash": password_hash,
                "created_at": now,
                "updated_at": now,
            }
            self._users[user["id"]] = user
            self._ids_by_email[key] = user["id"]
        return _public(user)

    def get_by_email(self, email: str) -> Optional[UserCredentials]:
        with self._lock:
            user_id = self._ids_by_email.get(email.lower())
            user = self._users.get(user_id) if user_id else None
            return None if user is None else user.copy()

    def get_public(self, user_id: str) -> Optional[UserEntity]:
        with self._lock:
            user = self._users.get(user_id)
            return None if user is None else _public(user)

    def delete(self, user_id: str) -> bool:
        with self._lock:
            user = self._users.pop(user_id, None)
            if user is None:
                return False
            self._ids_by_email.pop(user["email"], None)
            return True


class InMemoryTaskRepository(TaskRepository):
    """
    Thread-safe in-memory task store suitable for testing and default runtime.
    """

    def __init__(self, max_page_size: int = 100) -> None:
        super().__init__(max_page_size)
        self._lock = RLock()
        self._items: Dict[str, TaskEntity] = {}

    @staticmethod
    def _visible(task: TaskEntity, owner_id: str) -> bool:
        return task["owner"] == owner_id and not task["is_deleted"]

    def _insert(self, entity: TaskEntity) -> TaskEntity:
        with self._lock:
            self._items[entity["id"]] = entity
            return entity.copy()

    def _get(self, owner_id: str, task_id: str) -> Optional[TaskEntity]:
        with self._lock:
            item = self._items.get(task_id)
            if item is None or not self._visible(item, owner_id):
                return None
            return item.copy()

    def _update(self, owner_id: str, task_id: str, changes: Dict[str, Any]) -> Optional[TaskEntity]:
        with self._lock:
            existing = self._items.get(task_id)
            if existing is None or not self._visible(existing, owner_id):
                return None
            updated = existing.copy()
            updated.update(changes)  # type: ignore[typeddict-item]
            updated["updated_at"] = next_timestamp(existing["updated_at"])
            self._items[task_id] = updated
            return updated.copy()

    def _update_many(
        self,
        owner_id: str,
        changes: Dict[str, Any],
        *,
        status: Optional[str] = None,
        status_not: Optional[str] = None,
    ) -> int:
        modified = 0
        with self._lock:
            now = utcnow()
            for task_id, task in list(self._items.items()):
                if not self._visible(task, owner_id):
                    continue
                if status is not None and task["status"] != status:
                    continue
                if status_not is not None and task["status"] == status_not:
                    continue
                updated = task.copy()
                updated.update(changes)  # type: ignore[typeddict-item]
                updated["updated_at"] = next_timestamp(task["updated_at"], now)
                self._items[task_id] = updated
                modified += 1
        return modified

    def _list(
        self, owner_id: str, status: Optional[str], search: Optional[str], offset: int, limit: int
    ) -> Tuple[List[TaskEntity], int]:
        with self._lock:
            items: Iterable[TaskEntity] = [t for t in self._items.values() if self._visible(t, owner_id)]

            if status is not None:
                items = [t for t in items if t["status"] == status]

            if search:
                needle = search.casefold()
                items = [t for t in items if needle in t["title"].casefold()]

            # Newest first; reversing insertion order first keeps ties newest-inserted first.
            ordered = sorted(reversed(list(items)), key=lambda t: t["created_at"], reverse=True)
            return [t.copy() for t in ordered[offset:offset + limit]], len(ordered)


# PUBLIC_INTERFACE
def build_repositories(settings: Settings) -> Tuple[UserRepository, TaskRepository]:
    """
    Factory returning the configured (users, tasks) repositories.
    - memory: in-memory stores (default)
    - sqlite: SQLite stores sharing one database file
    """
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteTaskRepository, SQLiteUserRepository

        return (
            SQLiteUserRepository(settings.sqlite_db_path),
            SQLiteTaskRepository(settings.sqlite_db_path, max_page_size=settings.max_page_size),
        )
    return InMemoryUserRepository(), InMemoryTaskRepository(max_page_size=settings.max_page_size)
