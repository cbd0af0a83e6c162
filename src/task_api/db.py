from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional, Tuple

from .models import TaskEntity, UserCredentials, UserEntity, new_object_id
from .repositories import (
    PATCHABLE_FIELDS,
    DuplicateKeyError,
    TaskRepository,
    UserRepository,
    next_timestamp,
    utcnow,
)


@dataclass(frozen=True)
class _TaskCols:
    table: str = "tasks"
    id: str = "id"
    owner: str = "owner"
    title: str = "title"
    description: str = "description"
    status: str = "status"
    due_date: str = "due_date"
    is_deleted: str = "is_deleted"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


@dataclass(frozen=True)
class _UserCols:
    table: str = "users"
    id: str = "id"
    name: str = "name"
    email: str = "email"
    password_hash: str = "password_hash"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


_T = _TaskCols()
_U = _UserCols()

_WRITABLE_TASK_COLUMNS = PATCHABLE_FIELDS | {_T.is_deleted}


def _dt_to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value is not None else None


def _text_to_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def _next_stamp(previous: Optional[str], now: str) -> Optional[str]:
    return _dt_to_text(next_timestamp(_text_to_dt(previous), _text_to_dt(now)))


class _SQLiteBase:
    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        # Same case folding and timestamp rules as the in-memory store.
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        conn.create_function("next_stamp", 2, _next_stamp)
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_U.table} (
                    {_U.id} TEXT PRIMARY KEY,
                    {_U.name} TEXT NOT NULL,
                    {_U.email} TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    {_U.password_hash} TEXT NOT NULL,
                    {_U.created_at} TEXT NOT NULL,
                    {_U.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_T.table} (
                    {_T.id} TEXT PRIMARY KEY,
                    {_T.owner} TEXT NOT NULL,
                    {_T.title} TEXT NOT NULL,
                    {_T.description} TEXT NULL,
                    {_T.status} TEXT NOT NULL DEFAULT 'pending',
                    {_T.due_date} TEXT NULL,
                    {_T.is_deleted} INTEGER NOT NULL DEFAULT 0,
                    {_T.created_at} TEXT NOT NULL,
                    {_T.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_T.table}_owner_live_created "
                f"ON {_T.table}({_T.owner}, {_T.is_deleted}, {_T.created_at})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_T.table}_owner_status ON {_T.table}({_T.owner}, {_T.status})"
            )


class SQLiteUserRepository(_SQLiteBase, UserRepository):
    """
    SQLite user store. The UNIQUE NOCASE index on email makes concurrent
    registrations resolve to one insert and one DuplicateKeyError.
    """

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserCredentials:
        return {
            "id": str(row[_U.id]),
            "name": str(row[_U.name]),
            "email": str(row[_U.email]),
            "password_hash": str(row[_U.password_hash]),
            "created_at": _text_to_dt(row[_U.created_at]),  # type: ignore
            "updated_at": _text_to_dt(row[_U.updated_at]),  # type: ignore
        }

    def create(self, name: str, email: str, password_hash: str) -> UserEntity:
        now = utcnow()
        user_id = new_object_id()
        try:
            with self._conn() as conn:
                conn.execute(
                    f"""
                    INSERT INTO {_U.table} ({_U.id}, {_U.name}, {_U.email}, {_U.password_hash},
                        {_U.created_at}, {_U.updated_at})
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (user_id, name, email.lower(), password_hash, _dt_to_text(now), _dt_to_text(now)),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateKeyError(f"email {email.lower()!r} already registered") from exc
        return {"id": user_id, "name": name, "email": email.lower(), "created_at": now, "updated_at": now}

    def get_by_email(self, email: str) -> Optional[UserCredentials]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_U.table} WHERE {_U.email} = ?", (email.lower(),)).fetchone()
            return self._row_to_user(row) if row else None

    def get_public(self, user_id: str) -> Optional[UserEntity]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_U.id}, {_U.name}, {_U.email}, {_U.created_at}, {_U.updated_at} "
                f"FROM {_U.table} WHERE {_U.id} = ?",
                (user_id,),
            ).fetchone()
            if not row:
                return None
            return {
                "id": str(row[_U.id]),
                "name": str(row[_U.name]),
                "email": str(row[_U.email]),
                "created_at": _text_to_dt(row[_U.created_at]),  # type: ignore
                "updated_at": _text_to_dt(row[_U.updated_at]),  # type: ignore
            }

    def delete(self, user_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_U.table} WHERE {_U.id} = ?", (user_id,))
            return cur.rowcount > 0


class SQLiteTaskRepository(_SQLiteBase, TaskRepository):
    """
    SQLite task store. Every mutation is a single UPDATE whose WHERE clause
    carries the owner and deletion filters.
    """

    def __init__(self, db_path: str, max_page_size: int = 100) -> None:
        TaskRepository.__init__(self, max_page_size)
        _SQLiteBase.__init__(self, db_path)

    @staticmethod
    def _row_to_entity(row: sqlite3.Row) -> TaskEntity:
        return {
            "id": str(row[_T.id]),
            "owner": str(row[_T.owner]),
            "title": str(row[_T.title]),
            "description": row[_T.description] if row[_T.description] is not None else None,
            "status": str(row[_T.status]),
            "due_date": _text_to_dt(row[_T.due_date]),
            "is_deleted": bool(row[_T.is_deleted]),
            "created_at": _text_to_dt(row[_T.created_at]),  # type: ignore
            "updated_at": _text_to_dt(row[_T.updated_at]),  # type: ignore
        }

    @staticmethod
    def _assignments(changes: Dict[str, Any]) -> Tuple[str, List[Any]]:
        columns: List[str] = []
        values: List[Any] = []
        for key, value in changes.items():
            if key not in _WRITABLE_TASK_COLUMNS:
                raise ValueError(f"column {key!r} is not writable")
            columns.append(f"{key} = ?")
            if key == _T.due_date:
                value = _dt_to_text(value)
            elif key == _T.is_deleted:
                value = 1 if value else 0
            values.append(value)
        columns.append(f"{_T.updated_at} = next_stamp({_T.updated_at}, ?)")
        values.append(_dt_to_text(utcnow()))
        return ", ".join(columns), values

    def _insert(self, entity: TaskEntity) -> TaskEntity:
        with self._conn() as conn:
            conn.execute(
                f"""
                INSERT INTO {_T.table} ({_T.id}, {_T.owner}, {_T.title}, {_T.description}, {_T.status},
                    {_T.due_date}, {_T.is_deleted}, {_T.created_at}, {_T.updated_at})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entity["id"],
                    entity["owner"],
                    entity["title"],
                    entity["description"],
                    entity["status"],
                    _dt_to_text(entity["due_date"]),
                    1 if entity["is_deleted"] else 0,
                    _dt_to_text(entity["created_at"]),
                    _dt_to_text(entity["updated_at"]),
                ),
            )
        return entity.copy()

    def _get(self, owner_id: str, task_id: str) -> Optional[TaskEntity]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT * FROM {_T.table} WHERE {_T.id} = ? AND {_T.owner} = ? AND {_T.is_deleted} = 0",
                (task_id, owner_id),
            ).fetchone()
            return self._row_to_entity(row) if row else None

    def _update(self, owner_id: str, task_id: str, changes: Dict[str, Any]) -> Optional[TaskEntity]:
        assignments, values = self._assignments(changes)
        with self._conn() as conn:
            cur = conn.execute(
                f"""
                UPDATE {_T.table} SET {assignments}
                WHERE {_T.id} = ? AND {_T.owner} = ? AND {_T.is_deleted} = 0
                """,
                [*values, task_id, owner_id],
            )
            if cur.rowcount == 0:
                return None
            # Same transaction as the UPDATE, so this reads our own write.
            row = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (task_id,)).fetchone()
            return self._row_to_entity(row) if row else None

    def _update_many(
        self,
        owner_id: str,
        changes: Dict[str, Any],
        *,
        status: Optional[str] = None,
        status_not: Optional[str] = None,
    ) -> int:
        assignments, values = self._assignments(changes)
        clauses = [f"{_T.owner} = ?", f"{_T.is_deleted} = 0"]
        params: List[Any] = [owner_id]
        if status is not None:
            clauses.append(f"{_T.status} = ?")
            params.append(status)
        if status_not is not None:
            clauses.append(f"{_T.status} != ?")
            params.append(status_not)
        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE {_T.table} SET {assignments} WHERE {' AND '.join(clauses)}",
                [*values, *params],
            )
            return cur.rowcount

    def _list(
        self, owner_id: str, status: Optional[str], search: Optional[str], offset: int, limit: int
    ) -> Tuple[List[TaskEntity], int]:
        clauses = [f"{_T.owner} = ?", f"{_T.is_deleted} = 0"]
        params: List[Any] = [owner_id]

        if status is not None:
            clauses.append(f"{_T.status} = ?")
            params.append(status)

        if search:
            clauses.append(f"instr(casefold({_T.title}), ?) > 0")
            params.append(search.casefold())

        where_sql = f"WHERE {' AND '.join(clauses)}"

        with self._conn() as conn:
            count_row = conn.execute(
                f"SELECT COUNT(*) as cnt FROM {_T.table} {where_sql}", params
            ).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            rows = conn.execute(
                f"""
                SELECT * FROM {_T.table}
                {where_sql}
                ORDER BY {_T.created_at} DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                [*params, limit, offset],
            ).fetchall()
            return [self._row_to_entity(r) for r in rows], total
