from datetime import datetime

import pytest

from task_api.errors import ValidationFailure
from task_api.schemas import (
    BulkDeleteQuery,
    TaskCreate,
    TaskIdParams,
    TaskListQuery,
    TaskPatch,
    UserRegister,
)
from task_api.validation import RawRequest, RequestSchema, validate_request

VALID_ID = "5f0c3a9e1d2b4c6a8e0f1a2b"


def violations(schema: RequestSchema, raw: RawRequest, context=None):
    with pytest.raises(ValidationFailure) as info:
        validate_request(schema, raw, context)
    return info.value.details


def test_body_is_coerced():
    result = validate_request(
        RequestSchema(body=TaskCreate),
        RawRequest(body={"title": "  Buy milk  ", "dueDate": "2025-01-31"}),
    )
    task = result.body
    assert task.title == "Buy milk"
    assert task.status == "pending"
    assert task.due_date == datetime(2025, 1, 31)
    assert result.params is None
    assert result.query is None


def test_due_date_accepts_utc_designator():
    body = TaskCreate.model_validate({"title": "x", "dueDate": "2025-01-31T13:45:00Z"})
    assert body.due_date.utcoffset().total_seconds() == 0
    assert body.due_date.hour == 13


def test_every_violation_reported_in_part_order():
    schema = RequestSchema(body=TaskCreate, params=TaskIdParams, query=TaskListQuery)
    raw = RawRequest(
        body={"status": "done", "dueDate": "tomorrow"},
        params={"id": "xyz"},
        query={"page": "0", "limit": "many"},
    )
    details = violations(schema, raw)
    assert [d["field"] for d in details] == [
        "body.title",
        "body.status",
        "body.dueDate",
        "params.id",
        "query.page",
        "query.limit",
    ]
    assert details[0]["message"] == "Title is required"
    assert details[1]["message"] == "Invalid status value"
    assert details[3]["message"] == "Invalid task ID"


def test_missing_body_reads_as_empty_object():
    details = violations(RequestSchema(body=TaskCreate), RawRequest(body=None))
    assert details == [{"field": "body.title", "message": "Title is required"}]


def test_non_object_body_is_rejected():
    details = violations(RequestSchema(body=TaskCreate), RawRequest(body=["not", "an", "object"]))
    assert len(details) == 1
    assert details[0]["field"] == "body"


def test_undeclared_parts_are_not_validated():
    result = validate_request(RequestSchema(), RawRequest(body={"anything": 1}, query={"page": "nope"}))
    assert result.body is None and result.params is None and result.query is None


@pytest.mark.parametrize(
    "title,message",
    [
        (None, "Title cannot be null"),
        ("   ", "Title cannot be empty"),
        ("x" * 101, "Title is too long"),
    ],
)
def test_title_rules(title, message):
    details = violations(RequestSchema(body=TaskCreate), RawRequest(body={"title": title}))
    assert details == [{"field": "body.title", "message": message}]


def test_title_at_max_length_is_accepted():
    result = validate_request(RequestSchema(body=TaskCreate), RawRequest(body={"title": "x" * 100}))
    assert len(result.body.title) == 100


class TestListQuery:
    def test_defaults(self):
        q = validate_request(RequestSchema(query=TaskListQuery), RawRequest(query={})).query
        assert q.page == 1
        assert q.limit is None
        assert q.status is None
        assert q.search is None

    def test_coerces_strings(self):
        raw = RawRequest(query={"page": "3", "limit": "25", "status": "completed", "search": "  report "})
        q = validate_request(RequestSchema(query=TaskListQuery), raw).query
        assert (q.page, q.limit, q.status, q.search) == (3, 25, "completed", "report")

    def test_blank_search_is_dropped(self):
        q = validate_request(RequestSchema(query=TaskListQuery), RawRequest(query={"search": "   "})).query
        assert q.search is None

    def test_limit_bound_comes_from_context(self):
        schema = RequestSchema(query=TaskListQuery)
        details = violations(schema, RawRequest(query={"limit": "30"}), context={"max_page_size": 20})
        assert details == [{"field": "query.limit", "message": "Limit must not exceed 20"}]
        q = validate_request(schema, RawRequest(query={"limit": "20"}), context={"max_page_size": 20}).query
        assert q.limit == 20

    def test_invalid_status(self):
        details = violations(RequestSchema(query=TaskListQuery), RawRequest(query={"status": "archived"}))
        assert details == [{"field": "query.status", "message": "Invalid status value"}]


class TestPatch:
    def test_empty_patch_is_rejected(self):
        details = violations(RequestSchema(body=TaskPatch), RawRequest(body={}))
        assert details == [{"field": "body", "message": "At least one field must be provided for update"}]

    def test_only_sent_fields_are_changes(self):
        patch = TaskPatch.model_validate({"status": "completed", "owner": "someone-else"})
        assert patch.changes() == {"status": "completed"}

    def test_explicit_null_due_date_is_a_change(self):
        patch = TaskPatch.model_validate({"dueDate": None})
        assert patch.changes() == {"due_date": None}

    def test_null_title_is_rejected(self):
        details = violations(RequestSchema(body=TaskPatch), RawRequest(body={"title": None}))
        assert details == [{"field": "body.title", "message": "Title cannot be null"}]


class TestBulkDeleteQuery:
    @pytest.mark.parametrize("confirm", ["true", "TRUE", True])
    def test_confirmed(self, confirm):
        q = BulkDeleteQuery.model_validate({"status": "completed", "confirm": confirm})
        assert q.confirm is True
        assert q.status == "completed"

    @pytest.mark.parametrize("query", [{"status": "pending"}, {"status": "pending", "confirm": "1"}])
    def test_unconfirmed(self, query):
        details = violations(RequestSchema(query=BulkDeleteQuery), RawRequest(query=query))
        assert details == [{"field": "query.confirm", "message": "Confirmation required: add ?confirm=true"}]


class TestUserRegister:
    def test_email_is_normalized(self):
        user = UserRegister.model_validate({"name": " Ada ", "email": "  Ada@Example.COM ", "password": "secret1"})
        assert user.email == "ada@example.com"
        assert user.name == "Ada"

    def test_short_password_and_bad_email(self):
        details = violations(
            RequestSchema(body=UserRegister),
            RawRequest(body={"name": "Ada", "email": "not-an-email", "password": "123"}),
        )
        fields = [d["field"] for d in details]
        assert fields == ["body.email", "body.password"]
        assert details[1]["message"] == "Password must be at least 6 characters"

    def test_blank_name(self):
        details = violations(
            RequestSchema(body=UserRegister),
            RawRequest(body={"name": "  ", "email": "ada@example.com", "password": "secret1"}),
        )
        assert details == [{"field": "body.name", "message": "Name is required"}]


def test_task_id_params():
    assert TaskIdParams.model_validate({"id": VALID_ID}).id == VALID_ID
    details = violations(RequestSchema(params=TaskIdParams), RawRequest(params={"id": VALID_ID[:-1]}))
    assert details == [{"field": "params.id", "message": "Invalid task ID"}]
