"""
Request validation: run a request's body, path params and query string through
declared pydantic models and either hand the handler coerced models or fail
with every violation found.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

from fastapi import Request
from pydantic import BaseModel, ValidationError

from .errors import FieldError, MalformedPayload, ValidationFailure

PARTS = ("body", "params", "query")


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class RequestSchema:
    """
    The declared shape of one operation's input. Any part left as None is not
    validated and is None in the result.
    """

    body: Optional[Type[BaseModel]] = None
    params: Optional[Type[BaseModel]] = None
    query: Optional[Type[BaseModel]] = None


@dataclass(frozen=True)
class RawRequest:
    body: Any = None
    params: Mapping[str, Any] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ValidatedRequest:
    """Coerced input handed to handlers in place of the raw request."""

    body: Any = None
    params: Any = None
    query: Any = None


def _humanize(name: str) -> str:
    return name[:1].upper() + name[1:]


def _message(error: Dict[str, Any]) -> str:
    kind = error.get("type")
    loc = error.get("loc") or ()
    if kind == "missing" and loc:
        return f"{_humanize(str(loc[-1]))} is required"
    if kind == "value_error":
        cause = (error.get("ctx") or {}).get("error")
        if cause is not None:
            return str(cause)
    return str(error.get("msg", "Invalid value"))


# PUBLIC_INTERFACE
def format_errors(part: str, exc: ValidationError) -> List[FieldError]:
    """Flatten a pydantic ValidationError into [{field, message}] rooted at part."""
    details: List[FieldError] = []
    for error in exc.errors():
        path = ".".join([part, *(str(p) for p in error.get("loc", ()))])
        details.append({"field": path, "message": _message(error)})
    return details


# PUBLIC_INTERFACE
def validate_request(
    schema: RequestSchema,
    raw: RawRequest,
    context: Optional[Dict[str, Any]] = None,
) -> ValidatedRequest:
    """
    Validate every declared part of raw against schema.

    All parts are checked even after one fails, so the resulting
    ValidationFailure lists every violation in body, params, query order.

    Raises:
        ValidationFailure: if any part has at least one violation.
    """
    details: List[FieldError] = []
    result: Dict[str, Any] = {}
    for part in PARTS:
        model = getattr(schema, part)
        if model is None:
            result[part] = None
            continue
        value = getattr(raw, part)
        if part == "body" and value is None:
            value = {}
        try:
            result[part] = model.model_validate(value, context=context)
        except ValidationError as exc:
            details.extend(format_errors(part, exc))
    if details:
        raise ValidationFailure(details)
    return ValidatedRequest(**result)


async def read_json_body(request: Request) -> Any:
    """Decode the request body as JSON; an empty body reads as None."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise MalformedPayload() from exc


# PUBLIC_INTERFACE
def validated(schema: RequestSchema) -> Callable[[Request], Awaitable[ValidatedRequest]]:
    """
    Return a FastAPI dependency that validates the current request against schema.

    Usage:
        @router.post("", ...)
        def create(data: ValidatedRequest = Depends(validated(CREATE_TASK)), ...): ...
    """

    async def _validate(request: Request) -> ValidatedRequest:
        body = await read_json_body(request) if schema.body is not None else None
        raw = RawRequest(body=body, params=dict(request.path_params), query=dict(request.query_params))
        settings = request.app.state.settings
        return validate_request(schema, raw, context={"max_page_size": settings.max_page_size})

    return _validate
