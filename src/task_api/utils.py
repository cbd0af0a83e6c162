from __future__ import annotations

from typing import Any, Dict, Optional

from .repositories import TaskPage


# PUBLIC_INTERFACE
def envelope(data: Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Wrap a handler result in the success envelope.

    Returns:
        {"success": True, "data": data} plus "meta" when given.
    """
    body: Dict[str, Any] = {"success": True, "data": data}
    if meta is not None:
        body["meta"] = meta
    return body


# PUBLIC_INTERFACE
def page_meta(page: TaskPage) -> Dict[str, Any]:
    """
    Build the pagination meta block for list endpoints.

    'pages' and 'total_pages' are the same number, never below 1.
    """
    return {
        "count": page.count,
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "pages": page.total_pages,
        "total_pages": page.total_pages,
    }
