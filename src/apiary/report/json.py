"""
JSON views of stored requests for the CLI's --json output.

Payloads use the same field names as the backing document.
"""

import json
from typing import Any, Iterable

from apiary.report.tree import build_path_tree, sub_kind
from apiary.schema import Request, Response


def response_to_dict(response: Response) -> dict[str, Any]:
    return {
        "sent_at": response.sent_at.isoformat(),
        "received_at": response.received_at.isoformat(),
        "response": response.response.model_dump(mode="json", by_alias=True),
    }


def request_to_dict(request: Request, include_history: bool = True) -> dict[str, Any]:
    """Convert a request (and optionally its history) to a dictionary."""
    result: dict[str, Any] = {
        "id": request.id,
        "kind": request.kind,
        "path": request.path,
        "request": request.data.model_dump(mode="json", by_alias=True),
    }
    if include_history:
        result["history"] = [response_to_dict(r) for r in request.responses]
    return result


def build_list_dict(requests: Iterable[Request]) -> dict[str, Any]:
    """
    Build the listing view: the path tree plus a preview of each request.

    Returns:
        {"tree": {"ids": [...], "dirs": {...}},
         "requests": {id: {"kind", "sub_kind", "path", "responses"}}}
    """
    requests = list(requests)
    return {
        "tree": build_path_tree(requests).to_dict(),
        "requests": {
            r.id: {
                "kind": r.kind,
                "sub_kind": sub_kind(r),
                "path": r.path,
                "responses": len(r.responses),
            }
            for r in requests
        },
    }


def to_json(data: Any, indent: int = 2) -> str:
    """Serialize a view to JSON text."""
    return json.dumps(data, indent=indent, ensure_ascii=False, default=str)
