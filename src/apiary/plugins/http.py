"""
HTTP plugin.

Requests are sent with httpx. Response headers are reduced to the first
value per name and sorted by name, so stored responses compare stably.
"""

import base64
import logging
from typing import Annotated, ClassVar, Iterable

import httpx

from apiary.plugins.base import Plugin, PluginContext, require_payload
from apiary.schema import KV, EntryData, Kind, NullAsEmpty

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class HTTPRequest(EntryData):
    """An HTTP call: method, url, body and request headers."""

    KIND: ClassVar[str] = Kind.HTTP.value

    url: str = ""
    method: str = "GET"
    body: str = ""
    headers: Annotated[tuple[KV, ...], NullAsEmpty] = ()


class HTTPResponse(EntryData):
    """Status code, body and headers of an HTTP response."""

    KIND: ClassVar[str] = Kind.HTTP.value

    code: int = 0
    body: str = ""
    headers: Annotated[tuple[KV, ...], NullAsEmpty] = ()


def to_kv(headers: Iterable[tuple[str, str]]) -> tuple[KV, ...]:
    """Keep the first value of each header name, sorted by name."""
    first: dict[str, str] = {}
    for key, value in headers:
        first.setdefault(key, value)
    return tuple(KV(key=key, value=first[key]) for key in sorted(first))


def decode_body(content: bytes) -> str:
    """Decode a body as UTF-8, falling back to base64 for binary content."""
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return base64.b64encode(content).decode("ascii")


def send_http(context: PluginContext, payload: EntryData) -> EntryData:
    """
    Perform an HTTP request.

    Any status code is a successful perform; only transport failures raise.

    Raises:
        httpx.HTTPError: On connection, timeout or protocol failures
    """
    payload = require_payload(payload, HTTPRequest)
    timeout = context.timeout_seconds or DEFAULT_TIMEOUT_SECONDS
    method = (payload.method or "GET").upper()

    logger.debug("%s %s", method, payload.url)
    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        response = client.request(
            method,
            payload.url,
            content=payload.body.encode("utf-8") if payload.body else None,
            headers=[(h.key, h.value) for h in payload.headers],
        )

    return HTTPResponse(
        code=response.status_code,
        body=decode_body(response.content),
        headers=to_kv(response.headers.multi_items()),
    )


plugin_http = Plugin(
    kind=Kind.HTTP.value,
    title="HTTP",
    request_type=HTTPRequest,
    response_type=HTTPResponse,
    perform=send_http,
)
