"""
Entity model for apiary.

A Request is a user-authored, executable record (an HTTP call, a SQL query,
a Markdown note, ...) identified by an opaque id and placed in a slash
separated path for display. Its payload is an EntryData subclass selected by
the request's Kind. Every execution appends one Response to the request's
history.

All models are immutable. The store replaces a Request wholesale when it
changes, so values handed to callers are never mutated under them.
"""

import secrets
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    SerializeAsAny,
    field_validator,
    model_validator,
)


# =============================================================================
# Kinds
# =============================================================================


class Kind(str, Enum):
    """Kinds shipped with apiary. Further kinds are added by registering a plugin."""

    HTTP = "http"
    SQL = "sql"
    GRPC = "grpc"
    JQ = "jq"
    REDIS = "redis"
    MD = "md"
    SQL_SOURCE = "sql-source"
    HTTP_SOURCE = "http-source"


# =============================================================================
# Payloads
# =============================================================================


class EntryData(BaseModel):
    """
    Base class for request and response payloads.

    Subclasses set KIND to the tag of the plugin they belong to. Payload
    fields may carry aliases so the on-disk names stay stable.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    KIND: ClassVar[str] = ""

    def kind(self) -> str:
        """Return the kind tag of this payload."""
        return self.KIND


def _null_as_empty(value: Any) -> Any:
    return () if value is None else value


# Collection fields written as JSON null by older files decode as empty.
NullAsEmpty = BeforeValidator(_null_as_empty)


class KV(BaseModel):
    """A key/value pair (HTTP headers, gRPC metadata)."""

    model_config = ConfigDict(frozen=True)

    key: str = ""
    value: str = ""


# =============================================================================
# Records
# =============================================================================


def as_utc(value: datetime) -> datetime:
    """Treat a naive datetime as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Response(BaseModel):
    """One execution result of a request."""

    model_config = ConfigDict(frozen=True)

    sent_at: datetime
    received_at: datetime
    response: SerializeAsAny[EntryData]

    @field_validator("sent_at", "received_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        return as_utc(v)

    @model_validator(mode="after")
    def check_timing(self) -> "Response":
        """A response cannot be received before it was sent."""
        if self.sent_at > self.received_at:
            msg = f"received_at {self.received_at.isoformat()} precedes sent_at {self.sent_at.isoformat()}"
            raise ValueError(msg)
        return self

    def kind(self) -> str:
        """Return the kind of the response payload."""
        return self.response.kind()


class Request(BaseModel):
    """
    A stored request together with its execution history.

    Attributes:
        id: Store-minted unique id
        path: Display path, "/" separated; not unique
        data: Request payload; its kind is the request's kind
        responses: History ordered by sent_at ascending
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    path: str = ""
    data: SerializeAsAny[EntryData]
    responses: tuple[Response, ...] = ()

    @property
    def kind(self) -> str:
        """Kind of the request, taken from its payload."""
        return self.data.kind()

    @property
    def last_response(self) -> Response | None:
        """Most recent response, if any."""
        return self.responses[-1] if self.responses else None


# =============================================================================
# Helpers
# =============================================================================


def generate_id() -> str:
    """Generate a unique, url-safe request id."""
    return secrets.token_urlsafe(12)


def now_utc() -> datetime:
    """Get the current UTC time."""
    return datetime.now(UTC)
