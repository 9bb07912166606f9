"""
Plugin capability table.

A Plugin bundles everything apiary knows about one Kind:
- the request and response payload models
- the default payload for a new request
- the perform capability, if the kind can be executed
- the persistence hooks the store runs inside its exclusive section
- the side-table shape used by the on-disk document

Design Principles:
    - Plugins are plain data. Capabilities are functions, so a kind's
      behaviour can be swapped (e.g. a gRPC client) without subclassing.
    - perform never touches the store. The orchestrator records results.
    - Hooks only call the store's lock-free primitives (insert_record,
      replace_payload, append_response); the store already holds its lock.
"""

import dataclasses
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from pydantic import ValidationError

from apiary.errors import InvalidPayloadError, KindMismatchError, PerformCancelledError
from apiary.schema import EntryData, Request, Response

if TYPE_CHECKING:
    from apiary.store.db import RequestStore


class SideTable(str, Enum):
    """Shape of a kind's table in the persisted document."""

    HISTORY = "history"  # {id: {"request": payload, "responses": [...]}}
    PAYLOAD = "payload"  # {id: payload}


@dataclass
class PluginContext:
    """
    Runtime context passed to capabilities and hooks.

    Attributes:
        operation: Store or orchestrator operation in progress
        request_id: Request being operated on, if any
        timeout_seconds: Deadline hint for network capabilities
        cancel_event: Set by cancel(); checked before a result is recorded
        metadata: Free-form values a capability may read or fill in
    """

    operation: str = "perform"
    request_id: str = ""
    timeout_seconds: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    metadata: dict[str, Any] = field(default_factory=dict)

    def cancel(self) -> None:
        """Request cancellation of the call using this context."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self, kind: str = "") -> None:
        """Raise PerformCancelledError if cancel() was called."""
        if self.cancelled:
            raise PerformCancelledError(kind=kind, request_id=self.request_id)


PayloadT = TypeVar("PayloadT", bound=EntryData)

PerformFn = Callable[[PluginContext, EntryData], EntryData]
ExploreFn = Callable[[EntryData, Any], EntryData]
CreateHook = Callable[["RequestStore", PluginContext, str, str, EntryData], None]
UpdateHook = Callable[["RequestStore", PluginContext, str, EntryData], None]
RecordResponseHook = Callable[["RequestStore", PluginContext, str, Response], None]


def require_payload(payload: EntryData, model: type[PayloadT]) -> PayloadT:
    """Narrow a payload to the model a capability expects."""
    if not isinstance(payload, model):
        msg = f"Expected {model.__name__}, got {type(payload).__name__}"
        raise TypeError(msg)
    return payload


# =============================================================================
# Default hooks
# =============================================================================


def default_create(
    store: "RequestStore",
    context: PluginContext,
    request_id: str,
    path: str,
    payload: EntryData,
) -> None:
    """Insert a new record with an empty history."""
    store.insert_record(Request(id=request_id, path=path, data=payload))


def default_update(
    store: "RequestStore",
    context: PluginContext,
    request_id: str,
    payload: EntryData,
) -> None:
    """Replace the payload, keeping path and history."""
    store.replace_payload(request_id, payload)


def default_record_response(
    store: "RequestStore",
    context: PluginContext,
    request_id: str,
    response: Response,
) -> None:
    """Append the response to the history in sent_at order."""
    store.append_response(request_id, response)


def discard_response(
    store: "RequestStore",
    context: PluginContext,
    request_id: str,
    response: Response,
) -> None:
    """Record nothing. Used by kinds that keep no history."""
    return None


# =============================================================================
# Plugin
# =============================================================================


@dataclass(frozen=True)
class Plugin:
    """
    Capability table for one kind.

    Attributes:
        kind: Tag stored with every request of this kind
        title: Display name
        request_type: Model of the request payload
        response_type: Model of the response payload (None if the kind keeps no history)
        empty_request: Payload of a freshly created request; defaults to request_type()
        perform: Execution capability, or None if the kind is not executable
        create_hook: Runs inside store.create
        update_hook: Runs inside store.update
        record_response_hook: Runs inside store.create_response
        side_table: Shape of the kind's table on disk
        explore: Builds a payload of another kind from a stored payload and an argument
    """

    kind: str
    title: str
    request_type: type[EntryData]
    response_type: type[EntryData] | None = None
    empty_request: EntryData | None = None
    perform: PerformFn | None = None
    create_hook: CreateHook = default_create
    update_hook: UpdateHook = default_update
    record_response_hook: RecordResponseHook = default_record_response
    side_table: SideTable = SideTable.HISTORY
    explore: ExploreFn | None = None

    def __post_init__(self) -> None:
        if not self.kind:
            msg = "Plugin must have a non-empty kind"
            raise ValueError(msg)
        if self.request_type.KIND != self.kind:
            msg = f"Request type {self.request_type.__name__} belongs to {self.request_type.KIND!r}, not {self.kind!r}"
            raise ValueError(msg)
        if self.response_type is not None and self.response_type.KIND != self.kind:
            msg = f"Response type {self.response_type.__name__} belongs to {self.response_type.KIND!r}, not {self.kind!r}"
            raise ValueError(msg)
        if self.perform is not None and self.response_type is None:
            msg = f"Plugin {self.kind!r} can perform but declares no response type"
            raise ValueError(msg)
        if self.side_table is SideTable.HISTORY and self.response_type is None:
            msg = f"Plugin {self.kind!r} keeps history but declares no response type"
            raise ValueError(msg)
        if self.empty_request is None:
            object.__setattr__(self, "empty_request", self.request_type())

    @property
    def executable(self) -> bool:
        """Whether requests of this kind can be performed."""
        return self.perform is not None

    def with_perform(self, perform: PerformFn | None) -> "Plugin":
        """Return a copy of this plugin with a different perform capability."""
        return dataclasses.replace(self, perform=perform)

    def parse_request(self, data: EntryData | dict[str, Any] | None) -> EntryData:
        """
        Validate a request payload for this kind.

        Args:
            data: A payload instance, a plain dict, or None for the empty request

        Raises:
            KindMismatchError: If an instance of another kind is given
            InvalidPayloadError: If the dict does not validate
        """
        if data is None:
            return self.empty_request
        if isinstance(data, EntryData):
            if data.kind() != self.kind:
                raise KindMismatchError(expected=self.kind, actual=data.kind())
            return data
        return self._validate(self.request_type, data)

    def parse_response(self, data: EntryData | dict[str, Any]) -> EntryData:
        """Validate a response payload for this kind."""
        if self.response_type is None:
            raise InvalidPayloadError(kind=self.kind, details="kind records no responses")
        if isinstance(data, EntryData):
            if not isinstance(data, self.response_type):
                raise InvalidPayloadError(
                    kind=self.kind,
                    details=f"expected {self.response_type.__name__}, got {type(data).__name__}",
                )
            return data
        return self._validate(self.response_type, data)

    def _validate(self, model: type[EntryData], data: Any) -> EntryData:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise InvalidPayloadError(kind=self.kind, details=str(e)) from e

    def __repr__(self) -> str:
        return f"<Plugin: {self.kind}>"
