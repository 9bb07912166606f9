"""
Execution orchestrator for apiary.

The orchestrator performs a stored request and durably records the result.
It coordinates between:
- RequestStore: source of the request, sink of the response
- PluginRegistry: resolves the kind's perform capability

Execution Flow (perform):
    1. Look up the request
    2. Resolve the kind's perform capability
    3. Take sent_at from the clock
    4. Invoke it outside any store lock
    5. Stop without recording if the call was cancelled
    6. Validate the response payload and take received_at
    7. Record the response through the store, moving its timing 1µs past
       any response already recorded at the same sent_at

Exploration runs the same steps for a payload built from a source
(sql-source, http-source) and records nothing.

Design Principles:
    - Fail-closed: adapter failures are raised as PerformError and nothing is recorded
    - Never hold the store lock while a capability runs
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from apiary.errors import (
    DuplicateResponseError,
    InvalidPayloadError,
    KindMismatchError,
    NotExecutableError,
    PerformCancelledError,
    PerformError,
)
from apiary.logging import bind_request_id
from apiary.plugins import Plugin, PluginContext, PluginRegistry
from apiary.plugins.base import require_payload
from apiary.plugins.http import HTTPRequest
from apiary.plugins.sources import (
    EndpointInfo,
    HTTPSourceRequest,
    SQLSourceRequest,
    count_rows_query,
    describe_table_query,
    generate_example_request,
    list_tables_query,
    load_endpoints,
)
from apiary.plugins.sql import SQLResponse
from apiary.schema import EntryData, Kind, Request, Response, now_utc
from apiary.store import RequestStore

logger = logging.getLogger(__name__)

SAME_INSTANT_SHIFT = timedelta(microseconds=1)


@dataclass
class PerformResult:
    """
    Outcome of one perform or exploration.

    Attributes:
        request_id: Request (or source) that was executed
        kind: Kind of the payload that was performed
        request: Payload that was sent
        response: Payload that came back
        sent_at: Time the call started
        received_at: Time the result was taken
        recorded: Whether the response was stored in the request's history
    """

    request_id: str
    kind: str
    request: EntryData
    response: EntryData
    sent_at: datetime
    received_at: datetime
    recorded: bool = True

    @property
    def duration_ms(self) -> float:
        """Execution time in milliseconds."""
        return (self.received_at - self.sent_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "request_id": self.request_id,
            "kind": self.kind,
            "sent_at": self.sent_at.isoformat(),
            "received_at": self.received_at.isoformat(),
            "duration_ms": round(self.duration_ms, 3),
            "recorded": self.recorded,
            "request": self.request.model_dump(mode="json", by_alias=True),
            "response": self.response.model_dump(mode="json", by_alias=True),
        }


class ExecutionOrchestrator:
    """
    Performs requests and records their responses.

    Usage:
        with RequestStore("db.json") as store:
            orchestrator = ExecutionOrchestrator(store)
            result = orchestrator.perform(request_id)
            print(result.response)

    Attributes:
        store: Store the requests live in
        registry: Plugin registry (defaults to the store's)
        clock: Source of sent_at/received_at
        timeout_seconds: Default deadline handed to capabilities
    """

    def __init__(
        self,
        store: RequestStore,
        registry: PluginRegistry | None = None,
        clock: Callable[[], datetime] = now_utc,
        timeout_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.registry = registry or store.registry
        self.clock = clock
        self.timeout_seconds = timeout_seconds

    def new_context(self, request_id: str, operation: str = "perform") -> PluginContext:
        """Create a context carrying this orchestrator's timeout."""
        return PluginContext(
            operation=operation,
            request_id=request_id,
            timeout_seconds=self.timeout_seconds,
        )

    # =========================================================================
    # Perform
    # =========================================================================

    def perform(self, request_id: str, context: PluginContext | None = None) -> PerformResult:
        """
        Execute a stored request and record the response.

        Args:
            request_id: Request to execute
            context: Optional context, e.g. one the caller may cancel()

        Raises:
            RequestNotFoundError: If the id is unknown
            UnknownKindError: If the request's kind is not registered
            NotExecutableError: If the kind has no perform capability
            PerformError: If the capability failed
            PerformCancelledError: If the context was cancelled
            InvalidPayloadError: If the capability returned the wrong payload type
        """
        with bind_request_id(request_id):
            request = self.store.get(request_id)
            plugin = self.registry.lookup(request.kind)
            context = context or self.new_context(request_id)

            if plugin.perform is None:
                raise NotExecutableError(kind=plugin.kind, request_id=request_id)

            sent_at = self.clock()
            logger.info("performing %s request", plugin.kind)
            data = self._invoke(plugin, context, request.data, request_id)
            received_at = max(self.clock(), sent_at)

            response = self._record(request_id, Response(sent_at=sent_at, received_at=received_at, response=data))
            sent_at, received_at = response.sent_at, response.received_at
            recorded = response in self.store.get(request_id).responses

            logger.info("performed %s request in %.1f ms", plugin.kind, (received_at - sent_at).total_seconds() * 1000)
            return PerformResult(
                request_id=request_id,
                kind=plugin.kind,
                request=request.data,
                response=data,
                sent_at=sent_at,
                received_at=received_at,
                recorded=recorded,
            )

    def _record(self, request_id: str, response: Response) -> Response:
        """
        Store a response, returning it as recorded.

        Concurrent performs of one request may read the same clock value. The
        later one is shifted forward until its sent_at is free.
        """
        while True:
            try:
                self.store.create_response(request_id, response)
                return response
            except DuplicateResponseError:
                logger.debug("sent_at %s already recorded, shifting", response.sent_at.isoformat())
                response = response.model_copy(
                    update={
                        "sent_at": response.sent_at + SAME_INSTANT_SHIFT,
                        "received_at": response.received_at + SAME_INSTANT_SHIFT,
                    }
                )

    def _invoke(
        self,
        plugin: Plugin,
        context: PluginContext,
        payload: EntryData,
        request_id: str,
    ) -> EntryData:
        """Run a capability, wrapping its failures and honouring cancellation."""
        context.raise_if_cancelled(plugin.kind)
        try:
            data = plugin.perform(context, payload)
        except PerformCancelledError:
            raise
        except Exception as e:
            logger.warning("%s perform failed: %s", plugin.kind, e)
            raise PerformError(
                kind=plugin.kind,
                request_id=request_id,
                underlying_error=f"{type(e).__name__}: {e}",
            ) from e
        context.raise_if_cancelled(plugin.kind)
        return plugin.parse_response(data)

    # =========================================================================
    # Exploration
    # =========================================================================

    def explore(
        self,
        source_id: str,
        argument: Any,
        context: PluginContext | None = None,
    ) -> PerformResult:
        """
        Execute a payload built from a source and return it without recording.

        Args:
            source_id: Stored source (e.g. sql-source)
            argument: Source-specific argument (a query, an endpoint request)

        Raises:
            RequestNotFoundError: If the id is unknown
            NotExecutableError: If the source cannot be explored or the
                built payload's kind cannot be performed
            InvalidPayloadError: If argument does not fit the source
            PerformError/PerformCancelledError: As for perform()
        """
        with bind_request_id(source_id):
            source = self.store.get(source_id)
            plugin = self.registry.lookup(source.kind)
            if plugin.explore is None:
                raise NotExecutableError(kind=plugin.kind, request_id=source_id)

            try:
                payload = plugin.explore(source.data, argument)
            except (TypeError, ValueError) as e:
                raise InvalidPayloadError(kind=plugin.kind, details=str(e)) from e

            target = self.registry.lookup(payload.kind())
            if target.perform is None:
                raise NotExecutableError(kind=target.kind, request_id=source_id)

            context = context or self.new_context(source_id, operation="explore")
            sent_at = self.clock()
            logger.info("exploring %s source through %s", plugin.kind, target.kind)
            data = self._invoke(target, context, payload, source_id)
            received_at = max(self.clock(), sent_at)

            return PerformResult(
                request_id=source_id,
                kind=target.kind,
                request=payload,
                response=data,
                sent_at=sent_at,
                received_at=received_at,
                recorded=False,
            )

    def _source(self, source_id: str, kind: Kind) -> Request:
        source = self.store.get(source_id)
        if source.kind != kind.value:
            raise KindMismatchError(
                request_id=source_id,
                operation="explore",
                expected=kind.value,
                actual=source.kind,
            )
        return source

    # sql-source

    def perform_sql_source(self, source_id: str, query: str) -> PerformResult:
        """Run an ad-hoc query through a sql-source."""
        self._source(source_id, Kind.SQL_SOURCE)
        return self.explore(source_id, query)

    def test_sql_source(self, source_id: str) -> None:
        """Check that a sql-source can connect and run a trivial query."""
        self.perform_sql_source(source_id, "SELECT 1")

    def _sql_source_query(self, source_id: str, build: Callable[[SQLSourceRequest], str]) -> SQLResponse:
        source = self._source(source_id, Kind.SQL_SOURCE)
        data = require_payload(source.data, SQLSourceRequest)
        try:
            query = build(data)
        except ValueError as e:
            raise InvalidPayloadError(kind=source.kind, details=str(e)) from e
        return require_payload(self.explore(source_id, query).response, SQLResponse)

    def list_tables_sql_source(self, source_id: str) -> list[str]:
        """List the tables visible through a sql-source."""
        response = self._sql_source_query(source_id, lambda s: list_tables_query(s.database))
        return [str(row[0]) for row in response.rows]

    def describe_table_sql_source(self, source_id: str, table: str) -> SQLResponse:
        """Describe a table's columns: name, type, nullable."""
        return self._sql_source_query(source_id, lambda s: describe_table_query(s.database, table))

    def count_rows_sql_source(self, source_id: str, table: str) -> int:
        """Count the rows of a table."""
        response = self._sql_source_query(source_id, lambda s: count_rows_query(table))
        return int(response.rows[0][0]) if response.rows else 0

    # http-source

    def list_endpoints_http_source(self, source_id: str) -> list[EndpointInfo]:
        """
        Load the endpoints described by an http-source's API document.

        Raises:
            PerformError: If the document cannot be fetched or parsed
        """
        source = self._source(source_id, Kind.HTTP_SOURCE)
        data = require_payload(source.data, HTTPSourceRequest)
        try:
            return load_endpoints(data, self.timeout_seconds)
        except Exception as e:
            raise PerformError(
                kind=source.kind,
                request_id=source_id,
                underlying_error=f"{type(e).__name__}: {e}",
            ) from e

    def generate_example_request_http_source(self, source_id: str, endpoint_index: int) -> HTTPRequest:
        """Build an example request for one endpoint of an http-source."""
        endpoints = self.list_endpoints_http_source(source_id)
        if not 0 <= endpoint_index < len(endpoints):
            raise InvalidPayloadError(
                kind=Kind.HTTP_SOURCE.value,
                details=f"endpoint index {endpoint_index} out of range (0..{len(endpoints) - 1})",
            )
        data = require_payload(self.store.get(source_id).data, HTTPSourceRequest)
        return generate_example_request(endpoints[endpoint_index], data.server_url, data.auth)

    def perform_http_source(
        self,
        source_id: str,
        request: HTTPRequest | dict[str, Any] | None = None,
        endpoint_index: int | None = None,
    ) -> PerformResult:
        """
        Call an endpoint of an http-source.

        Either pass a request (its url relative to the server URL) or an
        endpoint index to send that endpoint's generated example.
        """
        self._source(source_id, Kind.HTTP_SOURCE)
        if request is None:
            if endpoint_index is None:
                raise InvalidPayloadError(
                    kind=Kind.HTTP_SOURCE.value,
                    details="either a request or an endpoint index is required",
                )
            request = self.generate_example_request_http_source(source_id, endpoint_index)
        return self.explore(source_id, request)
