"""
Versioned JSON encoding of the request collection.

Document layout (version 1):

    {
      "$version": 1,
      "app_version": "0.1.0",
      "request":  [{"id": ..., "kind": ..., "path": ...}, ...],        # sorted by id
      "response": [{"id": ..., "sent_at": ..., "received_at": ...}, ...],  # sorted by sent_at
      "http":        {"<id>": {"request": {...}, "responses": [{"sent_at", "received_at", "data"}]}},
      ...
      "sql-source":  {"<id>": {...payload...}},
      ...
    }

"request" is the authoritative index; each id's payload lives in the side
table named by its kind. "response" repeats the timing of every recorded
response and must agree with the side tables. A document without
"$version" is version 0, which decodes to an empty collection.

Every registered kind gets a side table on encode, empty ones included, so
files written by this build can be read by any build with the same kinds.
"""

import json
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Generic, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError, field_validator

from apiary import __version__
from apiary.errors import (
    InconsistentDocumentError,
    MalformedDocumentError,
    UnknownKindError,
    UnsupportedVersionError,
)
from apiary.plugins import Plugin, PluginRegistry, SideTable
from apiary.schema import EntryData, Request, Response, as_utc

logger = logging.getLogger(__name__)

VERSION_KEY = "$version"
CURRENT_VERSION = 1
SUPPORTED_VERSIONS = (0, CURRENT_VERSION)
RESERVED_KEYS = frozenset({VERSION_KEY, "app_version", "request", "response"})


# =============================================================================
# Wire models
# =============================================================================


class RequestIndexEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    kind: str
    path: str = ""


class ResponseIndexEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    sent_at: datetime
    received_at: datetime

    @field_validator("sent_at", "received_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


ReqT = TypeVar("ReqT", bound=EntryData)
RespT = TypeVar("RespT", bound=EntryData)


class ResponseRecordV1(BaseModel, Generic[RespT]):
    sent_at: datetime
    received_at: datetime
    data: RespT


class HistoryEntryV1(BaseModel, Generic[ReqT, RespT]):
    """Side-table entry of a kind that keeps history."""

    request: ReqT
    responses: list[ResponseRecordV1[RespT]] = []

    @field_validator("responses", mode="before")
    @classmethod
    def null_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


_REQUEST_INDEX = TypeAdapter(list[RequestIndexEntry])
_RESPONSE_INDEX = TypeAdapter(list[ResponseIndexEntry])


# =============================================================================
# Codec
# =============================================================================


class VersionedCodec:
    """
    Encode and decode the request collection for one plugin registry.

    Usage:
        codec = VersionedCodec(registry)
        requests = codec.loads(path.read_text())
        path.write_text(codec.dumps(requests))
    """

    def __init__(self, registry: PluginRegistry) -> None:
        self.registry = registry
        self._history_models: dict[str, type[HistoryEntryV1]] = {}

    def _history_model(self, plugin: Plugin) -> type[HistoryEntryV1]:
        model = self._history_models.get(plugin.kind)
        if model is None:
            model = HistoryEntryV1[plugin.request_type, plugin.response_type]
            self._history_models[plugin.kind] = model
        return model

    # =========================================================================
    # Decode
    # =========================================================================

    def loads(self, text: str) -> dict[str, Request]:
        """
        Decode a document from JSON text. Blank text is an empty collection.

        Raises:
            MalformedDocumentError: If the text is not JSON
            CodecError/UnknownKindError: See decode()
        """
        if not text.strip():
            return {}
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedDocumentError(details=str(e)) from e
        return self.decode(document)

    def decode(self, document: Any) -> dict[str, Request]:
        """
        Decode a parsed document into requests keyed by id.

        Raises:
            UnsupportedVersionError: If $version is not 0 or 1
            UnknownKindError: If the document uses an unregistered kind
            InconsistentDocumentError: If index and side tables disagree
            MalformedDocumentError: If a section has the wrong shape
        """
        if not isinstance(document, dict):
            raise MalformedDocumentError(details="top level must be a JSON object")

        version = document.get(VERSION_KEY, 0)
        if isinstance(version, bool) or not isinstance(version, int):
            raise UnsupportedVersionError(version=version, supported=list(SUPPORTED_VERSIONS))
        if version == 0:
            logger.debug("document has no version, starting empty")
            return {}
        if version == 1:
            return self._decode_v1(document)
        raise UnsupportedVersionError(version=version, supported=list(SUPPORTED_VERSIONS))

    def _decode_v1(self, document: dict[str, Any]) -> dict[str, Request]:
        index = self._validate(_REQUEST_INDEX, document.get("request") or [], "request")
        timings = self._validate(_RESPONSE_INDEX, document.get("response") or [], "response")

        for entry in index:
            if not self.registry.has(entry.kind):
                raise UnknownKindError(kind=entry.kind, available=self.registry.kinds())
        for key, value in document.items():
            if key not in RESERVED_KEYS and not self.registry.has(key) and value:
                raise UnknownKindError(kind=key, available=self.registry.kinds())

        tables: dict[str, dict[str, tuple[EntryData, list[Response]]]] = {}
        for plugin in self.registry:
            raw = document.get(plugin.kind) or {}
            if not isinstance(raw, dict):
                raise MalformedDocumentError(details=f"table {plugin.kind!r} must be an object")
            tables[plugin.kind] = {
                request_id: self._decode_entry(plugin, request_id, value)
                for request_id, value in raw.items()
            }

        requests: dict[str, Request] = {}
        kinds: dict[str, str] = {}
        for entry in index:
            if entry.id in requests:
                raise InconsistentDocumentError(reason=f"request id {entry.id!r} is listed twice")
            table = tables[entry.kind]
            if entry.id not in table:
                raise InconsistentDocumentError(
                    reason=f"request {entry.id!r} is missing from the {entry.kind!r} table"
                )
            data, responses = table[entry.id]
            responses.sort(key=lambda r: r.sent_at)
            for earlier, later in zip(responses, responses[1:]):
                if earlier.sent_at == later.sent_at:
                    raise InconsistentDocumentError(
                        reason=f"request {entry.id!r} has two responses sent at {later.sent_at.isoformat()}"
                    )
            requests[entry.id] = Request(
                id=entry.id,
                path=entry.path,
                data=data,
                responses=tuple(responses),
            )
            kinds[entry.id] = entry.kind

        for kind, table in tables.items():
            for request_id in table:
                if kinds.get(request_id) != kind:
                    raise InconsistentDocumentError(
                        reason=f"entry {request_id!r} in the {kind!r} table is not in the request index"
                    )

        recorded = Counter(
            (request.id, response.sent_at, response.received_at)
            for request in requests.values()
            for response in request.responses
        )
        indexed = Counter((t.id, t.sent_at, t.received_at) for t in timings)
        if recorded != indexed:
            raise InconsistentDocumentError(
                reason="response index does not match the recorded responses"
            )

        logger.debug("decoded %d requests", len(requests))
        return requests

    def _decode_entry(
        self,
        plugin: Plugin,
        request_id: str,
        value: Any,
    ) -> tuple[EntryData, list[Response]]:
        try:
            if plugin.side_table is SideTable.PAYLOAD:
                return plugin.request_type.model_validate(value), []
            entry = self._history_model(plugin).model_validate(value)
            responses = [
                Response(sent_at=r.sent_at, received_at=r.received_at, response=r.data)
                for r in entry.responses
            ]
            return entry.request, responses
        except ValidationError as e:
            raise MalformedDocumentError(details=f"{plugin.kind}[{request_id}]: {e}") from e

    @staticmethod
    def _validate(adapter: TypeAdapter, value: Any, section: str) -> Any:
        try:
            return adapter.validate_python(value)
        except ValidationError as e:
            raise MalformedDocumentError(details=f"{section}: {e}") from e

    # =========================================================================
    # Encode
    # =========================================================================

    def encode(self, requests: Mapping[str, Request]) -> dict[str, Any]:
        """
        Encode requests as a version 1 document.

        Raises:
            UnknownKindError: If a request's kind is not registered
        """
        tables: dict[str, dict[str, Any]] = {plugin.kind: {} for plugin in self.registry}
        index = []
        timings = []

        for request in sorted(requests.values(), key=lambda r: r.id):
            plugin = self.registry.lookup(request.kind)
            index.append(RequestIndexEntry(id=request.id, kind=request.kind, path=request.path))

            if plugin.side_table is SideTable.PAYLOAD:
                tables[plugin.kind][request.id] = request.data.model_dump(mode="json", by_alias=True)
                continue

            entry = self._history_model(plugin)(
                request=request.data,
                responses=[
                    ResponseRecordV1[plugin.response_type](
                        sent_at=r.sent_at,
                        received_at=r.received_at,
                        data=r.response,
                    )
                    for r in request.responses
                ],
            )
            tables[plugin.kind][request.id] = entry.model_dump(mode="json", by_alias=True)
            timings.extend(
                ResponseIndexEntry(id=request.id, sent_at=r.sent_at, received_at=r.received_at)
                for r in request.responses
            )

        timings.sort(key=lambda t: (t.sent_at, t.id))
        return {
            VERSION_KEY: CURRENT_VERSION,
            "app_version": __version__,
            "request": [entry.model_dump(mode="json") for entry in index],
            "response": [entry.model_dump(mode="json") for entry in timings],
            **tables,
        }

    def dumps(self, requests: Mapping[str, Request]) -> str:
        """Encode requests as indented JSON text."""
        return json.dumps(self.encode(requests), indent=2, ensure_ascii=False) + "\n"
