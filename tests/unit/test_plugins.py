"""
Unit tests for plugins and the plugin registry.

Tests cover:
- Plugin construction checks and payload parsing
- PluginContext cancellation
- PluginRegistry registration, freezing and lookup
- The built-in registry and perform overrides
"""

from typing import ClassVar

import pytest

from apiary.errors import InvalidPayloadError, KindMismatchError, PerformCancelledError, UnknownKindError
from apiary.plugins import (
    BUILTIN_PLUGINS,
    Plugin,
    PluginContext,
    PluginRegistry,
    SideTable,
    build_default_registry,
    default_registry,
)
from apiary.plugins.base import require_payload
from apiary.plugins.grpc import GRPCRequest, GRPCResponse
from apiary.plugins.http import HTTPRequest, HTTPResponse, plugin_http
from apiary.plugins.md import DEFAULT_MARKDOWN, MDRequest
from apiary.plugins.redis import RedisRequest
from apiary.plugins.sql import SQLRequest
from apiary.schema import EntryData


class NoteRequest(EntryData):
    KIND: ClassVar[str] = "note"

    text: str = ""


class NoteResponse(EntryData):
    KIND: ClassVar[str] = "note"

    length: int = 0


def count_note(context: PluginContext, payload: EntryData) -> EntryData:
    return NoteResponse(length=len(require_payload(payload, NoteRequest).text))


@pytest.fixture
def note_plugin() -> Plugin:
    return Plugin(
        kind="note",
        title="Note",
        request_type=NoteRequest,
        response_type=NoteResponse,
        perform=count_note,
    )


# =============================================================================
# Plugin
# =============================================================================


class TestPlugin:
    """Tests for the capability table."""

    def test_empty_request_defaults(self, note_plugin: Plugin) -> None:
        assert note_plugin.empty_request == NoteRequest()
        assert note_plugin.executable

    def test_builtin_empty_requests(self) -> None:
        assert default_registry.lookup("md").empty_request == MDRequest(data=DEFAULT_MARKDOWN)
        assert default_registry.lookup("redis").empty_request == RedisRequest(dsn="localhost:6379", query="KEYS *")

    def test_empty_kind_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-empty kind"):
            Plugin(kind="", title="x", request_type=NoteRequest, response_type=NoteResponse)

    def test_request_type_must_match_kind(self) -> None:
        with pytest.raises(ValueError, match="belongs to"):
            Plugin(kind="note", title="x", request_type=HTTPRequest, response_type=NoteResponse)

    def test_response_type_must_match_kind(self) -> None:
        with pytest.raises(ValueError, match="belongs to"):
            Plugin(kind="note", title="x", request_type=NoteRequest, response_type=HTTPResponse)

    def test_perform_requires_response_type(self) -> None:
        with pytest.raises(ValueError, match="no response type"):
            Plugin(
                kind="note",
                title="x",
                request_type=NoteRequest,
                perform=count_note,
                side_table=SideTable.PAYLOAD,
            )

    def test_history_requires_response_type(self) -> None:
        with pytest.raises(ValueError, match="keeps history"):
            Plugin(kind="note", title="x", request_type=NoteRequest)

    def test_payload_only_plugin(self) -> None:
        plugin = Plugin(kind="note", title="x", request_type=NoteRequest, side_table=SideTable.PAYLOAD)
        assert not plugin.executable

    def test_with_perform(self, note_plugin: Plugin) -> None:
        disabled = note_plugin.with_perform(None)
        assert not disabled.executable
        assert note_plugin.executable
        assert disabled.request_type is NoteRequest

    def test_parse_request_none(self, note_plugin: Plugin) -> None:
        assert note_plugin.parse_request(None) == NoteRequest()

    def test_parse_request_dict(self, note_plugin: Plugin) -> None:
        assert note_plugin.parse_request({"text": "hi"}) == NoteRequest(text="hi")

    def test_parse_request_instance(self, note_plugin: Plugin) -> None:
        payload = NoteRequest(text="hi")
        assert note_plugin.parse_request(payload) is payload

    def test_parse_request_wrong_kind(self, note_plugin: Plugin) -> None:
        with pytest.raises(KindMismatchError) as exc_info:
            note_plugin.parse_request(HTTPRequest())
        assert exc_info.value.expected == "note"
        assert exc_info.value.actual == "http"

    def test_parse_request_invalid(self) -> None:
        with pytest.raises(InvalidPayloadError) as exc_info:
            plugin_http.parse_request({"url": ["not", "a", "string"]})
        assert exc_info.value.kind == "http"
        assert "url" in exc_info.value.details

    def test_parse_response(self, note_plugin: Plugin) -> None:
        assert note_plugin.parse_response({"length": 3}) == NoteResponse(length=3)

    def test_parse_response_wrong_type(self, note_plugin: Plugin) -> None:
        with pytest.raises(InvalidPayloadError, match="expected NoteResponse"):
            note_plugin.parse_response(HTTPResponse())

    def test_parse_response_without_type(self) -> None:
        plugin = default_registry.lookup("sql-source")
        with pytest.raises(InvalidPayloadError, match="records no responses"):
            plugin.parse_response({})

    def test_repr(self, note_plugin: Plugin) -> None:
        assert repr(note_plugin) == "<Plugin: note>"


class TestRequirePayload:
    def test_passes_matching(self) -> None:
        payload = HTTPRequest()
        assert require_payload(payload, HTTPRequest) is payload

    def test_rejects_other(self) -> None:
        with pytest.raises(TypeError, match="Expected HTTPRequest, got SQLRequest"):
            require_payload(SQLRequest(), HTTPRequest)


class TestPluginContext:
    def test_defaults(self) -> None:
        context = PluginContext()
        assert context.operation == "perform"
        assert not context.cancelled
        context.raise_if_cancelled("http")

    def test_cancel(self) -> None:
        context = PluginContext(request_id="abc")
        context.cancel()
        assert context.cancelled
        with pytest.raises(PerformCancelledError) as exc_info:
            context.raise_if_cancelled("http")
        assert exc_info.value.request_id == "abc"
        assert exc_info.value.kind == "http"


# =============================================================================
# Registry
# =============================================================================


class TestPluginRegistry:
    """Tests for kind lookup."""

    def test_register_and_lookup(self, note_plugin: Plugin) -> None:
        registry = PluginRegistry()
        registry.register(note_plugin)
        assert registry.lookup("note") is note_plugin
        assert registry.has("note")
        assert "note" in registry
        assert len(registry) == 1

    def test_lookup_unknown(self, note_plugin: Plugin) -> None:
        registry = PluginRegistry([note_plugin])
        with pytest.raises(UnknownKindError) as exc_info:
            registry.lookup("ftp")
        assert exc_info.value.kind == "ftp"
        assert exc_info.value.available == ["note"]

    def test_get_optional(self, note_plugin: Plugin) -> None:
        registry = PluginRegistry([note_plugin])
        assert registry.get_optional("note") is note_plugin
        assert registry.get_optional("ftp") is None

    def test_register_duplicate(self, note_plugin: Plugin) -> None:
        registry = PluginRegistry([note_plugin])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(note_plugin)

    def test_register_none(self) -> None:
        with pytest.raises(ValueError, match="None"):
            PluginRegistry().register(None)

    def test_frozen_refuses_registration(self, note_plugin: Plugin) -> None:
        registry = PluginRegistry().freeze()
        assert registry.frozen
        with pytest.raises(RuntimeError, match="frozen"):
            registry.register(note_plugin)

    def test_replace(self, note_plugin: Plugin) -> None:
        registry = PluginRegistry([note_plugin])
        registry.replace(note_plugin.with_perform(None))
        assert not registry.lookup("note").executable

    def test_replace_unknown(self, note_plugin: Plugin) -> None:
        with pytest.raises(UnknownKindError):
            PluginRegistry().replace(note_plugin)

    def test_replace_frozen(self, note_plugin: Plugin) -> None:
        registry = PluginRegistry([note_plugin]).freeze()
        with pytest.raises(RuntimeError):
            registry.replace(note_plugin)

    def test_iteration_in_kind_order(self) -> None:
        registry = PluginRegistry(list(BUILTIN_PLUGINS))
        assert [p.kind for p in registry] == registry.kinds()
        assert registry.kinds() == sorted(registry.kinds())

    def test_repr(self, note_plugin: Plugin) -> None:
        assert repr(PluginRegistry([note_plugin])) == "<PluginRegistry: [note]>"


class TestDefaultRegistry:
    """Tests for the built-in plugin set."""

    def test_builtin_kinds(self) -> None:
        assert default_registry.kinds() == [
            "grpc",
            "http",
            "http-source",
            "jq",
            "md",
            "redis",
            "sql",
            "sql-source",
        ]
        assert default_registry.frozen

    def test_titles(self) -> None:
        titles = {p.kind: p.title for p in default_registry}
        assert titles["http"] == "HTTP"
        assert titles["sql-source"] == "SQLSource"
        assert titles["http-source"] == "HTTPSource"

    def test_executable_kinds(self) -> None:
        executable = {p.kind for p in default_registry if p.executable}
        assert executable == {"http", "sql", "redis", "md"}

    def test_sources_store_payloads(self) -> None:
        tables = {p.kind: p.side_table for p in default_registry}
        assert tables["sql-source"] is SideTable.PAYLOAD
        assert tables["http-source"] is SideTable.PAYLOAD
        assert tables["http"] is SideTable.HISTORY
        assert default_registry.lookup("sql-source").explore is not None

    def test_perform_override(self) -> None:
        def call_grpc(context: PluginContext, payload: EntryData) -> EntryData:
            return GRPCResponse(response=require_payload(payload, GRPCRequest).payload)

        registry = build_default_registry(perform_overrides={"grpc": call_grpc})
        assert registry.lookup("grpc").perform is call_grpc
        assert registry.frozen
        assert not default_registry.lookup("grpc").executable

    def test_override_can_disable(self) -> None:
        registry = build_default_registry(perform_overrides={"http": None})
        assert not registry.lookup("http").executable

    def test_override_unknown_kind(self) -> None:
        with pytest.raises(UnknownKindError):
            build_default_registry(perform_overrides={"ftp": None})

    def test_extra_plugins(self, note_plugin: Plugin) -> None:
        registry = build_default_registry(extra_plugins=[note_plugin])
        assert "note" in registry
        assert len(registry) == len(BUILTIN_PLUGINS) + 1
