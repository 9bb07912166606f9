"""
Plugins module for apiary.

Every Kind is described by a Plugin. The built-in kinds are:
    - http: HTTP calls (httpx)
    - sql: SQL queries (sqlite3, psycopg)
    - grpc: unary gRPC calls (client capability supplied by the application)
    - jq: jq filters with a sample document (not executable)
    - redis: Redis commands (redis-py)
    - md: Markdown notes rendered to HTML, no history
    - sql-source: database connection, explored with ad-hoc queries
    - http-source: API server plus OpenAPI description, explored per endpoint

Architecture:
    - Plugin: capability table for one kind
    - PluginContext: runtime context for capabilities and hooks
    - PluginRegistry: kind -> plugin lookup, frozen after startup
"""

from typing import Iterable

from apiary.plugins.base import (
    Plugin,
    PluginContext,
    SideTable,
    default_create,
    default_record_response,
    default_update,
    discard_response,
)
from apiary.plugins.grpc import plugin_grpc
from apiary.plugins.http import plugin_http
from apiary.plugins.jq import plugin_jq
from apiary.plugins.md import plugin_md
from apiary.plugins.redis import plugin_redis
from apiary.plugins.registry import PluginRegistry
from apiary.plugins.sources import plugin_http_source, plugin_sql_source
from apiary.plugins.sql import plugin_sql

BUILTIN_PLUGINS = (
    plugin_http,
    plugin_sql,
    plugin_grpc,
    plugin_jq,
    plugin_redis,
    plugin_md,
    plugin_sql_source,
    plugin_http_source,
)


def build_default_registry(
    perform_overrides: dict | None = None,
    extra_plugins: Iterable[Plugin] = (),
) -> PluginRegistry:
    """
    Build a frozen registry of the built-in plugins.

    Args:
        perform_overrides: kind -> perform capability, replacing the built-in
            one (or supplying one, e.g. for grpc). None disables perform.
        extra_plugins: Additional kinds to register

    Raises:
        UnknownKindError: If an override names a kind that is not registered
    """
    registry = PluginRegistry([*BUILTIN_PLUGINS, *extra_plugins])
    for kind, perform in (perform_overrides or {}).items():
        registry.replace(registry.lookup(kind).with_perform(perform))
    return registry.freeze()


# Process-wide registry used by the store and orchestrator unless overridden
default_registry = build_default_registry()

__all__ = [
    "Plugin",
    "PluginContext",
    "PluginRegistry",
    "SideTable",
    "BUILTIN_PLUGINS",
    "build_default_registry",
    "default_create",
    "default_record_response",
    "default_update",
    "default_registry",
    "discard_response",
]
