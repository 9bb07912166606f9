"""
Plugin registry for apiary.

The registry maps kind tags to Plugin capability tables. It is populated
once at startup and then frozen, so lookups need no locking.

Usage:
    from apiary.plugins import default_registry

    plugin = default_registry.lookup("http")
    payload = plugin.parse_request({"url": "https://example.com"})
"""

from typing import Iterator

from apiary.errors import UnknownKindError
from apiary.plugins.base import Plugin


class PluginRegistry:
    """
    Registry for looking up plugins by kind.

    Attributes:
        _plugins: Mapping of kind tags to plugins
        _frozen: Set by freeze(); no registration afterwards
    """

    def __init__(self, plugins: list[Plugin] | None = None) -> None:
        """Initialize a registry, optionally with an initial set of plugins."""
        self._plugins: dict[str, Plugin] = {}
        self._frozen = False
        for plugin in plugins or []:
            self.register(plugin)

    def register(self, plugin: Plugin) -> None:
        """
        Register a plugin.

        Raises:
            RuntimeError: If the registry is frozen
            ValueError: If the plugin is None or its kind is already registered
        """
        if self._frozen:
            msg = f"Cannot register {plugin!r}: registry is frozen"
            raise RuntimeError(msg)
        if plugin is None:
            msg = "Cannot register None as a plugin"
            raise ValueError(msg)
        if plugin.kind in self._plugins:
            msg = f"Kind {plugin.kind!r} is already registered"
            raise ValueError(msg)
        self._plugins[plugin.kind] = plugin

    def replace(self, plugin: Plugin) -> None:
        """
        Swap the plugin registered for plugin.kind.

        Raises:
            RuntimeError: If the registry is frozen
            UnknownKindError: If the kind is not registered
        """
        if self._frozen:
            msg = f"Cannot replace {plugin!r}: registry is frozen"
            raise RuntimeError(msg)
        self.lookup(plugin.kind)
        self._plugins[plugin.kind] = plugin

    def freeze(self) -> "PluginRegistry":
        """Refuse further registration. Returns self for chaining."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, kind: str) -> Plugin:
        """
        Look up a plugin by kind.

        Raises:
            UnknownKindError: If no plugin is registered for the kind
        """
        plugin = self._plugins.get(kind)
        if plugin is None:
            raise UnknownKindError(kind=kind, available=self.kinds())
        return plugin

    def get_optional(self, kind: str) -> Plugin | None:
        """Look up a plugin by kind, returning None if not found."""
        return self._plugins.get(kind)

    def has(self, kind: str) -> bool:
        """Check if a kind is registered."""
        return kind in self._plugins

    def kinds(self) -> list[str]:
        """List registered kinds in sorted order."""
        return sorted(self._plugins.keys())

    def __len__(self) -> int:
        return len(self._plugins)

    def __iter__(self) -> Iterator[Plugin]:
        """Iterate over plugins in kind order."""
        return iter([self._plugins[kind] for kind in self.kinds()])

    def __contains__(self, kind: object) -> bool:
        return kind in self._plugins

    def __repr__(self) -> str:
        return f"<PluginRegistry: [{', '.join(self.kinds())}]>"
