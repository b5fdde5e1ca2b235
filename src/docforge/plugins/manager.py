# src/docforge/plugins/manager.py
"""Plugin manager for discovery, registration, and lookup.

Uses pluggy for hook-based registration. Lookup tables are rebuilt on every
registration, so a duplicate name fails at startup rather than at first use.
"""

from __future__ import annotations

from typing import Any

import pluggy

from docforge.contracts.errors import ConfigError, ConfigIssue
from docforge.contracts.models import ProcessorDescriptor
from docforge.core.registry import ProcessorRegistry
from docforge.plugins.backends import BaseBackend, EchoBackend
from docforge.plugins.hookspecs import (
    PROJECT_NAME,
    DocforgeBackendSpec,
    DocforgeProcessorSpec,
    hookimpl,
)
from docforge.plugins.processors import BaseProcessor, TemplateProcessor
from docforge.plugins.templates import TemplateError


class BuiltinPlugins:
    """Hook implementations for the handlers and backends shipped with docforge."""

    @hookimpl
    def docforge_get_processors(self) -> list[type[BaseProcessor]]:
        return [TemplateProcessor]

    @hookimpl
    def docforge_get_backends(self) -> list[type[BaseBackend]]:
        return [EchoBackend]


class PluginManager:
    """Manages plugin discovery, registration, and lookup.

    Usage:
        manager = PluginManager()
        manager.register_builtin_plugins()

        handler_cls = manager.get_processor_by_name("template")
        backend = manager.create_backend("echo", {})
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(DocforgeProcessorSpec)
        self._pm.add_hookspecs(DocforgeBackendSpec)

        self._processors: dict[str, type[BaseProcessor]] = {}
        self._backends: dict[str, type[BaseBackend]] = {}

    def register_builtin_plugins(self) -> None:
        """Register the handlers and backends shipped with docforge."""
        self.register(BuiltinPlugins())

    def load_entrypoints(self) -> int:
        """Register third-party plugins advertised under the "docforge" entry point group.

        Returns:
            Number of plugins loaded
        """
        loaded = self._pm.load_setuptools_entrypoints(PROJECT_NAME)
        self._refresh_caches()
        return loaded

    def register(self, plugin: Any) -> None:
        """Register a plugin.

        Args:
            plugin: Plugin instance implementing hook methods
        """
        self._pm.register(plugin)
        self._refresh_caches()

    def _refresh_caches(self) -> None:
        """Rebuild name lookups from hooks.

        Raises:
            ValueError: If two plugins of the same kind share a name
        """
        new_processors: dict[str, type[BaseProcessor]] = {}
        new_backends: dict[str, type[BaseBackend]] = {}

        for processors in self._pm.hook.docforge_get_processors():
            for cls in processors:
                name = cls.name
                if name in new_processors:
                    raise ValueError(f"Duplicate processor handler name: '{name}'. Already registered by {new_processors[name].__name__}")
                new_processors[name] = cls

        for backends in self._pm.hook.docforge_get_backends():
            for cls in backends:
                name = cls.name
                if name in new_backends:
                    raise ValueError(f"Duplicate backend plugin name: '{name}'. Already registered by {new_backends[name].__name__}")
                new_backends[name] = cls

        self._processors = new_processors
        self._backends = new_backends

    # === Lookup ===

    def get_processors(self) -> list[type[BaseProcessor]]:
        return list(self._processors.values())

    def get_backends(self) -> list[type[BaseBackend]]:
        return list(self._backends.values())

    def get_processor_by_name(self, name: str) -> type[BaseProcessor] | None:
        return self._processors.get(name)

    def get_backend_by_name(self, name: str) -> type[BaseBackend] | None:
        return self._backends.get(name)

    def has_processor(self, name: str) -> bool:
        return name in self._processors

    # === Instantiation ===

    def create_backend(self, name: str, options: dict[str, Any]) -> BaseBackend:
        """Instantiate a backend plugin.

        Raises:
            ValueError: If no backend plugin has that name
        """
        cls = self._backends.get(name)
        if cls is None:
            available = ", ".join(sorted(self._backends)) or "none"
            raise ValueError(f"Unknown backend plugin '{name}'. Available: {available}")
        return cls(options)

    def create_handlers(self, registry: ProcessorRegistry) -> dict[str, BaseProcessor]:
        """Instantiate one handler per processor.

        Every failure (unknown handler, bad template) is collected.

        Raises:
            ConfigError: Listing every processor whose handler could not be built
        """
        handlers: dict[str, BaseProcessor] = {}
        issues: list[ConfigIssue] = []
        for descriptor in registry:
            try:
                handlers[descriptor.key] = self._create_handler(descriptor)
            except (TemplateError, ValueError) as e:
                issues.append(ConfigIssue(descriptor.key, str(e)))
        if issues:
            raise ConfigError(issues)
        return handlers

    def _create_handler(self, descriptor: ProcessorDescriptor) -> BaseProcessor:
        cls = self._processors.get(descriptor.handler)
        if cls is None:
            raise ValueError(f"unknown handler '{descriptor.handler}'")
        return cls(descriptor)
