# src/docforge/plugins/hookspecs.py
"""pluggy hook specifications for docforge plugins.

Plugins implement these hooks to register processor handlers and
generation backends. The plugin manager calls them during discovery.

Usage (implementing a plugin):
    from docforge.plugins.hookspecs import hookimpl

    class MyPlugin:
        @hookimpl
        def docforge_get_backends(self):
            return [MyBackend]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from docforge.plugins.backends import BaseBackend
    from docforge.plugins.processors import BaseProcessor

PROJECT_NAME = "docforge"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class DocforgeProcessorSpec:
    """Hook specifications for processor handlers."""

    @hookspec
    def docforge_get_processors(self) -> list[type["BaseProcessor"]]:  # type: ignore[empty-body]
        """Return processor handler classes.

        Returns:
            List of BaseProcessor subclasses (not instances)
        """


class DocforgeBackendSpec:
    """Hook specifications for generation backends."""

    @hookspec
    def docforge_get_backends(self) -> list[type["BaseBackend"]]:  # type: ignore[empty-body]
        """Return backend plugin classes.

        Returns:
            List of BaseBackend subclasses (not instances)
        """
