"""Plugin system: processor handlers and generation backends."""

from docforge.plugins.backends import BaseBackend, EchoBackend
from docforge.plugins.hookspecs import hookimpl, hookspec
from docforge.plugins.manager import PluginManager
from docforge.plugins.processors import BaseProcessor, TemplateProcessor

__all__ = [
    "BaseBackend",
    "BaseProcessor",
    "EchoBackend",
    "PluginManager",
    "TemplateProcessor",
    "hookimpl",
    "hookspec",
]
