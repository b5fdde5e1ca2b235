"""Dependency graph operations for execution planning."""

from docforge.core.dag.graph import DependencyGraph
from docforge.core.dag.models import ExecutionPlan, GraphWarning

__all__ = [
    "DependencyGraph",
    "ExecutionPlan",
    "GraphWarning",
]
