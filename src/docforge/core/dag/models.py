"""Types for dependency graph operations.

Leaf module: no intra-package imports beyond contracts.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class GraphWarning:
    """Non-fatal observation about a dependency graph.

    Warnings don't prevent resolution. They flag configurations that are
    valid but likely unintended (e.g. a processor nothing depends on and
    that depends on nothing, in a registry where everything else is linked).
    """

    code: str
    message: str
    keys: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Resolved order plus derived per-key metadata.

    Attributes:
        order: Topological order, ties broken by ascending key
        index: key -> position in order
        levels: key -> longest dependency chain length (roots are 0)
    """

    order: tuple[str, ...]
    index: dict[str, int]
    levels: dict[str, int]

    @property
    def depth(self) -> int:
        """Number of levels; 0 for an empty plan."""
        return max(self.levels.values(), default=-1) + 1
