"""
docforge: dependency-ordered, budget-aware document generation.

Resolves processor dependencies, fits each processor's context into the
window of the active generation backend, degrades content when it does not
fit, and reports on every task of a run.
"""

__version__ = "0.1.0"
