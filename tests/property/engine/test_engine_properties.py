# tests/property/engine/test_engine_properties.py
"""Property tests for ExecutionEngine determinism and failure propagation."""

from typing import Any

from hypothesis import given
from hypothesis import strategies as st

from docforge.contracts.enums import ErrorKind, TaskStatus
from docforge.contracts.errors import PermanentError
from docforge.core.context import ProjectContext
from docforge.core.dag import DependencyGraph
from docforge.core.registry import ProcessorRegistry
from tests.conftest import ScriptedBackend, make_engine
from tests.property.conftest import acyclic_registries
from tests.property.settings import SLOW_SETTINGS

CONTEXT = ProjectContext.from_markdown("## Overview\nShared context for every processor.\n")


def _run(entries: list[dict[str, Any]], failing: set[str], max_concurrency: int) -> Any:
    backend = ScriptedBackend(failures={key: [PermanentError("bad request")] for key in failing})
    return make_engine(entries, backend=backend, max_concurrency=max_concurrency).run(CONTEXT)


class TestEngineProperties:
    """Reports do not depend on scheduling."""

    @given(entries=acyclic_registries(max_size=8), data=st.data())
    @SLOW_SETTINGS
    def test_report_identical_across_pool_sizes(self, entries: list[dict[str, Any]], data: st.DataObject) -> None:
        keys = [e["key"] for e in entries]
        failing = set(data.draw(st.lists(st.sampled_from(keys), unique=True, max_size=2)))

        serial = _run(entries, failing, 1)
        parallel = _run(entries, failing, 4)

        assert [(o.key, o.status, o.error_kind) for o in serial.outcomes] == [
            (o.key, o.status, o.error_kind) for o in parallel.outcomes
        ]
        assert serial.artifacts == parallel.artifacts

    @given(entries=acyclic_registries(max_size=8), data=st.data())
    @SLOW_SETTINGS
    def test_exactly_descendants_of_failures_are_skipped(self, entries: list[dict[str, Any]], data: st.DataObject) -> None:
        keys = [e["key"] for e in entries]
        failing = set(data.draw(st.lists(st.sampled_from(keys), unique=True, max_size=2)))
        graph = DependencyGraph.from_registry(ProcessorRegistry.load(entries))

        report = _run(entries, failing, 4)

        # A failing key that is itself downstream of another failure is skipped, never run
        downstream = set().union(*(graph.descendants(k) for k in failing)) if failing else set()
        for outcome in report.outcomes:
            if outcome.key in downstream:
                assert outcome.status == TaskStatus.SKIPPED
                assert outcome.error_kind == ErrorKind.DEPENDENCY_SKIPPED
            elif outcome.key in failing:
                assert outcome.status == TaskStatus.FAILED
            else:
                assert outcome.status == TaskStatus.SUCCEEDED
        assert [o.key for o in report.outcomes] == graph.resolve()
