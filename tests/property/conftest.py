# tests/property/conftest.py
"""Shared Hypothesis strategies for property-based tests.

Strategy Categories:
- Processor keys and registries (acyclic by construction)
- Context documents built from sections of known size

Usage:
    from tests.property.conftest import acyclic_registries

    @given(entries=acyclic_registries())
    def test_order_respects_dependencies(entries: list[dict]) -> None:
        ...
"""

from __future__ import annotations

from typing import Any

from hypothesis import strategies as st

# Lowercase keys as maintainers write them: "srs", "risk-register"
processor_keys = st.from_regex(r"[a-z][a-z0-9\-]{0,11}", fullmatch=True)


@st.composite
def acyclic_registries(draw: st.DrawFn, min_size: int = 1, max_size: int = 10) -> list[dict[str, Any]]:
    """Registry entries whose dependencies only point at earlier entries.

    Entry order is shuffled afterwards so that key order and dependency order
    are unrelated.
    """
    keys = draw(st.lists(processor_keys, min_size=min_size, max_size=max_size, unique=True))
    entries: list[dict[str, Any]] = []
    for position, key in enumerate(keys):
        earlier = keys[:position]
        dependencies = draw(st.lists(st.sampled_from(earlier), unique=True, max_size=3)) if earlier else []
        entries.append({"key": key, "dependencies": dependencies})
    return draw(st.permutations(entries))


@st.composite
def cyclic_registries(draw: st.DrawFn) -> tuple[list[dict[str, Any]], set[str]]:
    """An acyclic registry plus one injected cycle; returns (entries, cycle keys)."""
    entries = [dict(e, dependencies=list(e["dependencies"])) for e in draw(acyclic_registries(min_size=2))]
    cycle_length = draw(st.integers(min_value=2, max_value=len(entries)))
    members = draw(st.permutations(entries))[:cycle_length]
    for current, following in zip(members, [*members[1:], members[0]], strict=True):
        if following["key"] not in current["dependencies"]:
            current["dependencies"].append(following["key"])
    return entries, {m["key"] for m in members}


# Section bodies sized in whole tokens (4 characters each)
token_counts = st.integers(min_value=0, max_value=20_000)
