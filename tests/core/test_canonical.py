# tests/core/test_canonical.py
"""Tests for canonical JSON and stable hashing."""

import math
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest

from docforge.contracts.enums import Complexity
from docforge.core.canonical import canonical_json, stable_hash, text_hash


class TestCanonicalJson:
    """Key order, normalization and rejection of non-finite floats."""

    def test_key_order_does_not_matter(self) -> None:
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})
        assert canonical_json({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    def test_enum_normalized_to_value(self) -> None:
        assert canonical_json({"complexity": Complexity.HIGH}) == '{"complexity":"high"}'

    def test_sets_are_sorted(self) -> None:
        assert canonical_json(frozenset({"risk", "charter"})) == '["charter","risk"]'

    def test_tuples_become_lists(self) -> None:
        assert canonical_json(("a", 1)) == '["a",1]'

    def test_naive_datetime_treated_as_utc(self) -> None:
        naive = datetime(2026, 1, 1, 12, 0)
        aware = datetime(2026, 1, 1, 13, 0, tzinfo=timezone(timedelta(hours=1)))

        assert canonical_json(naive) == canonical_json(aware)
        assert canonical_json(naive) == canonical_json(datetime(2026, 1, 1, 12, 0, tzinfo=UTC))

    def test_paths_use_posix_form(self) -> None:
        assert canonical_json(Path("a/b.yaml")) == '"a/b.yaml"'

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_floats_rejected(self, value: float) -> None:
        with pytest.raises(ValueError, match="non-finite"):
            canonical_json({"x": value})


class TestHashing:
    """SHA-256 digests."""

    def test_stable_hash_is_deterministic(self) -> None:
        payload = {"key": "risk", "dependencies": ["charter"]}

        assert stable_hash(payload) == stable_hash(dict(reversed(payload.items())))
        assert len(stable_hash(payload)) == 64

    def test_stable_hash_differs_for_different_input(self) -> None:
        assert stable_hash({"a": 1}) != stable_hash({"a": 2})

    def test_text_hash(self) -> None:
        assert text_hash("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
