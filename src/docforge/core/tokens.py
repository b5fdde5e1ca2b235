"""Token estimation heuristics.

Character-count heuristics only; docforge never calls a tokenizer.
"""

import math

DEFAULT_CHARS_PER_TOKEN = 4.0


def estimate_tokens(text: str, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> int:
    """Estimate the token count of text as ceil(len / chars_per_token)."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def scale_declared(declared: int, measured_before: int, measured_after: int) -> int:
    """Scale a declared estimate by the measured reduction of its content.

    A processor's declared estimate covers more than its measured context
    (prompt scaffolding, expected growth). When content is reduced, the
    declared figure shrinks in the same proportion.
    """
    if measured_before <= 0:
        return declared
    return math.ceil(declared * measured_after / measured_before)
