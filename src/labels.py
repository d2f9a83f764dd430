"""
Label matchers - decide which resource labels are mirrored into tags.

A matcher is a pure function from a label mapping to the subset of labels
that should become tag bindings.
"""

import re
from typing import Callable, Dict

LabelMatcher = Callable[[Dict[str, str]], Dict[str, str]]


def limit_labels_with_regex(pattern: str, match_on: str = "key") -> LabelMatcher:
    """
    Build a matcher keeping the labels whose key or value matches a regex.

    Args:
        pattern: Regular expression, matched with re.search.
        match_on: 'key' to test label keys, 'value' to test label values.

    Returns:
        A function returning a new dict with the matching labels.

    Raises:
        ValueError: If the pattern does not compile or match_on is unknown.
    """
    if match_on not in ("key", "value"):
        raise ValueError(f"match_on must be 'key' or 'value', got: {match_on}")

    try:
        label_regex = re.compile(pattern)
    except re.error as e:
        raise ValueError(f"Invalid label regex {pattern!r}: {e}") from e

    use_key = match_on == "key"

    def label_matcher(labels: Dict[str, str]) -> Dict[str, str]:
        return {
            k: v
            for k, v in (labels or {}).items()
            if label_regex.search(k if use_key else v)
        }

    return label_matcher
