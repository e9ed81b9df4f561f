"""Token-set similarity shared by result fusion and question dedupe."""

import re
from typing import FrozenSet, Union

_TOKEN_RE = re.compile(r"\w+")


def token_set(text: str) -> FrozenSet[str]:
    """Lower-cased word tokens of `text`"""
    return frozenset(_TOKEN_RE.findall(text.lower()))


def jaccard(a: Union[str, FrozenSet[str]], b: Union[str, FrozenSet[str]]) -> float:
    """
    Jaccard similarity |A & B| / |A | B| of two token sets.

    Strings are tokenized first. Two empty sets are identical (1.0); one empty
    set shares nothing with a non-empty one (0.0).
    """
    set_a = token_set(a) if isinstance(a, str) else a
    set_b = token_set(b) if isinstance(b, str) else b
    if not set_a and not set_b:
        return 1.0
    union = set_a | set_b
    return len(set_a & set_b) / len(union)
