"""Keyword expression parsing and matching.

A keyword expression is a list of alternative groups separated by commas.
Inside a group, whitespace separates words that must all be present:

    "URSSAF, CPAM"   -> URSSAF or CPAM
    "MMA IARD"       -> MMA and IARD

Words are matched case-insensitively as substrings of the bank label.
"""

import re
from typing import Iterable, Union

_WHITESPACE = re.compile(r"\s+")

KeywordGroups = tuple[tuple[str, ...], ...]


def parse_keywords(expression: Union[str, Iterable[str], None]) -> KeywordGroups:
    """Parse keyword expression(s) into OR-groups of AND-words.

    Args:
        expression: One expression string, or several strings whose groups are
            all alternatives of each other. None and blank strings yield no groups.

    Returns:
        Tuple of groups, each a tuple of lowercase words. Empty when no keyword
        was given.
    """
    if expression is None:
        return ()
    if isinstance(expression, str):
        expressions: Iterable[str] = [expression]
    else:
        expressions = expression

    groups = []
    for item in expressions:
        for raw_group in str(item).split(","):
            words = tuple(w for w in _WHITESPACE.split(raw_group.strip().lower()) if w)
            if words and words not in groups:
                groups.append(words)
    return tuple(groups)


def matches_label(groups: KeywordGroups, label: str) -> bool:
    """Return True if any group has all of its words in the label.

    An empty group tuple never matches; callers decide what an empty keyword
    list means for them.
    """
    label_lower = (label or "").lower()
    return any(all(word in label_lower for word in group) for group in groups)


def format_keywords(groups: KeywordGroups) -> str:
    """Render groups back to the canonical expression syntax."""
    return ", ".join(" ".join(group) for group in groups)
