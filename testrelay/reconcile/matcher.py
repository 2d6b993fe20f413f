"""
Name matching between canonical assertion results and test identities.

Identity labels come from static analysis of test sources, so parameterized
tests carry their template ("adds %d + %d", "renders $name") while runners
report the expanded titles ("adds 1 + 2"). Templates are compiled into
anchored regexes; labels that are nothing but a single template token
would match anything, so those fall back to comparing suite ancestry.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Sequence

from testrelay.types import CanonicalAssertionResult, TestIdentity

# printf-style tokens used by jest/vitest .each, plus $var and ${var}
TEMPLATE_TOKEN_RE = re.compile(r"(\$\{?[A-Za-z0-9_]+\}?|%[psdifjo#%])", re.IGNORECASE)
_LITERAL_PERCENT = "%%"

_RETRY_SUFFIX_RE = re.compile(r" \(\d+\)")


@dataclass(frozen=True)
class IndexedResult:
    """A canonical assertion together with its index in the flattened run."""

    index: int
    result: CanonicalAssertionResult


def has_template_variable(label: str) -> bool:
    """True when the label contains at least one template token."""
    return any(token != _LITERAL_PERCENT for token in TEMPLATE_TOKEN_RE.findall(label))


def is_only_template_variable(label: str) -> bool:
    """True when the label is a single template token, e.g. "%s" or "$title"."""
    stripped = label.strip()
    return stripped != _LITERAL_PERCENT and TEMPLATE_TOKEN_RE.fullmatch(stripped) is not None


@lru_cache(maxsize=512)
def compile_label_pattern(label: str) -> Pattern[str]:
    """
    Compile a label into an anchored regex.

    Literal text is escaped, each template token becomes a lazy (.*?)
    group and "%%" stands for a literal percent sign.
    """
    parts = []
    for i, piece in enumerate(TEMPLATE_TOKEN_RE.split(label)):
        if i % 2 == 0:
            parts.append(re.escape(piece))
        elif piece == _LITERAL_PERCENT:
            parts.append(re.escape("%"))
        else:
            parts.append("(.*?)")
    return re.compile("".join(parts), re.DOTALL)


def matches_label(actual: str, label: str) -> bool:
    """Exact match, or template match when the label is templated."""
    if actual == label:
        return True
    if has_template_variable(label):
        return compile_label_pattern(label).fullmatch(actual) is not None
    return False


def matches_with_retry_suffix(actual: str, expected: str) -> bool:
    """True when actual is expected followed by a " (N)" retry counter."""
    return (
        actual.startswith(expected)
        and _RETRY_SUFFIX_RE.fullmatch(actual[len(expected):]) is not None
    )


def trailing_word(label: str) -> str:
    """Last space-separated word of a label."""
    words = label.split(" ")
    return words[-1] or label


def matches_by_ancestors(result: CanonicalAssertionResult, identity: TestIdentity) -> bool:
    """
    Compare suite ancestry, suffix-aligned.

    The result's ancestor titles must end with the identity's ancestor
    titles. An identity at file level only matches results at file level.
    """
    expected = identity.ancestor_titles()
    actual = result.ancestor_titles

    if not expected:
        return not actual
    if len(actual) < len(expected):
        return False
    return list(actual[len(actual) - len(expected):]) == expected


def matches_test(result: CanonicalAssertionResult, identity: TestIdentity) -> bool:
    """Decide whether a canonical result belongs to an identity."""
    label = identity.label
    if is_only_template_variable(label):
        return matches_by_ancestors(result, identity)

    name = trailing_word(label)
    full_path = result.path

    return (
        matches_label(result.title, label)
        or (not is_only_template_variable(name) and matches_label(result.title, name))
        or matches_with_retry_suffix(result.title, label)
        or matches_with_retry_suffix(full_path, label)
        or result.full_name == label
        or matches_label(full_path, label)
    )


def find_potential_matches(
    results: Sequence[CanonicalAssertionResult],
    identity: TestIdentity,
    consumed: Iterable[int] = (),
) -> List[IndexedResult]:
    """All unconsumed results that match the identity, in result order."""
    skip = set(consumed)
    return [
        IndexedResult(index, result)
        for index, result in enumerate(results)
        if index not in skip and matches_test(result, identity)
    ]


def find_best_match(
    matches: Sequence[IndexedResult],
    line: Optional[int],
    consumed: Iterable[int] = (),
) -> Optional[IndexedResult]:
    """
    Pick one match for an identity.

    Runners report 1-based lines while identity positions are zero-based,
    so a result at line + 1 wins. Otherwise the first unconsumed match.
    """
    used = set(consumed)
    available = [m for m in matches if m.index not in used]
    if line is not None:
        for match in available:
            if match.result.location is not None and match.result.location.line == line + 1:
                return match
    return available[0] if available else None
