"""
Reconciliation engine - map canonical results onto caller identities.

- matcher: label, template and ancestry matching plus tie-breaks
- engine: per-identity attribution of canonical results
- fallback: indicator-based attribution when nothing could be parsed
"""

from testrelay.reconcile.engine import (
    DEFAULT_FAILURE_MESSAGE,
    ReconcileSummary,
    aggregate_status,
    build_failure_message,
    reconcile,
)
from testrelay.reconcile.fallback import (
    DEFAULT_FAIL_INDICATORS,
    DEFAULT_PASS_INDICATORS,
    UNDETERMINED_MESSAGE,
    UNPARSEABLE_MESSAGE,
    TextIndicators,
    reconcile_from_text,
)
from testrelay.reconcile.matcher import (
    IndexedResult,
    compile_label_pattern,
    find_best_match,
    find_potential_matches,
    has_template_variable,
    is_only_template_variable,
    matches_by_ancestors,
    matches_test,
)

__all__ = [
    "DEFAULT_FAILURE_MESSAGE",
    "DEFAULT_FAIL_INDICATORS",
    "DEFAULT_PASS_INDICATORS",
    "UNDETERMINED_MESSAGE",
    "UNPARSEABLE_MESSAGE",
    "IndexedResult",
    "ReconcileSummary",
    "TextIndicators",
    "aggregate_status",
    "build_failure_message",
    "compile_label_pattern",
    "find_best_match",
    "find_potential_matches",
    "has_template_variable",
    "is_only_template_variable",
    "matches_by_ancestors",
    "matches_test",
    "reconcile",
    "reconcile_from_text",
]
