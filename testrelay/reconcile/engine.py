"""
Reconciliation of canonical results against the caller's identities.

Each identity receives exactly one outcome, in caller order. Every canonical
result index is attributed to at most one identity: once consumed, a result
is invisible to the identities that follow.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from testrelay.reconcile.matcher import (
    IndexedResult,
    find_best_match,
    find_potential_matches,
    has_template_variable,
)
from testrelay.reporting import ReportingSink
from testrelay.types import (
    AssertionStatus,
    CanonicalAssertionResult,
    CanonicalRunResult,
    OutcomeStatus,
    TestIdentity,
)

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Test failed"


@dataclass
class ReconcileSummary:
    """Counts of outcomes reported by one reconciliation."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    unmatched: List[str] = field(default_factory=list)
    consumed: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped

    def record(self, status: OutcomeStatus) -> None:
        if status == OutcomeStatus.PASSED:
            self.passed += 1
        elif status == OutcomeStatus.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


def aggregate_status(results: Sequence[CanonicalAssertionResult]) -> OutcomeStatus:
    """failed if any failed, else passed if any passed, else skipped."""
    statuses = {r.status for r in results}
    if AssertionStatus.FAILED in statuses:
        return OutcomeStatus.FAILED
    if AssertionStatus.PASSED in statuses:
        return OutcomeStatus.PASSED
    return OutcomeStatus.SKIPPED


def build_failure_message(failed: Sequence[CanonicalAssertionResult]) -> str:
    """Prefix every failure message with the title of the result it came from."""
    return "\n\n".join(
        f"[{result.title or i + 1}]: {message}"
        for i, result in enumerate(failed)
        for message in (result.failure_messages or [DEFAULT_FAILURE_MESSAGE])
    )


def _report_single(
    sink: ReportingSink,
    identity: TestIdentity,
    result: CanonicalAssertionResult,
) -> OutcomeStatus:
    if result.status == AssertionStatus.PASSED:
        sink.passed(identity, result.duration)
        return OutcomeStatus.PASSED

    if result.status == AssertionStatus.FAILED:
        message = "\n".join(result.failure_messages or []) or DEFAULT_FAILURE_MESSAGE
        position = result.location.to_position() if result.location else None
        sink.failed(identity, message, position=position, duration=result.duration)
        return OutcomeStatus.FAILED

    sink.skipped(identity)
    return OutcomeStatus.SKIPPED


def _report_aggregate(
    sink: ReportingSink,
    identity: TestIdentity,
    matches: Sequence[IndexedResult],
) -> OutcomeStatus:
    results = [m.result for m in matches]
    status = aggregate_status(results)
    total_duration = sum(r.duration or 0.0 for r in results)

    if status == OutcomeStatus.FAILED:
        failed = [r for r in results if r.status == AssertionStatus.FAILED]
        located = next((r for r in failed if r.location is not None), None)
        sink.failed(
            identity,
            build_failure_message(failed),
            position=located.location.to_position() if located else None,
            duration=total_duration,
        )
    elif status == OutcomeStatus.PASSED:
        sink.passed(identity, total_duration)
    else:
        sink.skipped(identity)
    return status


def reconcile(
    run_result: CanonicalRunResult,
    identities: Sequence[TestIdentity],
    sink: ReportingSink,
) -> ReconcileSummary:
    """
    Report one outcome per identity from a canonical run result.

    Args:
        run_result: Normalized results of the run
        identities: Flat leaf identities, in the order outcomes are reported
        sink: Receiver of the outcomes

    Returns:
        ReconcileSummary with outcome counts and unmatched labels
    """
    results = run_result.assertion_results()
    summary = ReconcileSummary()
    consumed: List[int] = []

    if not results:
        logger.warning("No assertion results found in test output")

    for identity in identities:
        matches = find_potential_matches(results, identity, consumed)

        if not matches:
            logger.warning(f"No result matched test '{identity.label}', reporting it as skipped")
            sink.skipped(identity)
            summary.unmatched.append(identity.label)
            summary.record(OutcomeStatus.SKIPPED)
            continue

        if has_template_variable(identity.label) and len(matches) > 1:
            status = _report_aggregate(sink, identity, matches)
            consumed.extend(m.index for m in matches)
        else:
            best = matches[0] if len(matches) == 1 else find_best_match(matches, identity.line, consumed)
            # matches only holds unconsumed results, so best is never None here
            status = _report_single(sink, identity, best.result)
            consumed.append(best.index)

        summary.record(status)

    summary.consumed = consumed
    return summary
