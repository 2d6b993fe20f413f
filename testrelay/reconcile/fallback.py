"""
Raw-text fallback used when no parser produced a canonical result.

Output that only shows pass indicators marks every identity passed. When
fail indicators are present, an identity fails if its label (or the label's
trailing word) appears on a failing line, and is errored otherwise. Output
with no indicator at all never counts as a pass: every identity is errored.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from testrelay.reconcile.matcher import trailing_word
from testrelay.reporting import ReportingSink
from testrelay.types import OutcomeStatus, TestIdentity

logger = logging.getLogger(__name__)

DEFAULT_FAIL_INDICATORS: Tuple[str, ...] = (
    "FAIL",
    "✗",
    "×",
    "●",
    "FAILED",
    "Error:",
    "AssertionError",
    "expect(",
    "Expected:",
    "Received:",
)
DEFAULT_PASS_INDICATORS: Tuple[str, ...] = ("PASS", "✓", "√", "passed")

UNDETERMINED_MESSAGE = "Could not determine test result. Check the run output for details."
UNPARSEABLE_MESSAGE = "Could not parse test results. Run the tests from a terminal to see full output."

_PREVIEW_CHARS = 500


@dataclass
class TextIndicators:
    """Substrings that signal passing or failing tests in raw output."""

    pass_indicators: List[str] = field(default_factory=lambda: list(DEFAULT_PASS_INDICATORS))
    fail_indicators: List[str] = field(default_factory=lambda: list(DEFAULT_FAIL_INDICATORS))

    def has_pass(self, text: str) -> bool:
        return any(indicator in text for indicator in self.pass_indicators)

    def has_fail(self, text: str) -> bool:
        return any(indicator in text for indicator in self.fail_indicators)


def reconcile_from_text(
    output: str,
    identities: Sequence[TestIdentity],
    sink: ReportingSink,
    indicators: Optional[TextIndicators] = None,
) -> List[OutcomeStatus]:
    """
    Report one outcome per identity from unparseable output.

    Args:
        output: Raw output text, ANSI escapes already stripped
        identities: Flat leaf identities
        sink: Receiver of the outcomes
        indicators: Pass/fail substrings, defaults to TextIndicators()

    Returns:
        The status reported for each identity, in order
    """
    indicators = indicators or TextIndicators()
    logger.warning("No structured test results found, falling back to text matching")

    has_fail = indicators.has_fail(output)
    has_pass = indicators.has_pass(output)

    if has_pass and not has_fail:
        for identity in identities:
            sink.passed(identity)
        return [OutcomeStatus.PASSED] * len(identities)

    if not has_fail:
        logger.warning(
            f"No pass/fail indicators found in output. Output preview: {output[:_PREVIEW_CHARS]}"
        )
        for identity in identities:
            sink.errored(identity, UNPARSEABLE_MESSAGE)
        return [OutcomeStatus.ERRORED] * len(identities)

    fail_lines = [line for line in output.splitlines() if indicators.has_fail(line)]
    statuses = []
    for identity in identities:
        label = identity.label
        short_name = trailing_word(label)
        relevant = [line for line in fail_lines if label in line or short_name in line]

        if relevant:
            sink.failed(identity, "\n".join(relevant))
            statuses.append(OutcomeStatus.FAILED)
        else:
            sink.errored(identity, UNDETERMINED_MESSAGE)
            statuses.append(OutcomeStatus.ERRORED)
    return statuses
