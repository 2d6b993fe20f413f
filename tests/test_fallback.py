"""Tests for the raw-text fallback in testrelay.reconcile.fallback."""

from testrelay.reconcile.fallback import (
    UNDETERMINED_MESSAGE,
    UNPARSEABLE_MESSAGE,
    TextIndicators,
    reconcile_from_text,
)
from testrelay.types import OutcomeStatus, TestIdentity


class TestReconcileFromText:
    """Tests for reconcile_from_text()."""

    def test_no_indicators_is_errored(self, sink):
        """Test output without indicators never counts as a pass."""
        identities = [TestIdentity("adds"), TestIdentity("fails")]

        statuses = reconcile_from_text("no indicators here", identities, sink)

        assert statuses == [OutcomeStatus.ERRORED, OutcomeStatus.ERRORED]
        assert all(o.message == UNPARSEABLE_MESSAGE for o in sink.outcomes)

    def test_empty_output_is_errored(self, sink):
        """Test empty output errors every identity."""
        statuses = reconcile_from_text("", [TestIdentity("adds")], sink)

        assert statuses == [OutcomeStatus.ERRORED]

    def test_only_pass_indicators(self, sink):
        """Test pass-only output passes every identity."""
        output = "PASS src/math.test.js\n  ✓ adds (3 ms)\n"

        statuses = reconcile_from_text(output, [TestIdentity("adds"), TestIdentity("other")], sink)

        assert statuses == [OutcomeStatus.PASSED, OutcomeStatus.PASSED]
        assert sink.all_passed

    def test_fail_lines_name_the_identity(self, sink):
        """Test identities named on failing lines fail and the rest are errored."""
        output = "FAIL src/math.test.js\n  ✓ adds\n  ✗ divides by zero\n"
        divides = TestIdentity("divides by zero")
        adds = TestIdentity("adds")

        statuses = reconcile_from_text(output, [divides, adds], sink)

        assert statuses == [OutcomeStatus.FAILED, OutcomeStatus.ERRORED]
        assert sink.outcome_for(divides).message == "  ✗ divides by zero"
        assert sink.outcome_for(adds).message == UNDETERMINED_MESSAGE

    def test_trailing_word_on_fail_line(self, sink):
        """Test a label's last word on a failing line is enough."""
        output = "● Math › zero\n\n    Error: boom\n"
        identity = TestIdentity("divides by zero")

        statuses = reconcile_from_text(output, [identity], sink)

        assert statuses == [OutcomeStatus.FAILED]
        assert sink.outcomes[0].message == "● Math › zero"

    def test_custom_indicators(self, sink):
        """Test configured indicators replace the defaults."""
        indicators = TextIndicators(pass_indicators=["GREEN"], fail_indicators=["RED"])
        output = "GREEN adds\nPASS ignored\n"

        statuses = reconcile_from_text(output, [TestIdentity("adds")], sink, indicators)

        assert statuses == [OutcomeStatus.PASSED]

    def test_custom_fail_indicator(self, sink):
        """Test custom fail indicators pick the failing lines."""
        indicators = TextIndicators(pass_indicators=["GREEN"], fail_indicators=["RED"])

        statuses = reconcile_from_text("RED adds\nGREEN subtracts\n", [TestIdentity("adds")], sink, indicators)

        assert statuses == [OutcomeStatus.FAILED]
        assert sink.outcomes[0].message == "RED adds"


class TestTextIndicators:
    """Tests for TextIndicators."""

    def test_defaults(self):
        """Test the default indicator sets."""
        indicators = TextIndicators()

        assert indicators.has_pass("Tests: 3 passed")
        assert indicators.has_fail("AssertionError: nope")
        assert not indicators.has_fail("all good")
