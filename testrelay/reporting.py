"""
Outbound reporting of per-identity outcomes.

The caller supplies a ReportingSink; the reconciliation engine and the
execution facade report exactly one terminal outcome per identity through
it. RecordingSink is the in-memory implementation used by the CLI and tests.
"""

from typing import Dict, List, Optional, Protocol

from testrelay.types import Outcome, OutcomeStatus, Position, TestIdentity


class ReportingSink(Protocol):
    """Receiver of test outcomes."""

    def passed(self, identity: TestIdentity, duration: Optional[float] = None) -> None:
        ...

    def failed(
        self,
        identity: TestIdentity,
        message: str,
        position: Optional[Position] = None,
        duration: Optional[float] = None,
    ) -> None:
        ...

    def skipped(self, identity: TestIdentity) -> None:
        ...

    def errored(self, identity: TestIdentity, message: str) -> None:
        ...

    def append_output(self, text: str) -> None:
        ...


class RecordingSink:
    """
    Sink that records outcomes in report order.

    Usage:
        sink = RecordingSink()
        executor.run_tests(..., sink=sink)
        for outcome in sink.outcomes:
            print(outcome.identity.label, outcome.status.value)
    """

    def __init__(self) -> None:
        self.outcomes: List[Outcome] = []
        self.output: List[str] = []

    def passed(self, identity: TestIdentity, duration: Optional[float] = None) -> None:
        self.outcomes.append(Outcome(identity, OutcomeStatus.PASSED, duration=duration))

    def failed(
        self,
        identity: TestIdentity,
        message: str,
        position: Optional[Position] = None,
        duration: Optional[float] = None,
    ) -> None:
        self.outcomes.append(Outcome(
            identity,
            OutcomeStatus.FAILED,
            duration=duration,
            message=message,
            position=position,
        ))

    def skipped(self, identity: TestIdentity) -> None:
        self.outcomes.append(Outcome(identity, OutcomeStatus.SKIPPED))

    def errored(self, identity: TestIdentity, message: str) -> None:
        self.outcomes.append(Outcome(identity, OutcomeStatus.ERRORED, message=message))

    def append_output(self, text: str) -> None:
        self.output.append(text)

    @property
    def text(self) -> str:
        """All output appended so far."""
        return "".join(self.output)

    def outcome_for(self, identity: TestIdentity) -> Optional[Outcome]:
        """Return the outcome reported for an identity, if any."""
        for outcome in self.outcomes:
            if outcome.identity is identity:
                return outcome
        return None

    def statuses(self) -> Dict[str, str]:
        """Map identity ids to status values."""
        return {o.identity.id: o.status.value for o in self.outcomes}

    @property
    def all_passed(self) -> bool:
        """True when no outcome failed or errored."""
        return all(
            o.status in (OutcomeStatus.PASSED, OutcomeStatus.SKIPPED) for o in self.outcomes
        )
