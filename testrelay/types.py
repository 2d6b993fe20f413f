"""
Shared type definitions for testrelay.

This module contains the canonical result schema produced by every parser,
the caller-supplied identity tree, and the per-identity outcomes reported
back to the caller. Kept free of imports from other testrelay modules to
avoid circular dependencies.

SCHEMA ARCHITECTURE:
====================

CanonicalRunResult (this file):
- The single normalized payload every parser produces
- Also the payload transported by the framing protocol (see to_dict())
- Wire form uses the camelCase field names runners emit

TestIdentity (this file):
- Node of the caller's test tree, read-only during reconciliation

Outcome (this file):
- The single terminal report for one identity
"""

import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class AssertionStatus(str, Enum):
    """Status of one observed test outcome."""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    PENDING = "pending"
    TODO = "todo"


class FileStatus(str, Enum):
    """Status of one source file's outcomes."""
    PASSED = "passed"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    """Terminal outcome reported for a test identity."""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERRORED = "errored"


class IdentityKind(str, Enum):
    """Kind of node in the caller's identity tree."""
    FILE = "file"
    SUITE = "suite"
    TEST = "test"


# ============================================================================
# Source positions
# ============================================================================


@dataclass(frozen=True)
class Location:
    """Location reported by a runner. Lines are 1-based."""

    line: int
    column: int = 0

    def to_position(self) -> "Position":
        """Convert to a zero-based editor position."""
        return Position(line=max(self.line - 1, 0), column=self.column)

    def to_dict(self) -> Dict[str, int]:
        return {"line": self.line, "column": self.column}


@dataclass(frozen=True)
class Position:
    """Editor position. Lines are zero-based."""

    line: int
    column: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"line": self.line, "column": self.column}


# ============================================================================
# Canonical result schema
# ============================================================================


@dataclass
class CanonicalAssertionResult:
    """One observed test outcome."""

    title: str
    status: AssertionStatus
    ancestor_titles: List[str] = field(default_factory=list)
    full_name: Optional[str] = None
    duration: Optional[float] = None  # milliseconds
    failure_messages: Optional[List[str]] = None
    location: Optional[Location] = None

    def __post_init__(self) -> None:
        """Normalize status and derive full_name when absent."""
        if not isinstance(self.status, AssertionStatus):
            self.status = AssertionStatus(self.status)
        if self.full_name is None:
            self.full_name = self.path
        # failure_messages only travels with failed results
        if self.status != AssertionStatus.FAILED or not self.failure_messages:
            self.failure_messages = None

    @property
    def path(self) -> str:
        """Ancestor titles and title joined by single spaces."""
        return " ".join([*self.ancestor_titles, self.title])

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire form."""
        return {
            "ancestorTitles": list(self.ancestor_titles),
            "title": self.title,
            "fullName": self.full_name,
            "status": self.status.value,
            "duration": self.duration,
            "failureMessages": list(self.failure_messages or []),
            "location": self.location.to_dict() if self.location else None,
        }


@dataclass
class CanonicalFileResult:
    """One source file's outcomes."""

    name: str
    assertion_results: List[CanonicalAssertionResult] = field(default_factory=list)
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    message: str = ""

    @property
    def status(self) -> FileStatus:
        """Failed iff any child assertion failed."""
        if any(r.status == AssertionStatus.FAILED for r in self.assertion_results):
            return FileStatus.FAILED
        return FileStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire form."""
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "assertionResults": [r.to_dict() for r in self.assertion_results],
        }


@dataclass
class CanonicalRunResult:
    """The top-level normalized payload of a test run."""

    test_results: List[CanonicalFileResult] = field(default_factory=list)
    num_total_tests: int = 0
    num_passed_tests: int = 0
    num_failed_tests: int = 0
    num_pending_tests: int = 0
    num_total_test_suites: int = 0
    num_passed_test_suites: int = 0
    num_failed_test_suites: int = 0
    num_pending_test_suites: int = 0
    success: Optional[bool] = None

    def __post_init__(self) -> None:
        """Derive success from the failed count when not supplied."""
        if self.success is None:
            self.success = self.num_failed_tests == 0

    @classmethod
    def from_files(cls, files: List[CanonicalFileResult]) -> "CanonicalRunResult":
        """Build a run result, computing every aggregate from the file results."""
        assertions = [r for f in files for r in f.assertion_results]
        passed = sum(1 for r in assertions if r.status == AssertionStatus.PASSED)
        failed = sum(1 for r in assertions if r.status == AssertionStatus.FAILED)

        failed_suites = sum(1 for f in files if f.status == FileStatus.FAILED)
        pending_suites = sum(
            1 for f in files
            if f.assertion_results and all(
                r.status not in (AssertionStatus.PASSED, AssertionStatus.FAILED)
                for r in f.assertion_results
            )
        )

        return cls(
            test_results=list(files),
            num_total_tests=len(assertions),
            num_passed_tests=passed,
            num_failed_tests=failed,
            num_pending_tests=len(assertions) - passed - failed,
            num_total_test_suites=len(files),
            num_passed_test_suites=len(files) - failed_suites - pending_suites,
            num_failed_test_suites=failed_suites,
            num_pending_test_suites=pending_suites,
        )

    def assertion_results(self) -> List[CanonicalAssertionResult]:
        """Flatten assertion results across files, preserving order."""
        return [r for f in self.test_results for r in f.assertion_results]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire form."""
        return {
            "numTotalTests": self.num_total_tests,
            "numPassedTests": self.num_passed_tests,
            "numFailedTests": self.num_failed_tests,
            "numPendingTests": self.num_pending_tests,
            "numTotalTestSuites": self.num_total_test_suites,
            "numPassedTestSuites": self.num_passed_test_suites,
            "numFailedTestSuites": self.num_failed_test_suites,
            "numPendingTestSuites": self.num_pending_test_suites,
            "success": self.success,
            "testResults": [f.to_dict() for f in self.test_results],
        }


# ============================================================================
# Caller-supplied identities
# ============================================================================


@dataclass(eq=False)
class TestIdentity:
    """
    A node of the caller's test tree.

    Identities are created before a run starts and never mutated by the
    reconciliation engine. Parents are held weakly and only used to derive
    ancestor titles.

    Usage:
        file_node = TestIdentity("math.test.js", kind=IdentityKind.FILE)
        suite = file_node.add_child(TestIdentity("Math", kind=IdentityKind.SUITE))
        suite.add_child(TestIdentity("adds", position=Position(line=4)))

        file_node.leaves()  # [TestIdentity(label='adds', ...)]
    """

    __test__ = False

    label: str
    children: List["TestIdentity"] = field(default_factory=list)
    position: Optional[Position] = None
    kind: IdentityKind = IdentityKind.TEST
    file: Optional[str] = None
    id: Optional[str] = None
    _parent: Optional["weakref.ReferenceType[TestIdentity]"] = field(
        default=None, init=False, repr=False
    )

    def __post_init__(self) -> None:
        if not isinstance(self.kind, IdentityKind):
            self.kind = IdentityKind(self.kind)
        if self.id is None:
            self.id = self.label
        for child in self.children:
            child._parent = weakref.ref(self)

    @property
    def parent(self) -> Optional["TestIdentity"]:
        return self._parent() if self._parent is not None else None

    @property
    def line(self) -> Optional[int]:
        """Zero-based source line, if known."""
        return self.position.line if self.position else None

    def add_child(self, child: "TestIdentity") -> "TestIdentity":
        """Attach a child identity and return it."""
        child._parent = weakref.ref(self)
        self.children.append(child)
        return child

    def iter_ancestors(self) -> Iterator["TestIdentity"]:
        """Yield parents from nearest to the root."""
        parent = self.parent
        while parent is not None:
            yield parent
            parent = parent.parent

    def ancestor_titles(self) -> List[str]:
        """Labels of enclosing suites, outermost first, skipping file-level nodes."""
        titles = [
            p.label for p in self.iter_ancestors() if p.kind != IdentityKind.FILE
        ]
        titles.reverse()
        return titles

    def leaves(self) -> List["TestIdentity"]:
        """Flatten this subtree to its leaf identities in order."""
        if not self.children:
            return [self]
        return [leaf for child in self.children for leaf in child.leaves()]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestIdentity":
        """
        Build an identity tree from a plain mapping.

        Accepted keys: label (required), line, column, kind, file, id, children.
        """
        line = data.get("line")
        position = (
            Position(line=int(line), column=int(data.get("column", 0)))
            if line is not None else None
        )
        node = cls(
            label=str(data["label"]),
            position=position,
            kind=IdentityKind(data.get("kind", IdentityKind.TEST.value)),
            file=data.get("file"),
            id=data.get("id"),
        )
        for child in data.get("children") or []:
            node.add_child(cls.from_dict(child))
        return node


def flatten_identities(identities: List[TestIdentity]) -> List[TestIdentity]:
    """Flatten a mix of trees and leaves to leaf identities in order."""
    return [leaf for identity in identities for leaf in identity.leaves()]


# ============================================================================
# Outcomes
# ============================================================================


@dataclass
class Outcome:
    """Terminal outcome reported for one identity."""

    identity: TestIdentity
    status: OutcomeStatus
    duration: Optional[float] = None  # milliseconds
    message: Optional[str] = None
    position: Optional[Position] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: Dict[str, Any] = {
            "id": self.identity.id,
            "label": self.identity.label,
            "status": self.status.value,
        }
        if self.duration is not None:
            result["duration_ms"] = round(self.duration, 3)
        if self.message is not None:
            result["message"] = self.message
        if self.position is not None:
            result["position"] = self.position.to_dict()
        return result
