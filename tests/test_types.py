"""Tests for shared types in testrelay.types."""

from testrelay.types import (
    AssertionStatus,
    CanonicalAssertionResult,
    CanonicalFileResult,
    CanonicalRunResult,
    FileStatus,
    IdentityKind,
    Location,
    Outcome,
    OutcomeStatus,
    Position,
    TestIdentity,
    flatten_identities,
)


class TestCanonicalResults:
    """Tests for the canonical result schema."""

    def test_failure_messages_only_on_failed(self):
        """Test non-failed results drop failure messages."""
        result = CanonicalAssertionResult(title="a", status="passed", failure_messages=["x"])

        assert result.failure_messages is None
        assert result.status == AssertionStatus.PASSED

    def test_full_name_derived(self):
        """Test full_name defaults to the space-joined path."""
        result = CanonicalAssertionResult(title="adds", status="passed", ancestor_titles=["Math", "ints"])

        assert result.full_name == "Math ints adds"

    def test_file_status(self):
        """Test a file fails iff one of its results failed."""
        file_result = CanonicalFileResult(name="f", assertion_results=[
            CanonicalAssertionResult(title="a", status="passed"),
            CanonicalAssertionResult(title="b", status="failed", failure_messages=["x"]),
        ])

        assert file_result.status == FileStatus.FAILED

    def test_from_files_counts(self):
        """Test aggregates are computed from the file results."""
        run = CanonicalRunResult.from_files([
            CanonicalFileResult(name="one", assertion_results=[
                CanonicalAssertionResult(title="a", status="passed"),
                CanonicalAssertionResult(title="b", status="failed"),
            ]),
            CanonicalFileResult(name="two", assertion_results=[
                CanonicalAssertionResult(title="c", status="skipped"),
            ]),
            CanonicalFileResult(name="three", assertion_results=[
                CanonicalAssertionResult(title="d", status="passed"),
            ]),
        ])

        assert (run.num_total_tests, run.num_passed_tests, run.num_failed_tests, run.num_pending_tests) == (4, 2, 1, 1)
        assert (run.num_failed_test_suites, run.num_pending_test_suites, run.num_passed_test_suites) == (1, 1, 1)
        assert run.success is False

    def test_wire_form(self):
        """Test to_dict() uses camelCase keys."""
        run = CanonicalRunResult.from_files([CanonicalFileResult(name="f", assertion_results=[
            CanonicalAssertionResult(title="a", status="passed", location=Location(line=3, column=2)),
        ])])

        data = run.to_dict()

        assertion = data["testResults"][0]["assertionResults"][0]
        assert assertion["ancestorTitles"] == []
        assert assertion["failureMessages"] == []
        assert assertion["location"] == {"line": 3, "column": 2}
        assert data["numTotalTests"] == 1

    def test_location_to_position(self):
        """Test 1-based locations become 0-based positions."""
        assert Location(line=8, column=5).to_position() == Position(line=7, column=5)
        assert Location(line=0).to_position() == Position(line=0)


class TestTestIdentity:
    """Tests for the identity tree."""

    def test_ancestor_titles_skip_file_nodes(self, math_tree):
        """Test file-level nodes are not part of the ancestry."""
        adds = math_tree.leaves()[0]

        assert adds.ancestor_titles() == ["Math"]
        assert adds.line == 3

    def test_flatten(self, math_tree):
        """Test trees and bare leaves flatten in order."""
        extra = TestIdentity("extra")

        assert [i.label for i in flatten_identities([math_tree, extra])] == ["adds", "fails", "extra"]

    def test_from_dict(self):
        """Test identity trees are built from mappings."""
        root = TestIdentity.from_dict({
            "label": "file.js",
            "kind": "file",
            "children": [{"label": "Suite", "kind": "suite", "children": [
                {"label": "case", "line": 4, "column": 2, "id": "c1"},
            ]}],
        })

        leaf = root.leaves()[0]
        assert root.kind == IdentityKind.FILE
        assert leaf.id == "c1"
        assert leaf.position == Position(line=4, column=2)
        assert leaf.ancestor_titles() == ["Suite"]

    def test_id_defaults_to_label(self):
        """Test identities without an id use their label."""
        assert TestIdentity("adds").id == "adds"


class TestOutcome:
    """Tests for Outcome.to_dict()."""

    def test_optional_fields(self):
        """Test only present fields are serialized."""
        identity = TestIdentity("adds")

        assert Outcome(identity, OutcomeStatus.SKIPPED).to_dict() == {
            "id": "adds", "label": "adds", "status": "skipped",
        }
        full = Outcome(identity, OutcomeStatus.FAILED, duration=1.23456, message="m", position=Position(2, 1))
        assert full.to_dict() == {
            "id": "adds",
            "label": "adds",
            "status": "failed",
            "duration_ms": 1.235,
            "message": "m",
            "position": {"line": 2, "column": 1},
        }
