"""Tests for Jest/Vitest JSON report parsing in testrelay.parsers.json_parser."""

import json

import pytest

from testrelay.parsers.json_parser import (
    JestDialectResult,
    JsonResultParser,
    VitestDialectResult,
    extract_json_object,
    normalize_payload,
    to_canonical,
)
from testrelay.types import AssertionStatus, FileStatus, Location


@pytest.fixture
def parser():
    return JsonResultParser()


class TestJestDialect:
    """Tests for complete Jest reports."""

    def test_parse_pure_json(self, parser, jest_report):
        """Test a whole-buffer Jest report is normalized."""
        result = parser.parse(json.dumps(jest_report))

        assert result is not None
        assert result.num_total_tests == 2
        assert result.num_failed_tests == 1
        assert result.success is False

        file_result = result.test_results[0]
        assert file_result.name == "/project/math.test.js"
        assert file_result.status == FileStatus.FAILED
        assert file_result.start_time == 1700000000000

        adds, fails = file_result.assertion_results
        assert adds.title == "adds"
        assert adds.ancestor_titles == ["Math"]
        assert adds.status == AssertionStatus.PASSED
        assert adds.failure_messages is None
        assert adds.location == Location(line=4, column=3)
        assert fails.status == AssertionStatus.FAILED
        assert fails.failure_messages == ["Error: expected 1 to be 2"]

    def test_supplied_counts_are_kept(self, parser, jest_report):
        """Test Jest aggregates are taken from the report, not recomputed."""
        jest_report["numTotalTests"] = 40
        result = parser.parse(json.dumps(jest_report))

        assert result.num_total_tests == 40

    def test_unknown_status_becomes_skipped(self, parser, jest_report):
        """Test disabled/focused statuses normalize to skipped."""
        jest_report["testResults"][0]["assertionResults"][0]["status"] = "disabled"
        result = parser.parse(json.dumps(jest_report))

        assert result.test_results[0].assertion_results[0].status == AssertionStatus.SKIPPED

    def test_null_ancestor_titles(self, parser, jest_report):
        """Test null ancestorTitles are treated as an empty list."""
        assertion = jest_report["testResults"][0]["assertionResults"][0]
        assertion["ancestorTitles"] = None
        del assertion["fullName"]
        result = parser.parse(json.dumps(jest_report))

        adds = result.test_results[0].assertion_results[0]
        assert adds.ancestor_titles == []
        assert adds.full_name == "adds"

    def test_dialect_is_tagged(self, jest_report):
        """Test the Jest tag selects the Jest model."""
        from testrelay.parsers.json_parser import _dialect_adapter

        assert isinstance(_dialect_adapter.validate_python(jest_report), JestDialectResult)


class TestVitestDialect:
    """Tests for Jest-like reports with missing aggregates."""

    def test_missing_counts_default_to_zero(self):
        """Test absent aggregates become zero and success is derived."""
        payload = {
            "testResults": [{
                "name": "sum.test.ts",
                "assertionResults": [{"title": "sums", "status": "passed"}],
            }],
        }
        result = normalize_payload(payload)

        assert result is not None
        assert result.num_total_tests == 0
        assert result.num_failed_tests == 0
        assert result.success is True
        assert result.test_results[0].assertion_results[0].title == "sums"

    def test_success_derived_from_failed_count(self):
        """Test success is False when numFailedTests is non-zero and success absent."""
        result = normalize_payload({"numFailedTests": 2, "testResults": []})

        assert result.success is False

    def test_explicit_success_kept(self):
        """Test a supplied success flag wins."""
        result = normalize_payload({"numFailedTests": 2, "success": True, "testResults": []})

        assert result.success is True

    def test_partial_jest_report(self, parser):
        """Test a report with only some Jest aggregates is still parsed."""
        output = json.dumps({
            "numFailedTestSuites": 0,
            "testResults": [{
                "name": "a",
                "assertionResults": [{"ancestorTitles": [], "title": "adds", "status": "passed"}],
            }],
        })

        result = parser.parse(output)

        assert result is not None
        assert result.success is True
        assert result.num_failed_test_suites == 0
        assert result.assertion_results()[0].title == "adds"

    def test_partial_jest_report_is_lenient_dialect(self):
        """Test missing aggregates select the lenient model."""
        from testrelay.parsers.json_parser import _dialect_adapter

        model = _dialect_adapter.validate_python({"numFailedTestSuites": 1, "testResults": []})

        assert isinstance(model, VitestDialectResult)

    def test_adapter_for_vitest_model(self):
        """Test the Vitest adapter fills every count."""
        model = VitestDialectResult.model_validate({"numPassedTests": 3, "testResults": []})
        result = to_canonical(model)

        assert result.num_passed_tests == 3
        assert result.num_pending_test_suites == 0


class TestNormalizePayload:
    """Tests for payload validation."""

    @pytest.mark.parametrize("payload", [
        None,
        [],
        "text",
        {},
        {"testResults": "not a list"},
        {"testResults": [{"assertionResults": [{"status": "passed"}]}]},
    ])
    def test_rejects_non_reports(self, payload):
        """Test non-report or invalid payloads give None."""
        assert normalize_payload(payload) is None


class TestEmbeddedJson:
    """Tests for reports wrapped in other output."""

    def test_extract_after_log_lines(self, parser, jest_report):
        """Test a report prefixed by monorepo tool output is found."""
        output = "> nx run app:test\n\nwarn: something {odd}\n" + json.dumps(jest_report) + "\nDone"

        result = parser.parse(output)

        assert result is not None
        assert result.num_total_tests == 2

    def test_braces_inside_strings(self):
        """Test the brace matcher honors strings and escapes."""
        report = {"testResults": [], "note": 'has } and { and \\" quotes'}
        text = "log " + json.dumps(report) + " trailing }"

        extracted = extract_json_object(text)

        assert json.loads(extracted) == report

    def test_unbalanced_object(self):
        """Test an unterminated object is not extracted."""
        assert extract_json_object('{"testResults": [') is None

    def test_plain_text(self, parser):
        """Test non-JSON output gives None."""
        assert parser.parse("PASS src/math.test.js\nTests: 2 passed") is None

    def test_deeply_nested_json(self, parser):
        """Test JSON nested past the decoder's recursion limit gives None."""
        assert parser.parse("[" * 200000) is None

    def test_deeply_nested_embedded_report(self, parser):
        """Test an embedded report nested too deeply to decode gives None."""
        output = 'log\n{"testResults": ' + "[" * 200000 + "]" * 200000 + "}"

        assert parser.parse(output) is None

    def test_pure_function(self, parser, jest_report):
        """Test parsing the same output twice gives equal results."""
        output = "noise\n" + json.dumps(jest_report)

        assert parser.parse(output) == parser.parse(output)
