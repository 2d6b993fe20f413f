"""Tests for JUnit XML parsing in testrelay.parsers.junit_parser."""

from textwrap import dedent

import pytest

from testrelay.parsers.junit_parser import JUnitXmlParser, parse_attributes
from testrelay.types import AssertionStatus, Location


@pytest.fixture
def parser():
    return JUnitXmlParser()


class TestJUnitXmlParser:
    """Tests for JUnitXmlParser.parse()."""

    def test_nested_name_is_split(self, parser):
        """Test "Suite &gt; case" becomes ancestor and title."""
        xml = '<testsuite name="s"><testcase name="Suite &gt; case" file="a.test.js" time="0.01"/></testsuite>'

        result = parser.parse(xml)

        assertion = result.test_results[0].assertion_results[0]
        assert assertion.ancestor_titles == ["Suite"]
        assert assertion.title == "case"
        assert assertion.status == AssertionStatus.PASSED
        assert assertion.full_name == "Suite > case"

    def test_failure_error_and_skipped(self, parser):
        """Test failure, error and skipped children set the status."""
        xml = dedent("""\
            <?xml version="1.0" encoding="UTF-8"?>
            <testsuites>
              <testsuite name="math" tests="4">
                <testcase classname="math" name="adds" time="0.002"></testcase>
                <testcase classname="math" name="fails" time="0.5">
                  <failure message="expected 1 to be 2" type="AssertionError">at math.test.js:8:5</failure>
                </testcase>
                <testcase classname="math" name="crashes">
                  <error message="TypeError: x is undefined"/>
                </testcase>
                <testcase classname="math" name="later">
                  <skipped/>
                </testcase>
              </testsuite>
            </testsuites>
        """)

        result = parser.parse(xml)

        statuses = {a.title: a.status for a in result.assertion_results()}
        assert statuses == {
            "adds": AssertionStatus.PASSED,
            "fails": AssertionStatus.FAILED,
            "crashes": AssertionStatus.FAILED,
            "later": AssertionStatus.SKIPPED,
        }
        fails = result.assertion_results()[1]
        assert fails.failure_messages == ["expected 1 to be 2\nat math.test.js:8:5"]
        assert fails.duration == pytest.approx(500.0)
        crashes = result.assertion_results()[2]
        assert crashes.failure_messages == ["TypeError: x is undefined"]
        assert result.num_failed_tests == 2
        assert result.num_pending_tests == 1
        assert result.success is False

    def test_cdata_body(self, parser):
        """Test CDATA failure bodies are unwrapped."""
        xml = dedent("""\
            <testsuite>
              <testcase name="t" file="f.js">
                <failure><![CDATA[Expected: <1>
            Received: 2]]></failure>
              </testcase>
            </testsuite>
        """)

        assertion = parser.parse(xml).assertion_results()[0]

        assert assertion.failure_messages == ["Expected: <1>\nReceived: 2"]

    def test_grouping_by_file_then_classname(self, parser):
        """Test results are grouped by file, else classname, else unknown."""
        xml = dedent("""\
            <testsuite>
              <testcase name="a" file="one.js" classname="ignored"/>
              <testcase name="b" classname="two"/>
              <testcase name="c"/>
              <testcase name="d" file="one.js"/>
            </testsuite>
        """)

        result = parser.parse(xml)

        grouped = {f.name: [a.title for a in f.assertion_results] for f in result.test_results}
        assert grouped == {"one.js": ["a", "d"], "two": ["b"], "unknown": ["c"]}
        assert result.num_total_test_suites == 3

    def test_testcase_without_name_is_skipped(self, parser):
        """Test elements lacking a name attribute are ignored."""
        xml = '<testsuite><testcase classname="x"/><testcase name="kept"/></testsuite>'

        result = parser.parse(xml)

        assert [a.title for a in result.assertion_results()] == ["kept"]

    def test_attribute_order_and_quotes(self, parser):
        """Test single quotes and arbitrary attribute order."""
        xml = "<testsuite><testcase time='1.5' line='12' name='quoted &amp; escaped'/></testsuite>"

        assertion = parser.parse(xml).assertion_results()[0]

        assert assertion.title == "quoted & escaped"
        assert assertion.duration == pytest.approx(1500.0)
        assert assertion.location == Location(line=12, column=0)

    def test_not_junit(self, parser):
        """Test non-XML output gives None."""
        assert parser.parse("ok 1 - works\n1..1") is None

    def test_empty_suite(self, parser):
        """Test a suite without testcases parses to an empty run."""
        result = parser.parse('<testsuite name="empty" tests="0"></testsuite>')

        assert result.num_total_tests == 0
        assert result.success is True


class TestParseAttributes:
    """Tests for parse_attributes()."""

    def test_entities(self):
        """Test XML entities are unescaped."""
        attributes = parse_attributes('name="a &lt;b&gt; &quot;c&quot;" xml:lang="en"')

        assert attributes == {"name": 'a <b> "c"', "xml:lang": "en"}
