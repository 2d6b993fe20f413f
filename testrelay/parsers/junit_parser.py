"""
JUnit-style XML report parsing.

Report XML is consumed with tolerant regular expressions rather than a full
XML parser: emitters differ in attribute order, self-closing versus
open/close testcase elements, and not all of them produce well-formed
documents. Only the narrow subset below is read:

    <testsuite ...>
      <testcase name="Suite &gt; case" file="a.test.js" time="0.012" line="4">
        <failure message="expected 1">stack...</failure>   (or <error>)
        <skipped/>
      </testcase>
    </testsuite>

Flat testcase elements do not encode suite nesting, so names flattened as
"Suite > case" are split back into ancestor titles and a title.
"""

import html
import logging
import re
from typing import Dict, List, Optional

from testrelay.parsers.base import ResultParser, split_test_name
from testrelay.types import (
    AssertionStatus,
    CanonicalAssertionResult,
    CanonicalFileResult,
    CanonicalRunResult,
    Location,
)

logger = logging.getLogger(__name__)

_TESTCASE_RE = re.compile(
    r"<testcase\b([^>]*?)/>|<testcase\b([^>]*?)>(.*?)</testcase>",
    re.DOTALL,
)
_ATTRIBUTE_RE = re.compile(r"([\w:.-]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")
_FAILURE_RE = re.compile(
    r"<(failure|error)\b([^>]*?)(?:/>|>(.*?)</\1>)",
    re.DOTALL,
)
_SKIPPED_RE = re.compile(r"<skipped\b")
_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)

UNKNOWN_FILE = "unknown"


def parse_attributes(attributes: str) -> Dict[str, str]:
    """Parse XML attributes into a dict with entities unescaped."""
    return {
        m.group(1): html.unescape(m.group(2) if m.group(2) is not None else m.group(3))
        for m in _ATTRIBUTE_RE.finditer(attributes)
    }


def _element_text(body: Optional[str]) -> str:
    if not body:
        return ""
    if _CDATA_RE.search(body):
        return _CDATA_RE.sub(lambda m: m.group(1), body).strip()
    return html.unescape(body).strip()


def _failure_messages(content: str) -> List[str]:
    messages = []
    for match in _FAILURE_RE.finditer(content):
        message = parse_attributes(match.group(2)).get("message", "")
        text = _element_text(match.group(3))
        combined = "\n".join(part for part in (message, text) if part)
        messages.append(combined or "Test failed")
    return messages


def _parse_duration(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value.replace(",", "")) * 1000
    except ValueError:
        return None


def _parse_location(value: Optional[str]) -> Optional[Location]:
    if not value or not value.isdigit() or int(value) < 1:
        return None
    return Location(line=int(value), column=0)


class JUnitXmlParser(ResultParser):
    """Parser for JUnit-style XML test reports."""

    name = "junit"

    def parse(self, output: str) -> Optional[CanonicalRunResult]:
        if "<testsuite" not in output:
            return None

        files: Dict[str, CanonicalFileResult] = {}

        for match in _TESTCASE_RE.finditer(output):
            raw_attributes = match.group(1) if match.group(1) is not None else match.group(2)
            content = match.group(3) or ""
            attributes = parse_attributes(raw_attributes or "")

            name = attributes.get("name")
            if not name:
                logger.debug("Skipping testcase without a name attribute")
                continue

            file_name = attributes.get("file") or attributes.get("classname") or UNKNOWN_FILE
            file_result = files.get(file_name)
            if file_result is None:
                file_result = files[file_name] = CanonicalFileResult(name=file_name)

            failure_messages = _failure_messages(content)
            if failure_messages:
                status = AssertionStatus.FAILED
            elif _SKIPPED_RE.search(content):
                status = AssertionStatus.SKIPPED
            else:
                status = AssertionStatus.PASSED

            parts = split_test_name(name)
            file_result.assertion_results.append(CanonicalAssertionResult(
                title=parts[-1],
                ancestor_titles=parts[:-1],
                full_name=name,
                status=status,
                duration=_parse_duration(attributes.get("time")),
                failure_messages=failure_messages or None,
                location=_parse_location(attributes.get("line")),
            ))

        return CanonicalRunResult.from_files(list(files.values()))
