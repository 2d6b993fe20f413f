"""
TAP (Test Anything Protocol) output parsing.

Handles the line protocol emitted by the Node.js test runner and other TAP
producers:

    TAP version 14
    # Subtest: Math
        # Subtest: adds
        ok 1 - adds
          ---
          duration_ms: 0.41
          ...
        1..1
    ok 1 - Math
      ---
      type: 'suite'
      ...

Subtest declarations push frames onto a stack. A result line closes the
frame with the same name: a frame that never gained children was a test and
becomes a canonical assertion, a frame with children was a suite and is
not reported. Result lines that close no open frame are treated as leaves
at the current depth, which keeps flat emitters working.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from testrelay.parsers.base import ResultParser, split_test_name
from testrelay.types import (
    AssertionStatus,
    CanonicalAssertionResult,
    CanonicalFileResult,
    CanonicalRunResult,
    Location,
)

logger = logging.getLogger(__name__)

_RESULT_RE = re.compile(
    r"^(not\s+)?ok\s+(\d+)\s*(?:-\s*(.+?))?(?:\s+#\s*(SKIP|TODO)\b(?:\s+(.*))?)?$",
    re.IGNORECASE,
)
_SUBTEST_RE = re.compile(r"^#\s*Subtest:\s*(.*)$")
_PLAN_RE = re.compile(r"^\d+\.\.\d+")
_VERSION_RE = re.compile(r"^TAP version \d+", re.IGNORECASE)
_KEY_RE = re.compile(r"^(\s*)([\w-]+):(?:\s+(.*)|\s*)$")
_LOCATION_RE = re.compile(r":(\d+):(\d+)$")

_MULTILINE_MARKERS = ("|", "|-", "|+", ">", ">-")

DEFAULT_FILE_NAME = "unknown"


@dataclass
class _Frame:
    name: str
    has_children: bool = False


@dataclass
class _LeafRecord:
    ok: bool
    number: int
    name: str
    ancestors: List[str]
    directive: Optional[str] = None
    reason: Optional[str] = None
    diagnostic: Dict[str, str] = field(default_factory=dict)


class _SuiteRecord:
    """Marks a result line that closed a suite frame."""


_Record = Union[_LeafRecord, _SuiteRecord]


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        inner = value[1:-1]
        return inner.replace("''", "'") if value[0] == "'" else inner
    return value


def parse_diagnostic(lines: List[str]) -> Dict[str, str]:
    """
    Parse the YAML subset used in TAP diagnostic blocks.

    Supports `key: value` scalars (quotes stripped) and block scalars
    introduced by `|` or `|-`, whose more-indented continuation lines are
    joined with newlines. Nested mappings are flattened into their raw text.
    """
    result: Dict[str, str] = {}
    content = [line for line in lines if line.strip()]
    if not content:
        return result

    key_indent = min(_indent(line) for line in content)
    current_key: Optional[str] = None
    current_value: List[str] = []
    continuation_indent: Optional[int] = None

    def flush() -> None:
        if current_key is not None:
            result[current_key] = "\n".join(current_value).strip()

    for line in lines:
        match = _KEY_RE.match(line)
        if match and len(match.group(1)) == key_indent:
            flush()
            current_key = match.group(2)
            value = (match.group(3) or "").strip()
            continuation_indent = None
            current_value = [] if value in _MULTILINE_MARKERS or not value else [_unquote(value)]
            continue

        if current_key is None:
            continue
        if not line.strip():
            current_value.append("")
            continue
        if _indent(line) > key_indent:
            if continuation_indent is None:
                continuation_indent = _indent(line)
            current_value.append(line[min(continuation_indent, _indent(line)):])

    flush()
    return result


def _failure_messages(record: _LeafRecord) -> Optional[List[str]]:
    if record.ok:
        return None
    diagnostic = record.diagnostic
    messages = [diagnostic[key] for key in ("error", "message", "stack") if diagnostic.get(key)]
    if not messages and diagnostic:
        messages = ["\n".join(f"{k}: {v}" for k, v in diagnostic.items())]
    return messages or None


def _location(diagnostic: Dict[str, str]) -> Optional[Location]:
    line = diagnostic.get("line", "")
    if line.isdigit() and int(line) >= 1:
        column = diagnostic.get("column", "0")
        return Location(line=int(line), column=int(column) if column.isdigit() else 0)

    match = _LOCATION_RE.search(diagnostic.get("location", ""))
    if match and int(match.group(1)) >= 1:
        return Location(line=int(match.group(1)), column=int(match.group(2)))
    return None


def _duration(diagnostic: Dict[str, str]) -> Optional[float]:
    try:
        return float(diagnostic["duration_ms"])
    except (KeyError, ValueError):
        return None


def _to_assertion(record: _LeafRecord) -> CanonicalAssertionResult:
    if record.directive == "skip":
        status = AssertionStatus.SKIPPED
    elif record.directive == "todo":
        status = AssertionStatus.TODO
    elif record.ok:
        status = AssertionStatus.PASSED
    else:
        status = AssertionStatus.FAILED

    if record.ancestors:
        ancestors, title = list(record.ancestors), record.name
        full_name = None
    else:
        # Flat emitters encode nesting in the name itself
        parts = split_test_name(record.name)
        ancestors, title = parts[:-1], parts[-1]
        full_name = record.name if ancestors else None

    return CanonicalAssertionResult(
        title=title,
        status=status,
        ancestor_titles=ancestors,
        full_name=full_name,
        duration=_duration(record.diagnostic),
        failure_messages=_failure_messages(record) if status == AssertionStatus.FAILED else None,
        location=_location(record.diagnostic),
    )


class TapParser(ResultParser):
    """Parser for TAP output with subtests and YAML diagnostics."""

    name = "tap"

    def __init__(self, file_name: str = DEFAULT_FILE_NAME) -> None:
        self.file_name = file_name

    def parse(self, output: str) -> Optional[CanonicalRunResult]:
        records = self._parse_records(output)
        if records is None:
            return None

        leaves = [r for r in records if isinstance(r, _LeafRecord)]
        file_result = CanonicalFileResult(
            name=self.file_name,
            assertion_results=[_to_assertion(r) for r in leaves],
        )
        return CanonicalRunResult.from_files([file_result])

    def _parse_records(self, output: str) -> Optional[List[_Record]]:
        """Walk the lines, returning None when the output is not TAP at all."""
        records: List[_Record] = []
        frames: List[_Frame] = []
        seen_tap = False

        last_record: Optional[_Record] = None
        diagnostic_lines: Optional[List[str]] = None
        diagnostic_indent = 0

        def close_diagnostic() -> None:
            if isinstance(last_record, _LeafRecord):
                last_record.diagnostic = parse_diagnostic(diagnostic_lines or [])
            elif isinstance(last_record, _SuiteRecord):
                logger.debug("Discarding diagnostic block of a suite")

        for raw_line in output.splitlines():
            line = raw_line.rstrip()
            stripped = line.strip()

            if diagnostic_lines is not None:
                if stripped == "...":
                    close_diagnostic()
                    diagnostic_lines = None
                    last_record = None
                    continue
                ends_block = _indent(line) <= diagnostic_indent and (
                    _RESULT_RE.match(stripped) or _SUBTEST_RE.match(stripped)
                )
                if not ends_block:
                    diagnostic_lines.append(line)
                    continue
                # Unterminated block: close it and handle the line normally
                close_diagnostic()
                diagnostic_lines = None

            if stripped == "---":
                diagnostic_lines = []
                diagnostic_indent = _indent(line)
                continue

            subtest = _SUBTEST_RE.match(stripped)
            if subtest:
                seen_tap = True
                if frames:
                    frames[-1].has_children = True
                frames.append(_Frame(name=subtest.group(1).strip()))
                last_record = None
                continue

            result = _RESULT_RE.match(stripped)
            if result:
                seen_tap = True
                last_record = self._close_frame(result, frames)
                records.append(last_record)
                continue

            if _PLAN_RE.match(stripped) or _VERSION_RE.match(stripped):
                seen_tap = True
            last_record = None if stripped else last_record

        if diagnostic_lines is not None:
            close_diagnostic()

        return records if seen_tap else None

    def _close_frame(self, result: "re.Match[str]", frames: List[_Frame]) -> _Record:
        """Apply a result line to the frame stack."""
        not_ok, number, name, directive, reason = result.groups()
        name = (name or "").strip().replace("\\#", "#") or f"Test {number}"

        index = next(
            (i for i in range(len(frames) - 1, -1, -1) if frames[i].name == name),
            None,
        )
        if index is not None:
            closed = frames[index]
            if index != len(frames) - 1:
                logger.debug(f"Result for '{name}' closed {len(frames) - 1 - index} unterminated subtests")
            del frames[index:]
            if closed.has_children:
                return _SuiteRecord()
        elif frames:
            frames[-1].has_children = True

        return _LeafRecord(
            ok=not not_ok,
            number=int(number),
            name=name,
            ancestors=[f.name for f in frames],
            directive=directive.lower() if directive else None,
            reason=reason.strip() if reason else None,
        )
