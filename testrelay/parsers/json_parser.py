"""
Native JSON report parsing.

Two JSON dialects are accepted and mapped onto the canonical schema:

- JestDialectResult: the complete Jest `--json` report, recognized by every
  aggregate count and `success` being present
- VitestDialectResult: Vitest's json reporter and other Jest-like emitters,
  where aggregate counts may be missing. Missing counts default to zero and
  `success` defaults to `numFailedTests == 0`

The dialects form a tagged union validated with pydantic; each tag has its
own adapter into the canonical schema (see to_canonical).

Runner output is frequently wrapped (monorepo tools print log lines before
the report), so the parser falls back to locating the report object inside
free text with a string-aware brace matcher.
"""

import json
import logging
from functools import singledispatch
from typing import Annotated, Any, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from testrelay.parsers.base import ResultParser
from testrelay.types import (
    AssertionStatus,
    CanonicalAssertionResult,
    CanonicalFileResult,
    CanonicalRunResult,
    Location,
)

logger = logging.getLogger(__name__)

# Known leading fields of a report object embedded in free text
JSON_REPORT_PREFIXES = (
    '{"numFailedTestSuites"',
    '{"testResults"',
    '{"numTotalTestSuites"',
)

_KNOWN_STATUSES = {s.value for s in AssertionStatus}


# ============================================================================
# Wire models
# ============================================================================


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LocationModel(_WireModel):
    line: int
    column: Optional[int] = 0


class AssertionResultModel(_WireModel):
    """One entry of a file's assertionResults."""
    ancestor_titles: List[str] = Field(default_factory=list, alias="ancestorTitles")
    title: str
    full_name: Optional[str] = Field(default=None, alias="fullName")
    status: str
    duration: Optional[float] = None
    failure_messages: Optional[List[str]] = Field(default=None, alias="failureMessages")
    location: Optional[LocationModel] = None

    @field_validator("ancestor_titles", mode="before")
    @classmethod
    def validate_ancestor_titles(cls, v: Any) -> Any:
        """Some emitters write null instead of an empty list."""
        return [] if v is None else v

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> str:
        """Map statuses outside the canonical set (disabled, focused) to skipped."""
        status = str(v).lower()
        return status if status in _KNOWN_STATUSES else AssertionStatus.SKIPPED.value


class FileResultModel(_WireModel):
    """One entry of testResults."""
    name: str = "unknown"
    assertion_results: List[AssertionResultModel] = Field(
        default_factory=list, alias="assertionResults"
    )
    start_time: Optional[float] = Field(default=None, alias="startTime")
    end_time: Optional[float] = Field(default=None, alias="endTime")
    message: Optional[str] = ""


class JestDialectResult(_WireModel):
    """Complete Jest report: every aggregate is present."""
    num_failed_test_suites: int = Field(alias="numFailedTestSuites")
    num_failed_tests: int = Field(alias="numFailedTests")
    num_passed_test_suites: int = Field(alias="numPassedTestSuites")
    num_passed_tests: int = Field(alias="numPassedTests")
    num_pending_test_suites: int = Field(alias="numPendingTestSuites")
    num_pending_tests: int = Field(alias="numPendingTests")
    num_total_test_suites: int = Field(alias="numTotalTestSuites")
    num_total_tests: int = Field(alias="numTotalTests")
    success: bool
    test_results: List[FileResultModel] = Field(alias="testResults")


class VitestDialectResult(_WireModel):
    """Jest-like report where aggregates may be missing."""
    num_failed_test_suites: Optional[int] = Field(default=None, alias="numFailedTestSuites")
    num_failed_tests: Optional[int] = Field(default=None, alias="numFailedTests")
    num_passed_test_suites: Optional[int] = Field(default=None, alias="numPassedTestSuites")
    num_passed_tests: Optional[int] = Field(default=None, alias="numPassedTests")
    num_pending_test_suites: Optional[int] = Field(default=None, alias="numPendingTestSuites")
    num_pending_tests: Optional[int] = Field(default=None, alias="numPendingTests")
    num_total_test_suites: Optional[int] = Field(default=None, alias="numTotalTestSuites")
    num_total_tests: Optional[int] = Field(default=None, alias="numTotalTests")
    success: Optional[bool] = None
    test_results: List[FileResultModel] = Field(default_factory=list, alias="testResults")


_JEST_FIELDS = frozenset(
    field.alias or name for name, field in JestDialectResult.model_fields.items()
)


def _dialect_of(value: Any) -> Optional[str]:
    """Tag a raw report with its dialect."""
    if isinstance(value, dict):
        # Partial Jest-like reports validate as the lenient dialect
        return "jest" if _JEST_FIELDS.issubset(value) else "vitest"
    if isinstance(value, JestDialectResult):
        return "jest"
    if isinstance(value, VitestDialectResult):
        return "vitest"
    return None


DialectResult = Annotated[
    Union[
        Annotated[JestDialectResult, Tag("jest")],
        Annotated[VitestDialectResult, Tag("vitest")],
    ],
    Discriminator(_dialect_of),
]

_dialect_adapter: TypeAdapter = TypeAdapter(DialectResult)


# ============================================================================
# Dialect adapters
# ============================================================================


def _assertion_to_canonical(model: AssertionResultModel) -> CanonicalAssertionResult:
    location = None
    if model.location is not None and model.location.line >= 1:
        location = Location(line=model.location.line, column=model.location.column or 0)
    return CanonicalAssertionResult(
        title=model.title,
        status=AssertionStatus(model.status),
        ancestor_titles=list(model.ancestor_titles),
        full_name=model.full_name,
        duration=model.duration,
        failure_messages=list(model.failure_messages) if model.failure_messages else None,
        location=location,
    )


def _file_to_canonical(model: FileResultModel) -> CanonicalFileResult:
    return CanonicalFileResult(
        name=model.name,
        assertion_results=[_assertion_to_canonical(a) for a in model.assertion_results],
        start_time=model.start_time,
        end_time=model.end_time,
        message=model.message or "",
    )


@singledispatch
def to_canonical(result: Any) -> CanonicalRunResult:
    """Convert a validated dialect result into the canonical schema."""
    raise TypeError(f"No canonical adapter for {type(result).__name__}")


@to_canonical.register
def _(result: JestDialectResult) -> CanonicalRunResult:
    return CanonicalRunResult(
        test_results=[_file_to_canonical(f) for f in result.test_results],
        num_total_tests=result.num_total_tests,
        num_passed_tests=result.num_passed_tests,
        num_failed_tests=result.num_failed_tests,
        num_pending_tests=result.num_pending_tests,
        num_total_test_suites=result.num_total_test_suites,
        num_passed_test_suites=result.num_passed_test_suites,
        num_failed_test_suites=result.num_failed_test_suites,
        num_pending_test_suites=result.num_pending_test_suites,
        success=result.success,
    )


@to_canonical.register
def _(result: VitestDialectResult) -> CanonicalRunResult:
    num_failed_tests = result.num_failed_tests or 0
    return CanonicalRunResult(
        test_results=[_file_to_canonical(f) for f in result.test_results],
        num_total_tests=result.num_total_tests or 0,
        num_passed_tests=result.num_passed_tests or 0,
        num_failed_tests=num_failed_tests,
        num_pending_tests=result.num_pending_tests or 0,
        num_total_test_suites=result.num_total_test_suites or 0,
        num_passed_test_suites=result.num_passed_test_suites or 0,
        num_failed_test_suites=result.num_failed_test_suites or 0,
        num_pending_test_suites=result.num_pending_test_suites or 0,
        success=result.success if result.success is not None else num_failed_tests == 0,
    )


def normalize_payload(payload: Any) -> Optional[CanonicalRunResult]:
    """
    Validate a decoded JSON report and convert it to the canonical schema.

    Returns:
        Canonical run result, or None if the payload is not a report
        (not an object, or no testResults list) or fails validation
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("testResults"), list):
        return None
    try:
        dialect_result = _dialect_adapter.validate_python(payload)
    except ValidationError as e:
        logger.debug(f"JSON report failed validation: {e.error_count()} errors")
        return None
    return to_canonical(dialect_result)


# ============================================================================
# Extraction from free text
# ============================================================================


def _match_object(output: str, start: int) -> Optional[str]:
    """Slice the JSON object starting at start, honoring string and escape state."""
    depth = 0
    in_string = False
    escape_next = False

    for i in range(start, len(output)):
        char = output[i]

        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return output[start:i + 1]

    return None


def extract_json_object(output: str) -> Optional[str]:
    """
    Locate a report object embedded in free text.

    Tries each known leading field in turn and returns the first slice
    whose braces balance.
    """
    for prefix in JSON_REPORT_PREFIXES:
        start = output.find(prefix)
        if start == -1:
            continue
        extracted = _match_object(output, start)
        if extracted is not None:
            return extracted
    return None


class JsonResultParser(ResultParser):
    """Parser for Jest/Vitest JSON reports, pure or embedded in other output."""

    name = "json"

    def parse(self, output: str) -> Optional[CanonicalRunResult]:
        # Fast path: the whole output is the report
        try:
            result = normalize_payload(json.loads(output.strip()))
        except (ValueError, RecursionError):
            result = None
        if result is not None:
            return result

        extracted = extract_json_object(output)
        if extracted is None:
            return None
        try:
            return normalize_payload(json.loads(extracted))
        except (ValueError, RecursionError) as e:
            logger.debug(f"Failed to parse extracted JSON report: {e}")
            return None
