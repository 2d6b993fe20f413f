"""
Format parsers - normalize runner output into the canonical result schema.

The chain tried by parse_output():
- framed "results" message (testrelay.protocol)
- json_parser: Jest/Vitest JSON reports, pure or embedded in log output
- junit_parser: JUnit-style XML reports
- tap_parser: TAP line protocol with subtests and YAML diagnostics
"""

import logging
from typing import List, Optional, Tuple

from testrelay.parsers.base import NAME_SEPARATOR, ResultParser, split_test_name, strip_ansi
from testrelay.parsers.json_parser import JsonResultParser, normalize_payload
from testrelay.parsers.junit_parser import JUnitXmlParser
from testrelay.parsers.tap_parser import TapParser
from testrelay.protocol.framing import extract_results
from testrelay.types import CanonicalRunResult

logger = logging.getLogger(__name__)

STRUCTURED = "structured"
AUTO = "auto"

# Order matters: JSON is checked first because TAP recognition is the loosest
DEFAULT_PARSERS: List[ResultParser] = [
    JsonResultParser(),
    JUnitXmlParser(),
    TapParser(),
]

OUTPUT_FORMATS = (AUTO, STRUCTURED, *(p.name for p in DEFAULT_PARSERS))


def parse_output(
    text: str,
    output_format: str = AUTO,
    session_id: Optional[str] = None,
    parsers: Optional[List[ResultParser]] = None,
) -> Tuple[Optional[CanonicalRunResult], Optional[str]]:
    """
    Parse raw runner output with the first parser that recognizes it.

    Args:
        text: Raw output (ANSI escapes are stripped before parsing)
        output_format: "auto" to try the whole chain, or the name of a
            single parser ("structured", "json", "junit", "tap")
        session_id: Only accept framed messages tagged with this session
        parsers: Override the parser chain

    Returns:
        Tuple of (canonical result or None, name of the parser that produced it)

    Raises:
        ValueError: If output_format names no known parser
    """
    chain = parsers if parsers is not None else DEFAULT_PARSERS
    known = {p.name for p in chain}
    if output_format not in (AUTO, STRUCTURED) and output_format not in known:
        raise ValueError(
            f"Unknown output format '{output_format}'. "
            f"Expected one of: {', '.join([AUTO, STRUCTURED, *known])}"
        )

    if output_format in (AUTO, STRUCTURED):
        payload = extract_results(text, session_id)
        if payload is not None:
            result = normalize_payload(payload)
            if result is not None:
                logger.debug("Using framed structured results")
                return result, STRUCTURED
            logger.debug("Framed results payload is not a canonical report")
        if output_format == STRUCTURED:
            return None, None

    clean = strip_ansi(text)
    for parser in chain:
        if output_format != AUTO and parser.name != output_format:
            continue
        result = parser.parse(clean)
        if result is not None:
            logger.debug(f"Parsed output with {parser.name} parser")
            return result, parser.name

    logger.debug("No parser recognized the output")
    return None, None


__all__ = [
    "AUTO",
    "DEFAULT_PARSERS",
    "NAME_SEPARATOR",
    "OUTPUT_FORMATS",
    "STRUCTURED",
    "JUnitXmlParser",
    "JsonResultParser",
    "ResultParser",
    "TapParser",
    "normalize_payload",
    "parse_output",
    "split_test_name",
    "strip_ansi",
]
