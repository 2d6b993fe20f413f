"""
Base parser abstract class for runner output formats.

PARSER CONTRACT:
================

- parse() is a pure function of its input: the same text always yields the
  same CanonicalRunResult
- Input that is not in the parser's format, or is malformed, yields None.
  Parsers never raise for output quality problems; the caller moves on to
  the next parser and ultimately to the raw-text fallback.
"""

import re
from abc import ABC, abstractmethod
from typing import List, Optional

from testrelay.types import CanonicalRunResult

# Separator some reporters use to flatten suite nesting into a single name
NAME_SEPARATOR = " > "

_ANSI_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences (colors, cursor movement) from text."""
    return _ANSI_RE.sub("", text)


def split_test_name(name: str) -> List[str]:
    """
    Split a flattened "Suite > Nested > case" name into its parts.

    Returns:
        Non-empty list; the last element is the title, the rest are
        ancestor titles, outermost first.
    """
    parts = name.split(NAME_SEPARATOR)
    if len(parts) > 1 and all(parts):
        return parts
    return [name]


class ResultParser(ABC):
    """Base class for output format parsers."""

    name: str = "base"

    @abstractmethod
    def parse(self, output: str) -> Optional[CanonicalRunResult]:
        """Parse runner output into the canonical schema.

        Args:
            output: Raw output text (stdout and stderr combined)

        Returns:
            Canonical run result, or None if the output is not in this
            parser's format or could not be parsed
        """
        pass
