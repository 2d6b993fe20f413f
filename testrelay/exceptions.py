"""Exception hierarchy for testrelay.

Only caller mistakes and unusable configuration raise. Malformed runner
output never does: parsers return None and the execution facade degrades
to the next parser or the raw-text fallback.
"""


class TestRelayError(Exception):
    """Base class for all testrelay errors."""

    __test__ = False


class FramingError(TestRelayError, ValueError):
    """Invalid arguments passed to the framing encoder."""


class ConfigError(TestRelayError):
    """Configuration file is missing, empty or invalid."""
