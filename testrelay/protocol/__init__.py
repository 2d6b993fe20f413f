"""Framing protocol for structured payloads embedded in process output."""

from .framing import (
    END,
    RESULTS_TYPE,
    START,
    DecodeResult,
    FrameDecoder,
    StructuredMessage,
    decode,
    encode,
    extract_results,
)

__all__ = [
    "END",
    "RESULTS_TYPE",
    "START",
    "DecodeResult",
    "FrameDecoder",
    "StructuredMessage",
    "decode",
    "encode",
    "extract_results",
]
