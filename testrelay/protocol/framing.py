"""
Framing protocol for structured payloads embedded in process output.

An instrumented runner writes frames of the form

    @@TESTRELAY_START::<session>::<type>::<length>::<json>@@TESTRELAY_END::<session>::<type>

into its stdout, surrounded by arbitrary text (wrapper tool logs, progress
output). <length> is the UTF-8 byte length of <json>, so payloads that
themselves contain the sentinels are sliced exactly instead of being
truncated at the first end marker.

Decoding never raises on stream content: malformed frames are skipped and
incomplete frames are handed back as the remaining buffer so the caller can
re-offer them once more bytes arrive.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from testrelay.exceptions import FramingError

logger = logging.getLogger(__name__)

START = "@@TESTRELAY_START::"
END = "@@TESTRELAY_END::"

_START = START.encode("ascii")
_END = END.encode("ascii")

RESULTS_TYPE = "results"

_TOKEN_RE = re.compile(r"[^:\s]+")
_HEADER_RE = re.compile(rb"([^:\s]+)::([^:\s]+)::(\d+)::")
# Any proper prefix of a header that may still complete once more bytes arrive
_HEADER_PREFIX_RE = re.compile(
    rb"[^:\s]*(?::(?::(?:[^:\s]*(?::(?::(?:\d*(?::)?)?)?)?)?)?)?"
)
_MAX_HEADER_BYTES = 512

Buffer = Union[bytes, str]


@dataclass
class StructuredMessage:
    """A decoded frame. start/end are byte offsets into the decoded buffer."""

    type: str
    payload: Any
    start: int
    end: int


@dataclass
class DecodeResult:
    """Messages found in a buffer plus the tail to re-offer later."""

    messages: List[StructuredMessage] = field(default_factory=list)
    remaining: Buffer = b""


def _check_token(name: str, value: str) -> None:
    if not value or not _TOKEN_RE.fullmatch(value):
        raise FramingError(
            f"{name} must be non-empty and contain no ':' or whitespace, got: {value!r}"
        )


def encode(session_id: str, type: str, payload: Any) -> bytes:
    """
    Encode a payload as a single frame.

    Args:
        session_id: Caller-generated id, unique per concurrent run
        type: Message type (e.g. "results")
        payload: Any JSON-serializable value

    Returns:
        The frame as UTF-8 bytes

    Raises:
        FramingError: If session_id or type contain ':' or whitespace,
            or the payload is not JSON-serializable
    """
    _check_token("session_id", session_id)
    _check_token("type", type)
    try:
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise FramingError(f"Payload is not JSON-serializable: {e}") from e

    header = f"{START}{session_id}::{type}::{len(body)}::".encode("utf-8")
    trailer = f"{END}{session_id}::{type}".encode("utf-8")
    return header + body + trailer


def _partial_start_offset(data: bytes, cursor: int) -> int:
    """Offset of the longest suffix of data[cursor:] that is a proper prefix of START."""
    for size in range(min(len(_START) - 1, len(data) - cursor), 0, -1):
        if data.endswith(_START[:size]):
            return len(data) - size
    return len(data)


def decode(buffer: Buffer, session_id: Optional[str] = None) -> DecodeResult:
    """
    Extract every complete frame from a buffer.

    Args:
        buffer: Raw output, as bytes or text
        session_id: When given, only frames tagged with this session match

    Returns:
        DecodeResult whose remaining tail has the same type as buffer. The
        tail starts at the first incomplete frame, or is the part of a
        START sentinel split at the end of the buffer, or is empty.
    """
    as_text = isinstance(buffer, str)
    data = buffer.encode("utf-8") if as_text else bytes(buffer)

    messages: List[StructuredMessage] = []
    cursor = 0
    tail_start: Optional[int] = None

    while True:
        start_idx = data.find(_START, cursor)
        if start_idx == -1:
            break

        header_start = start_idx + len(_START)
        match = _HEADER_RE.match(data, header_start)
        if match is None:
            tail = data[header_start:header_start + _MAX_HEADER_BYTES + 1]
            if len(tail) <= _MAX_HEADER_BYTES and _HEADER_PREFIX_RE.fullmatch(tail):
                # Header not fully buffered yet
                tail_start = start_idx
                break
            cursor = start_idx + 1
            continue

        frame_session = match.group(1).decode("utf-8", errors="replace")
        frame_type = match.group(2).decode("utf-8", errors="replace")
        if session_id is not None and frame_session != session_id:
            cursor = start_idx + 1
            continue

        length = int(match.group(3))
        payload_start = match.end()
        payload_end = payload_start + length
        end_marker = _END + match.group(1) + b"::" + match.group(2)
        frame_end = payload_end + len(end_marker)

        if frame_end > len(data):
            available = data[payload_end:]
            if payload_end > len(data) or end_marker.startswith(available):
                tail_start = start_idx
                break
            cursor = start_idx + 1
            continue

        if data[payload_end:frame_end] != end_marker:
            cursor = start_idx + 1
            continue

        try:
            payload = json.loads(data[payload_start:payload_end].decode("utf-8"))
        except (UnicodeDecodeError, ValueError, RecursionError):
            logger.debug(f"Skipping frame with invalid JSON payload at offset {start_idx}")
            cursor = start_idx + 1
            continue

        messages.append(StructuredMessage(
            type=frame_type,
            payload=payload,
            start=start_idx,
            end=frame_end,
        ))
        cursor = frame_end

    if tail_start is None:
        tail_start = _partial_start_offset(data, cursor)

    remaining = data[tail_start:]
    return DecodeResult(
        messages=messages,
        remaining=remaining.decode("utf-8", errors="replace") if as_text else remaining,
    )


class FrameDecoder:
    """
    Incremental decoder for a single run.

    Owns the buffered tail between chunks so a frame split across any number
    of chunks is still decoded exactly once.
    """

    def __init__(self, session_id: Optional[str] = None) -> None:
        self.session_id = session_id
        self._buffer = b""

    @property
    def pending(self) -> bytes:
        """Bytes held back waiting for the rest of a frame."""
        return self._buffer

    def feed(self, chunk: Buffer) -> List[StructuredMessage]:
        """Append a chunk and return the frames it completed."""
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        result = decode(self._buffer + chunk, self.session_id)
        self._buffer = result.remaining
        return result.messages


def extract_results(output: Buffer, session_id: Optional[str] = None) -> Optional[Any]:
    """
    Return the payload of the last "results" frame in output, if any.

    The payload is returned as decoded JSON; normalize it with
    testrelay.parsers.json_parser.normalize_payload.
    """
    messages = [m for m in decode(output, session_id).messages if m.type == RESULTS_TYPE]
    if not messages:
        return None
    return messages[-1].payload
