"""
Process stream capture.

Spawns one runner process and pumps its stdout and stderr independently
into bounded buffers:

- each stream is capped at max_buffer_bytes; exceeding the cap kills the
  process and ends the capture with CaptureStatus.OVERFLOW
- stdout chunks are fed to a FrameDecoder as they arrive, so a framed
  "results" message split across any number of chunks is still found
- a CancellationToken kills the process cooperatively (CANCELLED)
- a spawn failure (binary missing, permission denied) is reported as
  SPAWN_ERROR instead of raising

There is no wall-clock timeout: the buffer cap is the only automatic abort.
"""

import asyncio
import codecs
import logging
import os
import shlex
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from testrelay.parsers.base import strip_ansi
from testrelay.parsers.json_parser import normalize_payload
from testrelay.protocol.framing import RESULTS_TYPE, FrameDecoder
from testrelay.types import CanonicalRunResult

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

STDOUT_OVERFLOW_MESSAGE = "Test output exceeded maximum buffer size"
STDERR_OVERFLOW_MESSAGE = "Error output exceeded maximum buffer size"


class CaptureStatus(str, Enum):
    """How a capture ended."""
    COMPLETED = "completed"
    OVERFLOW = "overflow"
    CANCELLED = "cancelled"
    SPAWN_ERROR = "spawn_error"


class CancellationToken:
    """
    Cooperative cancellation signal for one run.

    Usage:
        token = CancellationToken()
        task = asyncio.create_task(capture.run(token))
        token.cancel()
        result = await task  # result.status == CaptureStatus.CANCELLED
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class CaptureResult:
    """Everything observed while the process ran."""
    status: CaptureStatus
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    structured: Optional[CanonicalRunResult] = None
    error: Optional[str] = None
    duration: float = 0.0  # seconds

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr

    @property
    def clean_output(self) -> str:
        """Combined output with ANSI escapes removed."""
        return strip_ansi(self.output)


class _StreamBuffer:
    """Byte buffer for one stream, capped at a maximum size."""

    def __init__(self, name: str, limit: int, overflow_message: str) -> None:
        self.name = name
        self.limit = limit
        self.overflow_message = overflow_message
        self.data = bytearray()
        self.overflowed = False
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def append(self, chunk: bytes) -> Optional[str]:
        """Buffer a chunk, returning its decoded text or None on overflow."""
        if len(self.data) + len(chunk) > self.limit:
            self.data.extend(chunk[:self.limit - len(self.data)])
            self.overflowed = True
            return None
        self.data.extend(chunk)
        return self._text_decoder.decode(chunk)

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


class ProcessStreamCapture:
    """
    Capture the output of one runner process.

    Args:
        command: Executable (or shell command when shell=True)
        args: Arguments passed to the command
        cwd: Working directory
        env: Overrides merged over os.environ
        max_buffer_bytes: Per-stream capture cap
        session_id: Only framed messages tagged with this id are decoded
        shell: Run the joined command line through the shell
        on_output: Receives decoded text chunks from both streams
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        max_buffer_bytes: int = 50 * 1024 * 1024,
        session_id: Optional[str] = None,
        shell: bool = False,
        on_output: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.command = command
        self.args = list(args)
        self.cwd = cwd
        self.env = env or {}
        self.max_buffer_bytes = max_buffer_bytes
        self.session_id = session_id
        self.shell = shell
        self.on_output = on_output

        self._decoder = FrameDecoder(session_id)
        self._structured: Optional[CanonicalRunResult] = None

    @property
    def command_line(self) -> str:
        return shlex.join([self.command, *self.args])

    async def _spawn(self) -> asyncio.subprocess.Process:
        full_env = dict(os.environ)
        full_env.update(self.env)

        if self.shell:
            return await asyncio.create_subprocess_shell(
                self.command_line,
                cwd=self.cwd,
                env=full_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        return await asyncio.create_subprocess_exec(
            self.command,
            *self.args,
            cwd=self.cwd,
            env=full_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    def _feed_frames(self, chunk: bytes) -> None:
        for message in self._decoder.feed(chunk):
            if message.type != RESULTS_TYPE:
                continue
            result = normalize_payload(message.payload)
            if result is None:
                logger.debug("Ignoring framed results payload that is not a report")
                continue
            self._structured = result

    async def _pump(
        self,
        stream: asyncio.StreamReader,
        buffer: _StreamBuffer,
        is_stdout: bool,
    ) -> bool:
        """Read a stream to EOF. Returns False if the buffer overflowed."""
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                return True
            text = buffer.append(chunk)
            if text is None:
                logger.warning(f"{buffer.name} exceeded {self.max_buffer_bytes} bytes, killing process")
                return False
            if is_stdout:
                self._feed_frames(chunk)
            if text and self.on_output is not None:
                self.on_output(text)

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            # Already exited
            pass

    async def run(self, token: Optional[CancellationToken] = None) -> CaptureResult:
        """Spawn the process and capture it until exit, overflow or cancellation."""
        if token is not None and token.is_cancelled:
            return CaptureResult(status=CaptureStatus.CANCELLED)

        start = time.monotonic()
        logger.info(f"Running: {self.command_line}" + (f" (cwd: {self.cwd})" if self.cwd else ""))
        try:
            process = await self._spawn()
        except OSError as e:
            logger.error(f"Failed to spawn {self.command}: {e}")
            return CaptureResult(
                status=CaptureStatus.SPAWN_ERROR,
                error=str(e),
                duration=time.monotonic() - start,
            )

        stdout = _StreamBuffer("stdout", self.max_buffer_bytes, STDOUT_OVERFLOW_MESSAGE)
        stderr = _StreamBuffer("stderr", self.max_buffer_bytes, STDERR_OVERFLOW_MESSAGE)
        pumps: List[asyncio.Future] = [
            asyncio.ensure_future(self._pump(process.stdout, stdout, True)),
            asyncio.ensure_future(self._pump(process.stderr, stderr, False)),
        ]
        watcher = asyncio.ensure_future(token.wait()) if token is not None else None

        cancelled = False
        overflowed = False
        pending = set(pumps)
        try:
            while pending:
                waitables = pending | {watcher} if watcher is not None else pending
                done, _ = await asyncio.wait(waitables, return_when=asyncio.FIRST_COMPLETED)
                if watcher is not None and watcher in done:
                    cancelled = True
                    break
                pending -= done
                if any(not pump.result() for pump in done):
                    overflowed = True
                    break
        finally:
            if cancelled or overflowed:
                self._kill(process)
            for task in [*pumps, watcher]:
                if task is not None and not task.done():
                    task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            if watcher is not None:
                await asyncio.gather(watcher, return_exceptions=True)
            exit_code = await process.wait()

        # Cancellation may land after both pipes closed
        if not overflowed and token is not None and token.is_cancelled:
            cancelled = True

        duration = time.monotonic() - start
        result = CaptureResult(
            status=CaptureStatus.COMPLETED,
            exit_code=exit_code,
            stdout=stdout.text(),
            stderr=stderr.text(),
            structured=self._structured,
            duration=duration,
        )

        if overflowed:
            overflowing = stdout if stdout.overflowed else stderr
            result.status = CaptureStatus.OVERFLOW
            result.error = overflowing.overflow_message
        elif cancelled:
            logger.info(f"Run cancelled after {duration:.2f}s")
            result.status = CaptureStatus.CANCELLED
        else:
            logger.debug(f"Process exited with code {exit_code} after {duration:.2f}s")
        return result
