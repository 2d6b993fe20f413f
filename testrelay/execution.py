"""
Execution facade: capture a runner process and report one outcome per test.

Two paths are offered:

- standard: capture all output, prefer a framed "results" message, else run
  the parser chain, then reconcile against the requested identities (or
  fall back to indicator matching when nothing parsed)
- fast: a single test judged by exit code alone, no parsing

Whatever happens to the process, every requested identity receives exactly
one outcome:

    spawn error   -> all failed ("Failed to execute test runner: ...")
    overflow      -> all failed with the overflow message
    cancelled     -> all skipped
"""

import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from testrelay.capture import CancellationToken, CaptureResult, CaptureStatus, ProcessStreamCapture
from testrelay.config import RunMode, RunnerConfig
from testrelay.parsers import AUTO, STRUCTURED, parse_output, strip_ansi
from testrelay.reconcile import reconcile, reconcile_from_text
from testrelay.reporters import ReporterPaths, get_reporter_paths
from testrelay.reporting import ReportingSink
from testrelay.types import OutcomeStatus, Position, TestIdentity, flatten_identities

logger = logging.getLogger(__name__)

SPAWN_ERROR_PREFIX = "Failed to execute test runner"
DEFAULT_FAST_FAILURE = "Test failed"

PARSER_FALLBACK = "fallback"
PARSER_NONE = "none"


@dataclass
class RunReport:
    """Summary of one run."""
    mode: RunMode
    status: CaptureStatus
    exit_code: Optional[int] = None
    parser: str = PARSER_NONE
    session_id: Optional[str] = None
    duration: float = 0.0  # seconds
    counts: Dict[str, int] = field(default_factory=lambda: {s.value: 0 for s in OutcomeStatus})

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def success(self) -> bool:
        """True when no outcome failed or errored."""
        return (
            self.counts[OutcomeStatus.FAILED.value] == 0
            and self.counts[OutcomeStatus.ERRORED.value] == 0
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "mode": self.mode.value,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "parser": self.parser,
            "session_id": self.session_id,
            "duration_seconds": round(self.duration, 3),
            "counts": dict(self.counts),
            "success": self.success,
        }


class _CountingSink:
    """Forwards outcomes to the caller's sink while tallying them."""

    def __init__(self, sink: ReportingSink, counts: Dict[str, int]) -> None:
        self._sink = sink
        self._counts = counts

    def passed(self, identity: TestIdentity, duration: Optional[float] = None) -> None:
        self._counts[OutcomeStatus.PASSED.value] += 1
        self._sink.passed(identity, duration)

    def failed(
        self,
        identity: TestIdentity,
        message: str,
        position: Optional[Position] = None,
        duration: Optional[float] = None,
    ) -> None:
        self._counts[OutcomeStatus.FAILED.value] += 1
        self._sink.failed(identity, message, position=position, duration=duration)

    def skipped(self, identity: TestIdentity) -> None:
        self._counts[OutcomeStatus.SKIPPED.value] += 1
        self._sink.skipped(identity)

    def errored(self, identity: TestIdentity, message: str) -> None:
        self._counts[OutcomeStatus.ERRORED.value] += 1
        self._sink.errored(identity, message)

    def append_output(self, text: str) -> None:
        self._sink.append_output(text)


class TestRunExecutor:
    """
    Run test processes and report outcomes for the requested identities.

    Usage:
        executor = TestRunExecutor(config=load_config(path))
        sink = RecordingSink()
        report = await executor.run_tests(
            "npx", ["jest", "--json", "math.test.js"], cwd=project,
            env={}, identities=[file_node], sink=sink,
        )
    """

    __test__ = False

    def __init__(
        self,
        config: Optional[RunnerConfig] = None,
        reporter_paths: Optional[ReporterPaths] = None,
    ) -> None:
        self.config = config or RunnerConfig()
        self._reporter_paths = reporter_paths

    @property
    def reporter_paths(self) -> ReporterPaths:
        if self._reporter_paths is None:
            self._reporter_paths = get_reporter_paths(self.config.reporter_dir)
        return self._reporter_paths

    # ========================================================================
    # Environment
    # ========================================================================

    def reporter_env(self) -> Dict[str, str]:
        """
        Environment overrides that make the helper pytest reporter importable.

        Pass ``-p testrelay_pytest_reporter`` to pytest alongside these.
        """
        directory = str(self.reporter_paths.directory)
        existing = os.environ.get("PYTHONPATH")
        return {
            "PYTHONPATH": os.pathsep.join([directory, existing]) if existing else directory,
            "TESTRELAY_SESSION_ENV": self.config.session_env_var,
        }

    def _build_env(self, env: Optional[Dict[str, str]], session_id: Optional[str]) -> Dict[str, str]:
        full_env: Dict[str, str] = {}
        if self.config.force_color:
            full_env["FORCE_COLOR"] = "true"
        full_env.update(self.config.env)
        full_env.update(env or {})
        if session_id is not None:
            full_env[self.config.session_env_var] = session_id
        return full_env

    # ========================================================================
    # Runs
    # ========================================================================

    def can_use_fast_mode(self, identities: Sequence[TestIdentity]) -> bool:
        """Fast mode only applies to a run of exactly one test."""
        return len(flatten_identities(list(identities))) == 1

    async def run(
        self,
        command: str,
        args: Sequence[str],
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
        identities: Sequence[TestIdentity],
        sink: ReportingSink,
        token: Optional[CancellationToken] = None,
    ) -> RunReport:
        """Run in the configured mode; auto picks fast for a single test."""
        mode = self.config.mode
        if mode == RunMode.AUTO:
            mode = RunMode.FAST if self.can_use_fast_mode(identities) else RunMode.STANDARD
        elif mode == RunMode.FAST and not self.can_use_fast_mode(identities):
            logger.warning("Fast mode needs exactly one test, using standard mode")
            mode = RunMode.STANDARD

        if mode == RunMode.FAST:
            leaf = flatten_identities(list(identities))[0]
            return await self.run_test_fast(command, args, cwd, env, leaf, sink, token)
        return await self.run_tests(command, args, cwd, env, identities, sink, token)

    async def run_tests(
        self,
        command: str,
        args: Sequence[str],
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
        identities: Sequence[TestIdentity],
        sink: ReportingSink,
        token: Optional[CancellationToken] = None,
        max_buffer_bytes: Optional[int] = None,
        session_id: Optional[str] = None,
        output_format: Optional[str] = None,
    ) -> RunReport:
        """
        Standard path: capture, parse and reconcile.

        Args:
            command: Executable to run
            args: Arguments for the executable
            cwd: Working directory
            env: Environment overrides
            identities: Trees or leaves; outcomes are reported per leaf
            sink: Receiver of the outcomes
            token: Cancellation token
            max_buffer_bytes: Per-stream cap (defaults to config max_buffer_mb)
            session_id: Session id for framed messages (generated when absent)
            output_format: Parser to use (defaults to config output_format)

        Returns:
            RunReport describing how the run ended and was interpreted
        """
        leaves = flatten_identities(list(identities))
        session_id = session_id or uuid.uuid4().hex
        output_format = output_format or self.config.output_format

        report = RunReport(mode=RunMode.STANDARD, status=CaptureStatus.COMPLETED, session_id=session_id)
        counting = _CountingSink(sink, report.counts)

        capture = ProcessStreamCapture(
            command,
            args,
            cwd=cwd,
            env=self._build_env(env, session_id),
            max_buffer_bytes=max_buffer_bytes or self.config.max_buffer_bytes,
            session_id=session_id,
            shell=self.config.shell,
            on_output=sink.append_output,
        )
        result = await capture.run(token)
        report.status = result.status
        report.exit_code = result.exit_code
        report.duration = result.duration

        if self._report_aborted(result, leaves, counting):
            return report

        if result.structured is not None and output_format in (AUTO, STRUCTURED):
            logger.debug("Using structured results from the output stream")
            reconcile(result.structured, leaves, counting)
            report.parser = STRUCTURED
            return report

        run_result, parser_name = parse_output(result.output, output_format, session_id)
        if run_result is not None:
            reconcile(run_result, leaves, counting)
            report.parser = parser_name
        else:
            reconcile_from_text(
                result.clean_output, leaves, counting, self.config.fallback.to_indicators()
            )
            report.parser = PARSER_FALLBACK
        return report

    async def run_test_fast(
        self,
        command: str,
        args: Sequence[str],
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
        identity: TestIdentity,
        sink: ReportingSink,
        token: Optional[CancellationToken] = None,
    ) -> RunReport:
        """Fast path: judge a single test by the process exit code."""
        report = RunReport(mode=RunMode.FAST, status=CaptureStatus.COMPLETED)
        counting = _CountingSink(sink, report.counts)

        start = time.monotonic()
        capture = ProcessStreamCapture(
            command,
            args,
            cwd=cwd,
            env=self._build_env(env, None),
            max_buffer_bytes=self.config.max_buffer_bytes,
            shell=self.config.shell,
            on_output=sink.append_output,
        )
        result = await capture.run(token)
        report.status = result.status
        report.exit_code = result.exit_code
        report.duration = result.duration

        if self._report_aborted(result, [identity], counting):
            return report

        if result.exit_code == 0:
            counting.passed(identity, (time.monotonic() - start) * 1000)
        else:
            message = strip_ansi(result.stderr).strip() or strip_ansi(result.stdout).strip()
            counting.failed(identity, message or DEFAULT_FAST_FAILURE)
        return report

    def _report_aborted(
        self,
        result: CaptureResult,
        leaves: List[TestIdentity],
        sink: ReportingSink,
    ) -> bool:
        """Report every identity for runs that produced no usable output."""
        if result.status == CaptureStatus.SPAWN_ERROR:
            message = f"{SPAWN_ERROR_PREFIX}: {result.error}"
            for identity in leaves:
                sink.failed(identity, message)
            return True

        if result.status == CaptureStatus.OVERFLOW:
            for identity in leaves:
                sink.failed(identity, result.error or "")
            return True

        if result.status == CaptureStatus.CANCELLED:
            for identity in leaves:
                sink.skipped(identity)
            return True

        return False
