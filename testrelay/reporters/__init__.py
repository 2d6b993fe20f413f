"""
Helper reporter scripts loaded into runner processes.

Reporters are written to a temp directory the first time they are needed and
reused for the life of the process. The resulting ReporterPaths value is
immutable, so it is safe to share between concurrent runs.

Usage:
    paths = get_reporter_paths()
    env = {"PYTHONPATH": str(paths.directory)}
    args = ["-m", "pytest", "-p", paths.pytest_module, "tests/"]
"""

import logging
import tempfile
import threading
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

REPORTER_DIR_NAME = "testrelay-reporters"
PYTEST_MODULE = "testrelay_pytest_reporter"

_PLUGIN_SOURCES: Dict[str, str] = {
    f"{PYTEST_MODULE}.py": "pytest_plugin.py",
}

_lock = threading.Lock()
_cached: Dict[Path, "ReporterPaths"] = {}


@dataclass(frozen=True)
class ReporterPaths:
    """Locations of the written reporter scripts."""

    directory: Path
    pytest: Path

    @property
    def pytest_module(self) -> str:
        """Module name to pass to pytest's -p option."""
        return self.pytest.stem


def _read_source(name: str) -> str:
    return resources.files(__name__).joinpath(name).read_text(encoding="utf-8")


def _write_reporters(directory: Path) -> ReporterPaths:
    directory.mkdir(parents=True, exist_ok=True)
    for target, source in _PLUGIN_SOURCES.items():
        (directory / target).write_text(_read_source(source), encoding="utf-8")
    logger.debug(f"Wrote reporter scripts to {directory}")
    return ReporterPaths(directory=directory, pytest=directory / f"{PYTEST_MODULE}.py")


def get_reporter_paths(directory: Optional[Path] = None) -> ReporterPaths:
    """
    Write the reporter scripts once and return their paths.

    Args:
        directory: Target directory (defaults to a fixed directory under the
            system temp dir)

    Returns:
        The same ReporterPaths instance for every call with the same directory
    """
    target = Path(directory) if directory is not None else Path(tempfile.gettempdir()) / REPORTER_DIR_NAME
    cached = _cached.get(target)
    if cached is not None:
        return cached

    with _lock:
        cached = _cached.get(target)
        if cached is None:
            cached = _cached[target] = _write_reporters(target)
    return cached
