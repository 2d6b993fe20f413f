"""testrelay - Run external test processes and reconcile their results."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("testrelay")
except PackageNotFoundError:
    # Package not installed, fallback to pyproject.toml version
    __version__ = "0.3.0"
