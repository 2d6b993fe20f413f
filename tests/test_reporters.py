"""Tests for helper reporter provisioning in testrelay.reporters."""

import threading
from dataclasses import FrozenInstanceError
from importlib import resources

import pytest

from testrelay.reporters import PYTEST_MODULE, ReporterPaths, get_reporter_paths


class TestGetReporterPaths:
    """Tests for get_reporter_paths()."""

    def test_writes_plugin_source(self, tmp_path):
        """Test the pytest plugin is written verbatim."""
        paths = get_reporter_paths(tmp_path / "reporters")

        expected = resources.files("testrelay.reporters").joinpath("pytest_plugin.py").read_text(encoding="utf-8")
        assert paths.pytest.read_text(encoding="utf-8") == expected
        assert paths.pytest.parent == paths.directory
        assert paths.pytest_module == PYTEST_MODULE

    def test_same_instance_is_reused(self, tmp_path):
        """Test later calls return the cached instance without rewriting."""
        first = get_reporter_paths(tmp_path / "reporters")
        first.pytest.write_text("# modified\n")

        second = get_reporter_paths(tmp_path / "reporters")

        assert second is first
        assert second.pytest.read_text() == "# modified\n"

    def test_directories_are_independent(self, tmp_path):
        """Test each directory gets its own paths."""
        one = get_reporter_paths(tmp_path / "one")
        two = get_reporter_paths(tmp_path / "two")

        assert one is not two
        assert one.pytest.exists()
        assert two.pytest.exists()

    def test_concurrent_first_use(self, tmp_path):
        """Test concurrent first calls all observe one instance."""
        target = tmp_path / "concurrent"
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(get_reporter_paths(target))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 8
        assert all(r is results[0] for r in results)

    def test_paths_are_frozen(self, tmp_path):
        """Test ReporterPaths cannot be mutated."""
        paths = get_reporter_paths(tmp_path / "frozen")

        with pytest.raises(FrozenInstanceError):
            paths.directory = tmp_path
        assert isinstance(paths, ReporterPaths)
        assert paths.directory == tmp_path / "frozen"
