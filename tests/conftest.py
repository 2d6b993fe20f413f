"""Pytest configuration and fixtures for testrelay tests."""

import sys
from textwrap import dedent

import pytest

from testrelay.reporting import RecordingSink
from testrelay.types import IdentityKind, Position, TestIdentity


@pytest.fixture
def sink():
    """Create an empty RecordingSink."""
    return RecordingSink()


@pytest.fixture
def math_tree():
    """Identity tree: math.test.js > Math > [adds, fails]."""
    file_node = TestIdentity("math.test.js", kind=IdentityKind.FILE)
    suite = file_node.add_child(TestIdentity("Math", kind=IdentityKind.SUITE))
    suite.add_child(TestIdentity("adds", position=Position(line=3)))
    suite.add_child(TestIdentity("fails", position=Position(line=7)))
    return file_node


@pytest.fixture
def jest_report():
    """A complete Jest --json report with one passing and one failing test."""
    return {
        "numFailedTestSuites": 1,
        "numFailedTests": 1,
        "numPassedTestSuites": 0,
        "numPassedTests": 1,
        "numPendingTestSuites": 0,
        "numPendingTests": 0,
        "numTotalTestSuites": 1,
        "numTotalTests": 2,
        "success": False,
        "testResults": [
            {
                "name": "/project/math.test.js",
                "status": "failed",
                "startTime": 1700000000000,
                "endTime": 1700000000250,
                "message": "",
                "assertionResults": [
                    {
                        "ancestorTitles": ["Math"],
                        "title": "adds",
                        "fullName": "Math adds",
                        "status": "passed",
                        "duration": 3,
                        "failureMessages": [],
                        "location": {"line": 4, "column": 3},
                    },
                    {
                        "ancestorTitles": ["Math"],
                        "title": "fails",
                        "fullName": "Math fails",
                        "status": "failed",
                        "duration": 5,
                        "failureMessages": ["Error: expected 1 to be 2"],
                        "location": {"line": 8, "column": 5},
                    },
                ],
            }
        ],
    }


@pytest.fixture
def python_command():
    """Build (command, args) that run a Python snippet in a fresh interpreter."""
    def _build(code: str):
        return sys.executable, ["-c", dedent(code)]
    return _build
