"""
pytest plugin that emits a framed canonical results payload.

This file is copied verbatim into a temp directory and loaded into the
runner's interpreter with ``-p testrelay_pytest_reporter``, so it must only
depend on the standard library and pytest's hook names.

At session finish it writes one frame to stdout:

    @@TESTRELAY_START::<session>::results::<len>::<json>@@TESTRELAY_END::<session>::results

The session id is read from the environment variable named by
TESTRELAY_SESSION_ENV (default TESTRELAY_SESSION_ID).
"""

import json
import os
import sys
from collections import OrderedDict

START = "@@TESTRELAY_START::"
END = "@@TESTRELAY_END::"

_records = OrderedDict()


def _session_id():
    env_var = os.environ.get("TESTRELAY_SESSION_ENV", "TESTRELAY_SESSION_ID")
    return os.environ.get(env_var) or "unknown"


def _encode(session_id, message_type, payload):
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    header = "{}{}::{}::{}::".format(START, session_id, message_type, len(body)).encode("utf-8")
    trailer = "{}{}::{}".format(END, session_id, message_type).encode("utf-8")
    return header + body + trailer


def _split_nodeid(nodeid):
    parts = nodeid.split("::")
    return parts[0], parts[1:-1], parts[-1]


def _record_for(report):
    record = _records.get(report.nodeid)
    if record is None:
        file_name, ancestors, title = _split_nodeid(report.nodeid)
        line = None
        if getattr(report, "location", None) and report.location[1] is not None:
            line = report.location[1] + 1
        record = {
            "file": file_name,
            "ancestorTitles": ancestors,
            "title": title,
            "status": "passed",
            "duration": 0.0,
            "failureMessages": [],
            "line": line,
        }
        _records[report.nodeid] = record
    return record


def pytest_runtest_logreport(report):
    record = _record_for(report)
    record["duration"] += (getattr(report, "duration", 0.0) or 0.0) * 1000

    if report.failed:
        record["status"] = "failed"
        record["failureMessages"].append(str(report.longrepr))
    elif report.skipped and record["status"] != "failed":
        record["status"] = "skipped"


def _build_payload():
    files = OrderedDict()
    for record in _records.values():
        files.setdefault(record["file"], []).append(record)

    test_results = []
    passed = failed = pending = 0
    failed_suites = pending_suites = 0
    for name, records in files.items():
        assertions = []
        for record in records:
            status = record["status"]
            if status == "passed":
                passed += 1
            elif status == "failed":
                failed += 1
            else:
                pending += 1
            assertions.append({
                "ancestorTitles": record["ancestorTitles"],
                "title": record["title"],
                "fullName": " ".join(record["ancestorTitles"] + [record["title"]]),
                "status": status,
                "duration": record["duration"],
                "failureMessages": record["failureMessages"] if status == "failed" else [],
                "location": {"line": record["line"], "column": 0} if record["line"] else None,
            })
        file_failed = any(a["status"] == "failed" for a in assertions)
        if file_failed:
            failed_suites += 1
        elif all(a["status"] not in ("passed", "failed") for a in assertions):
            pending_suites += 1
        test_results.append({
            "name": name,
            "status": "failed" if file_failed else "passed",
            "message": "",
            "assertionResults": assertions,
        })

    return {
        "numTotalTests": passed + failed + pending,
        "numPassedTests": passed,
        "numFailedTests": failed,
        "numPendingTests": pending,
        "numTotalTestSuites": len(test_results),
        "numPassedTestSuites": len(test_results) - failed_suites - pending_suites,
        "numFailedTestSuites": failed_suites,
        "numPendingTestSuites": pending_suites,
        "success": failed == 0,
        "testResults": test_results,
    }


def pytest_sessionfinish(session, exitstatus):
    frame = _encode(_session_id(), "results", _build_payload())
    sys.stdout.flush()
    stream = getattr(sys.stdout, "buffer", None)
    if stream is not None:
        stream.write(b"\n" + frame + b"\n")
        stream.flush()
    else:
        sys.stdout.write("\n" + frame.decode("utf-8") + "\n")
        sys.stdout.flush()
