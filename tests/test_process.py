"""Tests for ProcessHandle and the outcome types (process.py).

These start real short-lived Python child processes, since the point of
ProcessHandle is how it interacts with the OS.
"""

import errno
import os
import sys
import tempfile
import time

import pytest

from nit.process import (
    Failure,
    ProcessHandle,
    ProcessTimeout,
    RuntimeFailure,
    StartFailure,
    Success,
)


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def _wait(handle: ProcessHandle, limit: float = 10.0) -> int:
    """Poll until the process exits, failing the test after limit seconds."""
    deadline = time.monotonic() + limit
    while time.monotonic() < deadline:
        status = handle.poll()
        if status is not None:
            return status
        time.sleep(0.01)
    pytest.fail("process did not exit in time")


def test_collect_captures_stdout_and_stderr_separately():
    """stdout and stderr land in separate byte strings with the exit status."""
    handle = ProcessHandle.launch(
        _python("import sys; sys.stdout.write('out'); sys.stderr.write('err'); sys.exit(3)"),
        dict(os.environ),
    )

    assert _wait(handle) == 3
    outcome = handle.collect()

    assert outcome == Success(returncode=3, stdout=b"out", stderr=b"err")


def test_large_output_does_not_block_polling():
    """A child writing more than a pipe buffer still finishes while only polled."""
    handle = ProcessHandle.launch(
        _python("import sys; sys.stdout.write('x' * 200000)"), dict(os.environ)
    )

    assert _wait(handle) == 0
    outcome = handle.collect()

    assert len(outcome.stdout) == 200000


def test_stdin_is_closed():
    """The child sees end-of-file immediately instead of waiting on a terminal."""
    handle = ProcessHandle.launch(
        _python("import sys; print(repr(sys.stdin.read()))"), dict(os.environ)
    )

    _wait(handle)
    assert handle.collect().stdout_text.strip() == "''"


def test_poll_is_non_blocking():
    """poll() returns None for a process that is still running."""
    handle = ProcessHandle.launch(_python("import time; time.sleep(5)"), dict(os.environ))
    try:
        assert handle.poll() is None
    finally:
        handle.kill()
    assert handle.poll() is not None


def test_launch_missing_executable():
    """A missing executable raises StartFailure with the OS error."""
    with pytest.raises(StartFailure) as excinfo:
        ProcessHandle.launch(["/nonexistent/definitely-not-git"], dict(os.environ))

    assert "spawn failed" in str(excinfo.value)
    assert isinstance(excinfo.value.cause, OSError)


def test_child_receives_environment():
    handle = ProcessHandle.launch(
        _python("import os; print(os.environ['NIT_PROBE'])"),
        {**os.environ, "NIT_PROBE": "hello"},
    )
    _wait(handle)
    assert handle.collect().stdout_text.strip() == "hello"


def test_text_properties_replace_invalid_bytes():
    outcome = Success(returncode=0, stdout=b"ok \xff", stderr=b"")
    assert outcome.stdout_text == "ok �"
    assert outcome.stderr_text == ""


def test_error_messages():
    """Failure messages are what the output line shows after ERROR:."""
    start = StartFailure(FileNotFoundError(2, "No such file or directory", "git"))
    assert str(start) == "spawn failed: [Errno 2] No such file or directory: 'git'"

    timeout = ProcessTimeout(2.5)
    assert isinstance(timeout, RuntimeFailure)
    assert str(timeout) == "timed out after 2.5s"

    assert Failure(timeout).error is timeout


def test_launch_capture_file_exhaustion(monkeypatch):
    """Running out of descriptors for capture files is a StartFailure.

    Scenario:
        - The second TemporaryFile call fails with EMFILE.
    Expected:
        - StartFailure wrapping the OSError, and the first file is closed.
    """
    opened = []
    real_temporary_file = tempfile.TemporaryFile

    def flaky_temporary_file():
        if opened:
            raise OSError(errno.EMFILE, "Too many open files")
        capture = real_temporary_file()
        opened.append(capture)
        return capture

    monkeypatch.setattr(tempfile, "TemporaryFile", flaky_temporary_file)

    with pytest.raises(StartFailure, match="Too many open files") as excinfo:
        ProcessHandle.launch(_python("pass"), dict(os.environ))

    assert excinfo.value.cause.errno == errno.EMFILE
    assert opened[0].closed
