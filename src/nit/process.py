"""Process lifecycle: launching, polling and collecting one git process."""

import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Union


class NitError(Exception):
    """Base class for per-target execution errors."""

    pass


class StartFailure(NitError):
    """Raised when the external process could not be launched."""

    def __init__(self, cause: OSError):
        super().__init__(f"spawn failed: {cause}")
        self.cause = cause


class RuntimeFailure(NitError):
    """Raised when a launched process could not be waited on or drained."""

    pass


class ProcessTimeout(RuntimeFailure):
    """Raised when a process outlived the configured timeout and was killed."""

    def __init__(self, timeout: float):
        super().__init__(f"timed out after {timeout:g}s")
        self.timeout = timeout


@dataclass(frozen=True)
class Success:
    """A process that ran to completion.

    The exit status is data: a non-zero returncode is still a Success.

    Attributes:
        returncode: Exit status of the process.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode(errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode(errors="replace")


@dataclass(frozen=True)
class Failure:
    """A process that failed to start or failed while running.

    Attributes:
        error: The StartFailure or RuntimeFailure describing what went wrong.
    """

    error: NitError


ProcessOutcome = Union[Success, Failure]


@dataclass(frozen=True)
class IndexedOutcome:
    """An outcome tagged with its target's position in discovery order.

    Attributes:
        index: Position of the target in the discovered list.
        target: The repository path the process ran against.
        outcome: What happened.
    """

    index: int
    target: Path
    outcome: ProcessOutcome


class ProcessHandle:
    """A running process whose output is spooled to anonymous temp files.

    Reason: The polling scheduler only reaps a process after poll() reports
    it finished. With pipes, a child writing more than the pipe buffer would
    block forever and never finish, so output goes to files instead.
    """

    def __init__(self, popen: subprocess.Popen, stdout_file: IO[bytes], stderr_file: IO[bytes]):
        self._popen = popen
        self._stdout_file = stdout_file
        self._stderr_file = stderr_file

    @classmethod
    def launch(cls, argv: list[str], env: dict[str, str]) -> "ProcessHandle":
        """Start a process without waiting for it.

        Args:
            argv: Executable and arguments.
            env: Complete environment for the child.

        Returns:
            ProcessHandle: Handle to the running process.

        Raises:
            StartFailure: If the executable could not be launched.
        """
        stdout_file = stderr_file = None
        try:
            # Reason: Capture files count against the fd limit too; running
            # out of descriptors here is a start failure for this target.
            stdout_file = tempfile.TemporaryFile()
            stderr_file = tempfile.TemporaryFile()
            popen = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=stdout_file,
                stderr=stderr_file,
                env=env,
            )
        except OSError as exc:
            for opened in (stdout_file, stderr_file):
                if opened is not None:
                    opened.close()
            raise StartFailure(exc) from exc
        return cls(popen, stdout_file, stderr_file)

    @property
    def pid(self) -> int:
        return self._popen.pid

    def poll(self) -> int | None:
        """Return the exit status if the process has finished, else None."""
        return self._popen.poll()

    def collect(self) -> ProcessOutcome:
        """Wait for the process and read back everything it wrote.

        Returns:
            ProcessOutcome: Success with the captured output, or Failure if
            the process could not be waited on or its output read.
        """
        try:
            returncode = self._popen.wait()
            self._stdout_file.seek(0)
            stdout = self._stdout_file.read()
            self._stderr_file.seek(0)
            stderr = self._stderr_file.read()
        except OSError as exc:
            return Failure(RuntimeFailure(str(exc)))
        finally:
            self._close()
        return Success(returncode=returncode, stdout=stdout, stderr=stderr)

    def kill(self) -> None:
        """Kill the process and release its capture files."""
        try:
            self._popen.kill()
            self._popen.wait()
        finally:
            self._close()

    def _close(self) -> None:
        self._stdout_file.close()
        self._stderr_file.close()
