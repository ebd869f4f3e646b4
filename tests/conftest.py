"""Shared test fixtures for the nit test suite."""

import asyncio
from pathlib import Path

import pytest

from nit.process import StartFailure, Success


class RunTracker:
    """Counts how many fake processes are running at any instant.

    Attributes:
        running: Processes started but not yet finished or killed.
        peak: Highest value running ever reached.
        started: Indices in the order their processes were started.
        finished: Indices in the order their processes finished.
    """

    def __init__(self):
        self.running = 0
        self.peak = 0
        self.started: list[int] = []
        self.finished: list[int] = []

    def on_start(self, index: int) -> None:
        self.running += 1
        self.peak = max(self.peak, self.running)
        self.started.append(index)

    def on_finish(self, index: int) -> None:
        self.running -= 1
        self.finished.append(index)


class FakeHandle:
    """ProcessHandle stand-in that finishes after a set number of polls."""

    def __init__(self, tracker: RunTracker, index: int, polls: int, returncode: int = 0):
        self.tracker = tracker
        self.index = index
        self.polls_left = polls
        self.returncode = returncode
        self.finished = False
        self.killed = False

    def poll(self):
        if self.polls_left > 0:
            self.polls_left -= 1
            return None
        if not self.finished:
            self.finished = True
            self.tracker.on_finish(self.index)
        return self.returncode

    def collect(self):
        return Success(
            returncode=self.returncode,
            stdout=f"out-{self.index}".encode(),
            stderr=b"",
        )

    def kill(self):
        self.killed = True
        self.tracker.on_finish(self.index)


class FakeAsyncProcess:
    """asyncio Process stand-in that finishes after a set delay."""

    def __init__(self, tracker: RunTracker, index: int, delay: float, returncode: int = 0):
        self.tracker = tracker
        self.index = index
        self.delay = delay
        self.returncode = None
        self._exit_code = returncode
        self.killed = False

    async def communicate(self):
        await asyncio.sleep(self.delay)
        self.returncode = self._exit_code
        self.tracker.on_finish(self.index)
        return f"out-{self.index}".encode(), b""

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


class FakeCommand:
    """Command stand-in for driving the schedulers without real processes.

    Args:
        index: Position of the command, used for output and tracking.
        tracker: Shared RunTracker.
        polls: Polls before completion under PollingScheduler.
        delay: Seconds before completion under SemaphoreScheduler.
        fail_start: Raise StartFailure instead of starting.
        returncode: Exit status reported on completion.
    """

    def __init__(
        self,
        index: int,
        tracker: RunTracker,
        polls: int = 1,
        delay: float = 0.01,
        fail_start: bool = False,
        returncode: int = 0,
    ):
        self.index = index
        self.target = Path(f"/work/repo-{index:02d}")
        self.tracker = tracker
        self.polls = polls
        self.delay = delay
        self.fail_start = fail_start
        self.returncode = returncode
        self.handles: list[FakeHandle] = []
        self.processes: list[FakeAsyncProcess] = []

    def render(self, scheme=None) -> str:
        return f"git -C {self.target} status"

    def _maybe_fail(self) -> None:
        if self.fail_start:
            raise StartFailure(FileNotFoundError(2, "No such file or directory", "git"))

    def start(self, scheme=None) -> FakeHandle:
        self._maybe_fail()
        self.tracker.on_start(self.index)
        handle = FakeHandle(self.tracker, self.index, self.polls, self.returncode)
        self.handles.append(handle)
        return handle

    async def spawn(self, scheme=None) -> FakeAsyncProcess:
        self._maybe_fail()
        self.tracker.on_start(self.index)
        proc = FakeAsyncProcess(self.tracker, self.index, self.delay, self.returncode)
        self.processes.append(proc)
        return proc


@pytest.fixture
def tracker():
    """A fresh RunTracker per test."""
    return RunTracker()


@pytest.fixture
def make_commands(tracker):
    """Build FakeCommands sharing the test's tracker.

    Returns:
        Callable: ``make_commands(n, **overrides_by_index)`` where each
        override is a dict of FakeCommand keyword arguments.
    """

    def _make(count: int, defaults: dict | None = None, **overrides: dict) -> list[FakeCommand]:
        commands = []
        for i in range(count):
            kwargs = dict(defaults or {})
            kwargs.update(overrides.get(f"i{i}", {}))
            commands.append(FakeCommand(i, tracker, **kwargs))
        return commands

    return _make


@pytest.fixture
def make_repo():
    """Create a fake repository directory with a .git dir (or .git file).

    Returns:
        Callable: ``make_repo(path, git_dir=True)`` returning the path.
    """

    def _make(path: Path, git_dir: bool = True) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        git_path = path / ".git"
        if git_dir:
            git_path.mkdir(exist_ok=True)
        else:
            git_path.write_text("gitdir: ../elsewhere\n")
        return path

    return _make


@pytest.fixture
def tmp_config(tmp_path):
    """Create a temporary config.toml and return the loaded NitConfig.

    Args:
        tmp_path: pytest built-in fixture for temp directory.

    Returns:
        tuple: (NitConfig, Path) - the loaded config and path to the config file.
    """
    config_dir = tmp_path / "nit"
    config_dir.mkdir()
    config_file = config_dir / "config.toml"
    config_file.write_text(
        "max_connections = 4\n"
        'scan_depth = "2"\n'
        'url_scheme = "https"\n'
        'strategy = "polling"\n'
        "poll_interval_ms = 10\n"
    )
    from nit.config import load_config
    config = load_config(config_file)
    yield config, config_file
