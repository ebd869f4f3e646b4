"""Bounded-concurrency execution with output in discovery order.

Two interchangeable schedulers run one git process per repository:

    PollingScheduler:   a single loop that polls running processes and
                        admits the next queued repo as soon as a slot frees.
    SemaphoreScheduler: one asyncio task per repo, each gated behind an
                        asyncio.Semaphore holding max_connections permits.

Both hand every finished IndexedOutcome to an OrderedEmitter, which prints
lines strictly in discovery order regardless of completion order.
"""

import asyncio
import logging
import time
from collections import deque
from pathlib import Path
from typing import Callable, Protocol, Sequence

from nit.config import ExecutionConfig
from nit.git import UrlScheme
from nit.process import (
    Failure,
    IndexedOutcome,
    ProcessHandle,
    ProcessOutcome,
    ProcessTimeout,
    RuntimeFailure,
    StartFailure,
    Success,
)
from nit.repo import repo_name


logger = logging.getLogger(__name__)

MAX_REPO_NAME_WIDTH = 24
TRUNCATION_MARKER = "-..."

Formatter = Callable[[ProcessOutcome], str]
Emit = Callable[[IndexedOutcome], None]


class Command(Protocol):
    """What a scheduler needs from a command: its target and how to start it."""

    @property
    def target(self) -> Path: ...

    def render(self, scheme: UrlScheme | None = None) -> str: ...

    def start(self, scheme: UrlScheme | None = None) -> ProcessHandle: ...

    async def spawn(self, scheme: UrlScheme | None = None) -> asyncio.subprocess.Process: ...


class Scheduler(Protocol):
    def run(self, commands: Sequence[Command], emit: Emit) -> None: ...


def format_repo_name(name: str, width: int = MAX_REPO_NAME_WIDTH) -> str:
    """Format a label at a fixed width so output columns line up.

    Args:
        name: Repository name.
        width: Width between the brackets.

    Returns:
        str: ``[name<padding>]``, with long names cut to ``width - 4``
        characters plus ``-...``. Always ``width + 2`` characters.
    """
    if len(name) > width:
        name = name[: width - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
    return f"[{name:<{width}}]"


class OrderedEmitter:
    """Releases outcomes to a sink strictly in index order.

    Outcomes may be pushed in any order. Each is held until every earlier
    index has been written, then formatted and written exactly once.

    Args:
        total: Number of outcomes expected (indices 0..total-1).
        formatter: Turns an outcome into the line body.
        sink: Receives each finished line.
        label: Turns a target into its display name.
    """

    def __init__(
        self,
        total: int,
        formatter: Formatter,
        sink: Callable[[str], None],
        label: Callable[[Path], str] = repo_name,
    ):
        self.total = total
        self.formatter = formatter
        self.sink = sink
        self.label = label
        self.next_index = 0
        self._held: dict[int, IndexedOutcome] = {}

    @property
    def pending(self) -> int:
        """Number of outcomes received but waiting on an earlier index."""
        return len(self._held)

    @property
    def emitted(self) -> int:
        return self.next_index

    @property
    def done(self) -> bool:
        return self.next_index >= self.total

    def push(self, item: IndexedOutcome) -> None:
        """Accept an outcome and flush every line that is now in order.

        Raises:
            ValueError: If the index is out of range or was already pushed.
        """
        if not 0 <= item.index < self.total:
            raise ValueError(f"outcome index {item.index} outside 0..{self.total - 1}")
        if item.index < self.next_index or item.index in self._held:
            raise ValueError(f"duplicate outcome for index {item.index}")

        self._held[item.index] = item
        while self.next_index in self._held:
            ready = self._held.pop(self.next_index)
            self.sink(f"{format_repo_name(self.label(ready.target))} {self.formatter(ready.outcome)}")
            self.next_index += 1


class PollingScheduler:
    """Single-threaded sliding window over the target list.

    Keeps at most ``max_connections`` processes running, reaps finished ones
    with non-blocking polls and starts the next queued target in the same
    pass that frees its slot.
    """

    def __init__(
        self,
        max_connections: int = 0,
        scheme: UrlScheme | None = None,
        poll_interval: float = 0.005,
        timeout: float | None = None,
    ):
        self.max_connections = max_connections
        self.scheme = scheme
        self.poll_interval = poll_interval
        self.timeout = timeout

    def _has_capacity(self, active: int) -> bool:
        return self.max_connections == 0 or active < self.max_connections

    def run(self, commands: Sequence[Command], emit: Emit) -> None:
        """Run every command, calling emit once per command as it finishes."""
        pending = deque(enumerate(commands))
        active: list[tuple[int, Command, ProcessHandle, float]] = []
        remaining = len(commands)

        try:
            while remaining:
                for entry in list(active):
                    index, command, handle, started = entry
                    outcome = self._reap(handle, started)
                    if outcome is None:
                        continue
                    active.remove(entry)
                    logger.debug("finished %s", command.target)
                    emit(IndexedOutcome(index, command.target, outcome))
                    remaining -= 1

                while pending and self._has_capacity(len(active)):
                    index, command = pending.popleft()
                    try:
                        handle = command.start(self.scheme)
                    except StartFailure as exc:
                        # Reason: A failed start never occupies a slot; the loop
                        # keeps admitting from the queue in the same pass.
                        logger.debug("could not start %s: %s", command.target, exc)
                        outcome = Failure(exc)
                    except Exception as exc:
                        logger.debug("error starting %s: %s", command.target, exc)
                        outcome = Failure(RuntimeFailure(str(exc)))
                    else:
                        logger.debug("started %s (%d active)", command.target, len(active) + 1)
                        active.append((index, command, handle, time.monotonic()))
                        continue
                    emit(IndexedOutcome(index, command.target, outcome))
                    remaining -= 1

                if active:
                    time.sleep(self.poll_interval)
        finally:
            # Reason: If emit raises (e.g. a closed stdout pipe) no child may
            # outlive the run.
            for _, command, handle, _ in active:
                logger.debug("killing %s", command.target)
                handle.kill()

    def _reap(self, handle: ProcessHandle, started: float) -> ProcessOutcome | None:
        """Return the outcome of a finished (or expired) process, else None."""
        try:
            status = handle.poll()
        except OSError as exc:
            handle.kill()
            return Failure(RuntimeFailure(str(exc)))

        if status is not None:
            return handle.collect()

        if self.timeout is not None and time.monotonic() - started > self.timeout:
            handle.kill()
            return Failure(ProcessTimeout(self.timeout))
        return None


class SemaphoreScheduler:
    """One asyncio task per target, gated by a counting semaphore.

    With ``max_connections == 0`` every target starts at once.
    """

    def __init__(
        self,
        max_connections: int = 0,
        scheme: UrlScheme | None = None,
        timeout: float | None = None,
    ):
        self.max_connections = max_connections
        self.scheme = scheme
        self.timeout = timeout

    def run(self, commands: Sequence[Command], emit: Emit) -> None:
        """Run every command, calling emit once per command as it finishes."""
        if not commands:
            return
        asyncio.run(self._run_all(commands, emit))

    async def _run_all(self, commands: Sequence[Command], emit: Emit) -> None:
        permits = self.max_connections or len(commands)
        semaphore = asyncio.Semaphore(permits)

        tasks = {
            asyncio.ensure_future(self._run_one(command, semaphore)): (index, command)
            for index, command in enumerate(commands)
        }
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                index, command = tasks[task]
                exc = task.exception()
                if exc is not None:
                    # Reason: Anything unexpected still yields exactly one
                    # outcome for the target instead of a silent drop.
                    outcome: ProcessOutcome = Failure(RuntimeFailure(str(exc)))
                else:
                    outcome = task.result()
                logger.debug("finished %s", command.target)
                emit(IndexedOutcome(index, command.target, outcome))

    async def _run_one(self, command: Command, semaphore: asyncio.Semaphore) -> ProcessOutcome:
        async with semaphore:
            try:
                proc = await command.spawn(self.scheme)
            except StartFailure as exc:
                logger.debug("could not start %s: %s", command.target, exc)
                return Failure(exc)

            logger.debug("started %s", command.target)
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                return Failure(ProcessTimeout(self.timeout))
            except OSError as exc:
                return Failure(RuntimeFailure(str(exc)))

        return Success(returncode=proc.returncode, stdout=stdout, stderr=stderr)


def select_scheduler(config: ExecutionConfig, target_count: int) -> Scheduler:
    """Pick the scheduler for a run.

    "auto" uses the polling loop when the cap actually limits concurrency,
    and the semaphore strategy (everything starts at once) otherwise.

    Args:
        config: Run configuration.
        target_count: Number of targets in this run.

    Returns:
        Scheduler: A ready-to-run scheduler.
    """
    strategy = config.strategy
    if strategy == "auto":
        strategy = "polling" if config.is_limited(target_count) else "semaphore"

    # Reason: A cap at or above the target count is the same as no cap.
    cap = config.max_connections if config.is_limited(target_count) else 0

    if strategy == "polling":
        return PollingScheduler(
            max_connections=cap,
            scheme=config.url_scheme,
            poll_interval=config.poll_interval,
            timeout=config.timeout,
        )
    return SemaphoreScheduler(max_connections=cap, scheme=config.url_scheme, timeout=config.timeout)


def run_parallel(
    config: ExecutionConfig,
    targets: Sequence[Path],
    build_command: Callable[[Path], Command],
    formatter: Formatter,
    sink: Callable[[str], None] = print,
    label: Callable[[Path], str] = repo_name,
    scheduler: Scheduler | None = None,
) -> list[IndexedOutcome]:
    """Run one command per target and print results in target order.

    In dry-run mode each target's command line is written to sink instead
    and nothing is started.

    Args:
        config: Run configuration.
        targets: Targets in discovery order.
        build_command: Builds the command for one target.
        formatter: Turns an outcome into a line body.
        sink: Receives each output line.
        label: Turns a target into its display name.
        scheduler: Overrides the scheduler chosen from config.

    Returns:
        list[IndexedOutcome]: All outcomes in target order (empty in dry-run).
    """
    commands = [build_command(target) for target in targets]

    if config.dry_run:
        for command in commands:
            sink(command.render(config.url_scheme))
        return []

    outcomes: list[IndexedOutcome] = []
    emitter = OrderedEmitter(len(commands), formatter, sink, label)

    def emit(item: IndexedOutcome) -> None:
        outcomes.append(item)
        emitter.push(item)

    if scheduler is None:
        scheduler = select_scheduler(config, len(commands))
    scheduler.run(commands, emit)

    return sorted(outcomes, key=lambda item: item.index)
