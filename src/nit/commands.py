"""Per-subcommand git arguments and one-line result formatters."""

import re
from dataclasses import dataclass
from typing import Callable

from nit.process import Failure, ProcessOutcome, Success


UP_TO_DATE = "Already up to date."
DIFFSTAT_RE = re.compile(r"\d+ files? changed")
AHEAD_BEHIND_RE = re.compile(r"\[(.+)\]$")


def _first_line(text: str) -> str:
    """Return the first non-blank line of text, stripped, or ""."""
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def _failed(result: Success) -> str:
    detail = _first_line(result.stderr_text) or _first_line(result.stdout_text)
    body = f"FAILED (exit {result.returncode})"
    return f"{body}: {detail}" if detail else body


def with_errors(summarize: Callable[[Success], str]) -> Callable[[ProcessOutcome], str]:
    """Turn a summary of a successful run into a formatter for any outcome.

    Failures render as ``ERROR: <message>`` and non-zero exits as
    ``FAILED (exit N): <first stderr line>``; only zero exits reach summarize.

    Args:
        summarize: Builds the line body from a zero-exit Success.

    Returns:
        Callable[[ProcessOutcome], str]: A formatter.
    """

    def formatter(outcome: ProcessOutcome) -> str:
        if isinstance(outcome, Failure):
            return f"ERROR: {outcome.error}"
        if outcome.returncode != 0:
            return _failed(outcome)
        return summarize(outcome)

    return formatter


def summarize_pull(result: Success) -> str:
    """Summarize ``git pull``: up to date, the diffstat line, or the first line."""
    stdout = result.stdout_text
    if "Already up to date" in stdout or "Already up-to-date" in stdout:
        return UP_TO_DATE
    for line in stdout.splitlines():
        if DIFFSTAT_RE.search(line):
            return f"Updated: {line.strip()}"
    return _first_line(stdout) or _first_line(result.stderr_text) or "ok"


def summarize_fetch(result: Success) -> str:
    """Summarize ``git fetch`` by counting updated refs.

    git fetch reports ref updates on stderr, one ``old..new  a -> b`` line each.
    """
    updated = [line for line in result.stderr_text.splitlines() if "->" in line]
    if not updated:
        return "up to date"
    noun = "ref" if len(updated) == 1 else "refs"
    return f"{len(updated)} {noun} updated"


def summarize_status(result: Success) -> str:
    """Summarize ``git status --porcelain --branch`` as branch plus change count."""
    lines = [line for line in result.stdout_text.splitlines() if line.strip()]
    branch = "unknown"
    tracking = ""
    changed = 0

    for line in lines:
        if line.startswith("## "):
            branch, tracking = _parse_branch_header(line[3:])
        else:
            changed += 1

    head = f"{branch} [{tracking}]" if tracking else branch
    return f"{head}: clean" if changed == 0 else f"{head}: {changed} changed"


def _parse_branch_header(header: str) -> tuple[str, str]:
    """Parse the ``## `` line of porcelain status into (branch, ahead/behind).

    Examples of header: ``main...origin/main [ahead 1]``, ``No commits yet on
    main``, ``HEAD (no branch)``.
    """
    tracking = ""
    match = AHEAD_BEHIND_RE.search(header)
    if match:
        tracking = match.group(1)
        header = header[: match.start()].strip()

    if header.startswith("No commits yet on "):
        return header[len("No commits yet on "):], tracking
    if header.startswith("HEAD (no branch)"):
        return "HEAD (detached)", tracking
    return header.split("...", 1)[0], tracking


def summarize_passthrough(result: Success) -> str:
    """First line git printed (stdout, then stderr), or "ok"."""
    return _first_line(result.stdout_text) or _first_line(result.stderr_text) or "ok"


@dataclass(frozen=True)
class Subcommand:
    """A nit subcommand: how to build git's arguments and format results.

    Attributes:
        name: git subcommand name.
        base_args: Arguments always passed after the subcommand name.
        formatter: Turns each outcome into a line body.
    """

    name: str
    base_args: tuple[str, ...]
    formatter: Callable[[ProcessOutcome], str]

    def git_args(self, extra: list[str] | None = None) -> list[str]:
        """Build the git argument list for this subcommand.

        Args:
            extra: User-supplied arguments appended after the base args.

        Returns:
            list[str]: Arguments following ``git -C <repo>``.
        """
        return [self.name, *self.base_args, *(extra or [])]


PULL = Subcommand("pull", (), with_errors(summarize_pull))
FETCH = Subcommand("fetch", (), with_errors(summarize_fetch))
STATUS = Subcommand("status", ("--porcelain", "--branch"), with_errors(summarize_status))


def passthrough(name: str) -> Subcommand:
    """Build a subcommand that hands any git command through unchanged."""
    return Subcommand(name, (), with_errors(summarize_passthrough))
