"""Repository discovery below a root directory."""

import logging
import os
import subprocess
from pathlib import Path


logger = logging.getLogger(__name__)

SCAN_ALL = "all"


def parse_scan_depth(value: str) -> int | None:
    """Parse a --depth value.

    Args:
        value: A positive integer, or "all" (any case) for unlimited.

    Returns:
        int | None: The depth, or None for unlimited.

    Raises:
        ValueError: If the value is not "all" or a positive integer.
    """
    normalized = value.strip()
    if normalized.lower() == SCAN_ALL:
        return None

    try:
        depth = int(normalized)
    except ValueError:
        raise ValueError(
            f'invalid scan depth: {value}. Use a positive integer or "all".'
        ) from None

    if depth <= 0:
        raise ValueError('scan depth must be a positive integer or "all"')
    return depth


def is_inside_git_repo(path: Path) -> bool:
    """Check whether path is inside a git work tree or git dir.

    Uses ``git rev-parse --git-dir`` which handles worktrees, bare repos
    and $GIT_DIR.

    Args:
        path: Directory to check.

    Returns:
        bool: True if git recognizes path as part of a repository.
    """
    try:
        result = subprocess.run(
            ["git", "-C", str(path), "rev-parse", "--git-dir"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError:
        return False
    return result.returncode == 0


def find_git_repos(root: Path, scan_depth: int | None = 1) -> list[Path]:
    """Find git repositories below root.

    A directory holding a ``.git`` entry (directory, or file for worktrees
    and submodules) is a repository and is not descended into.

    Args:
        root: Directory to scan.
        scan_depth: Levels of subdirectories to scan. 1 checks only direct
            children of root. None scans the whole tree.

    Returns:
        list[Path]: Repository paths, sorted.
    """
    repos: list[Path] = []
    _scan_dir(root, 0, scan_depth, repos)
    return sorted(repos)


def _scan_dir(directory: Path, depth: int, max_depth: int | None, repos: list[Path]) -> None:
    try:
        entries = list(os.scandir(directory))
    except OSError as exc:
        logger.debug("skipping unreadable directory %s: %s", directory, exc)
        return

    for entry in entries:
        if not entry.is_dir():
            continue
        path = Path(entry.path)
        if (path / ".git").exists():
            repos.append(path)
            continue

        next_depth = depth + 1
        if max_depth is None or next_depth < max_depth:
            _scan_dir(path, next_depth, max_depth, repos)


def discover_targets(root: Path, scan_depth: int | None = 1) -> list[Path]:
    """Find repositories to operate on.

    Falls back to root itself when nothing is found below it but root is
    inside a repository, so nit works from within a single checkout.

    Args:
        root: Directory to scan.
        scan_depth: See find_git_repos.

    Returns:
        list[Path]: Targets in discovery order.
    """
    repos = find_git_repos(root, scan_depth)
    if not repos and is_inside_git_repo(root):
        logger.debug("no repositories below %s; using it as the only target", root)
        return [root]
    return repos


def repo_name(path: Path) -> str:
    """Return the repository's directory name, or "unknown" for a root path."""
    return path.name or "unknown"


def repo_display_name(path: Path, root: Path) -> str:
    """Display a repository path relative to root when possible.

    Args:
        path: Repository path.
        root: Directory discovery started from.

    Returns:
        str: Relative path for repos below root, else the bare name.
    """
    try:
        relative = path.relative_to(root)
    except ValueError:
        return repo_name(path)
    if relative == Path("."):
        return repo_name(path)
    return str(relative)
