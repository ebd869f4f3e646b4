"""Integration test fixtures for running against real git repositories."""

import subprocess

import pytest


def _git(*args: str, cwd=None) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def git_workspace(tmp_path):
    """A directory holding three freshly initialised git repositories.

    Each repo has one commit; "dirty" also has an untracked file.
    """
    for name in ("clean", "dirty", "other"):
        repo = tmp_path / name
        repo.mkdir()
        _git("init", "-q", "-b", "main", cwd=repo)
        (repo / "README.md").write_text(f"# {name}\n")
        _git("add", "README.md", cwd=repo)
        _git(
            "-c", "user.name=nit", "-c", "user.email=nit@example.com",
            "commit", "-q", "-m", "Initial commit",
            cwd=repo,
        )
    (tmp_path / "dirty" / "scratch.txt").write_text("wip\n")
    return tmp_path
