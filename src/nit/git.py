"""git command builder: argv, display string and process launch."""

import asyncio
import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from nit.process import ProcessHandle, StartFailure


GIT = "git"


class UrlScheme(str, Enum):
    """Remote URL scheme to force for every git invocation.

    Attributes:
        SSH: Rewrite https://github.com/ remotes to git@github.com:.
        HTTPS: Rewrite git@github.com: remotes to https://github.com/.
    """

    SSH = "ssh"
    HTTPS = "https"


SCHEME_REWRITES = {
    UrlScheme.SSH: "url.git@github.com:.insteadOf=https://github.com/",
    UrlScheme.HTTPS: "url.https://github.com/.insteadOf=git@github.com:",
}

# Reason: A run must never hang on a credential or passphrase prompt.
NO_PROMPT_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GCM_INTERACTIVE": "never",
}
BATCH_SSH_COMMAND = "ssh -o BatchMode=yes"


def git_environment(base: dict[str, str] | None = None) -> dict[str, str]:
    """Build the child environment with interactive prompting disabled.

    Args:
        base: Environment to start from. Defaults to os.environ.

    Returns:
        dict[str, str]: A new environment mapping.
    """
    env = dict(os.environ if base is None else base)
    env.update(NO_PROMPT_ENV)
    # Reason: Respect a user-provided ssh wrapper; only add BatchMode otherwise.
    env.setdefault("GIT_SSH_COMMAND", BATCH_SSH_COMMAND)
    return env


@dataclass(frozen=True)
class GitCommand:
    """A git invocation against one repository.

    Attributes:
        repo_path: Repository the command runs in (passed as ``-C``).
        args: git subcommand and its arguments.
    """

    repo_path: Path
    args: list[str] = field(default_factory=list)

    @property
    def target(self) -> Path:
        return self.repo_path

    def argv(self, scheme: UrlScheme | None = None) -> list[str]:
        """Build the full argument vector.

        The scheme rewrite must precede ``-C`` and the subcommand, since
        ``-c`` is a global git option.

        Args:
            scheme: Optional URL scheme override.

        Returns:
            list[str]: Executable followed by its arguments.
        """
        argv = [GIT]
        if scheme is not None:
            argv += ["-c", SCHEME_REWRITES[UrlScheme(scheme)]]
        argv += ["-C", str(self.repo_path), *self.args]
        return argv

    def render(self, scheme: UrlScheme | None = None) -> str:
        """Render the exact command line ``start`` would execute."""
        return shlex.join(self.argv(scheme))

    def start(self, scheme: UrlScheme | None = None) -> ProcessHandle:
        """Launch the command without waiting for it.

        Raises:
            StartFailure: If git could not be launched.
        """
        return ProcessHandle.launch(self.argv(scheme), git_environment())

    async def spawn(self, scheme: UrlScheme | None = None) -> asyncio.subprocess.Process:
        """Launch the command as an asyncio subprocess.

        Raises:
            StartFailure: If git could not be launched.
        """
        try:
            return await asyncio.create_subprocess_exec(
                *self.argv(scheme),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=git_environment(),
            )
        except OSError as exc:
            raise StartFailure(exc) from exc
