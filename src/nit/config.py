"""Settings loading and the immutable per-run execution config."""

import os
from pathlib import Path
from typing import Literal, Optional

import tomllib
from pydantic import BaseModel, ConfigDict, Field, field_validator

from nit.git import UrlScheme
from nit.repo import parse_scan_depth


DEFAULT_CONFIG_PATH = Path.home() / ".config" / "nit" / "config.toml"
CONFIG_ENV_VAR = "NIT_CONFIG"

Strategy = Literal["auto", "polling", "semaphore"]


class NitConfig(BaseModel):
    """User settings read from config.toml.

    Attributes:
        max_connections: Max concurrent git processes. 0 means unlimited.
        scan_depth: How deep to look for repositories ("all" or a positive int).
        url_scheme: Force "ssh" or "https" remotes for every command.
        strategy: Scheduler strategy: "auto", "polling" or "semaphore".
        poll_interval_ms: Sleep between poll passes of the polling scheduler.
        timeout: Seconds before a git process is killed. None disables it.
    """

    max_connections: int = Field(default=8, ge=0)
    scan_depth: str = "1"
    url_scheme: Optional[UrlScheme] = None
    strategy: Strategy = "auto"
    poll_interval_ms: int = Field(default=5, gt=0)
    timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("scan_depth", mode="before")
    @classmethod
    def check_scan_depth(cls, v: object) -> str:
        """Accept integers or strings and validate them as a scan depth.

        Args:
            v: Raw value from TOML, an int or a string.

        Returns:
            str: The normalized string form.
        """
        value = str(v).strip()
        parse_scan_depth(value)
        return value


class ExecutionConfig(BaseModel):
    """Run-wide configuration consumed by the scheduler. Read-only.

    Attributes:
        dry_run: Print planned commands instead of running them.
        url_scheme: Optional URL scheme override.
        max_connections: Concurrency cap. 0 means unlimited.
        strategy: Scheduler strategy selection.
        poll_interval: Seconds between poll passes.
        timeout: Per-process timeout in seconds, or None.
    """

    model_config = ConfigDict(frozen=True)

    dry_run: bool = False
    url_scheme: Optional[UrlScheme] = None
    max_connections: int = Field(default=8, ge=0)
    strategy: Strategy = "auto"
    poll_interval: float = Field(default=0.005, gt=0)
    timeout: Optional[float] = Field(default=None, gt=0)

    @classmethod
    def from_settings(
        cls,
        settings: NitConfig,
        dry_run: bool = False,
        url_scheme: UrlScheme | None = None,
        max_connections: int | None = None,
    ) -> "ExecutionConfig":
        """Merge command-line overrides on top of file settings.

        Args:
            settings: Settings loaded from config.toml.
            dry_run: --dry-run flag.
            url_scheme: --ssh/--https selection, or None to use the file value.
            max_connections: -n value, or None to use the file value.

        Returns:
            ExecutionConfig: The frozen config for this run.
        """
        return cls(
            dry_run=dry_run,
            url_scheme=url_scheme if url_scheme is not None else settings.url_scheme,
            max_connections=(
                max_connections if max_connections is not None else settings.max_connections
            ),
            strategy=settings.strategy,
            poll_interval=settings.poll_interval_ms / 1000,
            timeout=settings.timeout,
        )

    def is_limited(self, target_count: int) -> bool:
        """Whether the cap actually restricts a run over target_count targets."""
        return 0 < self.max_connections < target_count


def load_config(path: Path | None = None) -> NitConfig:
    """Load settings from TOML.

    Resolution order: explicit path, $NIT_CONFIG, ~/.config/nit/config.toml.
    A missing file yields the defaults.

    Args:
        path: Path to the config file.

    Returns:
        NitConfig: The loaded and validated settings.

    Raises:
        pydantic.ValidationError: If the config file contains invalid values.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        return NitConfig()

    with open(path, "rb") as f:
        data = tomllib.load(f)

    return NitConfig(**data)
