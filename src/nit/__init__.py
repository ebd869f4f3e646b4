"""nit: run one git command across many repositories in parallel."""

__version__ = "0.1.0"
