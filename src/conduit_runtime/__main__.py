"""Entry point for ``python -m conduit_runtime``."""

from .cli import main

main()
