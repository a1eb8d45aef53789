"""Allow ``python -m alliance_watch``."""

from .cli import main

main()
