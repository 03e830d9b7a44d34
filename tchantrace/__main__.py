"""Allow ``python -m tchantrace``."""

from tchantrace.cli import main

main()
