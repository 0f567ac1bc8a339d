"""Allow running as python -m paneboard."""

from paneboard.cli import main

main()
