"""Entry point for `python -m sps`."""

from .cli import main

raise SystemExit(main())
