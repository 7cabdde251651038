"""Allow ``python -m nubridge``."""

from nubridge.cli import main

raise SystemExit(main())
