"""Entry point for ``python -m devport_sdk``."""

import sys

from devport_sdk.cli import main

if __name__ == "__main__":
    sys.exit(main())
