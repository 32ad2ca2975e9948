"""
Entrypoint for ``python -m labctl``.
"""
import sys

from labctl.cli import main

if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
