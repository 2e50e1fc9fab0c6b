"""Launch the wigglepuppy CLI from a source checkout.

Usage: ``python start.py PROMPT.md -a claude -m 10``
"""

from __future__ import annotations

import sys
from pathlib import Path

SOURCE_DIR = Path(__file__).resolve().parent / "src"


def launch(argv: list[str] | None = None) -> int:
    if str(SOURCE_DIR) not in sys.path:
        sys.path.insert(0, str(SOURCE_DIR))
    from wigglepuppy.cli import main

    return main(argv)


if __name__ == "__main__":
    sys.exit(launch(sys.argv[1:]))
