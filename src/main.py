"""Run the CLI with `python -m main` from `src/`.

Kept alongside the `zisk-dev` console script as a plain entry point.
"""

from __future__ import annotations

import sys

# Windows terminals may default to cp1252; child output and rich tables are utf-8.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")

from cli.main import run


def main() -> None:
    run()


if __name__ == "__main__":
    main()
