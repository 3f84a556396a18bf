"""Module entrypoint for ``python -m directive_intake``."""

from __future__ import annotations

from directive_intake.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
