"""Module entrypoint for ``python -m smarttesthub``."""

from __future__ import annotations

from smarttesthub.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
