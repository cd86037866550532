"""Entry point for running the CLI as a module."""
from __future__ import annotations

import sys

try:
    from .cli import run
except ModuleNotFoundError as exc:  # pragma: no cover - defensive guard for missing deps
    missing = getattr(exc, "name", None)
    if missing in {"typer", "msal", "jinja2", "yaml", "requests"}:
        sys.stderr.write(
            f"Missing dependency '{missing}'. Install the project with\n"
            "    pip install -e .\n"
        )
        raise SystemExit(1) from exc
    raise

run()
