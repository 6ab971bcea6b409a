"""Application entry point for the attestation verification server."""
from __future__ import annotations

import os

from .config import app
from . import routes  # noqa: F401  Registers the endpoints with Flask.


def main() -> None:
    app.run(
        host=os.environ.get("ATTEST_SERVER_HOST", "127.0.0.1"),
        port=int(os.environ.get("ATTEST_SERVER_PORT", "5000")),
        debug=bool(os.environ.get("FLASK_DEBUG")),
    )


__all__ = ["app", "main"]


if __name__ == "__main__":  # pragma: no cover - convenience script entry point.
    main()
