"""Run the Penguin Brain chat service (FastAPI + uvicorn)."""

from __future__ import annotations

import argparse
import os

import uvicorn

from penguin_brain.web.app import DEFAULT_HOST, DEFAULT_PORT


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the Penguin Brain chat service")
    parser.add_argument("--host", default=None, help=f"Host to bind (default: PENGUIN_WEB_HOST or {DEFAULT_HOST})")
    parser.add_argument("--port", type=int, default=None, help=f"Port to bind (default: PENGUIN_WEB_PORT or {DEFAULT_PORT})")
    parser.add_argument("--reload", action="store_true", help="Enable autoreload (dev only)")
    parser.add_argument("--workers", type=int, default=1, help="Worker processes; rate limits are per process")
    args = parser.parse_args(argv)

    host = args.host or os.getenv("PENGUIN_WEB_HOST", DEFAULT_HOST)
    port = args.port or int(os.getenv("PENGUIN_WEB_PORT", DEFAULT_PORT))

    uvicorn.run(
        "penguin_brain.web.app:app",
        host=host,
        port=port,
        reload=args.reload,
        workers=None if args.reload else args.workers,
    )


if __name__ == "__main__":
    main()
