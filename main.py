"""
main.py: server launcher and entry point.

Run this file to start the PortFlow booking API:

    python main.py

Interactive API docs are served at http://127.0.0.1:8000/docs

This file does NOT contain application logic. See portflow/main.py for the
FastAPI application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn portflow.main:app --reload
"""

from __future__ import annotations

import os

import uvicorn

from portflow.utils.config import get_settings


HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))


def main() -> None:
    """Start the PortFlow server."""
    print("=" * 60)
    print("  PortFlow: Terminal Slot Booking Service")
    print("=" * 60)
    print(f"  Server  : http://{HOST}:{PORT}")
    print(f"  API docs: http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    uvicorn.run(
        "portflow.main:app",
        host=HOST,
        port=PORT,
        reload=os.getenv("RELOAD", "").lower() in {"1", "true", "yes"},
        log_level=get_settings().log_level.lower(),
    )


if __name__ == "__main__":
    main()
