"""Run the taskboard service under uvicorn."""

from __future__ import annotations

import os

import uvicorn

DEFAULT_PROCESS_HOST = "127.0.0.1"
DEFAULT_PROCESS_PORT = "18170"
APP_TARGET = "taskboard.main:app"


def resolve_bind() -> tuple[str, int]:
    host = os.getenv("PROCESS_HOST", DEFAULT_PROCESS_HOST).strip() or DEFAULT_PROCESS_HOST
    port = os.getenv("PROCESS_PORT", DEFAULT_PROCESS_PORT).strip() or DEFAULT_PROCESS_PORT
    try:
        return host, int(port)
    except ValueError as exc:
        raise SystemExit(f"PROCESS_PORT must be an integer, got {port!r}") from exc


def main() -> None:
    host, port = resolve_bind()
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
    uvicorn.run(APP_TARGET, host=host, port=port)


if __name__ == "__main__":
    main()
