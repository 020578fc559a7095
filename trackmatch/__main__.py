"""Run the trackmatch API with uvicorn."""

from __future__ import annotations

import uvicorn

from trackmatch.config import resolve_app_host, resolve_app_port


def main() -> None:
    uvicorn.run(
        "trackmatch.main:create_app",
        factory=True,
        host=resolve_app_host(),
        port=resolve_app_port(),
    )


if __name__ == "__main__":
    main()
