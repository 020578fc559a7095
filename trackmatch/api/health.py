"""Liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Health"], include_in_schema=False)


@router.get("/health")
async def health() -> dict[str, bool]:
    """Return a lightweight liveness response without dependency checks."""

    return {"ok": True}
