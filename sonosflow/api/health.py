from __future__ import annotations

from fastapi import APIRouter


def create_health_router(*, version: str) -> APIRouter:
    router = APIRouter()

    @router.get("/api/health")
    async def health() -> dict:
        return {"status": "ok", "version": version}

    return router
