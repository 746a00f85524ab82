from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException

from ..services.commands import CommandDispatcher, command_name, failure_text, status_code_for
from ..services.errors import SonosError


def create_commands_router(*, dispatcher: CommandDispatcher) -> APIRouter:
    router = APIRouter()

    @router.get("/api/commands")
    async def list_commands() -> dict:
        return {"commands": dispatcher.commands}

    @router.post("/api/players/{host}/commands")
    async def run_command(host: str, message: Any = Body(...)) -> dict:
        try:
            return await dispatcher.dispatch(host, message)
        except (SonosError, ValueError) as exc:
            raise HTTPException(
                status_code=status_code_for(exc),
                detail=failure_text(command_name(message), exc),
            ) from exc

    @router.get("/api/players/{host}/status")
    async def player_status(host: str) -> dict:
        record = dispatcher.status(host)
        if record is None:
            raise HTTPException(status_code=404, detail="No command has run for this player")
        return record

    return router
