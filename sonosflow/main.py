import logging
import os
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from . import __version__
from .api.commands import create_commands_router
from .api.health import create_health_router
from .services.actions import SonosActions
from .services.commands import CommandDispatcher
from .services.helpers import REGEX_TIME
from .services.notification import NotificationService
from .services.snapshot import SnapshotService
from .services.soap import SoapClient
from .services.topology import TopologyService


logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
log = logging.getLogger("sonosflow")

SONOS_PLAYER_PORT = int(os.getenv("SONOS_PLAYER_PORT", "1400"))
SONOS_CONTROL_TIMEOUT = float(os.getenv("SONOS_CONTROL_TIMEOUT", "2.0"))
SONOS_ONLINE_TIMEOUT = float(os.getenv("SONOS_ONLINE_TIMEOUT", "2.0"))
SONOS_HTTP_USER_AGENT = os.getenv("SONOS_HTTP_USER_AGENT", f"sonosflow/{__version__}").strip() or "sonosflow"
NOTIFICATION_DEFAULT_DURATION = os.getenv("NOTIFICATION_DEFAULT_DURATION", "00:00:05").strip()
if not REGEX_TIME.match(NOTIFICATION_DEFAULT_DURATION):
    log.warning("Invalid NOTIFICATION_DEFAULT_DURATION %r, using 00:00:05", NOTIFICATION_DEFAULT_DURATION)
    NOTIFICATION_DEFAULT_DURATION = "00:00:05"
NOTIFICATION_WAIT_ADJUSTMENT_MS = int(os.getenv("NOTIFICATION_WAIT_ADJUSTMENT_MS", "2000"))
SNAPSHOT_TRACK_SETTLE_SECONDS = float(os.getenv("SNAPSHOT_TRACK_SETTLE_SECONDS", "0.5"))
SNAPSHOT_POSITION_SETTLE_SECONDS = float(os.getenv("SNAPSHOT_POSITION_SETTLE_SECONDS", "0.1"))

soap_client = SoapClient(http_user_agent=SONOS_HTTP_USER_AGENT, control_timeout=SONOS_CONTROL_TIMEOUT)
sonos_actions = SonosActions(soap_client)
dispatcher = CommandDispatcher(
    actions=sonos_actions,
    topology=TopologyService(sonos_actions),
    snapshots=SnapshotService(
        sonos_actions,
        track_settle_seconds=SNAPSHOT_TRACK_SETTLE_SECONDS,
        position_settle_seconds=SNAPSHOT_POSITION_SETTLE_SECONDS,
    ),
    notifications=NotificationService(sonos_actions, wait_adjustment_ms=NOTIFICATION_WAIT_ADJUSTMENT_MS),
    player_port=SONOS_PLAYER_PORT,
    online_timeout=SONOS_ONLINE_TIMEOUT,
    default_duration=NOTIFICATION_DEFAULT_DURATION,
)
http_client: Optional[httpx.AsyncClient] = None

app = FastAPI(title="sonosflow", version=__version__)


@app.exception_handler(HTTPException)
async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "detail": exc.detail})


app.include_router(create_health_router(version=__version__))
app.include_router(create_commands_router(dispatcher=dispatcher))


@app.on_event("startup")
async def _startup_events() -> None:
    global http_client
    http_client = httpx.AsyncClient(timeout=SONOS_CONTROL_TIMEOUT)
    soap_client.http_client = http_client
    log.info("sonosflow %s ready (player port %s)", __version__, SONOS_PLAYER_PORT)


@app.on_event("shutdown")
async def _shutdown_events() -> None:
    global http_client
    soap_client.http_client = None
    if http_client:
        await http_client.aclose()
        http_client = None
