from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from .actions import SonosActions
from .errors import NotFoundError, SnapshotMismatchError, SonosError, ValidationError, describe_failure
from .helpers import REGEX_TIME, is_non_empty_string
from .models import KEEP_VOLUME, GroupLocation, NotificationOptions, Snapshot
from .notification import NotificationService
from .snapshot import SnapshotService, check_snapshot_matches
from .topology import TopologyService


log = logging.getLogger("sonosflow.commands")

MAX_STATUS_RECORDS = 256
HOSTNAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9.-]{0,251}[A-Za-z0-9])?$")


class CommandMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cmd: str = Field(min_length=1)
    payload: Any = None
    player_name: Optional[str] = Field(default=None, alias="playerName")
    volume: Optional[int] = Field(default=None, ge=0, le=100)
    same_volume: Optional[bool] = Field(default=None, alias="sameVolume")
    duration: Optional[str] = Field(default=None, pattern=REGEX_TIME.pattern)
    snap_volumes: bool = Field(default=False, alias="snapVolumes")
    snap_mutestates: bool = Field(default=False, alias="snapMutestates")

    @model_validator(mode="after")
    def _check_same_volume(self) -> "CommandMessage":
        if self.same_volume is True and self.volume is None:
            raise ValueError("sameVolume is true but no volume given")
        return self

    def notification_options(self, default_duration: str) -> NotificationOptions:
        if not is_non_empty_string(self.payload):
            raise ValidationError("payload (uri) is missing")
        return NotificationOptions(
            uri=self.payload.strip(),
            volume=KEEP_VOLUME if self.volume is None else self.volume,
            same_volume=True if self.same_volume is None else self.same_volume,
            automatic_duration=self.duration is None,
            duration=self.duration or default_duration,
        )


def parse_command(message: Any) -> CommandMessage:
    if not isinstance(message, dict):
        raise ValidationError("message is not an object")
    try:
        return CommandMessage.model_validate(message)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())) or 'message'}: {err.get('msg')}" for err in exc.errors()
        )
        raise ValidationError(f"invalid message - {problems}") from exc


def command_name(message: Any) -> str:
    cmd = message.get("cmd") if isinstance(message, dict) else None
    return cmd if isinstance(cmd, str) and cmd else "unknown"


def failure_text(cmd: str, exc: BaseException) -> str:
    short, detail = describe_failure(exc)
    return f"{cmd}:{short} :: Details: {detail}"


def status_code_for(exc: BaseException) -> int:
    if isinstance(exc, (ValidationError, ValueError)):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, SnapshotMismatchError):
        return 409
    return 502


Handler = Callable[[str, CommandMessage], Awaitable[Any]]


class CommandDispatcher:
    """Runs command messages against one player at a time.

    Commands addressed to the same host are serialized; each finished command
    updates the status record of that host.
    """

    def __init__(
        self,
        *,
        actions: SonosActions,
        topology: TopologyService,
        snapshots: SnapshotService,
        notifications: NotificationService,
        player_port: int = 1400,
        online_timeout: float = 2.0,
        default_duration: str = "00:00:05",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._actions = actions
        self._topology = topology
        self._snapshots = snapshots
        self._notifications = notifications
        self._player_port = int(player_port)
        self._online_timeout = float(online_timeout)
        self._default_duration = default_duration
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._status: OrderedDict[str, dict] = OrderedDict()
        self._handlers: dict[str, Handler] = {
            "group.create.snap": self._group_create_snap,
            "group.play.snap": self._group_play_snap,
            "group.play.notification": self._group_play_notification,
            "joiner.play.notification": self._joiner_play_notification,
            "group.get.members": self._group_get_members,
            "group.create.volumesnap": self._group_create_volumesnap,
            "household.get.groups": self._household_get_groups,
            "household.test.player": self._household_test_player,
            "player.get.role": self._player_get_role,
        }

    @property
    def commands(self) -> list[str]:
        return list(self._handlers)

    def player_origin(self, host: str) -> str:
        """Normalize host, host:port or an origin to scheme://host:port."""

        text = (host or "").strip()
        if not text:
            raise ValidationError("player host is missing")
        parsed = urlparse(text if "://" in text else f"http://{text}")
        try:
            port = parsed.port or self._player_port
        except ValueError as exc:
            raise ValidationError(f"player host {text} is invalid") from exc
        hostname = parsed.hostname or ""
        if (
            parsed.scheme not in {"http", "https"}
            or not HOSTNAME_RE.match(hostname)
            or parsed.path not in {"", "/"}
            or parsed.query
            or parsed.username
        ):
            raise ValidationError(f"player host {text} is invalid")
        return f"{parsed.scheme}://{hostname}:{port}"

    def status(self, host: str) -> Optional[dict]:
        try:
            origin = self.player_origin(host)
        except ValidationError:
            return None
        record = self._status.get(origin)
        return dict(record) if record else None

    def _set_status(self, origin: str, *, state: str, text: str, command: str) -> None:
        self._status[origin] = {"state": state, "text": text, "command": command, "updated_at": self._clock()}
        self._status.move_to_end(origin)
        while len(self._status) > MAX_STATUS_RECORDS:
            self._status.popitem(last=False)

    @asynccontextmanager
    async def _player_lock(self, origin: str) -> AsyncIterator[None]:
        # the lock is dropped once nobody holds or waits for it
        lock = self._locks.setdefault(origin, asyncio.Lock())
        self._lock_users[origin] = self._lock_users.get(origin, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[origin] -= 1
            if not self._lock_users[origin]:
                del self._lock_users[origin]
                del self._locks[origin]

    async def dispatch(self, host: str, message: Any) -> dict:
        cmd = command_name(message)
        try:
            origin = self.player_origin(host)
        except ValidationError as exc:
            log.warning("Command %s rejected: %s", cmd, exc)
            raise
        async with self._player_lock(origin):
            try:
                parsed = parse_command(message)
                handler = self._handlers.get(parsed.cmd)
                if handler is None:
                    raise ValidationError(f"command {parsed.cmd} is not supported")
                result = await handler(origin, parsed)
            except (SonosError, ValueError) as exc:
                log.warning("Command %s for %s failed: %s", cmd, origin, exc)
                self._set_status(origin, state="error", text=failure_text(cmd, exc), command=cmd)
                raise
            log.info("Command %s for %s done", cmd, origin)
            self._set_status(origin, state="ok", text=f"ok:{cmd}", command=cmd)
            return {"ok": True, "cmd": cmd, "payload": result}

    async def _location(self, origin: str, msg: CommandMessage) -> GroupLocation:
        return await self._topology.get_group_current(origin, msg.player_name)

    async def _group_create_snap(self, origin: str, msg: CommandMessage) -> dict:
        location = await self._location(origin, msg)
        snapshot = await self._snapshots.create_group_snapshot(
            location.members,
            snap_volumes=msg.snap_volumes,
            snap_mutestates=msg.snap_mutestates,
        )
        return snapshot.to_payload()

    async def _group_play_snap(self, origin: str, msg: CommandMessage) -> dict:
        if msg.payload is None:
            raise ValidationError("payload (snapshot) is missing")
        snapshot = Snapshot.from_payload(msg.payload)
        location = await self._location(origin, msg)
        check_snapshot_matches(snapshot, location)
        steps = await self._snapshots.restore_group_snapshot(snapshot)
        return {"steps": steps}

    async def _group_play_notification(self, origin: str, msg: CommandMessage) -> dict:
        options = msg.notification_options(self._default_duration)
        location = await self._location(origin, msg)
        steps = await self._notifications.play_group_notification(location.members, options)
        return {"steps": steps}

    async def _joiner_play_notification(self, origin: str, msg: CommandMessage) -> dict:
        options = msg.notification_options(self._default_duration)
        location = await self._location(origin, msg)
        if location.player_index == location.coordinator_index:
            raise ValidationError("player is not a joiner")
        steps = await self._notifications.play_joiner_notification(location.coordinator, location.player, options)
        return {"steps": steps}

    async def _group_get_members(self, origin: str, msg: CommandMessage) -> list[dict]:
        location = await self._location(origin, msg)
        return [member.to_payload() for member in location.members]

    async def _group_create_volumesnap(self, origin: str, msg: CommandMessage) -> None:
        location = await self._location(origin, msg)
        await self._actions.snapshot_group_volume(location.coordinator.origin)

    async def _household_get_groups(self, origin: str, msg: CommandMessage) -> list[list[dict]]:
        groups = await self._topology.get_all_groups(origin)
        return [[member.to_payload() for member in group.members] for group in groups]

    async def _household_test_player(self, origin: str, msg: CommandMessage) -> bool:
        target = origin
        if msg.payload is not None:
            if not is_non_empty_string(msg.payload):
                raise ValidationError("payload (player host) is invalid")
            target = self.player_origin(msg.payload)
        return await self._actions.is_online(target, timeout=self._online_timeout)

    async def _player_get_role(self, origin: str, msg: CommandMessage) -> str:
        location = await self._location(origin, msg)
        return location.role
