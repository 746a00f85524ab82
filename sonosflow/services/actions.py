from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

from .errors import ParseError


AV_TRANSPORT = "/MediaRenderer/AVTransport/Control"
RENDERING_CONTROL = "/MediaRenderer/RenderingControl/Control"
GROUP_RENDERING_CONTROL = "/MediaRenderer/GroupRenderingControl/Control"
ZONE_GROUP_TOPOLOGY = "/ZoneGroupTopology/Control"


class ActionExecutor(Protocol):
    async def execute_action(
        self,
        origin: str,
        control_path: str,
        action: str,
        arguments: Mapping[str, Any],
    ) -> dict[str, str]: ...

    async def is_online(self, origin: str, *, timeout: Optional[float] = None) -> bool: ...


class SonosActions:
    """Single-action commands with a small amount of result shaping.

    Every method performs exactly one remote call and propagates its errors.
    """

    def __init__(self, executor: ActionExecutor) -> None:
        self._executor = executor

    async def _call(self, origin: str, control_path: str, action: str, arguments: dict) -> dict[str, str]:
        return await self._executor.execute_action(origin, control_path, action, arguments)

    async def get_playback_state(self, origin: str) -> str:
        """Lowercase transport state such as playing, stopped, transitioning."""

        info = await self._call(origin, AV_TRANSPORT, "GetTransportInfo", {"InstanceID": 0})
        state = (info.get("CurrentTransportState") or "").strip()
        if not state:
            raise ParseError("CurrentTransportState is invalid/missing")
        return state.lower()

    async def get_media_info(self, origin: str) -> dict[str, str]:
        return await self._call(origin, AV_TRANSPORT, "GetMediaInfo", {"InstanceID": 0})

    async def get_position_info(self, origin: str) -> dict[str, str]:
        return await self._call(origin, AV_TRANSPORT, "GetPositionInfo", {"InstanceID": 0})

    async def set_av_transport_uri(self, origin: str, uri: str, metadata: str) -> None:
        # uri and metadata are sent as given; callers entity-encode them
        await self._call(
            origin,
            AV_TRANSPORT,
            "SetAVTransportURI",
            {"InstanceID": 0, "CurrentURI": uri, "CurrentURIMetaData": metadata},
        )

    async def seek_track(self, origin: str, track: int) -> None:
        await self._call(origin, AV_TRANSPORT, "Seek", {"InstanceID": 0, "Unit": "TRACK_NR", "Target": int(track)})

    async def seek_position(self, origin: str, rel_time: str) -> None:
        await self._call(origin, AV_TRANSPORT, "Seek", {"InstanceID": 0, "Unit": "REL_TIME", "Target": rel_time})

    async def play(self, origin: str) -> None:
        await self._call(origin, AV_TRANSPORT, "Play", {"InstanceID": 0, "Speed": 1})

    async def get_volume(self, origin: str) -> int:
        out = await self._call(origin, RENDERING_CONTROL, "GetVolume", {"InstanceID": 0, "Channel": "Master"})
        try:
            return int(out.get("CurrentVolume", ""))
        except ValueError as exc:
            raise ParseError("CurrentVolume is invalid/missing") from exc

    async def set_volume(self, origin: str, volume: int) -> None:
        desired = max(0, min(100, int(volume)))
        await self._call(
            origin,
            RENDERING_CONTROL,
            "SetVolume",
            {"InstanceID": 0, "Channel": "Master", "DesiredVolume": desired},
        )

    async def get_mute(self, origin: str) -> bool:
        out = await self._call(origin, RENDERING_CONTROL, "GetMute", {"InstanceID": 0, "Channel": "Master"})
        value = (out.get("CurrentMute") or "").strip()
        if value not in {"0", "1"}:
            raise ParseError("CurrentMute is invalid/missing")
        return value == "1"

    async def set_mute(self, origin: str, muted: bool) -> None:
        await self._call(
            origin,
            RENDERING_CONTROL,
            "SetMute",
            {"InstanceID": 0, "Channel": "Master", "DesiredMute": bool(muted)},
        )

    async def snapshot_group_volume(self, coordinator_origin: str) -> None:
        await self._call(coordinator_origin, GROUP_RENDERING_CONTROL, "SnapshotGroupVolume", {"InstanceID": 0})

    async def get_zone_group_state(self, origin: str) -> str:
        out = await self._call(origin, ZONE_GROUP_TOPOLOGY, "GetZoneGroupState", {})
        state = out.get("ZoneGroupState")
        if not state:
            raise ParseError("property ZoneGroupState is missing")
        return state

    async def is_online(self, origin: str, *, timeout: Optional[float] = None) -> bool:
        return await self._executor.is_online(origin, timeout=timeout)
