from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from .actions import SonosActions
from .errors import SnapshotMismatchError
from .helpers import encode_html_entities, safe_int
from .models import VOLUME_NOT_CAPTURED, ZERO_DURATION, GroupLocation, MemberState, PlayerEndpoint, Snapshot
from .pipeline import Pipeline, Sleep, gather_all


log = logging.getLogger("sonosflow.snapshot")


def check_snapshot_matches(snapshot: Snapshot, location: GroupLocation) -> None:
    """Fail when the live group differs from the one the snapshot was taken of."""

    if len(location.members) != len(snapshot.members):
        raise SnapshotMismatchError("snapshot/current group have different size")
    if location.members[0].name != snapshot.members[0].player_name:
        raise SnapshotMismatchError("snapshot/current group have different coordinator")
    names = {m.player_name for m in snapshot.members}
    for member in location.members[1:]:
        if member.name not in names:
            raise SnapshotMismatchError("snapshot/current group members are different")


class SnapshotService:
    def __init__(
        self,
        actions: SonosActions,
        *,
        track_settle_seconds: float = 0.5,
        position_settle_seconds: float = 0.1,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._actions = actions
        self._track_settle = float(track_settle_seconds)
        self._position_settle = float(position_settle_seconds)
        self._sleep = sleep

    async def _capture_member(self, member: PlayerEndpoint, snap_volumes: bool, snap_mutestates: bool) -> MemberState:
        state = MemberState(origin=member.origin, player_name=member.name)
        if snap_volumes:
            state.volume = await self._actions.get_volume(member.origin)
        if snap_mutestates:
            state.mute = await self._actions.get_mute(member.origin)
        return state

    async def create_group_snapshot(
        self,
        members: Sequence[PlayerEndpoint],
        *,
        snap_volumes: bool = False,
        snap_mutestates: bool = False,
    ) -> Snapshot:
        """Capture content, position and optionally member volume/mute.

        Any failing call fails the whole snapshot.
        """

        if not members:
            raise ValueError("group has no members")
        log.debug("method:%s members=%d", "create_group_snapshot", len(members))
        member_states = await gather_all(
            *(self._capture_member(m, snap_volumes, snap_mutestates) for m in members)
        )
        coordinator = members[0].origin
        playback_state, media, position = await gather_all(
            self._actions.get_playback_state(coordinator),
            self._actions.get_media_info(coordinator),
            self._actions.get_position_info(coordinator),
        )
        return Snapshot(
            was_playing=playback_state in {"playing", "transitioning"},
            playback_state=playback_state,
            current_uri=media.get("CurrentURI", ""),
            current_uri_metadata=media.get("CurrentURIMetaData", ""),
            nr_tracks=safe_int(media.get("NrTracks")),
            track=safe_int(position.get("Track")),
            rel_time=position.get("RelTime", ""),
            track_duration=position.get("TrackDuration", ""),
            members=list(member_states),
        )

    async def _restore_member_levels(self, snapshot: Snapshot) -> None:
        calls = []
        for member in snapshot.members:
            if member.volume != VOLUME_NOT_CAPTURED:
                calls.append(self._actions.set_volume(member.origin, member.volume))
            if member.mute is not None:
                calls.append(self._actions.set_mute(member.origin, member.mute))
        if calls:
            await gather_all(*calls)

    def restore_pipeline(self, snapshot: Snapshot) -> Pipeline:
        coordinator = snapshot.coordinator_origin
        track = snapshot.track
        rel_time = snapshot.rel_time
        pipeline = Pipeline("restore_group_snapshot", sleep=self._sleep)
        pipeline.add(
            "set_content",
            lambda: self._actions.set_av_transport_uri(
                coordinator,
                encode_html_entities(snapshot.current_uri),
                encode_html_entities(snapshot.current_uri_metadata),
            ),
        )
        pipeline.add(
            "seek_track",
            lambda: self._actions.seek_track(coordinator, track),
            requires=["set_content"],
            best_effort=True,
            settle=self._track_settle,
            when=1 <= track <= snapshot.nr_tracks,
        )
        pipeline.add(
            "seek_position",
            lambda: self._actions.seek_position(coordinator, rel_time),
            requires=["set_content"],
            best_effort=True,
            settle=self._position_settle,
            when=bool(rel_time) and snapshot.track_duration != ZERO_DURATION,
        )
        pipeline.add("restore_levels", lambda: self._restore_member_levels(snapshot))
        pipeline.add(
            "play",
            lambda: self._actions.play(coordinator),
            requires=["set_content", "restore_levels"],
            when=snapshot.was_playing,
        )
        return pipeline

    async def restore_group_snapshot(self, snapshot: Snapshot) -> list[str]:
        """Replay a snapshot onto the group it was captured from.

        The group topology must be unchanged since capture; this is not checked
        here (see check_snapshot_matches).
        """

        log.debug("method:%s coordinator=%s", "restore_group_snapshot", snapshot.coordinator_origin)
        return await self.restore_pipeline(snapshot).run()
