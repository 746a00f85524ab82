from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from .errors import ParseError
from .helpers import safe_int


VOLUME_NOT_CAPTURED = -1
KEEP_VOLUME = -1
ZERO_DURATION = "0:00:00"


@dataclass(frozen=True)
class PlayerEndpoint:
    origin: str
    name: str
    uuid: str
    group_id: str = ""
    invisible: bool = False
    channel_map_set: str = ""
    ht_sat_chan_map_set: str = ""

    @property
    def host(self) -> str:
        return urlparse(self.origin).hostname or ""

    def to_payload(self) -> dict:
        return {
            "urlSchemeAuthority": self.origin,
            "playerName": self.name,
            "uuid": self.uuid,
            "groupId": self.group_id,
            "invisible": self.invisible,
            "channelMapSet": self.channel_map_set,
            "htSatChanMapSet": self.ht_sat_chan_map_set,
        }


@dataclass
class Group:
    """Members of one zone group; the coordinator is always at index 0."""

    id: str
    members: list[PlayerEndpoint]

    @property
    def coordinator(self) -> PlayerEndpoint:
        return self.members[0]


@dataclass
class GroupLocation:
    group_id: str
    player_index: int
    members: list[PlayerEndpoint]
    coordinator_index: int = 0

    @property
    def coordinator(self) -> PlayerEndpoint:
        return self.members[self.coordinator_index]

    @property
    def player(self) -> PlayerEndpoint:
        return self.members[self.player_index]

    @property
    def role(self) -> str:
        if len(self.members) == 1:
            return "standalone"
        if self.player_index == self.coordinator_index:
            return "coordinator"
        return "joiner"

    def to_payload(self) -> dict:
        return {
            "groupId": self.group_id,
            "playerIndex": self.player_index,
            "coordinatorIndex": self.coordinator_index,
            "members": [m.to_payload() for m in self.members],
        }


@dataclass
class MemberState:
    origin: str
    player_name: str
    volume: int = VOLUME_NOT_CAPTURED
    mute: Optional[bool] = None


@dataclass
class Snapshot:
    """Restorable state of one group, captured before a disruptive operation.

    Restoring assumes the group topology has not changed since capture.
    """

    was_playing: bool
    playback_state: str
    current_uri: str
    current_uri_metadata: str
    nr_tracks: int
    track: int
    rel_time: str
    track_duration: str
    members: list[MemberState] = field(default_factory=list)

    @property
    def coordinator_origin(self) -> str:
        return self.members[0].origin

    def to_payload(self) -> dict:
        return {
            "wasPlaying": self.was_playing,
            "playbackstate": self.playback_state,
            "CurrentURI": self.current_uri,
            "CurrentURIMetadata": self.current_uri_metadata,
            "NrTracks": self.nr_tracks,
            "Track": self.track,
            "RelTime": self.rel_time,
            "TrackDuration": self.track_duration,
            "membersData": [
                {
                    "urlSchemeAuthority": m.origin,
                    "playerName": m.player_name,
                    "volume": m.volume,
                    "mutestate": m.mute,
                }
                for m in self.members
            ],
        }

    @classmethod
    def from_payload(cls, data: Any) -> "Snapshot":
        if not isinstance(data, dict):
            raise ParseError("snapshot is not an object")
        members_raw = data.get("membersData")
        if not isinstance(members_raw, list) or not members_raw:
            raise ParseError("snapshot membersData is missing")
        members: list[MemberState] = []
        for entry in members_raw:
            if not isinstance(entry, dict) or not entry.get("urlSchemeAuthority"):
                raise ParseError("snapshot member urlSchemeAuthority is missing")
            mute = entry.get("mutestate")
            members.append(
                MemberState(
                    origin=str(entry["urlSchemeAuthority"]).rstrip("/"),
                    player_name=str(entry.get("playerName") or ""),
                    volume=safe_int(entry.get("volume"), VOLUME_NOT_CAPTURED),
                    mute=None if mute is None else bool(mute),
                )
            )
        return cls(
            was_playing=bool(data.get("wasPlaying")),
            playback_state=str(data.get("playbackstate") or ""),
            current_uri=str(data.get("CurrentURI") or ""),
            current_uri_metadata=str(data.get("CurrentURIMetadata") or ""),
            nr_tracks=safe_int(data.get("NrTracks")),
            track=safe_int(data.get("Track")),
            rel_time=str(data.get("RelTime") or ""),
            track_duration=str(data.get("TrackDuration") or ""),
            members=members,
        )


@dataclass
class NotificationOptions:
    uri: str
    metadata: Optional[str] = None
    volume: int = KEEP_VOLUME
    same_volume: bool = True
    automatic_duration: bool = True
    duration: str = "00:00:05"

    @property
    def changes_volume(self) -> bool:
        return self.volume != KEEP_VOLUME
