from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from .actions import SonosActions
from .helpers import encode_html_entities, hhmmss_to_msec, msec_to_hhmmss, safe_int
from .metadata import guess_metadata_for_uri
from .models import ZERO_DURATION, NotificationOptions, PlayerEndpoint
from .pipeline import Pipeline, Sleep, gather_all


log = logging.getLogger("sonosflow.notification")

# content started by Spotify Connect or Alexa cannot be set again by us
NON_RECOVERABLE_MARKER = "x-sonos-vli"


@dataclass
class _InlineSnapshot:
    was_playing: bool
    media_info: dict
    position_info: dict = field(default_factory=dict)
    volumes: dict[str, int] = field(default_factory=dict)


class NotificationService:
    """Temporarily divert a group (or one joiner) to a notification uri.

    Steps run strictly in sequence. Callers must not run two notifications
    against the same group at the same time. An error after playback started
    leaves the group on the notification.
    """

    def __init__(
        self,
        actions: SonosActions,
        *,
        wait_adjustment_ms: int = 2000,
        guess_metadata: Callable[[str], str] = guess_metadata_for_uri,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._actions = actions
        self._wait_adjustment_ms = int(wait_adjustment_ms)
        self._guess_metadata = guess_metadata
        self._sleep = sleep

    def _encoded_metadata(self, options: NotificationOptions) -> str:
        metadata = options.metadata if options.metadata is not None else self._guess_metadata(options.uri)
        if metadata != "":
            metadata = encode_html_entities(metadata)
        log.debug("metadata >>%s", metadata)
        return metadata

    async def _wait_milliseconds(self, origin: str, options: NotificationOptions) -> int:
        wait_ms = hhmmss_to_msec(options.duration)
        if not options.automatic_duration:
            return wait_ms
        position = await self._actions.get_position_info(origin)
        reported = self._reported_duration_ms(position.get("TrackDuration"))
        if reported:
            log.debug("Did retrieve duration from SONOS player")
            return reported + self._wait_adjustment_ms
        log.debug("Could NOT retrieve duration from SONOS player - using default/specified length")
        return wait_ms

    @staticmethod
    def _reported_duration_ms(value: Optional[str]) -> int:
        if not value:
            return 0
        try:
            return max(0, hhmmss_to_msec(value))
        except ValueError:
            return 0

    async def _wait(self, origin: str, options: NotificationOptions) -> int:
        wait_ms = await self._wait_milliseconds(origin, options)
        log.debug("duration >>%s (%s ms)", msec_to_hhmmss(wait_ms), wait_ms)
        await self._sleep(wait_ms / 1000.0)
        return wait_ms

    async def _set_volumes(self, volumes: dict[str, int]) -> None:
        if volumes:
            await gather_all(*(self._actions.set_volume(o, v) for o, v in volumes.items()))

    async def _capture_volumes(self, origins: Sequence[str]) -> dict[str, int]:
        values = await gather_all(*(self._actions.get_volume(o) for o in origins))
        return dict(zip(origins, values))

    @staticmethod
    def is_recoverable(notification_uri: str, original_uri: str) -> bool:
        return NON_RECOVERABLE_MARKER not in (notification_uri or "") and NON_RECOVERABLE_MARKER not in (
            original_uri or ""
        )

    async def play_group_notification(
        self,
        members: Sequence[PlayerEndpoint],
        options: NotificationOptions,
    ) -> list[str]:
        """Play a notification on a group, coordinator at index 0.

        Returns the names of the restore steps that succeeded.
        """

        if not members:
            raise ValueError("group has no members")
        metadata = self._encoded_metadata(options)
        coordinator = members[0].origin

        volume_targets: list[str] = []
        if options.changes_volume:
            volume_targets = [coordinator]
            if options.same_volume:
                volume_targets += [m.origin for m in members[1:]]

        state, media_info, position_info = await gather_all(
            self._actions.get_playback_state(coordinator),
            self._actions.get_media_info(coordinator),
            self._actions.get_position_info(coordinator),
        )
        snapshot = _InlineSnapshot(
            was_playing=state in {"playing", "transitioning"},
            media_info=media_info,
            position_info=position_info,
            volumes=await self._capture_volumes(volume_targets) if volume_targets else {},
        )
        log.debug("wasPlaying >>%s; snapshot created - now start playing notification", snapshot.was_playing)

        divert = Pipeline("group_notification_start", sleep=self._sleep)
        divert.add(
            "set_notification",
            lambda: self._actions.set_av_transport_uri(coordinator, encode_html_entities(options.uri), metadata),
        )
        divert.add(
            "set_volume",
            lambda: self._set_volumes({origin: options.volume for origin in volume_targets}),
            when=bool(volume_targets),
        )
        divert.add("play", lambda: self._actions.play(coordinator), requires=["set_notification"])
        await divert.run()

        await self._wait(coordinator, options)
        log.debug("notification finished - now starting to restore")

        original_uri = media_info.get("CurrentURI", "")
        track = safe_int(position_info.get("Track"))
        nr_tracks = safe_int(media_info.get("NrTracks"))
        rel_time = position_info.get("RelTime", "")
        restore = Pipeline("group_notification_restore", sleep=self._sleep)
        restore.add("restore_volume", lambda: self._set_volumes(snapshot.volumes), when=bool(snapshot.volumes))
        restore.add(
            "restore_content",
            lambda: self._actions.set_av_transport_uri(
                coordinator,
                encode_html_entities(original_uri),
                encode_html_entities(media_info.get("CurrentURIMetaData", "")),
            ),
            when=self.is_recoverable(options.uri, original_uri),
        )
        restore.add(
            "seek_track",
            lambda: self._actions.seek_track(coordinator, track),
            requires=["restore_content"],
            best_effort=True,
            when=track > 1 and nr_tracks > 1,
        )
        restore.add(
            "seek_position",
            lambda: self._actions.seek_position(coordinator, rel_time),
            requires=["restore_content"],
            best_effort=True,
            when=bool(rel_time) and position_info.get("TrackDuration") != ZERO_DURATION,
        )
        restore.add(
            "play",
            lambda: self._actions.play(coordinator),
            requires=["restore_content"],
            when=snapshot.was_playing,
        )
        return await restore.run()

    async def play_joiner_notification(
        self,
        coordinator: PlayerEndpoint,
        joiner: PlayerEndpoint,
        options: NotificationOptions,
    ) -> list[str]:
        """Play a notification on one joiner only.

        Setting a new transport uri makes the joiner leave its group; resetting
        the captured uri (x-rincon:<coordinator>) makes it rejoin.
        """

        metadata = self._encoded_metadata(options)
        # a joiner reports its own transport state, the coordinator knows the group's
        state, media_info = await gather_all(
            self._actions.get_playback_state(coordinator.origin),
            self._actions.get_media_info(joiner.origin),
        )
        snapshot = _InlineSnapshot(
            was_playing=state in {"playing", "transitioning"},
            media_info=media_info,
            volumes=await self._capture_volumes([joiner.origin]) if options.changes_volume else {},
        )
        log.debug("wasPlaying >>%s; snapshot created - now start playing notification", snapshot.was_playing)

        divert = Pipeline("joiner_notification_start", sleep=self._sleep)
        divert.add(
            "set_notification",
            lambda: self._actions.set_av_transport_uri(joiner.origin, encode_html_entities(options.uri), metadata),
        )
        divert.add(
            "set_volume",
            lambda: self._actions.set_volume(joiner.origin, options.volume),
            when=options.changes_volume,
        )
        divert.add("play", lambda: self._actions.play(joiner.origin), requires=["set_notification"])
        await divert.run()

        await self._wait(joiner.origin, options)
        log.debug("notification finished - now starting to restore")

        restore = Pipeline("joiner_notification_restore", sleep=self._sleep)
        restore.add("restore_volume", lambda: self._set_volumes(snapshot.volumes), when=bool(snapshot.volumes))
        restore.add(
            "restore_content",
            lambda: self._actions.set_av_transport_uri(
                joiner.origin,
                encode_html_entities(media_info.get("CurrentURI", "")),
                encode_html_entities(media_info.get("CurrentURIMetaData", "")),
            ),
        )
        restore.add(
            "play",
            lambda: self._actions.play(joiner.origin),
            requires=["restore_content"],
            when=snapshot.was_playing,
        )
        return await restore.run()
