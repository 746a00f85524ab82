"""Tests for command validation and dispatch."""

import asyncio
from typing import Callable

import pytest

from conftest import BEDROOM, COORDINATOR, OFFICE, ZONE_GROUP_STATE, FakeExecutor, playing_group
from sonosflow.services.actions import GROUP_RENDERING_CONTROL, SonosActions
from sonosflow.services.commands import MAX_STATUS_RECORDS, CommandDispatcher, parse_command, status_code_for
from sonosflow.services.errors import (
    NotFoundError,
    ParseError,
    RemoteCallError,
    SnapshotMismatchError,
    ValidationError,
)
from sonosflow.services.notification import NotificationService
from sonosflow.services.snapshot import SnapshotService
from sonosflow.services.topology import TopologyService


def make_dispatcher(actions: SonosActions, sleep: Callable) -> CommandDispatcher:
    return CommandDispatcher(
        actions=actions,
        topology=TopologyService(actions),
        snapshots=SnapshotService(actions, sleep=sleep),
        notifications=NotificationService(actions, sleep=sleep, guess_metadata=lambda uri: ""),
        clock=lambda: 1700000000.0,
    )


@pytest.fixture
def dispatcher(actions: SonosActions, fake_sleep: Callable) -> CommandDispatcher:
    """Dispatcher over the fake executor."""
    return make_dispatcher(actions, fake_sleep)


@pytest.fixture
def household(executor: FakeExecutor) -> FakeExecutor:
    """Every player answers with the same topology."""
    for origin in (COORDINATOR, OFFICE, BEDROOM):
        executor.respond(origin, "GetZoneGroupState", {"ZoneGroupState": ZONE_GROUP_STATE})
    return executor


class TestParseCommand:
    """Tests for message validation."""

    def test_aliases_and_defaults(self) -> None:
        """Test camelCase fields and defaults."""
        msg = parse_command({"cmd": "group.create.snap", "playerName": "Kitchen", "snapVolumes": True})
        assert msg.player_name == "Kitchen"
        assert msg.snap_volumes is True
        assert msg.snap_mutestates is False
        assert msg.volume is None

    def test_same_volume_without_volume(self) -> None:
        """Test sameVolume true needs a volume."""
        with pytest.raises(ValidationError, match="sameVolume"):
            parse_command({"cmd": "group.play.notification", "payload": "http://x/a.mp3", "sameVolume": True})

    def test_volume_range(self) -> None:
        """Test volume must be 0..100."""
        with pytest.raises(ValidationError, match="volume"):
            parse_command({"cmd": "group.play.notification", "volume": 101})

    def test_duration_format(self) -> None:
        """Test duration must be hh:mm:ss."""
        with pytest.raises(ValidationError, match="duration"):
            parse_command({"cmd": "group.play.notification", "duration": "5s"})

    def test_not_an_object(self) -> None:
        """Test a non-dict message fails."""
        with pytest.raises(ValidationError):
            parse_command(["group.get.members"])

    def test_notification_options(self) -> None:
        """Test message fields map onto notification options."""
        msg = parse_command({"cmd": "x", "payload": " http://x/a.mp3 ", "volume": 30, "duration": "00:00:09"})
        options = msg.notification_options("00:00:05")
        assert options.uri == "http://x/a.mp3"
        assert options.volume == 30
        assert options.same_volume is True
        assert options.automatic_duration is False
        assert options.duration == "00:00:09"

    def test_notification_defaults(self) -> None:
        """Test defaults keep the volume and use automatic duration."""
        options = parse_command({"cmd": "x", "payload": "http://x/a.mp3"}).notification_options("00:00:05")
        assert options.volume == -1
        assert options.automatic_duration is True
        assert options.duration == "00:00:05"

    def test_notification_needs_uri(self) -> None:
        """Test an empty payload is rejected."""
        with pytest.raises(ValidationError, match="uri"):
            parse_command({"cmd": "x"}).notification_options("00:00:05")


class TestStatusCodes:
    """Tests for error to HTTP status mapping."""

    def test_mapping(self) -> None:
        """Test each error class maps to its status."""
        assert status_code_for(ValidationError("x")) == 400
        assert status_code_for(ValueError("x")) == 400
        assert status_code_for(NotFoundError("x")) == 404
        assert status_code_for(SnapshotMismatchError("x")) == 409
        assert status_code_for(RemoteCallError("x")) == 502
        assert status_code_for(ParseError("x")) == 502


class TestDispatcher:
    """Tests for CommandDispatcher."""

    def test_player_origin(self, dispatcher: CommandDispatcher) -> None:
        """Test bare hosts get the player port."""
        assert dispatcher.player_origin("192.168.1.50") == OFFICE
        assert dispatcher.player_origin("192.168.1.50:1443") == "http://192.168.1.50:1443"
        assert dispatcher.player_origin("http://192.168.1.50:1400/") == OFFICE
        assert dispatcher.player_origin("HTTP://Kitchen.local") == "http://kitchen.local:1400"
        with pytest.raises(ValidationError):
            dispatcher.player_origin(" ")

    @pytest.mark.parametrize(
        "host", ["192.168.1.50/api", "bad host", "192.168.1.50:99999", "ftp://192.168.1.50", "user@192.168.1.50"]
    )
    def test_player_origin_rejects_non_players(self, dispatcher: CommandDispatcher, host: str) -> None:
        """Test paths, ports out of range and other schemes are refused."""
        with pytest.raises(ValidationError, match="invalid"):
            dispatcher.player_origin(host)

    @pytest.mark.asyncio
    async def test_group_get_members(self, dispatcher: CommandDispatcher, household: FakeExecutor) -> None:
        """Test members are returned coordinator first and status is ok."""
        result = await dispatcher.dispatch("192.168.1.50", {"cmd": "group.get.members"})
        assert result["ok"] is True
        assert result["cmd"] == "group.get.members"
        assert [m["playerName"] for m in result["payload"]] == ["Living Room", "Kitchen", "Office"]
        assert dispatcher.status("192.168.1.50") == {
            "state": "ok",
            "text": "ok:group.get.members",
            "command": "group.get.members",
            "updated_at": 1700000000.0,
        }

    @pytest.mark.asyncio
    async def test_player_get_role(self, dispatcher: CommandDispatcher, household: FakeExecutor) -> None:
        """Test roles for joiner, coordinator and named standalone player."""
        assert (await dispatcher.dispatch("192.168.1.50", {"cmd": "player.get.role"}))["payload"] == "joiner"
        assert (await dispatcher.dispatch("192.168.1.10", {"cmd": "player.get.role"}))["payload"] == "coordinator"
        result = await dispatcher.dispatch("192.168.1.10", {"cmd": "player.get.role", "playerName": "Bedroom"})
        assert result["payload"] == "standalone"

    @pytest.mark.asyncio
    async def test_unknown_command(self, dispatcher: CommandDispatcher) -> None:
        """Test unknown commands fail and are recorded."""
        with pytest.raises(ValidationError):
            await dispatcher.dispatch("192.168.1.50", {"cmd": "group.play.everything"})
        status = dispatcher.status("192.168.1.50")
        assert status["state"] == "error"
        assert status["text"] == (
            "group.play.everything:command group.play.everything is not supported :: Details: none"
        )

    @pytest.mark.asyncio
    async def test_player_not_found(self, dispatcher: CommandDispatcher, household: FakeExecutor) -> None:
        """Test an unknown player name fails with NotFoundError."""
        with pytest.raises(NotFoundError):
            await dispatcher.dispatch("192.168.1.50", {"cmd": "group.get.members", "playerName": "Garage"})

    @pytest.mark.asyncio
    async def test_joiner_notification_rejects_coordinator(
        self, dispatcher: CommandDispatcher, household: FakeExecutor
    ) -> None:
        """Test a coordinator cannot get a joiner notification."""
        with pytest.raises(ValidationError, match="not a joiner"):
            await dispatcher.dispatch("192.168.1.10", {"cmd": "joiner.play.notification", "payload": "http://x/a.mp3"})
        assert household.find("SetAVTransportURI") == []

    @pytest.mark.asyncio
    async def test_snapshot_round_trip(self, dispatcher: CommandDispatcher, household: FakeExecutor) -> None:
        """Test a snapshot payload can be played back through the dispatcher."""
        playing_group(household)
        created = await dispatcher.dispatch("192.168.1.50", {"cmd": "group.create.snap", "snapVolumes": False})
        assert created["payload"]["Track"] == 3

        played = await dispatcher.dispatch("192.168.1.50", {"cmd": "group.play.snap", "payload": created["payload"]})

        assert played["payload"]["steps"][-1] == "play"
        assert household.find("SetAVTransportURI", COORDINATOR)[0].arguments["CurrentURI"] == "x-rincon-queue:RINCON_A#0"

    @pytest.mark.asyncio
    async def test_snapshot_of_other_group(self, dispatcher: CommandDispatcher, household: FakeExecutor) -> None:
        """Test a snapshot taken of another group is refused."""
        payload = {
            "wasPlaying": True,
            "CurrentURI": "x-rincon-queue:RINCON_D#0",
            "membersData": [{"urlSchemeAuthority": BEDROOM, "playerName": "Bedroom", "volume": -1}],
        }
        with pytest.raises(SnapshotMismatchError):
            await dispatcher.dispatch("192.168.1.50", {"cmd": "group.play.snap", "payload": payload})
        assert household.find("SetAVTransportURI") == []

    @pytest.mark.asyncio
    async def test_play_snap_needs_payload(self, dispatcher: CommandDispatcher) -> None:
        """Test a missing snapshot is a validation error."""
        with pytest.raises(ValidationError, match="snapshot"):
            await dispatcher.dispatch("192.168.1.50", {"cmd": "group.play.snap"})

    @pytest.mark.asyncio
    async def test_group_notification(self, dispatcher: CommandDispatcher, household: FakeExecutor) -> None:
        """Test the notification runs on the coordinator of the addressed player."""
        playing_group(household)
        result = await dispatcher.dispatch(
            "192.168.1.50",
            {"cmd": "group.play.notification", "payload": "http://x/a.mp3", "duration": "00:00:02"},
        )
        assert result["payload"]["steps"][-1] == "play"
        assert household.find("SetAVTransportURI", COORDINATOR)[0].arguments["CurrentURI"] == "http://x/a.mp3"

    @pytest.mark.asyncio
    async def test_household_get_groups(self, dispatcher: CommandDispatcher, household: FakeExecutor) -> None:
        """Test all visible groups are listed."""
        result = await dispatcher.dispatch("192.168.1.20", {"cmd": "household.get.groups"})
        assert [[m["playerName"] for m in g] for g in result["payload"]] == [
            ["Living Room", "Kitchen", "Office"],
            ["Bedroom"],
        ]

    @pytest.mark.asyncio
    async def test_household_test_player(self, dispatcher: CommandDispatcher, executor: FakeExecutor) -> None:
        """Test the online probe for the payload host or the addressed player."""
        executor.online[BEDROOM] = True
        assert (await dispatcher.dispatch("192.168.1.50", {"cmd": "household.test.player", "payload": "192.168.1.20"}))[
            "payload"
        ] is True
        assert (await dispatcher.dispatch("192.168.1.50", {"cmd": "household.test.player"}))["payload"] is False
        assert executor.calls[0].arguments == {"timeout": 2.0}

    @pytest.mark.asyncio
    async def test_group_volume_snapshot(self, dispatcher: CommandDispatcher, household: FakeExecutor) -> None:
        """Test the group volume snapshot goes to the coordinator."""
        await dispatcher.dispatch("192.168.1.50", {"cmd": "group.create.volumesnap"})
        call = household.find("SnapshotGroupVolume")[0]
        assert call.origin == COORDINATOR
        assert call.control_path == GROUP_RENDERING_CONTROL

    @pytest.mark.asyncio
    async def test_remote_failure_recorded(self, dispatcher: CommandDispatcher, executor: FakeExecutor) -> None:
        """Test a failing player call is described in the status."""
        executor.respond(OFFICE, "GetZoneGroupState", RemoteCallError("x", service="ZoneGroupTopology", status_code=500, upnp_code="701"))
        with pytest.raises(RemoteCallError):
            await dispatcher.dispatch("192.168.1.50", {"cmd": "household.get.groups"})
        assert dispatcher.status("192.168.1.50")["text"] == (
            "household.get.groups:statusCode 500 & upnpError 701 :: Details: Invalid zone group"
        )

    @pytest.mark.asyncio
    async def test_commands_for_one_player_are_serialized(
        self, actions: SonosActions, household: FakeExecutor
    ) -> None:
        """Test a second command waits until the running one is done."""

        async def yielding_sleep(seconds: float) -> None:
            await asyncio.sleep(0)

        dispatcher = make_dispatcher(actions, yielding_sleep)
        playing_group(household)
        notification = {"cmd": "group.play.notification", "payload": "http://x/a.mp3", "duration": "00:00:01"}
        await asyncio.gather(
            dispatcher.dispatch("192.168.1.50", notification),
            dispatcher.dispatch("192.168.1.50", {"cmd": "group.get.members"}),
        )
        names = household.names()
        assert names.count("GetZoneGroupState") == 2
        assert names.index("GetZoneGroupState", 1) > len(names) - 2
        assert names[-2] == "Play"

    @pytest.mark.asyncio
    async def test_host_spellings_share_one_player(self, actions: SonosActions, household: FakeExecutor) -> None:
        """Test a player addressed with and without port runs one command at a time."""

        async def yielding_sleep(seconds: float) -> None:
            await asyncio.sleep(0)

        dispatcher = make_dispatcher(actions, yielding_sleep)
        playing_group(household)
        notification = {"cmd": "group.play.notification", "payload": "http://x/a.mp3", "duration": "00:00:01"}
        await asyncio.gather(
            dispatcher.dispatch("192.168.1.50", notification),
            dispatcher.dispatch("192.168.1.50:1400", notification),
        )
        cycle = [
            "GetZoneGroupState",
            "GetTransportInfo",
            "GetMediaInfo",
            "GetPositionInfo",
            "SetAVTransportURI",
            "Play",
            "SetAVTransportURI",
            "Seek",
            "Seek",
            "Play",
        ]
        assert household.names() == cycle + cycle
        assert dispatcher.status("192.168.1.50") == dispatcher.status("http://192.168.1.50:1400")

    @pytest.mark.asyncio
    async def test_invalid_host_leaves_no_state(self, dispatcher: CommandDispatcher, executor: FakeExecutor) -> None:
        """Test a host that is not a player is refused before any bookkeeping."""
        with pytest.raises(ValidationError, match="invalid"):
            await dispatcher.dispatch("bad host", {"cmd": "group.get.members"})
        assert dispatcher.status("bad host") is None
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_bookkeeping_is_bounded(self, dispatcher: CommandDispatcher) -> None:
        """Test idle locks are dropped and only recent status records are kept."""
        for index in range(MAX_STATUS_RECORDS + 10):
            with pytest.raises(ValidationError):
                await dispatcher.dispatch(f"10.0.{index // 256}.{index % 256}", {"cmd": "no.such.command"})
        assert dispatcher.status("10.0.0.0") is None
        assert dispatcher.status(f"10.0.1.{MAX_STATUS_RECORDS + 9 - 256}")["state"] == "error"
        assert dispatcher._locks == {}
