"""Shared fixtures for sonosflow tests."""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import pytest

from sonosflow.services.actions import SonosActions

Response = Union[dict, Exception, Callable[[dict], dict], list]

COORDINATOR = "http://192.168.1.10:1400"
KITCHEN = "http://192.168.1.11:1400"
OFFICE = "http://192.168.1.50:1400"
BEDROOM = "http://192.168.1.20:1400"

ZONE_GROUP_STATE = (
    "<ZoneGroupState><ZoneGroups>"
    '<ZoneGroup Coordinator="RINCON_A" ID="RINCON_A:1">'
    '<ZoneGroupMember UUID="RINCON_B" Location="http://192.168.1.11:1400/xml/device_description.xml" '
    'ZoneName="Kitchen"/>'
    '<ZoneGroupMember UUID="RINCON_A" Location="http://192.168.1.10:1400/xml/device_description.xml" '
    'ZoneName="Living Room" HTSatChanMapSet="RINCON_A:LF,RF;RINCON_S:SW"/>'
    '<ZoneGroupMember UUID="RINCON_S" Location="http://192.168.1.12:1400/xml/device_description.xml" '
    'ZoneName="Living Room" Invisible="1"/>'
    '<ZoneGroupMember UUID="RINCON_C" Location="http://192.168.1.50:1400/xml/device_description.xml" '
    'ZoneName="Office"/>'
    "</ZoneGroup>"
    '<ZoneGroup Coordinator="RINCON_D" ID="RINCON_D:7">'
    '<ZoneGroupMember UUID="RINCON_D" Location="http://192.168.1.20:1400/xml/device_description.xml" '
    'ZoneName="Bedroom"/>'
    "</ZoneGroup>"
    '<ZoneGroup Coordinator="RINCON_H" ID="RINCON_H:3">'
    '<ZoneGroupMember UUID="RINCON_H" Location="http://192.168.1.30:1400/xml/device_description.xml" '
    'ZoneName="Boost" Invisible="1"/>'
    "</ZoneGroup>"
    "</ZoneGroups></ZoneGroupState>"
)


@dataclass
class Call:
    origin: str
    control_path: str
    action: str
    arguments: dict


@dataclass
class FakeExecutor:
    """Records every action and answers from canned responses.

    A response keyed by (origin, action) may be a dict, an exception to raise,
    a callable taking the arguments, or a list consumed front to back (the last
    entry repeats).
    """

    responses: dict[tuple[str, str], Response] = field(default_factory=dict)
    online: dict[str, bool] = field(default_factory=dict)
    calls: list[Call] = field(default_factory=list)

    def respond(self, origin: str, action: str, response: Response) -> None:
        self.responses[(origin, action)] = response

    async def execute_action(self, origin: str, control_path: str, action: str, arguments: Any) -> dict:
        self.calls.append(Call(origin, control_path, action, dict(arguments)))
        response = self.responses.get((origin, action), {})
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if callable(response) and not isinstance(response, Exception):
            response = response(dict(arguments))
        if isinstance(response, Exception):
            raise response
        return dict(response)

    async def is_online(self, origin: str, *, timeout: Optional[float] = None) -> bool:
        self.calls.append(Call(origin, "/info", "is_online", {"timeout": timeout}))
        return self.online.get(origin, False)

    def names(self, origin: Optional[str] = None) -> list[str]:
        return [c.action for c in self.calls if origin is None or c.origin == origin]

    def find(self, action: str, origin: Optional[str] = None) -> list[Call]:
        return [c for c in self.calls if c.action == action and (origin is None or c.origin == origin)]


def playing_group(executor: FakeExecutor, origin: str = COORDINATOR) -> None:
    """Coordinator playing track 3 of 5 at 0:01:30."""
    executor.respond(origin, "GetTransportInfo", {"CurrentTransportState": "PLAYING"})
    executor.respond(
        origin,
        "GetMediaInfo",
        {
            "NrTracks": "5",
            "CurrentURI": "x-rincon-queue:RINCON_A#0",
            "CurrentURIMetaData": "",
        },
    )
    executor.respond(
        origin,
        "GetPositionInfo",
        {"Track": "3", "TrackDuration": "0:03:20", "RelTime": "0:01:30"},
    )


@pytest.fixture
def executor() -> FakeExecutor:
    """Recording fake action executor."""
    return FakeExecutor()


@pytest.fixture
def actions(executor: FakeExecutor) -> SonosActions:
    """SonosActions bound to the fake executor."""
    return SonosActions(executor)


@pytest.fixture
def sleeps() -> list[float]:
    """Seconds passed to the fake sleep, in call order."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]) -> Callable:
    """Non-waiting replacement for asyncio.sleep."""

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep
