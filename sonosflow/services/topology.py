from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse
from xml.etree import ElementTree

from .actions import SonosActions
from .errors import NotFoundError, ParseError
from .helpers import decode_html_entities, is_non_empty_string
from .models import Group, GroupLocation, PlayerEndpoint


log = logging.getLogger("sonosflow.topology")


def _origin_from_location(location: str) -> str:
    parsed = urlparse(location)
    if not parsed.scheme or not parsed.netloc:
        raise ParseError(f"member Location is invalid: {location}")
    return f"{parsed.scheme}://{parsed.netloc}"


def _required(element: ElementTree.Element, attribute: str) -> str:
    value = element.get(attribute)
    if value is None:
        raise ParseError(f"response form parse xml: {element.tag} attribute {attribute} is missing")
    return value


def parse_zone_group_state(zone_group_state: str, *, remove_hidden: bool = True) -> list[Group]:
    """Parse a ZoneGroupState blob into groups, coordinator first.

    The blob may still be entity encoded (when taken raw from the envelope).
    """

    if not is_non_empty_string(zone_group_state):
        raise ParseError("parameter zoneGroupState is missing")
    text = zone_group_state.strip()
    if text.startswith("&lt;"):
        text = decode_html_entities(text)
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as exc:
        raise ParseError(f"response form parse xml is invalid: {exc}") from exc

    # old firmware omits the ZoneGroupState wrapper
    if root.tag == "ZoneGroupState":
        zone_groups = root.find("ZoneGroups")
    elif root.tag == "ZoneGroups":
        zone_groups = root
    else:
        zone_groups = None
    if zone_groups is None:
        raise ParseError("response form parse xml: properties missing.")
    raw_groups = zone_groups.findall("ZoneGroup")
    if not raw_groups:
        raise ParseError("response form parse xml: properties missing.")

    groups: list[Group] = []
    for raw_group in raw_groups:
        coordinator_uuid = _required(raw_group, "Coordinator")
        group_id = _required(raw_group, "ID")
        raw_members = raw_group.findall("ZoneGroupMember")
        if not raw_members:
            raise ParseError(f"group {group_id} has no ZoneGroupMember")

        coordinator: Optional[PlayerEndpoint] = None
        joiners: list[PlayerEndpoint] = []
        for raw_member in raw_members:
            endpoint = PlayerEndpoint(
                origin=_origin_from_location(_required(raw_member, "Location")),
                name=str(_required(raw_member, "ZoneName")),
                uuid=_required(raw_member, "UUID"),
                group_id=group_id,
                invisible=raw_member.get("Invisible") == "1",
                channel_map_set=raw_member.get("ChannelMapSet") or "",
                ht_sat_chan_map_set=raw_member.get("HTSatChanMapSet") or "",
            )
            if endpoint.uuid == coordinator_uuid:
                coordinator = endpoint
            else:
                joiners.append(endpoint)
        if coordinator is None:
            raise ParseError(f"coordinator {coordinator_uuid} is not a member of group {group_id}")

        members = [coordinator] + joiners
        if remove_hidden:
            members = [m for m in members if not m.invisible]
        if members:
            groups.append(Group(id=group_id, members=members))
    return groups


def extract_group(
    player_host: Optional[str],
    all_groups: list[Group],
    player_name: Optional[str] = None,
) -> GroupLocation:
    """Locate a player in the household topology.

    A non-empty player_name overrules player_host. Only visible players match.
    """

    by_name = is_non_empty_string(player_name)
    found: Optional[Group] = None
    found_member: Optional[PlayerEndpoint] = None
    for group in all_groups:
        for member in group.members:
            if member.invisible:
                continue
            if by_name:
                matched = member.name == player_name
            else:
                matched = member.host == player_host
            if matched:
                found, found_member = group, member
                break
        if found is not None:
            break
    if found is None or found_member is None:
        raise NotFoundError("could not find given player in any group")

    members = [m for m in found.members if not m.invisible]
    player_index = next(i for i, m in enumerate(members) if m.host == found_member.host)
    return GroupLocation(
        group_id=found_member.group_id or found.id,
        player_index=player_index,
        coordinator_index=0,
        members=members,
    )


class TopologyService:
    def __init__(self, actions: SonosActions) -> None:
        self._actions = actions

    async def get_all_groups(self, any_player_origin: str) -> list[Group]:
        log.debug("method:%s origin=%s", "get_all_groups", any_player_origin)
        state = await self._actions.get_zone_group_state(any_player_origin)
        return parse_zone_group_state(state)

    async def get_group_current(self, player_origin: str, player_name: Optional[str] = None) -> GroupLocation:
        groups = await self.get_all_groups(player_origin)
        host = urlparse(player_origin).hostname
        return extract_group(host, groups, player_name)
