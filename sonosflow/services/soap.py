from __future__ import annotations

import logging
from typing import Any, Mapping, Optional
from xml.etree import ElementTree

import httpx

from .errors import ParseError, RemoteCallError, lookup_upnp_error


log = logging.getLogger("sonosflow.soap")

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"


def service_from_control_path(control_path: str) -> str:
    """Return the service name of a control path.

    Paths are either /<component>/<service>/Control or /<service>/Control.
    """

    parts = [p for p in control_path.split("/") if p]
    if len(parts) < 2:
        raise ValueError(f"invalid control path: {control_path}")
    return parts[-2]


def build_envelope(service: str, action: str, arguments: Mapping[str, Any]) -> str:
    ns = f"urn:schemas-upnp-org:service:{service}:1"
    body_parts = [f"<{k}>{_argument_text(v)}</{k}>" for k, v in arguments.items()]
    return (
        "<?xml version=\"1.0\" encoding=\"utf-8\"?>"
        f"<s:Envelope xmlns:s=\"{SOAP_ENVELOPE_NS}\" "
        "s:encodingStyle=\"http://schemas.xmlsoap.org/soap/encoding/\">"
        "<s:Body>"
        f"<u:{action} xmlns:u=\"{ns}\">"
        + "".join(body_parts)
        + f"</u:{action}>"
        "</s:Body>"
        "</s:Envelope>"
    )


def _argument_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def _parse_upnp_fault(xml_text: str) -> Optional[tuple[str, str]]:
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError:
        return None
    fault = root.find(".//{*}Fault")
    if fault is None:
        return None
    error_code = (root.findtext(".//{*}errorCode") or "").strip()
    error_desc = (root.findtext(".//{*}errorDescription") or "").strip()
    if not error_desc:
        error_desc = (root.findtext(".//{*}faultstring") or "").strip()
    return error_code, error_desc


def parse_action_response(xml_text: str, *, service: str, action: str) -> dict[str, str]:
    """Extract the out-arguments of a successful action response."""

    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError as exc:
        raise ParseError(f"{service}.{action} response is not valid xml: {exc}") from exc
    expected = f"{{urn:schemas-upnp-org:service:{service}:1}}{action}Response"
    result = root.find(f".//{expected}")
    if result is None:
        if root.find(f".//{{*}}{action}Response") is not None:
            raise ParseError(f"unexpected player response: urn:schemas ... {service} is missing")
        raise ParseError(f"body of {service}.{action} response is invalid")
    out: dict[str, str] = {}
    for child in result:
        tag = child.tag.rsplit("}", 1)[-1]
        out[tag] = child.text or ""
    return out


class SoapClient:
    """Executes single UPnP actions against a player.

    Argument values are inserted verbatim; uri and metadata values must be
    entity-encoded by the caller.
    """

    def __init__(
        self,
        *,
        http_user_agent: str,
        control_timeout: float,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._http_user_agent = http_user_agent
        self._control_timeout = float(control_timeout)
        self.http_client = http_client

    async def _post(self, url: str, content: bytes, headers: dict, timeout: float) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(url, content=content, headers=headers, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, content=content, headers=headers)

    async def execute_action(
        self,
        origin: str,
        control_path: str,
        action: str,
        arguments: Mapping[str, Any],
        *,
        timeout: Optional[float] = None,
    ) -> dict[str, str]:
        service = service_from_control_path(control_path)
        ns = f"urn:schemas-upnp-org:service:{service}:1"
        envelope = build_envelope(service, action, arguments)
        headers = {
            "Content-Type": "text/xml; charset=\"utf-8\"",
            "SOAPACTION": f'"{ns}#{action}"',
            "User-Agent": self._http_user_agent,
        }
        effective_timeout = self._control_timeout if timeout is None else float(timeout)
        target = f"{origin.rstrip('/')}{control_path}"
        log.debug("soap %s.%s -> %s args=%s", service, action, origin, dict(arguments))
        try:
            resp = await self._post(target, envelope.encode("utf-8"), headers, effective_timeout)
        except httpx.RequestError as exc:
            raise RemoteCallError(
                f"{service}.{action} request failed: {exc!r}",
                service=service,
                action=action,
            ) from exc

        text = resp.text or ""
        fault = _parse_upnp_fault(text)
        if resp.status_code >= 400 or fault:
            code, desc = fault or ("", "")
            detail = desc or lookup_upnp_error(code, service)
            if not code and not desc:
                detail = text.strip() or f"HTTP {resp.status_code}"
            raise RemoteCallError(
                f"statusCode {resp.status_code} & upnpErrorCode {code or '-'}. upnpErrorMessage >>{detail}",
                service=service,
                action=action,
                status_code=resp.status_code,
                upnp_code=code or None,
            )
        result = parse_action_response(text, service=service, action=action)
        log.debug("soap %s.%s <- %s result=%s", service, action, origin, result)
        return result

    async def is_online(self, origin: str, *, timeout: Optional[float] = None) -> bool:
        """Every player answers GET /info with its household id."""

        effective_timeout = self._control_timeout if timeout is None else float(timeout)
        url = f"{origin.rstrip('/')}/info"
        headers = {"User-Agent": self._http_user_agent}
        try:
            if self.http_client is not None:
                resp = await self.http_client.get(url, headers=headers, timeout=effective_timeout)
            else:
                async with httpx.AsyncClient(timeout=effective_timeout) as client:
                    resp = await client.get(url, headers=headers)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.debug("player %s does not respond to /info: %r", origin, exc)
            return False
        household = data.get("householdId") if isinstance(data, dict) else None
        return isinstance(household, str) and household.strip() != ""
