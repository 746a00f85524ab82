from __future__ import annotations

from typing import Optional

import httpx


PACKAGE_PREFIX = "sonosflow: "

UPNP_ERRORS = {
    "400": "Bad request",
    "401": "Invalid action",
    "402": "Invalid args",
    "404": "Invalid var",
    "412": "Precondition failed",
    "501": "Action failed",
    "600": "Argument value invalid",
    "601": "Argument value out of range",
    "602": "Optional action not implemented",
    "603": "Out of memory",
    "604": "Human intervention required",
    "605": "String argument too long",
    "606": "Action not authorized",
    "607": "Signature failure",
    "608": "Signature missing",
    "609": "Not encrypted",
    "610": "Invalid sequence",
    "611": "Invalid control URL",
    "612": "No such session",
}

SERVICE_ERRORS = {
    "AVTRANSPORT": {
        "701": "Transition not available",
        "702": "No contents",
        "703": "Read error",
        "704": "Format not supported for playback",
        "705": "Transport is locked",
        "706": "Write error",
        "707": "Media is protected or not writeable",
        "708": "Format not supported for recording",
        "709": "Media is full",
        "710": "Seek mode not supported",
        "711": "Illegal seek target",
        "712": "Play mode not supported",
        "713": "Record quality not supported",
        "714": "Illegal MIME-Type",
        "715": "Content busy",
        "716": "Resource not found",
        "717": "Play speed not supported",
        "718": "Invalid InstanceID",
        "737": "No DNS Server",
        "738": "Bad Domain Name",
        "739": "Server Error",
        "800": "Command not supported or not a coordinator",
    },
    "RENDERINGCONTROL": {
        "701": "Invalid name",
        "702": "Invalid InstanceID",
    },
    "ZONEGROUPTOPOLOGY": {
        "701": "Invalid zone group",
    },
}


class SonosError(Exception):
    """Base class; messages carry the package prefix."""

    def __init__(self, message: str) -> None:
        super().__init__(f"{PACKAGE_PREFIX}{message}")
        self.reason = message


class ParseError(SonosError):
    pass


class NotFoundError(SonosError):
    pass


class ValidationError(SonosError):
    pass


class SnapshotMismatchError(SonosError):
    pass


class RemoteCallError(SonosError):
    def __init__(
        self,
        message: str,
        *,
        service: str = "",
        action: str = "",
        status_code: Optional[int] = None,
        upnp_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.action = action
        self.status_code = status_code
        self.upnp_code = upnp_code


def lookup_upnp_error(code: Optional[str], service: str = "") -> str:
    code = (code or "").strip()
    if not code:
        return "unknown error"
    specific = SERVICE_ERRORS.get(service.upper(), {})
    if code in specific:
        return specific[code]
    return UPNP_ERRORS.get(code, "unknown error")


def describe_failure(exc: BaseException) -> tuple[str, str]:
    """Return (short, detail) texts for a failed command."""

    cause = exc.__cause__ if isinstance(exc, RemoteCallError) else None
    transport = cause if isinstance(cause, httpx.RequestError) else exc
    if isinstance(transport, httpx.TimeoutException):
        return "Request timed out", "Validate players IP address / power on"
    if isinstance(transport, httpx.ConnectError):
        text = str(transport).lower()
        if "refused" in text:
            return "Player refused to connect", "Validate players ip address"
        if "unreachable" in text or "no route" in text:
            return "Player is unreachable", "Validate players ip address / power on"
        return "Player connection failed", str(transport) or repr(transport)
    if isinstance(exc, RemoteCallError) and exc.upnp_code:
        return (
            f"statusCode {exc.status_code or 500} & upnpError {exc.upnp_code}",
            lookup_upnp_error(exc.upnp_code, exc.service),
        )
    if isinstance(exc, SonosError):
        return exc.reason, "none"
    message = str(exc)
    if message:
        return message, repr(exc)
    return "Unknown error/ exception", repr(exc)
