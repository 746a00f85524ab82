from __future__ import annotations

from typing import Optional
from urllib.parse import unquote, urlparse
from xml.sax.saxutils import escape as xml_escape


DIDL_OPEN = (
    '<DIDL-Lite xmlns:dc="http://purl.org/dc/elements/1.1/" '
    'xmlns:upnp="urn:schemas-upnp-org:metadata-1-0/upnp/" '
    'xmlns="urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/" '
    'xmlns:r="urn:schemas-rinconnetworks-com:metadata-1-0/">'
)

CLASS_TRACK = "object.item.audioItem.musicTrack"
CLASS_BROADCAST = "object.item.audioItem.audioBroadcast"

MIME_BY_EXTENSION = {
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
}

BROADCAST_SCHEMES = ("x-rincon-mp3radio:", "aac:", "x-sonosapi-stream:", "x-sonosapi-radio:", "x-sonosapi-hls:")


def _title_from_uri(uri: str) -> str:
    parsed = urlparse(uri)
    tail = unquote(parsed.path.rstrip("/").rsplit("/", 1)[-1]) if parsed.path else ""
    return tail or parsed.hostname or uri


def build_didl(*, title: str, upnp_class: str, item_id: str = "notification", res: Optional[tuple[str, str]] = None) -> str:
    parts = [
        DIDL_OPEN,
        f'<item id="{xml_escape(item_id)}" parentID="0" restricted="1">',
        f"<dc:title>{xml_escape(title)}</dc:title>",
        f"<upnp:class>{upnp_class}</upnp:class>",
    ]
    if res is not None:
        protocol_info, url = res
        parts.append(f'<res protocolInfo="{xml_escape(protocol_info)}">{xml_escape(url)}</res>')
    parts.append('<desc id="cdudn" nameSpace="urn:schemas-rinconnetworks-com:metadata-1-0/">RINCON_AssociatedZPUDN</desc>')
    parts.append("</item></DIDL-Lite>")
    return "".join(parts)


def guess_metadata_for_uri(uri: str) -> str:
    """Best-effort DIDL-Lite metadata for an arbitrary content uri.

    Returns an empty string for schemes we know nothing about; players accept
    empty metadata for plain files and streams.
    """

    lowered = (uri or "").strip().lower()
    if not lowered:
        return ""
    if lowered.startswith(BROADCAST_SCHEMES):
        return build_didl(title=_title_from_uri(uri.split(":", 1)[1]), upnp_class=CLASS_BROADCAST, item_id="stream")
    if lowered.startswith(("http://", "https://")):
        extension = urlparse(lowered).path.rsplit(".", 1)[-1] if "." in urlparse(lowered).path else ""
        mime = MIME_BY_EXTENSION.get(extension, "audio/mpeg")
        return build_didl(title=_title_from_uri(uri), upnp_class=CLASS_TRACK, res=(f"http-get:*:{mime}:*", uri))
    if lowered.startswith("x-file-cifs:"):
        return build_didl(title=_title_from_uri(uri), upnp_class=CLASS_TRACK)
    return ""
