import json
import re
import logging
from typing import Any, Optional, Iterable

logger = logging.getLogger(__name__)

# Body fields that commonly carry the originating client address
SOURCE_IP_FIELDS = [
    "sourceIp",
    "source_ip",
    "clientIp",
    "client_ip",
    "originatingIp",
    "originating_ip",
    "remoteAddr",
    "remote_addr",
    "requestContext.identity.sourceIp",
    "headers.x-forwarded-for",
    "headers.x-real-ip",
    "requestInfo.remoteIp",
    "request.ip",
    "ip",
]

# Attributes the ingress may use for the caller address
SOURCE_IP_ATTRIBUTES = (
    "sourceip",
    "source-ip",
    "clientip",
    "client-ip",
    "originatingip",
    "originating-ip",
    "remote-addr",
    "x-real-ip",
)

_HEADER_NAME_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


def preview_str(text: str, max_chars: int) -> str:
    """Shorten text for logging, noting the full length."""
    if len(text) > max_chars:
        return f"{text[:max_chars]}... ({len(text)} chars)"
    return text


def preview_hex(data: bytes, max_bytes: int) -> str:
    """Hex dump of the first bytes of a binary payload."""
    shown = " ".join(f"{b:02x}" for b in data[:max_bytes])
    if len(data) > max_bytes:
        return f"hex:{shown}... ({len(data)} bytes)"
    return f"hex:{shown} ({len(data)} bytes)"


def _load_json(data: bytes) -> Any:
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None


def summarize_payload(data: bytes) -> str:
    """
    One-line description of a webhook payload for log output.

    JSON bodies are summarized by their event/type/action and id fields;
    other text is previewed and binary bodies are shown as hex.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return preview_hex(data, 24)

    payload = _load_json(data)
    if isinstance(payload, dict):
        parts = []
        for key in ("type", "event", "action"):
            value = payload.get(key)
            if isinstance(value, str):
                parts.append(f"{key}:{value}")
                break

        event_id = payload.get("id")
        if isinstance(event_id, str):
            parts.append(f"id:{event_id[:8]}..." if len(event_id) > 12 else f"id:{event_id}")

        if parts:
            return " ".join(parts)

    return preview_str(text, 40)


def extract_ip_from_json(data: bytes) -> Optional[str]:
    """Find a caller address in well-known JSON body fields."""
    payload = _load_json(data)
    if not isinstance(payload, dict):
        return None

    for path in SOURCE_IP_FIELDS:
        current: Any = payload
        for part in path.split("."):
            if not isinstance(current, dict) or part not in current:
                current = None
                break
            current = current[part]
        if isinstance(current, str) and current:
            logger.debug(f"Found source IP in JSON body field '{path}': {current}")
            return current
    return None


def find_source_ip(attributes: dict, names: Iterable[str] = SOURCE_IP_ATTRIBUTES) -> Optional[str]:
    """Find a caller address among message attributes (names compared lowercase)."""
    wanted = set(names)
    for key, value in attributes.items():
        if key.lower() in wanted and value:
            logger.debug(f"Found source IP in attribute '{key}': {value}")
            return value
    return None


def is_valid_header_value(value: str) -> bool:
    """Header values must not contain CR, LF or NUL."""
    return isinstance(value, str) and not any(c in value for c in "\r\n\0")


def is_valid_header_name(name: str) -> bool:
    """Header names must be RFC 7230 tokens."""
    return isinstance(name, str) and bool(_HEADER_NAME_RE.fullmatch(name))
