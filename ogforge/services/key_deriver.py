"""
Deterministic cache-key derivation.

Requests are serialized into a canonical text form: fields sorted by name,
integral numbers written exactly and other numbers at fixed precision, with
control-character separators escaped inside values. The form is hashed
with a 64-bit BLAKE2b digest. Python's built-in hash() is salted per
process, so it is never used here.
"""
import hashlib
import re
from typing import Any, Mapping, Optional

from ..core.models import RenderRequest

RECORD_SEP = "\x1e"
UNIT_SEP = "\x1f"
GROUP_SEP = "\x1d"

IMAGE_NAMESPACE = "og-image"
METADATA_NAMESPACE = "page-metadata"

_BOT_PATTERN = re.compile(
    r"bot|crawler|spider|slurp|facebookexternalhit|embedly|preview|whatsapp|telegram|discord",
    re.IGNORECASE,
)
_MOBILE_PATTERN = re.compile(r"mobile|android|iphone|ipad|ipod", re.IGNORECASE)
_DECIMAL_BITS = 4096


def _escape(text: str) -> str:
    text = text.replace("\\", "\\\\")
    for sep in (RECORD_SEP, UNIT_SEP, GROUP_SEP):
        text = text.replace(sep, f"\\x{ord(sep):02x}")
    return text


def canonicalize(value: Any) -> str:
    """Render a parameter value as type-tagged canonical text."""
    if value is None:
        return "~"
    if isinstance(value, bool):
        return "b:true" if value else "b:false"
    if isinstance(value, int):
        # decimal str() of very long ints is capped by the interpreter; hex is not
        return f"n:{value}" if value.bit_length() <= _DECIMAL_BITS else f"n:{value:#x}"
    if isinstance(value, float):
        if value.is_integer():
            return f"n:{int(value)}"
        return f"n:{value:.6f}"
    if isinstance(value, Mapping):
        items = sorted((str(k), v) for k, v in value.items())
        inner = UNIT_SEP.join(f"{_escape(k)}={canonicalize(v)}" for k, v in items)
        return "{" + inner + GROUP_SEP + "}"
    if isinstance(value, (list, tuple)):
        return "[" + UNIT_SEP.join(canonicalize(item) for item in value) + GROUP_SEP + "]"
    return "s:" + _escape(str(value))


def canonical_form(namespace: str, fields: Mapping[str, Any]) -> bytes:
    records = [namespace]
    for name in sorted(fields):
        records.append(f"{_escape(name)}={canonicalize(fields[name])}")
    return RECORD_SEP.join(records).encode("utf-8")


def digest(data: bytes) -> str:
    """64-bit digest of canonical bytes, as 16 hex chars."""
    return hashlib.blake2b(data, digest_size=8).hexdigest()


def derive(request: RenderRequest) -> str:
    """Cache key for an image render request."""
    fields = {
        "template": request.template,
        "format": request.format.value,
        "params": request.params,
    }
    return digest(canonical_form(IMAGE_NAMESPACE, fields))


def user_agent_class(user_agent: Optional[str]) -> str:
    if not user_agent:
        return "unknown"
    if _BOT_PATTERN.search(user_agent):
        return "bot"
    if _MOBILE_PATTERN.search(user_agent):
        return "mobile"
    return "desktop"


def derive_metadata_key(path: str, query: Optional[Mapping[str, Any]] = None,
                        user_agent: Optional[str] = None) -> str:
    """Cache key for page metadata: path + query + user-agent class."""
    fields = {
        "path": path,
        "query": dict(query or {}),
        "ua": user_agent_class(user_agent),
    }
    return digest(canonical_form(METADATA_NAMESPACE, fields))
