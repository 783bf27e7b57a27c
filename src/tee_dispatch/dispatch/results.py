"""Decoding of task result references."""

from __future__ import annotations

import binascii
import json
import re
from dataclasses import dataclass, field
from typing import Any

_IPFS_PATH_RE = re.compile(r"/ipfs/([^/?#]+)")
_CID_V0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_LOCATION_KEYS = ("location", "storage", "ipfs", "hash")


@dataclass(slots=True)
class ResultLocation:
    """Where the result archive of a task is stored."""

    raw: str
    location: str | None
    ipfs_hash: str | None
    payload: dict[str, Any] = field(default_factory=dict)

    def gateway_url(self, gateway_base_url: str) -> str | None:
        if self.ipfs_hash is None:
            return None
        return f"{gateway_base_url.rstrip('/')}/ipfs/{self.ipfs_hash}"


def decode_result_ref(raw: str) -> ResultLocation:
    """Decode a ledger result reference.

    The ledger stores results as hex-encoded JSON such as
    ``{"storage": "ipfs", "location": "/ipfs/Qm..."}``; plain JSON, a bare
    ``/ipfs/...`` path or a bare CID are accepted as well.
    """

    text = _hex_to_text(raw.strip())
    payload: dict[str, Any] = {}
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        payload = parsed

    location = _pick_location(payload) if payload else text or None
    return ResultLocation(
        raw=raw,
        location=location,
        ipfs_hash=_extract_ipfs_hash(location),
        payload=payload,
    )


def _hex_to_text(value: str) -> str:
    digits = value[2:] if value.lower().startswith("0x") else None
    if digits is None:
        return value
    try:
        return binascii.unhexlify(digits).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value


def _pick_location(payload: dict[str, Any]) -> str | None:
    for key in _LOCATION_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip() and value.strip().lower() != "ipfs":
            return value.strip()
    return None


def _extract_ipfs_hash(location: str | None) -> str | None:
    if not location:
        return None
    match = _IPFS_PATH_RE.search(location)
    if match:
        return match.group(1)
    if _CID_V0_RE.match(location):
        return location
    return None
