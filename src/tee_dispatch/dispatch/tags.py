"""Marketplace tag codec.

Tags travel on the wire as a bytes32 bitmask in hex form. Each known
capability owns one bit; matching requires the workerpool tag to be a
superset of the union of the other orders' tags.
"""

from __future__ import annotations

from collections.abc import Iterable

from tee_dispatch.dispatch.models import TeeFramework

TEE_TAG = "tee"

TAG_BITS: dict[str, int] = {
    TEE_TAG: 0,
    TeeFramework.SCONE.value: 1,
    TeeFramework.GRAMINE.value: 2,
    TeeFramework.TDX.value: 3,
}

_BYTES32_HEX_DIGITS = 64


def tee_tag(framework: TeeFramework) -> tuple[str, ...]:
    """Tag required by any order that uses secrets or protected data."""

    return (TEE_TAG, framework.value)


def encode_tag(names: Iterable[str]) -> str:
    """Encode tag names into a 0x-prefixed bytes32 hex string."""

    mask = 0
    for name in names:
        normalized = name.strip().lower()
        if normalized not in TAG_BITS:
            raise ValueError(f"Unknown tag: {name!r}. Use one of {sorted(TAG_BITS)}.")
        mask |= 1 << TAG_BITS[normalized]
    return "0x" + format(mask, f"0{_BYTES32_HEX_DIGITS}x")


def decode_tag(value: str) -> tuple[str, ...]:
    """Decode a bytes32 hex tag into known tag names ordered by bit."""

    raw = value.strip().lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if not raw:
        return ()
    mask = int(raw, 16)
    ordered = sorted(TAG_BITS.items(), key=lambda item: item[1])
    return tuple(name for name, bit in ordered if mask & (1 << bit))


def is_tag_superset(candidate: Iterable[str], required: Iterable[str]) -> bool:
    return {name.lower() for name in required} <= {name.lower() for name in candidate}
