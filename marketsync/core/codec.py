"""
Hex byte-vector codec for marketplace text fields.

Item names, descriptions and URIs are stored on the ledger as vector<u8>
and come back from view calls as 0x-prefixed hex strings.
"""

from __future__ import annotations

import re
from typing import Any, List

_HEX_BODY = re.compile(r"(?:[0-9a-fA-F]{2})*")


def decode(encoded: Any) -> str:
    """
    Decode a 0x-prefixed hex byte vector into UTF-8 text.

    Anything that is not a string of the form ``0x`` + an even number of hex
    digits decodes to an empty string. Never raises.
    """
    if not isinstance(encoded, str) or not encoded.startswith("0x"):
        return ""
    body = encoded[2:]
    if not _HEX_BODY.fullmatch(body):
        return ""
    return bytes.fromhex(body).decode("utf-8", errors="replace")


def encode(text: str) -> List[int]:
    """Text -> byte vector, as submitted in mint payloads."""
    return list(text.encode("utf-8"))


def encode_hex(text: str) -> str:
    return "0x" + text.encode("utf-8").hex()
