# data/payload_codec.py
"""Wire format for values stored in the remote cache tier.

Layout: one flag byte followed by the body.

    0x00  body is UTF-8 JSON
    0x01  body is gzip-compressed UTF-8 JSON

The flag is written explicitly so decoding never has to guess whether a
payload "looks compressed".
"""
from __future__ import annotations

import gzip
import json
import zlib
from dataclasses import dataclass
from typing import Any

from core.exceptions import PayloadDecodeError
from utils.serialization import to_serializable

FLAG_PLAIN = b"\x00"
FLAG_GZIP = b"\x01"


@dataclass(frozen=True)
class EncodedPayload:
    data: bytes
    compressed: bool
    raw_size: int

    @property
    def ratio(self) -> float:
        """raw / stored body size; 1.0 for uncompressed payloads."""
        body = len(self.data) - 1
        return self.raw_size / body if body > 0 else 1.0


def encode_payload(
    value: Any,
    compression_enabled: bool = True,
    size_threshold_bytes: int = 1024,
) -> EncodedPayload:
    """JSON-encode ``value``; gzip it when enabled and above the threshold."""
    raw = json.dumps(
        to_serializable(value),
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    ).encode("utf-8")

    if compression_enabled and len(raw) > size_threshold_bytes:
        return EncodedPayload(
            data=FLAG_GZIP + gzip.compress(raw),
            compressed=True,
            raw_size=len(raw),
        )
    return EncodedPayload(data=FLAG_PLAIN + raw, compressed=False, raw_size=len(raw))


def decode_payload(data: bytes | bytearray | memoryview | str) -> Any:
    """Inverse of :func:`encode_payload`.

    Raises:
        PayloadDecodeError: unknown flag, corrupt gzip stream or invalid JSON.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    data = bytes(data)
    if not data:
        raise PayloadDecodeError("Empty cache payload")

    flag, body = data[:1], data[1:]
    try:
        if flag == FLAG_GZIP:
            body = gzip.decompress(body)
        elif flag != FLAG_PLAIN:
            raise PayloadDecodeError(
                "Unknown cache payload flag",
                details={"flag": flag.hex()},
            )
        return json.loads(body.decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError) as e:
        raise PayloadDecodeError(
            f"Corrupt cache payload: {e}",
            details={"flag": flag.hex(), "size": len(data)},
        ) from e
