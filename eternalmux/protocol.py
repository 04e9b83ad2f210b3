"""Header codes and framing helpers for the multiplexer pipe protocol."""

from __future__ import annotations

import base64
import binascii
import struct
from enum import Enum

_LENGTH_FORMAT = "<i"
_LENGTH_SIZE = struct.calcsize(_LENGTH_FORMAT)
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class HeaderCode(bytes, Enum):
    """One-byte message headers exchanged between the client and the daemon."""

    INSERT_KEYS = b"1"
    INIT_STATE = b"2"
    CLIENT_CLOSE_PANE = b"3"
    APPEND_TO_PANE = b"4"
    NEW_TAB = b"5"
    SERVER_CLOSE_PANE = b"8"
    NEW_SPLIT = b"9"
    RESIZE_PANE = b"A"
    DEBUG_LOG = b"B"
    INSERT_DEBUG_KEYS = b"C"
    SESSION_END = b"D"


def encoded_length(data: bytes) -> int:
    """Return the number of characters base64 produces for ``data``."""
    return 4 * ((len(data) + 2) // 3)


def read_exact(sock, length: int) -> bytes:
    """Read exactly ``length`` bytes from ``sock`` or raise ConnectionError."""
    if length < 0:
        raise ValueError(f"cannot read a negative number of bytes: {length}")
    chunks = []
    remaining = length
    while remaining > 0:
        chunk = sock.recv(remaining)
        if not chunk:
            raise ConnectionError("connection closed while reading")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def write_b64(sock, data: bytes) -> None:
    """Write ``data`` to ``sock`` base64 encoded."""
    sock.sendall(base64.b64encode(data))


def read_b64(sock, length: int) -> bytes:
    """Read ``length`` base64 characters from ``sock`` and return them decoded."""
    encoded = read_exact(sock, length)
    try:
        return base64.b64decode(encoded, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64 payload: {exc}") from exc


def write_length(sock, length: int) -> None:
    """Write a signed 32-bit little-endian length, base64 encoded."""
    if not _INT32_MIN <= length <= _INT32_MAX:
        raise ValueError(f"length does not fit in 32 bits: {length}")
    write_b64(sock, struct.pack(_LENGTH_FORMAT, length))


def read_length(sock) -> int:
    """Read a length written by :func:`write_length`."""
    raw = read_b64(sock, encoded_length(bytes(_LENGTH_SIZE)))
    if len(raw) != _LENGTH_SIZE:
        raise ValueError("malformed length field")
    (length,) = struct.unpack(_LENGTH_FORMAT, raw)
    return length