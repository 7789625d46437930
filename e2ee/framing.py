import asyncio
import struct
from dataclasses import dataclass
from typing import Optional

from .cipher import IV_SIZE
from .errors import FrameError, FrameTooLarge, TruncatedFrame

"""
framing.py — how bytes are laid out on the TCP stream.

Two record shapes:

Frame (one encrypted chat message):
- 16-byte IV
- 4-byte big-endian unsigned length (N)
- N bytes of AES-CBC ciphertext

Blob (handshake only; carries a PEM public key):
- 4-byte big-endian unsigned length (N)
- N bytes

Why the length prefix?
- TCP has no message boundaries, so the reader needs to know where each
  record stops. The IV goes first so the receiver can start decoding as soon
  as the bytes show up.
- Hard caps (configurable) so a buggy peer can't make us allocate silly
  amounts of memory.
"""

LENGTH_STRUCT = struct.Struct("!I")  # big-endian unsigned 32-bit length
MAX_LENGTH = 0xFFFFFFFF
MAX_FRAME_SIZE = 16 * 1024 * 1024  # 16 MiB ciphertext cap
MAX_BLOB_SIZE = 16 * 1024  # a 2048-bit PEM key is ~430 bytes


@dataclass(frozen=True)
class Frame:
    iv: bytes
    ciphertext: bytes


def _check_outgoing(iv: bytes, ciphertext: bytes, max_size: int) -> None:
    if len(iv) != IV_SIZE:
        raise FrameError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
    if len(ciphertext) > min(max_size, MAX_LENGTH):
        raise FrameTooLarge(f"Ciphertext of {len(ciphertext)} bytes exceeds limit {max_size}")


# -------------------------
# Pure encode/decode helpers
# -------------------------

def encode_frame(iv: bytes, ciphertext: bytes, max_size: int = MAX_FRAME_SIZE) -> bytes:
    """Frame as one contiguous buffer (IV, length, ciphertext)."""
    _check_outgoing(iv, ciphertext, max_size)
    return bytes(iv) + LENGTH_STRUCT.pack(len(ciphertext)) + bytes(ciphertext)


def decode_frame(data: bytes, max_size: int = MAX_FRAME_SIZE) -> Frame:
    """
    Parse exactly one frame out of `data`.

    Raises:
        TruncatedFrame: the buffer ends before the frame does.
        FrameTooLarge: the declared length is over `max_size`.
        FrameError: there are bytes left over after the frame.
    """
    header = IV_SIZE + LENGTH_STRUCT.size
    if len(data) < header:
        raise TruncatedFrame(f"Need {header} header bytes, got {len(data)}")
    (length,) = LENGTH_STRUCT.unpack_from(data, IV_SIZE)
    if length > max_size:
        raise FrameTooLarge(f"Frame too large: {length} > {max_size}")
    end = header + length
    if len(data) < end:
        raise TruncatedFrame(f"Frame declares {length} ciphertext bytes, only {len(data) - header} present")
    if len(data) > end:
        raise FrameError(f"{len(data) - end} trailing bytes after frame")
    return Frame(iv=bytes(data[:IV_SIZE]), ciphertext=bytes(data[header:end]))


# -------------------
# Stream-facing codec
# -------------------

async def write_frame(conn, iv: bytes, ciphertext: bytes, max_size: int = MAX_FRAME_SIZE) -> None:
    """
    Send one frame as three writes: IV, then length, then ciphertext.

    `conn` is anything with an async send_exact(bytes) (see transport.Connection).
    """
    _check_outgoing(iv, ciphertext, max_size)
    await conn.send_exact(bytes(iv))
    await conn.send_exact(LENGTH_STRUCT.pack(len(ciphertext)))
    await conn.send_exact(bytes(ciphertext))


async def read_frame(conn, max_size: int = MAX_FRAME_SIZE) -> Optional[Frame]:
    """
    Read one frame off the stream.

    Returns:
        Frame, or None if the peer closed before a full IV arrived (a normal,
        graceful end of the conversation).

    Raises:
        TruncatedFrame: the connection dropped after the IV but before the
            frame was complete.
        FrameTooLarge: the declared length is over `max_size`.
    """
    try:
        iv = await conn.recv_exact(IV_SIZE)
    except asyncio.IncompleteReadError:
        return None

    try:
        len_bytes = await conn.recv_exact(LENGTH_STRUCT.size)
    except asyncio.IncompleteReadError as exc:
        raise TruncatedFrame(
            f"Connection closed after IV; got {len(exc.partial)} of {LENGTH_STRUCT.size} length bytes"
        ) from exc
    (length,) = LENGTH_STRUCT.unpack(len_bytes)

    # Sanity check before allocating/reading the body.
    if length > max_size:
        raise FrameTooLarge(f"Frame too large: {length} > {max_size}")

    try:
        ciphertext = await conn.recv_exact(length) if length else b""
    except asyncio.IncompleteReadError as exc:
        raise TruncatedFrame(
            f"Connection closed mid-frame; got {len(exc.partial)} of {length} ciphertext bytes"
        ) from exc
    return Frame(iv=bytes(iv), ciphertext=bytes(ciphertext))


# ------------------------
# Handshake blob framing
# ------------------------

async def write_blob(conn, data: bytes, max_size: int = MAX_BLOB_SIZE) -> None:
    """Length-prefixed write used for the public key exchange."""
    if len(data) > max_size:
        raise FrameTooLarge(f"Handshake message of {len(data)} bytes exceeds limit {max_size}")
    await conn.send_exact(LENGTH_STRUCT.pack(len(data)) + bytes(data))


async def read_blob(conn, max_size: int = MAX_BLOB_SIZE) -> bytes:
    """
    Inverse of write_blob(). Any early close is a TruncatedFrame here: during
    the handshake there is no such thing as a graceful end.
    """
    try:
        len_bytes = await conn.recv_exact(LENGTH_STRUCT.size)
    except asyncio.IncompleteReadError as exc:
        raise TruncatedFrame(
            f"Connection closed before handshake message length ({len(exc.partial)} bytes read)"
        ) from exc
    (length,) = LENGTH_STRUCT.unpack(len_bytes)
    if length > max_size:
        raise FrameTooLarge(f"Handshake message too large: {length} > {max_size}")
    try:
        return bytes(await conn.recv_exact(length)) if length else b""
    except asyncio.IncompleteReadError as exc:
        raise TruncatedFrame(
            f"Connection closed mid handshake message; got {len(exc.partial)} of {length} bytes"
        ) from exc
