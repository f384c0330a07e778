"""
PVault Digest Engine
====================

Incremental Merkle-Damgård hashing, instantiated as SHA-1, plus HMAC-SHA1.

- ``MDBlockAccumulator`` buffers arbitrary-length input into 64-byte
  blocks and hands each full block to a pluggable compression function.
- ``SHA1`` plugs the SHA-1 compression function into the accumulator.
- ``HMACSHA1`` / ``hmac_sha1`` build the two-pass keyed construction on
  top of ``SHA1``.

Finalisation is one-shot: a finalised state refuses further input and its
chaining words are zeroed once the digest has been read out.

Padding (FIPS PUB 180-1)
------------------------
::

    message || 0x80 || 0x00 * k || bit_length (8 bytes, big-endian)

    with k chosen so the padded length is a multiple of 64.  When fewer
    than 9 bytes remain in the final block the padding spills into an
    additional block.
"""

from __future__ import annotations

import logging
import struct
from typing import BinaryIO, Callable, List, Union

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BLOCK_SIZE: int = 64    # SHA-1 transform block
DIGEST_SIZE: int = 20   # five 32-bit words
LENGTH_SIZE: int = 8    # 64-bit bit-length suffix
DEFAULT_CHUNK: int = 64 * 1024

IPAD_BYTE: int = 0x36
OPAD_BYTE: int = 0x5C

_MASK32: int = 0xFFFFFFFF
_MASK64: int = 0xFFFFFFFFFFFFFFFF

_SHA1_IV = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476, 0xC3D2E1F0)

BytesLike = Union[bytes, bytearray, memoryview]

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DigestError(Exception):
    """Base exception for hashing errors."""


class FinalizedStateError(DigestError):
    """The hash state was already finalised."""


# ---------------------------------------------------------------------------
# Generic block accumulator
# ---------------------------------------------------------------------------


class MDBlockAccumulator:
    """
    Buffer input into fixed-size blocks for a Merkle-Damgård hash.

    Parameters
    ----------
    transform : callable(block)
        Compression function invoked exactly once per complete block.
    block_size : int
        Transform block size in bytes (64 for SHA-1).
    byteorder : str
        Byte order of the length suffix, ``"big"`` for SHA-1.
    """

    def __init__(
        self,
        transform: Callable[[bytes], None],
        block_size: int = BLOCK_SIZE,
        byteorder: str = "big",
    ) -> None:
        if block_size <= LENGTH_SIZE:
            raise ValueError(f"Block size must exceed {LENGTH_SIZE} bytes.")
        self._transform = transform
        self._block_size = block_size
        self._byteorder = byteorder
        self._buffer = bytearray()
        self._total = 0
        self._finished = False

    @property
    def total_bytes(self) -> int:
        """Number of message bytes accepted so far."""
        return self._total

    @property
    def finished(self) -> bool:
        return self._finished

    def update(self, data: BytesLike) -> None:
        """Append *data*, consuming every complete block."""
        if self._finished:
            raise FinalizedStateError("Cannot update a finalised hash state.")
        self._total += len(data)
        self._absorb(data)

    def finish(self) -> None:
        """
        Append the length padding and flush the final block(s).

        After this call the accumulator is terminal.
        """
        if self._finished:
            raise FinalizedStateError("Hash state was already finalised.")
        bs = self._block_size
        zeros = (bs - 1 - LENGTH_SIZE - len(self._buffer)) % bs
        bit_length = (self._total * 8) & _MASK64
        self._absorb(
            b"\x80"
            + bytes(zeros)
            + bit_length.to_bytes(LENGTH_SIZE, self._byteorder)
        )
        self._finished = True

    def _absorb(self, data: BytesLike) -> None:
        buf = self._buffer
        buf += data
        bs = self._block_size
        full = len(buf) - len(buf) % bs
        for offset in range(0, full, bs):
            self._transform(bytes(buf[offset : offset + bs]))
        del buf[:full]


# ---------------------------------------------------------------------------
# SHA-1
# ---------------------------------------------------------------------------


def _rotl(x: int, n: int) -> int:
    return ((x << n) | (x >> (32 - n))) & _MASK32


def sha1_compress(state: List[int], block: bytes) -> None:
    """Run the SHA-1 compression function over one 64-byte *block* in place."""
    w = list(struct.unpack(">16I", block))
    for i in range(16, 80):
        w.append(_rotl(w[i - 3] ^ w[i - 8] ^ w[i - 14] ^ w[i - 16], 1))

    a, b, c, d, e = state
    for i in range(80):
        if i < 20:
            f = (b & (c ^ d)) ^ d
            k = 0x5A827999
        elif i < 40:
            f = b ^ c ^ d
            k = 0x6ED9EBA1
        elif i < 60:
            f = (b & c) | (b & d) | (c & d)
            k = 0x8F1BBCDC
        else:
            f = b ^ c ^ d
            k = 0xCA62C1D6
        temp = (_rotl(a, 5) + f + e + k + w[i]) & _MASK32
        e = d
        d = c
        c = _rotl(b, 30)
        b = a
        a = temp

    state[0] = (state[0] + a) & _MASK32
    state[1] = (state[1] + b) & _MASK32
    state[2] = (state[2] + c) & _MASK32
    state[3] = (state[3] + d) & _MASK32
    state[4] = (state[4] + e) & _MASK32


class SHA1:
    """
    Streaming SHA-1.

    ``update`` may be called any number of times; ``finalize`` returns the
    20-byte digest once and leaves the object unusable.
    """

    name = "sha1"
    digest_size = DIGEST_SIZE
    block_size = BLOCK_SIZE

    def __init__(self, data: BytesLike = b"") -> None:
        self._state = list(_SHA1_IV)
        self._acc = MDBlockAccumulator(self._consume, BLOCK_SIZE, "big")
        if data:
            self.update(data)

    def _consume(self, block: bytes) -> None:
        sha1_compress(self._state, block)

    @property
    def finalized(self) -> bool:
        return self._acc.finished

    def update(self, data: BytesLike) -> None:
        self._acc.update(data)

    def finalize(self) -> bytes:
        """Pad, flush, and return the big-endian digest; zero the state."""
        self._acc.finish()
        out = struct.pack(">5I", *self._state)
        for i in range(len(self._state)):
            self._state[i] = 0
        return out

    def hexfinalize(self) -> str:
        return self.finalize().hex()


def sha1(data: BytesLike) -> bytes:
    """One-shot SHA-1 of *data*."""
    return SHA1(data).finalize()


def hash_stream(source: BinaryIO, chunk_size: int = DEFAULT_CHUNK) -> bytes:
    """SHA-1 of everything readable from *source*."""
    h = SHA1()
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            break
        h.update(chunk)
    return h.finalize()


# ---------------------------------------------------------------------------
# HMAC-SHA1
# ---------------------------------------------------------------------------


def _inner_pad(key: BytesLike) -> bytearray:
    if len(key) > BLOCK_SIZE:
        # Only the first block of key bytes is mixed into the pads.
        logger.warning(
            "HMAC key is %d bytes; only the first %d are used.",
            len(key), BLOCK_SIZE,
        )
    pad = bytearray([IPAD_BYTE]) * BLOCK_SIZE
    for i, byte in enumerate(bytes(key[:BLOCK_SIZE])):
        pad[i] ^= byte
    return pad


class HMACSHA1:
    """
    Streaming HMAC-SHA1.

    The inner pad is absorbed at construction, the message is streamed via
    :meth:`update`, and :meth:`finalize` folds in the outer pad.
    """

    name = "hmac-sha1"
    digest_size = DIGEST_SIZE
    block_size = BLOCK_SIZE

    def __init__(self, key: BytesLike) -> None:
        if not isinstance(key, (bytes, bytearray, memoryview)):
            raise TypeError("HMAC key must be bytes.")
        pad = _inner_pad(key)
        self._inner = SHA1(pad)
        for i in range(BLOCK_SIZE):
            pad[i] ^= IPAD_BYTE ^ OPAD_BYTE
        self._outer_pad = pad

    @property
    def finalized(self) -> bool:
        return self._inner.finalized

    def update(self, data: BytesLike) -> None:
        self._inner.update(data)

    def finalize(self) -> bytes:
        inner_digest = self._inner.finalize()
        outer = SHA1(self._outer_pad)
        outer.update(inner_digest)
        for i in range(BLOCK_SIZE):
            self._outer_pad[i] = 0
        return outer.finalize()

    def hexfinalize(self) -> str:
        return self.finalize().hex()


def hmac_sha1(key: BytesLike, message: BytesLike) -> bytes:
    """One-shot HMAC-SHA1 of *message* under *key*."""
    mac = HMACSHA1(key)
    mac.update(message)
    return mac.finalize()


def hmac_stream(
    key: BytesLike,
    source: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK,
) -> bytes:
    """HMAC-SHA1 of everything readable from *source*."""
    mac = HMACSHA1(key)
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            break
        mac.update(chunk)
    return mac.finalize()


# ---------------------------------------------------------------------------
# Self-test (run with: python mdhash.py)
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import sys

    vectors = [
        (b"abc", "a9993e364706816aba3e25717850c26c9cd0d89d"),
        (
            b"abcdbcdecdefdefgefghfghighijhijkijkljklmklmnlmnomnopnopq",
            "84983e441c3bd26ebaae4aa1f95129e5e54670f1",
        ),
        (b"a" * 1_000_000, "34aa973cd4c4daa4f61eeb2bdbad27316534016f"),
    ]
    failed = 0
    for message, expected in vectors:
        got = sha1(message).hex()
        status = "PASS" if got == expected else "FAIL"
        if got != expected:
            failed += 1
        print(f"  [{status}] SHA1({len(message)} bytes) = {got}")
    sys.exit(1 if failed else 0)
