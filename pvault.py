"""
PVault Encryption/Decryption Engine
===================================

Personal-vault authenticated encryption built from a single block cipher:

- AES-CTR with a randomly seeded, byte-wise incremented register
- AES-CBC-MAC over the ciphertext (encrypt-then-MAC)
- Two independent sub-keys carved out of one 32-byte key material
- Streaming encryption; decryption verifies the tag before releasing a
  single plaintext byte

Uses the ``cryptography`` library for the AES block primitive only; the
modes are implemented here.

Record format
-------------
::

    IV       : 16 bytes   (random; seeds both the CTR register and the MAC)
    Y        : len(plaintext) bytes   AES-CTR(K_CTR, plaintext)
    W        : 16 bytes   AES-CBC-MAC(K_MAC, Y)

    Key material : K_CTR (bytes 0-15) || K_MAC (bytes 16-31)

There is no header: one algorithm and key length per deployment.

Register increment
------------------
Byte 0 is incremented modulo 256.  When a byte lands on ``0x80`` (the
8-bit signed wraparound point) the carry moves to the next byte; a carry
out of the last byte is dropped.

MAC padding
-----------
A final ciphertext block shorter than 16 bytes is MAC'ed as if its missing
positions held ASCII ``'0'``.  The filler never reaches the output stream.
"""

from __future__ import annotations

import base64
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Protocol, Tuple, Union

from cryptography.hazmat.primitives import constant_time
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BLOCK_SIZE: int = 16          # AES block (B)
SUBKEY_SIZE: int = 16         # AES-128 per purpose
KEY_SIZE: int = 2 * SUBKEY_SIZE   # K_CTR || K_MAC
IV_SIZE: int = BLOCK_SIZE
TAG_SIZE: int = BLOCK_SIZE
MAC_FILLER: int = ord("0")    # pads a short final block for the MAC only
COUNTER_CARRY: int = 0x80     # carry into the next register byte
SPOOL_MAX_SIZE: int = 1024 * 1024  # ciphertext kept in RAM while verifying
DEFAULT_CHUNK: int = 64 * 1024

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class VaultError(Exception):
    """Base exception for all PVault errors."""


class IOFailure(VaultError):
    """Reading the source or writing the sink failed."""


class AuthenticationFailure(VaultError):
    """Tag verification failed; no plaintext was released."""


class FormatError(AuthenticationFailure):
    """Record is too short to contain an IV and a tag."""


class InvalidKeyError(VaultError):
    """Key is malformed."""


class KeyLengthError(InvalidKeyError):
    """Key material is shorter than two cipher blocks."""


class RandomSourceFailure(VaultError):
    """IV generation failed."""


# ---------------------------------------------------------------------------
# Block cipher capability
# ---------------------------------------------------------------------------


class BlockCipher(Protocol):
    """Anything that can encrypt single blocks under a fixed key."""

    block_size: int

    def encrypt_block(self, block: bytes) -> bytes:
        ...

    def destroy(self) -> None:
        ...


BlockCipherFactory = Callable[[bytes], BlockCipher]


class AESBlockCipher:
    """
    Raw AES block encryption (ECB applied to exactly one block at a time).

    Construct with a 16/24/32-byte key; call :meth:`destroy` (or use as a
    context manager) to drop the key schedule.
    """

    block_size = BLOCK_SIZE

    def __init__(self, key: bytes) -> None:
        if len(key) not in (16, 24, 32):
            raise KeyLengthError(f"AES key must be 16, 24 or 32 bytes (got {len(key)}).")
        self._encryptor = Cipher(algorithms.AES(bytes(key)), modes.ECB()).encryptor()

    def encrypt_block(self, block: bytes) -> bytes:
        if self._encryptor is None:
            raise VaultError("Cipher state has been destroyed.")
        if len(block) != self.block_size:
            raise ValueError(f"AES expects {self.block_size}-byte blocks.")
        return self._encryptor.update(bytes(block))

    def destroy(self) -> None:
        if self._encryptor is not None:
            self._encryptor.finalize()
            self._encryptor = None

    def __enter__(self) -> "AESBlockCipher":
        return self

    def __exit__(self, *exc) -> None:
        self.destroy()


def _xor(data: bytes, pad: bytes) -> bytes:
    """XOR *data* with the leading bytes of *pad*."""
    return bytes(x ^ y for x, y in zip(data, pad))


# ---------------------------------------------------------------------------
# CTR mode
# ---------------------------------------------------------------------------


def increment_register(register: bytearray) -> None:
    """Advance *register* by one, carrying at the ``0x80`` boundary."""
    for i in range(len(register)):
        register[i] = (register[i] + 1) & 0xFF
        if register[i] != COUNTER_CARRY:
            break


class CounterModeCipher:
    """
    Stream cipher from a block cipher and an incrementing register.

    Each call to :meth:`process` consumes exactly one keystream block and
    advances the register once, even when the chunk is shorter than a
    block.  Unused keystream bytes are discarded.
    """

    def __init__(self, cipher: BlockCipher, iv: bytes) -> None:
        if len(iv) != cipher.block_size:
            raise ValueError(f"Register must be {cipher.block_size} bytes.")
        self._cipher = cipher
        self._register = bytearray(iv)

    @property
    def register(self) -> bytes:
        return bytes(self._register)

    def process(self, chunk: bytes) -> bytes:
        """Encrypt or decrypt one chunk of 1..B bytes."""
        if not 0 < len(chunk) <= self._cipher.block_size:
            raise ValueError(
                f"CTR chunk must hold 1..{self._cipher.block_size} bytes (got {len(chunk)})."
            )
        keystream = self._cipher.encrypt_block(bytes(self._register))
        increment_register(self._register)
        return _xor(chunk, keystream)


# ---------------------------------------------------------------------------
# CBC-MAC
# ---------------------------------------------------------------------------


class BlockChainMAC:
    """
    CBC-MAC over a sequence of ciphertext blocks.

    The chaining value starts at the IV that seeded the CTR register.  A
    block shorter than the cipher block must be the last one; its missing
    positions are XORed with :data:`MAC_FILLER` instead of data.
    """

    def __init__(self, cipher: BlockCipher, iv: bytes) -> None:
        if len(iv) != cipher.block_size:
            raise ValueError(f"Chaining value must be {cipher.block_size} bytes.")
        self._cipher = cipher
        self._chain = bytes(iv)
        self._closed = False

    def update(self, block: bytes) -> None:
        bs = self._cipher.block_size
        if self._closed:
            raise ValueError("A short block must be the last block MAC'ed.")
        if not 0 < len(block) <= bs:
            raise ValueError(f"MAC block must hold 1..{bs} bytes (got {len(block)}).")
        mixed = bytearray(self._chain)
        for i, byte in enumerate(block):
            mixed[i] ^= byte
        if len(block) < bs:
            for i in range(len(block), bs):
                mixed[i] ^= MAC_FILLER
            self._closed = True
        self._chain = self._cipher.encrypt_block(bytes(mixed))

    def tag(self) -> bytes:
        return self._chain


def compute_tag(cipher: BlockCipher, iv: bytes, ciphertext: bytes) -> bytes:
    """CBC-MAC of an in-memory *ciphertext* under *cipher*."""
    mac = BlockChainMAC(cipher, iv)
    bs = cipher.block_size
    for offset in range(0, len(ciphertext), bs):
        mac.update(ciphertext[offset : offset + bs])
    return mac.tag()


# ---------------------------------------------------------------------------
# Key material lifetime
# ---------------------------------------------------------------------------


class KeyMaterial:
    """
    Scoped owner of raw key bytes.

    Use as a context manager: on exit (success or failure) the internal
    copy and the caller's buffer, when it is a ``bytearray``, are zeroed.
    Immutable ``bytes`` cannot be wiped in place; pass a ``bytearray`` to
    get the guarantee.
    """

    def __init__(self, raw: Union[bytes, bytearray]) -> None:
        if not isinstance(raw, (bytes, bytearray)):
            raise InvalidKeyError("Key must be bytes.")
        self._owner = raw if isinstance(raw, bytearray) else None
        self._buf = bytearray(raw)
        self._subkeys: list = []

    def __enter__(self) -> "KeyMaterial":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __len__(self) -> int:
        return len(self._buf)

    def split(self) -> Tuple[bytearray, bytearray]:
        """
        Return ``(cipher_key, mac_key)``, the two disjoint halves.

        Raises
        ------
        KeyLengthError
            If fewer than :data:`KEY_SIZE` bytes are present.
        """
        if len(self._buf) < KEY_SIZE:
            raise KeyLengthError(
                f"Key material must be at least {KEY_SIZE} bytes (got {len(self._buf)})."
            )
        cipher_key = self._buf[:SUBKEY_SIZE]
        mac_key = self._buf[SUBKEY_SIZE:KEY_SIZE]
        self._subkeys.extend((cipher_key, mac_key))
        return cipher_key, mac_key

    def wipe(self) -> None:
        for buf in [self._buf, self._owner, *self._subkeys]:
            if buf is not None:
                buf[:] = bytes(len(buf))


# ---------------------------------------------------------------------------
# Stream helpers
# ---------------------------------------------------------------------------


def _read_block(source: BinaryIO, size: int) -> bytes:
    """Read up to *size* bytes, looping over short reads until EOF."""
    parts = []
    remaining = size
    try:
        while remaining:
            data = source.read(remaining)
            if not data:
                break
            parts.append(data)
            remaining -= len(data)
    except OSError as exc:
        raise IOFailure(f"Read failed: {exc}") from exc
    return b"".join(parts)


def _write(sink: BinaryIO, data: bytes) -> None:
    try:
        written = sink.write(data)
    except OSError as exc:
        raise IOFailure(f"Write failed: {exc}") from exc
    if written is not None and written != len(data):
        raise IOFailure(f"Short write ({written} of {len(data)} bytes).")


@dataclass
class VaultResult:
    """Outcome of a successful encrypt or decrypt."""

    plaintext_size: int
    record_size: int


# ---------------------------------------------------------------------------
# VaultEngine
# ---------------------------------------------------------------------------


class VaultEngine:
    """
    Encrypt-then-MAC engine.

    All public methods are **static**; the class is a namespace.  The
    block cipher defaults to :class:`AESBlockCipher` and can be replaced
    per call with ``cipher_factory``.
    """

    cipher_factory: BlockCipherFactory = AESBlockCipher

    # ------------------------------------------------------------------
    # Key generation & conversion
    # ------------------------------------------------------------------

    @staticmethod
    def generate_key() -> bytes:
        """Generate a random 32-byte key material (K_CTR || K_MAC)."""
        return os.urandom(KEY_SIZE)

    @staticmethod
    def key_to_base64(key: bytes) -> str:
        """Encode a key as URL-safe Base64."""
        _validate_key(key)
        return base64.urlsafe_b64encode(bytes(key)).decode("ascii")

    @staticmethod
    def key_from_base64(b64: str) -> bytearray:
        """Decode a key from URL-safe Base64."""
        try:
            key = bytearray(base64.urlsafe_b64decode(b64.strip().encode("ascii")))
        except Exception as exc:
            raise InvalidKeyError("Invalid Base64 key encoding.") from exc
        _validate_key(key)
        return key

    @staticmethod
    def key_to_hex(key: bytes) -> str:
        """Encode a key as lowercase hex."""
        _validate_key(key)
        return bytes(key).hex()

    @staticmethod
    def key_from_hex(h: str) -> bytearray:
        """Decode a key from hex."""
        try:
            key = bytearray.fromhex(h.strip())
        except ValueError as exc:
            raise InvalidKeyError("Invalid hex key encoding.") from exc
        _validate_key(key)
        return key

    # ------------------------------------------------------------------
    # Streaming encrypt / decrypt
    # ------------------------------------------------------------------

    @staticmethod
    def encrypt(
        key: Union[bytes, bytearray],
        source: BinaryIO,
        sink: BinaryIO,
        *,
        random_source: Callable[[int], bytes] = os.urandom,
        cipher_factory: Optional[BlockCipherFactory] = None,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> VaultResult:
        """
        Encrypt everything readable from *source* into *sink*.

        Writes ``IV || AES-CTR(plaintext) || CBC-MAC`` and returns the
        sizes involved.  A write failure aborts immediately; whatever was
        already written to *sink* must be discarded by the caller.

        Parameters
        ----------
        key : bytes or bytearray
            At least 32 bytes; a ``bytearray`` is zeroed before returning.
        source, sink : binary file objects
        random_source : callable(n) -> bytes
            IV generator (default :func:`os.urandom`).
        cipher_factory : callable(key) -> BlockCipher, optional
        progress_callback : callable(plaintext_bytes_processed)

        Raises
        ------
        KeyLengthError, RandomSourceFailure, IOFailure
        """
        factory = cipher_factory or VaultEngine.cipher_factory
        with KeyMaterial(key) as material:
            cipher_key, mac_key = material.split()
            iv = _draw_iv(random_source)

            ctr_cipher = factory(cipher_key)
            try:
                mac_cipher = factory(mac_key)
                try:
                    processed = _encrypt_stream(
                        ctr_cipher, mac_cipher, iv, source, sink, progress_callback
                    )
                finally:
                    mac_cipher.destroy()
            finally:
                ctr_cipher.destroy()

        logger.debug("Encrypted %d bytes.", processed)
        return VaultResult(processed, IV_SIZE + processed + TAG_SIZE)

    @staticmethod
    def decrypt(
        key: Union[bytes, bytearray],
        source: BinaryIO,
        sink: BinaryIO,
        *,
        cipher_factory: Optional[BlockCipherFactory] = None,
        progress_callback: Optional[Callable[[int], None]] = None,
        spool_max_size: int = SPOOL_MAX_SIZE,
    ) -> VaultResult:
        """
        Verify and decrypt a record produced by :meth:`encrypt`.

        The ciphertext is spooled (in memory up to *spool_max_size*, then
        to a temporary file) while the tag is recomputed; nothing is
        written to *sink* unless the tag matches.

        Raises
        ------
        AuthenticationFailure
            Tag mismatch (or :class:`FormatError` for a truncated record).
        KeyLengthError, IOFailure
        """
        factory = cipher_factory or VaultEngine.cipher_factory
        with KeyMaterial(key) as material:
            cipher_key, mac_key = material.split()
            iv = _read_block(source, IV_SIZE)
            if len(iv) != IV_SIZE:
                raise FormatError("Record too short — missing IV.")

            mac_cipher = factory(mac_key)
            try:
                ctr_cipher = factory(cipher_key)
                try:
                    with tempfile.SpooledTemporaryFile(max_size=spool_max_size) as spool:
                        size = _verify_stream(mac_cipher, iv, source, spool)
                        spool.seek(0)
                        _decrypt_stream(ctr_cipher, iv, spool, sink, progress_callback)
                finally:
                    ctr_cipher.destroy()
            finally:
                mac_cipher.destroy()

        logger.debug("Decrypted %d bytes.", size)
        return VaultResult(size, IV_SIZE + size + TAG_SIZE)

    # ------------------------------------------------------------------
    # File encrypt / decrypt
    # ------------------------------------------------------------------

    @staticmethod
    def encrypt_file(
        input_path: Union[str, Path],
        output_path: Union[str, Path],
        key: Union[bytes, bytearray],
        *,
        random_source: Callable[[int], bytes] = os.urandom,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> VaultResult:
        """
        Encrypt a file into a PVault record.

        The key and the IV are checked before *output_path* is opened, so
        an existing file there survives a bad key or a failing random
        source.  Once writing has started, the output is removed again if
        anything fails.

        Parameters
        ----------
        input_path, output_path : path-like
        key : bytes or bytearray (32)
        random_source : callable(n) -> bytes
        progress_callback : callable(bytes_processed, total_bytes)
        """
        input_path = Path(input_path)
        output_path = Path(output_path)

        _require_key_length(key)
        try:
            iv = _draw_iv(random_source)
        except RandomSourceFailure:
            _wipe(key)
            raise

        def run(fin: BinaryIO, fout: BinaryIO, total: int) -> VaultResult:
            return VaultEngine.encrypt(
                key, fin, fout,
                random_source=lambda n: iv,
                progress_callback=_bind_total(progress_callback, total),
            )

        return _run_on_files(input_path, output_path, key, run)

    @staticmethod
    def decrypt_file(
        input_path: Union[str, Path],
        output_path: Union[str, Path],
        key: Union[bytes, bytearray],
        *,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> VaultResult:
        """
        Decrypt a file produced by :meth:`encrypt_file`.

        On authentication failure no output file is left behind.  A short
        key is rejected before *output_path* is opened.
        """
        input_path = Path(input_path)
        output_path = Path(output_path)

        _require_key_length(key)

        def run(fin: BinaryIO, fout: BinaryIO, total: int) -> VaultResult:
            return VaultEngine.decrypt(
                key, fin, fout,
                progress_callback=_bind_total(
                    progress_callback, max(total - IV_SIZE - TAG_SIZE, 0)
                ),
            )

        return _run_on_files(input_path, output_path, key, run)


# ---------------------------------------------------------------------------
# Pipeline internals (module-private)
# ---------------------------------------------------------------------------


def _encrypt_stream(
    ctr_cipher: BlockCipher,
    mac_cipher: BlockCipher,
    iv: bytes,
    source: BinaryIO,
    sink: BinaryIO,
    progress_callback: Optional[Callable[[int], None]],
) -> int:
    ctr = CounterModeCipher(ctr_cipher, iv)
    mac = BlockChainMAC(mac_cipher, iv)
    bs = ctr_cipher.block_size
    processed = 0

    _write(sink, iv)
    while True:
        chunk = _read_block(source, bs)
        if not chunk:
            break
        ct = ctr.process(chunk)
        _write(sink, ct)
        mac.update(ct)
        processed += len(chunk)
        if progress_callback and processed % DEFAULT_CHUNK < bs:
            progress_callback(processed)
    _write(sink, mac.tag())
    if progress_callback:
        progress_callback(processed)
    return processed


def _verify_stream(
    mac_cipher: BlockCipher,
    iv: bytes,
    source: BinaryIO,
    spool: BinaryIO,
) -> int:
    """MAC the ciphertext into *spool*, holding back the trailing tag."""
    mac = BlockChainMAC(mac_cipher, iv)
    bs = mac_cipher.block_size
    held = bytearray()
    size = 0

    while True:
        chunk = _read_block(source, DEFAULT_CHUNK)
        held += chunk
        # Keep at least one block back: it may be the tag.
        while len(held) >= 2 * bs:
            block = bytes(held[:bs])
            del held[:bs]
            mac.update(block)
            _write(spool, block)
            size += bs
        if not chunk:
            break

    if len(held) < bs:
        raise FormatError("Record too short — missing tag.")
    tail = bytes(held[:-bs])
    stored_tag = bytes(held[-bs:])
    if tail:
        mac.update(tail)
        _write(spool, tail)
        size += len(tail)

    if not constant_time.bytes_eq(mac.tag(), stored_tag):
        logger.warning("Tag mismatch on %d-byte ciphertext; record rejected.", size)
        raise AuthenticationFailure("Authentication failed: wrong key or corrupted data.")
    return size


def _decrypt_stream(
    ctr_cipher: BlockCipher,
    iv: bytes,
    spool: BinaryIO,
    sink: BinaryIO,
    progress_callback: Optional[Callable[[int], None]],
) -> None:
    ctr = CounterModeCipher(ctr_cipher, iv)
    bs = ctr_cipher.block_size
    processed = 0
    while True:
        block = _read_block(spool, bs)
        if not block:
            break
        _write(sink, ctr.process(block))
        processed += len(block)
        if progress_callback and processed % DEFAULT_CHUNK < bs:
            progress_callback(processed)
    if progress_callback:
        progress_callback(processed)


def _bind_total(
    callback: Optional[Callable[[int, int], None]],
    total: int,
) -> Optional[Callable[[int], None]]:
    if callback is None:
        return None
    return lambda done: callback(done, total)


def _run_on_files(
    input_path: Path,
    output_path: Path,
    key: Union[bytes, bytearray],
    run: Callable[[BinaryIO, BinaryIO, int], VaultResult],
) -> VaultResult:
    try:
        total = input_path.stat().st_size
        fin = open(input_path, "rb")
    except OSError as exc:
        _wipe(key)
        raise IOFailure(f"Cannot open {input_path}: {exc}") from exc

    with fin:
        try:
            fout = open(output_path, "wb")
        except OSError as exc:
            _wipe(key)
            raise IOFailure(f"Cannot create {output_path}: {exc}") from exc
        try:
            with fout:
                return run(fin, fout, total)
        except BaseException:
            _discard(output_path)
            raise


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        logger.warning("Could not remove incomplete output %s", path)


def _wipe(key: Union[bytes, bytearray]) -> None:
    if isinstance(key, bytearray):
        key[:] = bytes(len(key))


# ---------------------------------------------------------------------------
# Validation helpers (module-private)
# ---------------------------------------------------------------------------


def _require_key_length(key: Union[bytes, bytearray]) -> None:
    """Reject unusable key material up front; wipes a ``bytearray`` on failure."""
    if not isinstance(key, (bytes, bytearray)):
        raise InvalidKeyError("Key must be bytes.")
    if len(key) < KEY_SIZE:
        size = len(key)
        _wipe(key)
        raise KeyLengthError(
            f"Key material must be at least {KEY_SIZE} bytes (got {size})."
        )


def _draw_iv(random_source: Callable[[int], bytes]) -> bytes:
    try:
        iv = bytes(random_source(IV_SIZE))
    except Exception as exc:
        raise RandomSourceFailure(f"Could not generate IV: {exc}") from exc
    if len(iv) != IV_SIZE:
        raise RandomSourceFailure(
            f"Random source returned {len(iv)} bytes (expected {IV_SIZE})."
        )
    return iv


def _validate_key(key: Union[bytes, bytearray]) -> None:
    if not isinstance(key, (bytes, bytearray)):
        raise InvalidKeyError("Key must be bytes.")
    if len(key) != KEY_SIZE:
        raise KeyLengthError(
            f"Key must be exactly {KEY_SIZE} bytes (got {len(key)})."
        )


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

_engine = VaultEngine

generate_key = _engine.generate_key
key_to_base64 = _engine.key_to_base64
key_from_base64 = _engine.key_from_base64
key_to_hex = _engine.key_to_hex
key_from_hex = _engine.key_from_hex

encrypt = _engine.encrypt
decrypt = _engine.decrypt
encrypt_file = _engine.encrypt_file
decrypt_file = _engine.decrypt_file
