"""
Tests for the PVault AES-CTR + AES-CBC-MAC engine.

Coverage:
    - Register increment and carry boundary
    - CTR keystream and CBC-MAC filler padding against a raw AES oracle
    - Record layout and round trips across block boundaries
    - Fail-closed decryption (bit flips, truncation, wrong key)
    - Error taxonomy and key wiping on every exit path
    - File-level wrappers
"""

import io
import os

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

import pvault
from pvault import (
    BLOCK_SIZE,
    KEY_SIZE,
    AESBlockCipher,
    AuthenticationFailure,
    BlockChainMAC,
    CounterModeCipher,
    FormatError,
    InvalidKeyError,
    IOFailure,
    KeyLengthError,
    KeyMaterial,
    RandomSourceFailure,
    VaultError,
    compute_tag,
    increment_register,
)

B = BLOCK_SIZE


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def aes_block(key: bytes, block: bytes) -> bytes:
    enc = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    return enc.update(block) + enc.finalize()


def fixed_iv(iv: bytes):
    return lambda n: iv


def seal(key, plaintext: bytes, iv: bytes = None) -> bytes:
    sink = io.BytesIO()
    kwargs = {"random_source": fixed_iv(iv)} if iv is not None else {}
    pvault.encrypt(key, io.BytesIO(plaintext), sink, **kwargs)
    return sink.getvalue()


def open_record(key, record: bytes) -> bytes:
    sink = io.BytesIO()
    pvault.decrypt(key, io.BytesIO(record), sink)
    return sink.getvalue()


class TrickleReader(io.RawIOBase):
    """Returns at most one byte per read call."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def readable(self):
        return True

    def read(self, size=-1):
        if self._pos >= len(self._data):
            return b""
        self._pos += 1
        return self._data[self._pos - 1 : self._pos]


class BrokenSink(io.RawIOBase):
    """Accepts *limit* writes, then raises."""

    def __init__(self, limit: int = 0):
        self.limit = limit
        self.writes = 0

    def writable(self):
        return True

    def write(self, data):
        if self.writes >= self.limit:
            raise OSError("disk full")
        self.writes += 1
        return len(data)


class ShortWriteSink(io.RawIOBase):
    def writable(self):
        return True

    def write(self, data):
        return max(len(data) - 1, 0)


class BrokenSource(io.RawIOBase):
    def readable(self):
        return True

    def read(self, size=-1):
        raise OSError("device error")


class RecordingCipher:
    """XOR 'cipher' that records its lifecycle."""

    block_size = B
    instances = []

    def __init__(self, key: bytes):
        self.key = bytes(key)
        self.destroyed = False
        RecordingCipher.instances.append(self)

    def encrypt_block(self, block: bytes) -> bytes:
        assert not self.destroyed
        return bytes(x ^ y for x, y in zip(block, self.key))

    def destroy(self) -> None:
        self.destroyed = True


@pytest.fixture
def key():
    return bytearray(os.urandom(KEY_SIZE))


@pytest.fixture(autouse=True)
def _reset_recording_cipher():
    RecordingCipher.instances = []
    yield


# ---------------------------------------------------------------------------
# Register increment
# ---------------------------------------------------------------------------

class TestIncrementRegister:

    def test_simple_increment(self):
        reg = bytearray(B)
        increment_register(reg)
        assert reg == bytearray([1] + [0] * (B - 1))

    def test_carry_on_reaching_0x80(self):
        reg = bytearray([0x7F] + [0] * (B - 1))
        increment_register(reg)
        assert reg[0] == 0x80
        assert reg[1] == 1

    def test_no_carry_on_unsigned_wrap(self):
        reg = bytearray([0xFF] + [0] * (B - 1))
        increment_register(reg)
        assert reg[0] == 0x00
        assert reg[1] == 0

    def test_carry_ripples(self):
        reg = bytearray([0x7F, 0x7F, 0x05] + [0] * (B - 3))
        increment_register(reg)
        assert list(reg[:4]) == [0x80, 0x80, 0x06, 0]

    def test_carry_out_of_last_byte_is_dropped(self):
        reg = bytearray([0x7F] * B)
        increment_register(reg)
        assert reg == bytearray([0x80] * B)

    def test_one_carry_per_256_steps(self):
        reg = bytearray(B)
        for _ in range(512):
            increment_register(reg)
        assert reg[0] == 0
        assert reg[1] == 2


# ---------------------------------------------------------------------------
# CTR and CBC-MAC building blocks
# ---------------------------------------------------------------------------

class TestCounterMode:

    def test_keystream_matches_raw_aes(self):
        k = os.urandom(16)
        iv = bytes([0x7E] + [0x11] * (B - 1))
        pt = os.urandom(2 * B + 5)
        with AESBlockCipher(k) as cipher:
            ctr = CounterModeCipher(cipher, iv)
            out = b"".join(ctr.process(pt[i : i + B]) for i in range(0, len(pt), B))

        reg = bytearray(iv)
        expected = b""
        for i in range(0, len(pt), B):
            ks = aes_block(k, bytes(reg))
            expected += bytes(x ^ y for x, y in zip(pt[i : i + B], ks))
            increment_register(reg)
        assert out == expected

    def test_short_chunk_still_advances_register(self):
        with AESBlockCipher(os.urandom(16)) as cipher:
            ctr = CounterModeCipher(cipher, bytes(B))
            out = ctr.process(b"abc")
            assert len(out) == 3
            assert ctr.register == bytes([1] + [0] * (B - 1))

    @pytest.mark.parametrize("chunk", [b"", b"x" * (B + 1)])
    def test_rejects_bad_chunk_sizes(self, chunk):
        with AESBlockCipher(os.urandom(16)) as cipher:
            ctr = CounterModeCipher(cipher, bytes(B))
            with pytest.raises(ValueError):
                ctr.process(chunk)


class TestBlockChainMAC:

    def test_full_block(self):
        k = os.urandom(16)
        iv = os.urandom(B)
        block = os.urandom(B)
        with AESBlockCipher(k) as cipher:
            mac = BlockChainMAC(cipher, iv)
            mac.update(block)
            tag = mac.tag()
        assert tag == aes_block(k, bytes(x ^ y for x, y in zip(iv, block)))

    def test_short_final_block_uses_ascii_zero_filler(self):
        k = os.urandom(16)
        iv = os.urandom(B)
        block = os.urandom(5)
        mixed = bytes(iv[i] ^ block[i] for i in range(5)) + bytes(iv[i] ^ 0x30 for i in range(5, B))
        with AESBlockCipher(k) as cipher:
            assert compute_tag(cipher, iv, block) == aes_block(k, mixed)

    def test_no_padding_block_for_exact_multiple(self):
        k = os.urandom(16)
        iv = os.urandom(B)
        ct = os.urandom(2 * B)
        first = aes_block(k, bytes(x ^ y for x, y in zip(iv, ct[:B])))
        second = aes_block(k, bytes(x ^ y for x, y in zip(first, ct[B:])))
        with AESBlockCipher(k) as cipher:
            assert compute_tag(cipher, iv, ct) == second

    def test_empty_message_tag_is_iv(self):
        iv = os.urandom(B)
        with AESBlockCipher(os.urandom(16)) as cipher:
            assert compute_tag(cipher, iv, b"") == iv

    def test_deterministic(self):
        k = os.urandom(16)
        iv = os.urandom(B)
        ct = os.urandom(50)
        with AESBlockCipher(k) as c1, AESBlockCipher(k) as c2:
            assert compute_tag(c1, iv, ct) == compute_tag(c2, iv, ct)

    def test_short_block_must_be_last(self):
        with AESBlockCipher(os.urandom(16)) as cipher:
            mac = BlockChainMAC(cipher, bytes(B))
            mac.update(b"short")
            with pytest.raises(ValueError):
                mac.update(b"x" * B)


class TestAESBlockCipher:

    def test_matches_oracle(self):
        k = os.urandom(16)
        block = os.urandom(B)
        with AESBlockCipher(k) as cipher:
            assert cipher.encrypt_block(block) == aes_block(k, block)

    def test_destroyed_cipher_refuses_work(self):
        cipher = AESBlockCipher(os.urandom(16))
        cipher.destroy()
        with pytest.raises(VaultError):
            cipher.encrypt_block(bytes(B))

    def test_bad_key_length(self):
        with pytest.raises(KeyLengthError):
            AESBlockCipher(b"short")


# ---------------------------------------------------------------------------
# Record layout and round trips
# ---------------------------------------------------------------------------

class TestEncrypt:

    def test_record_layout(self, key):
        k = bytes(key)
        iv = os.urandom(B)
        pt = os.urandom(3 * B + 7)
        record = seal(key, pt, iv)

        assert len(record) == B + len(pt) + B
        assert record[:B] == iv
        ct = record[B:-B]
        with AESBlockCipher(k[:16]) as cipher:
            ctr = CounterModeCipher(cipher, iv)
            expected_ct = b"".join(ctr.process(pt[i : i + B]) for i in range(0, len(pt), B))
        assert ct == expected_ct
        with AESBlockCipher(k[16:32]) as cipher:
            assert record[-B:] == compute_tag(cipher, iv, ct)

    def test_empty_plaintext(self, key):
        iv = os.urandom(B)
        record = seal(key, b"", iv)
        assert record == iv + iv

    def test_result_sizes(self, key):
        sink = io.BytesIO()
        result = pvault.encrypt(key, io.BytesIO(b"x" * 40), sink)
        assert result.plaintext_size == 40
        assert result.record_size == len(sink.getvalue()) == 40 + 2 * B

    def test_fresh_iv_each_time(self):
        pt = b"same plaintext"
        k = os.urandom(KEY_SIZE)
        assert seal(k, pt) != seal(k, pt)

    def test_short_reads_do_not_change_output(self, key):
        k = bytes(key)
        iv = os.urandom(B)
        pt = os.urandom(5 * B + 3)
        sink = io.BytesIO()
        pvault.encrypt(bytearray(k), TrickleReader(pt), sink, random_source=fixed_iv(iv))
        assert sink.getvalue() == seal(bytearray(k), pt, iv)

    def test_longer_key_material_uses_first_32_bytes(self):
        material = os.urandom(48)
        iv = os.urandom(B)
        assert seal(material, b"payload", iv) == seal(material[:KEY_SIZE], b"payload", iv)

    def test_custom_cipher_factory(self, key):
        sink = io.BytesIO()
        pvault.encrypt(key, io.BytesIO(b"hello world!" * 3), sink, cipher_factory=RecordingCipher)
        assert len(RecordingCipher.instances) == 2
        assert all(c.destroyed for c in RecordingCipher.instances)


class TestRoundTrip:

    @pytest.mark.parametrize("length", [0, 1, B - 1, B, B + 1, 10 * B, 100_003])
    def test_round_trip(self, length):
        k = os.urandom(KEY_SIZE)
        pt = os.urandom(length)
        assert open_record(k, seal(k, pt)) == pt

    def test_small_spool_rolls_over_to_disk(self):
        k = os.urandom(KEY_SIZE)
        pt = os.urandom(10_000)
        sink = io.BytesIO()
        pvault.decrypt(k, io.BytesIO(seal(k, pt)), sink, spool_max_size=64)
        assert sink.getvalue() == pt

    def test_trickle_source_decrypts(self):
        k = os.urandom(KEY_SIZE)
        pt = os.urandom(3 * B + 1)
        sink = io.BytesIO()
        pvault.decrypt(k, TrickleReader(seal(k, pt)), sink)
        assert sink.getvalue() == pt


# ---------------------------------------------------------------------------
# Fail-closed decryption
# ---------------------------------------------------------------------------

class TestAuthentication:

    def test_every_bit_flip_is_rejected(self):
        k = os.urandom(KEY_SIZE)
        record = seal(k, os.urandom(B + 4))
        for pos in range(len(record)):
            for bit in range(8):
                tampered = bytearray(record)
                tampered[pos] ^= 1 << bit
                sink = io.BytesIO()
                with pytest.raises(AuthenticationFailure):
                    pvault.decrypt(k, io.BytesIO(bytes(tampered)), sink)
                assert sink.getvalue() == b""

    def test_wrong_key(self):
        record = seal(os.urandom(KEY_SIZE), b"secret")
        sink = io.BytesIO()
        with pytest.raises(AuthenticationFailure):
            pvault.decrypt(os.urandom(KEY_SIZE), io.BytesIO(record), sink)
        assert sink.getvalue() == b""

    def test_swapped_subkeys_rejected(self):
        k = os.urandom(KEY_SIZE)
        record = seal(k, b"sub-keys are not interchangeable")
        with pytest.raises(AuthenticationFailure):
            open_record(k[16:] + k[:16], record)

    @pytest.mark.parametrize("size", [0, 5, B, 2 * B - 1])
    def test_truncated_record(self, size):
        with pytest.raises(FormatError):
            open_record(os.urandom(KEY_SIZE), os.urandom(size))

    def test_truncation_is_an_authentication_failure(self):
        k = os.urandom(KEY_SIZE)
        record = seal(k, os.urandom(40))
        with pytest.raises(AuthenticationFailure):
            open_record(k, record[:-1])

    def test_appended_bytes_rejected(self):
        k = os.urandom(KEY_SIZE)
        record = seal(k, os.urandom(40))
        with pytest.raises(AuthenticationFailure):
            open_record(k, record + b"\x00")


# ---------------------------------------------------------------------------
# Error taxonomy and key wiping
# ---------------------------------------------------------------------------

class TestErrorsAndWiping:

    def test_key_wiped_after_encrypt(self, key):
        seal(key, b"data")
        assert key == bytearray(KEY_SIZE)

    def test_key_wiped_after_decrypt(self):
        k = os.urandom(KEY_SIZE)
        record = seal(k, b"data")
        material = bytearray(k)
        open_record(material, record)
        assert material == bytearray(KEY_SIZE)

    def test_key_wiped_after_authentication_failure(self):
        k = os.urandom(KEY_SIZE)
        record = bytearray(seal(k, b"data"))
        record[-1] ^= 1
        material = bytearray(k)
        with pytest.raises(AuthenticationFailure):
            open_record(material, bytes(record))
        assert material == bytearray(KEY_SIZE)

    def test_short_key_rejected_before_io(self):
        short = bytearray(os.urandom(KEY_SIZE - 1))
        sink = BrokenSink(limit=0)
        with pytest.raises(KeyLengthError):
            pvault.encrypt(short, BrokenSource(), sink)
        assert sink.writes == 0
        assert short == bytearray(KEY_SIZE - 1)

    def test_short_key_on_decrypt(self):
        with pytest.raises(KeyLengthError):
            pvault.decrypt(b"x" * 10, BrokenSource(), io.BytesIO())

    def test_non_bytes_key(self):
        with pytest.raises(InvalidKeyError):
            pvault.encrypt("not bytes" * 10, io.BytesIO(b""), io.BytesIO())

    def test_random_source_failure_writes_nothing(self, key):
        def broken(n):
            raise OSError("entropy pool unavailable")

        sink = io.BytesIO()
        with pytest.raises(RandomSourceFailure):
            pvault.encrypt(key, io.BytesIO(b"data"), sink, random_source=broken)
        assert sink.getvalue() == b""
        assert key == bytearray(KEY_SIZE)

    def test_random_source_wrong_length(self, key):
        sink = io.BytesIO()
        with pytest.raises(RandomSourceFailure):
            pvault.encrypt(key, io.BytesIO(b"data"), sink, random_source=lambda n: b"\x00" * (n - 1))
        assert sink.getvalue() == b""

    def test_write_failure(self, key):
        with pytest.raises(IOFailure):
            pvault.encrypt(key, io.BytesIO(b"x" * 100), BrokenSink(limit=2))
        assert key == bytearray(KEY_SIZE)

    def test_short_write(self, key):
        with pytest.raises(IOFailure):
            pvault.encrypt(key, io.BytesIO(b"x" * 100), ShortWriteSink())

    def test_read_failure(self, key):
        with pytest.raises(IOFailure):
            pvault.encrypt(key, BrokenSource(), io.BytesIO())
        assert key == bytearray(KEY_SIZE)

    def test_ciphers_destroyed_on_failure(self, key):
        with pytest.raises(IOFailure):
            pvault.encrypt(
                key, io.BytesIO(b"x" * 100), BrokenSink(limit=1),
                cipher_factory=RecordingCipher,
            )
        assert len(RecordingCipher.instances) == 2
        assert all(c.destroyed for c in RecordingCipher.instances)

    def test_key_material_split(self):
        raw = bytes(range(KEY_SIZE))
        with KeyMaterial(raw) as material:
            cipher_key, mac_key = material.split()
            assert bytes(cipher_key) == raw[:16]
            assert bytes(mac_key) == raw[16:]
        assert cipher_key == bytearray(16)
        assert mac_key == bytearray(16)


# ---------------------------------------------------------------------------
# Key conversion
# ---------------------------------------------------------------------------

class TestKeyConversion:

    def test_generate_key(self):
        k1 = pvault.generate_key()
        assert len(k1) == KEY_SIZE
        assert k1 != pvault.generate_key()

    def test_base64_round_trip(self):
        k = pvault.generate_key()
        assert bytes(pvault.key_from_base64(pvault.key_to_base64(k))) == k

    def test_hex_round_trip(self):
        k = pvault.generate_key()
        assert bytes(pvault.key_from_hex(pvault.key_to_hex(k))) == k

    def test_bad_hex(self):
        with pytest.raises(InvalidKeyError):
            pvault.key_from_hex("zz" * KEY_SIZE)

    def test_wrong_length_base64(self):
        with pytest.raises(KeyLengthError):
            pvault.key_from_base64("AAAA")


# ---------------------------------------------------------------------------
# File wrappers
# ---------------------------------------------------------------------------

class TestFiles:

    def test_file_round_trip_with_progress(self, tmp_path):
        k = os.urandom(KEY_SIZE)
        src = tmp_path / "plain.bin"
        enc = tmp_path / "plain.bin.pv"
        dec = tmp_path / "plain.dec"
        data = os.urandom(200_000)
        src.write_bytes(data)

        calls = []
        pvault.encrypt_file(src, enc, bytearray(k),
                            progress_callback=lambda done, tot: calls.append((done, tot)))
        assert len(calls) > 1
        assert calls[-1] == (len(data), len(data))
        assert enc.stat().st_size == len(data) + 2 * B

        pvault.decrypt_file(enc, dec, bytearray(k))
        assert dec.read_bytes() == data

    def test_failed_decrypt_leaves_no_output(self, tmp_path):
        k = os.urandom(KEY_SIZE)
        src = tmp_path / "plain.txt"
        enc = tmp_path / "plain.pv"
        dec = tmp_path / "plain.out"
        src.write_bytes(b"attack at dawn")
        pvault.encrypt_file(src, enc, k)

        raw = bytearray(enc.read_bytes())
        raw[B] ^= 0x01
        enc.write_bytes(bytes(raw))

        with pytest.raises(AuthenticationFailure):
            pvault.decrypt_file(enc, dec, k)
        assert not dec.exists()

    def test_missing_input(self, tmp_path):
        key = bytearray(os.urandom(KEY_SIZE))
        out = tmp_path / "out.pv"
        with pytest.raises(IOFailure):
            pvault.encrypt_file(tmp_path / "missing", out, key)
        assert not out.exists()
        assert key == bytearray(KEY_SIZE)

    def test_short_key_leaves_no_output(self, tmp_path):
        src = tmp_path / "plain.txt"
        src.write_bytes(b"data")
        out = tmp_path / "out.pv"
        with pytest.raises(KeyLengthError):
            pvault.encrypt_file(src, out, b"short")
        assert not out.exists()

    @pytest.mark.parametrize("operation", [pvault.encrypt_file, pvault.decrypt_file])
    def test_short_key_keeps_existing_output(self, tmp_path, operation):
        src = tmp_path / "input.bin"
        src.write_bytes(os.urandom(3 * B))
        out = tmp_path / "precious.bin"
        out.write_bytes(b"previous contents")
        key = bytearray(os.urandom(KEY_SIZE - 1))

        with pytest.raises(KeyLengthError):
            operation(src, out, key)
        assert out.read_bytes() == b"previous contents"
        assert key == bytearray(KEY_SIZE - 1)

    def test_random_failure_keeps_existing_output(self, tmp_path):
        def broken(n):
            raise OSError("entropy pool unavailable")

        src = tmp_path / "plain.txt"
        src.write_bytes(b"data")
        out = tmp_path / "precious.pv"
        out.write_bytes(b"previous contents")
        key = bytearray(os.urandom(KEY_SIZE))

        with pytest.raises(RandomSourceFailure):
            pvault.encrypt_file(src, out, key, random_source=broken)
        assert out.read_bytes() == b"previous contents"
        assert key == bytearray(KEY_SIZE)

    def test_file_random_source_sets_iv(self, tmp_path):
        src = tmp_path / "plain.txt"
        src.write_bytes(b"data")
        out = tmp_path / "plain.pv"
        iv = os.urandom(B)
        pvault.encrypt_file(src, out, os.urandom(KEY_SIZE), random_source=fixed_iv(iv))
        assert out.read_bytes()[:B] == iv
