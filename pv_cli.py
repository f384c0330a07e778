#!/usr/bin/env python3
"""
pv_cli.py — Personal Vault command line.

Usage:
  pv keygen  [SK-FILE] [--name NAME] [--force]
  pv encrypt PTEXT-FILE CTEXT-FILE [-k SK-FILE]
  pv decrypt CTEXT-FILE PTEXT-FILE [-k SK-FILE]
  pv sha1    FILE...
  pv hmac    -k SK-FILE FILE...

SK-FILE defaults to ``vault.key`` in the PVault config directory
(``$PVAULT_HOME`` overrides it).  If CTEXT-FILE / PTEXT-FILE exists, any
previous content is lost; a failed run leaves no output file behind.

Exit codes: 0=OK, 1=I/O or usage error, 2=key error,
3=authentication failure, 4=random source failure.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import keyfile
import mdhash
import pvault

logger = logging.getLogger("pv")

EXIT_OK = 0
EXIT_IO = 1
EXIT_KEY = 2
EXIT_AUTH = 3
EXIT_RANDOM = 4


# ---------------- helpers ----------------

def setup_logging(verbose: bool = False) -> None:
    """Configure logging for command-line runs."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _key_path(value: Optional[str]) -> Path:
    return Path(value) if value else keyfile.default_key_path()


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="pv",
        description="Personal Vault: AES-CTR + AES-CBC-MAC file encryption",
    )
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = ap.add_subparsers(dest="cmd", required=True)

    p_gen = sub.add_parser("keygen", help="Create a new symmetric key file")
    p_gen.add_argument("keyfile", nargs="?", default=None, help="Key file to write")
    p_gen.add_argument("--name", default="Vault Key", help="Name recorded in the key file")
    p_gen.add_argument("--force", action="store_true", help="Overwrite an existing key file")

    p_enc = sub.add_parser("encrypt", help="Encrypt a file")
    p_enc.add_argument("infile")
    p_enc.add_argument("outfile")
    p_enc.add_argument("-k", "--key", default=None, help="Key file")

    p_dec = sub.add_parser("decrypt", help="Verify and decrypt a file")
    p_dec.add_argument("infile")
    p_dec.add_argument("outfile")
    p_dec.add_argument("-k", "--key", default=None, help="Key file")

    p_sha = sub.add_parser("sha1", help="Print SHA-1 digests")
    p_sha.add_argument("files", nargs="+")

    p_mac = sub.add_parser("hmac", help="Print HMAC-SHA1 digests keyed by a key file")
    p_mac.add_argument("files", nargs="+")
    p_mac.add_argument("-k", "--key", default=None, help="Key file")

    return ap


def _cmd_keygen(args) -> int:
    path = _key_path(args.keyfile)
    key = bytearray(pvault.generate_key())
    try:
        keyfile.write_key_file(path, key, name=args.name, overwrite=args.force)
    finally:
        key[:] = bytes(len(key))
    print("Wrote:", path)
    return EXIT_OK


def _cmd_encrypt(args) -> int:
    key = keyfile.read_key_file(_key_path(args.key))
    result = pvault.encrypt_file(args.infile, args.outfile, key)
    logger.info("Wrote %s (%d bytes)", args.outfile, result.record_size)
    return EXIT_OK


def _cmd_decrypt(args) -> int:
    key = keyfile.read_key_file(_key_path(args.key))
    result = pvault.decrypt_file(args.infile, args.outfile, key)
    logger.info("Wrote %s (%d bytes)", args.outfile, result.plaintext_size)
    return EXIT_OK


def _digest_files(files: List[str], digest) -> int:
    for name in files:
        try:
            with open(name, "rb") as fin:
                value = digest(fin)
        except OSError as exc:
            raise pvault.IOFailure(f"Cannot read {name}: {exc}") from exc
        print(f"{value.hex()}  {name}")
    return EXIT_OK


def _cmd_sha1(args) -> int:
    return _digest_files(args.files, mdhash.hash_stream)


def _cmd_hmac(args) -> int:
    key = keyfile.read_key_file(_key_path(args.key))
    try:
        return _digest_files(args.files, lambda fin: mdhash.hmac_stream(key, fin))
    finally:
        key[:] = bytes(len(key))


_COMMANDS = {
    "keygen": _cmd_keygen,
    "encrypt": _cmd_encrypt,
    "decrypt": _cmd_decrypt,
    "sha1": _cmd_sha1,
    "hmac": _cmd_hmac,
}


def main(argv: Optional[List[str]] = None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)
    setup_logging(args.verbose)

    try:
        return _COMMANDS[args.cmd](args)
    except pvault.AuthenticationFailure as exc:
        print(f"{ap.prog}: {exc}", file=sys.stderr)
        return EXIT_AUTH
    except pvault.InvalidKeyError as exc:
        print(f"{ap.prog}: {exc}", file=sys.stderr)
        return EXIT_KEY
    except pvault.RandomSourceFailure as exc:
        print(f"{ap.prog}: {exc}", file=sys.stderr)
        return EXIT_RANDOM
    except pvault.IOFailure as exc:
        print(f"{ap.prog}: {exc}", file=sys.stderr)
        return EXIT_IO
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return EXIT_IO


if __name__ == "__main__":
    raise SystemExit(main())
