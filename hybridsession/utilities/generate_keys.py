#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: generate_keys.py

    Description:
        Generates the RSA key pair the protocol runs on: a PKCS8 private key
        for the receiving side and an SPKI public key for the initiating side.
        Writes both as PEM files, or with --env prints them as single-line
        PRIVATE_KEY_PEM / PUBLIC_KEY_PEM values using literal "\\n" escapes,
        which the PEM manager turns back into real line breaks.
"""

import argparse
import os
import sys
import typing
from hybridsession.encryption.RSA_manager import RSAManager
import hybridsession.constants as CONSTANTS


"""
    Render PEM text as a quoted single-line configuration value.
"""
def to_env_value(pem: str) -> str:
    return "\"" + pem.strip().replace("\n", "\\n") + "\""


"""
    Write private_key.pem / public_key.pem into a directory.

    @return tuple[str, str]: Paths of the written private and public key files.
    @ensures The private key file is created with 0600 permissions.
"""
def write_key_files(out_dir: str, private_pem: str, public_pem: str) -> typing.Tuple[str, str]:

    os.makedirs(out_dir, exist_ok=True)

    private_path = os.path.join(out_dir, "private_key.pem")
    public_path = os.path.join(out_dir, "public_key.pem")

    # Private key is readable by the owner only
    fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="ascii") as f:
        f.write(private_pem)

    with open(public_path, "w", encoding="ascii") as f:
        f.write(public_pem)

    return private_path, public_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate an RSA key pair for hybrid session encryption.")
    parser.add_argument("--bits", type=int, default=CONSTANTS._RSA_KEY_SIZE_BITS, help="RSA modulus size in bits (default: 2048)")
    parser.add_argument("--out", default=".", help="Directory for private_key.pem and public_key.pem")
    parser.add_argument("--env", action="store_true", help="Print PRIVATE_KEY_PEM / PUBLIC_KEY_PEM lines instead of writing files")
    return parser


def main(argv: typing.Optional[typing.List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.bits < 2048:
        print("Refusing to generate RSA keys smaller than 2048 bits", file=sys.stderr)
        return 2

    private_pem, public_pem = RSAManager().generate_key_pair(args.bits)

    if args.env:
        print(f"{CONSTANTS._ENV_PRIVATE_KEY_PEM}={to_env_value(private_pem)}")
        print(f"{CONSTANTS._ENV_PUBLIC_KEY_PEM}={to_env_value(public_pem)}")
        return 0

    private_path, public_path = write_key_files(args.out, private_pem, public_pem)
    print(f"Private key: {private_path} (keep on the server only)")
    print(f"Public key:  {public_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
