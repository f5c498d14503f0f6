#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: pem_manager.py

    Description:
        Turns raw configuration text into validated RSA key material.
        normalize_pem() cleans PEM text as it typically arrives from the
        environment (wrapping quotes, literal "\\n" escapes, CRLF endings,
        indentation, stray surrounding text) and never raises. The load_*
        functions parse the normalized text with the cryptography library
        and return immutable KeyMaterial tagged with its role and format;
        a parse failure there is the authoritative KeyFormatError.
"""

import hashlib
import typing
from dataclasses import dataclass, field
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from hybridsession.handlers.error_handler import KeyFormatError
import hybridsession.constants as CONSTANTS


####################################################################################################
# Key Material
####################################################################################################

"""
    Validated, normalized PEM key tagged with role ("public" | "private") and format ("SPKI" | "PKCS8").

    pem          : Canonical PEM text (LF line endings, trailing newline)
    role         : "public" or "private"
    key_format   : "SPKI" for public keys, "PKCS8" for private keys
    fingerprint  : SHA-256 hex digest of the DER SPKI encoding of the public half
    key          : Parsed cryptography key object
"""
@dataclass(frozen=True)
class KeyMaterial:

    pem: str
    role: str
    key_format: str
    fingerprint: str
    key: typing.Any = field(default=None, repr=False, compare=False)

    @property
    def key_size(self) -> int:
        return self.key.key_size

    @property
    def is_public(self) -> bool:
        return self.role == CONSTANTS._KEY_ROLE_PUBLIC

    @property
    def is_private(self) -> bool:
        return self.role == CONSTANTS._KEY_ROLE_PRIVATE



####################################################################################################
# PEM normalization
####################################################################################################

"""
    Normalize PEM text sourced from configuration into a canonical, parser-ready form.

    @param value (str | None): Raw configuration value.
    @return str: Canonical PEM text ending in "\\n", or "" for absent/blank input.
    @ensures Never raises; normalize_pem(normalize_pem(x)) == normalize_pem(x).
"""
def normalize_pem(value: typing.Optional[str]) -> str:

    if not isinstance(value, str):
        return ""

    # A pass can expose another layer (quotes behind an escaped newline); repeat until stable.
    # Every changing pass shortens the text, so this terminates.
    text = _normalize_pass(value)
    while True:
        again = _normalize_pass(text)
        if again == text:
            return text
        text = again


def _normalize_pass(value: str) -> str:

    text = value.strip()
    if not text:
        return ""

    # Strip one layer of matching wrapping quotes
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("\"", "'"):
        text = text[1:-1]

    # Literal escape sequences from single-line config values
    text = text.replace("\\r\\n", "\n").replace("\\n", "\n").replace("\\r", "\n")

    # Real CRLF / CR line endings
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    lines = [line.strip() for line in text.split("\n")]

    begin_index = next((i for i, line in enumerate(lines) if CONSTANTS._PEM_BEGIN_RX.fullmatch(line)), -1)
    end_index = -1
    if begin_index >= 0:
        end_index = next((i for i in range(begin_index + 1, len(lines)) if CONSTANTS._PEM_END_RX.fullmatch(lines[i])), -1)

    # Keep exactly the armored block when one exists
    if begin_index >= 0 and end_index > begin_index:
        lines = lines[begin_index:end_index + 1]

    # The PEM loader wants a contiguous body, so blank lines go even inside the block
    kept = [line for line in lines if line]
    if not kept:
        return ""

    return "\n".join(kept) + "\n"



####################################################################################################
# Loading
####################################################################################################

def _fingerprint(public_key: rsa.RSAPublicKey) -> str:
    der = public_key.public_bytes(encoding=serialization.Encoding.DER, format=serialization.PublicFormat.SubjectPublicKeyInfo)
    return hashlib.sha256(der).hexdigest()


"""
    Load an SPKI PEM public key from a raw configuration value.

    @param raw_config_value (str | None): PEM text in any form normalize_pem() accepts.
    @return KeyMaterial: role "public", format "SPKI".
    @ensures Raises KeyFormatError for blank input, non-SPKI text, parse failures or non-RSA keys.
"""
def load_public_key(raw_config_value: typing.Optional[str]) -> KeyMaterial:
    try:
        pem = normalize_pem(raw_config_value)

        # No key configured
        if not pem:
            raise KeyFormatError("No public key configured", "public_key")

        if not pem.startswith(CONSTANTS._PEM_PUBLIC_LABEL):
            raise KeyFormatError("Public key must be an SPKI PEM (BEGIN PUBLIC KEY)", "public_key")

        try:
            public_key = serialization.load_pem_public_key(pem.encode("ascii"))
        except Exception:
            raise KeyFormatError("Failed to parse SPKI public key PEM", "public_key")

        # Ensure the key is of the correct object
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise KeyFormatError("Public key is not an RSA key", "public_key")

        return KeyMaterial(pem=pem, role=CONSTANTS._KEY_ROLE_PUBLIC, key_format=CONSTANTS._KEY_FORMAT_SPKI, fingerprint=_fingerprint(public_key), key=public_key)

    except KeyFormatError:
        raise
    except Exception:
        raise KeyFormatError("Failed to load public key", "public_key")



"""
    Load a PKCS8 PEM private key from a raw configuration value.

    @param raw_config_value (str | None): PEM text in any form normalize_pem() accepts.
    @return KeyMaterial: role "private", format "PKCS8".
    @ensures Raises KeyFormatError for blank input, PKCS1 or other labels, parse failures or non-RSA keys.
"""
def load_private_key(raw_config_value: typing.Optional[str]) -> KeyMaterial:
    try:
        pem = normalize_pem(raw_config_value)

        # No key configured
        if not pem:
            raise KeyFormatError("No private key configured", "private_key")

        if not pem.startswith(CONSTANTS._PEM_PRIVATE_LABEL):
            raise KeyFormatError("Private key must be a PKCS8 PEM (BEGIN PRIVATE KEY)", "private_key")

        try:
            private_key = serialization.load_pem_private_key(pem.encode("ascii"), password=None)
        except Exception:
            raise KeyFormatError("Failed to parse PKCS8 private key PEM", "private_key")

        # Ensure the key is of the correct object
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise KeyFormatError("Private key is not an RSA key", "private_key")

        return KeyMaterial(pem=pem, role=CONSTANTS._KEY_ROLE_PRIVATE, key_format=CONSTANTS._KEY_FORMAT_PKCS8, fingerprint=_fingerprint(private_key.public_key()), key=private_key)

    except KeyFormatError:
        raise
    except Exception:
        raise KeyFormatError("Failed to load private key", "private_key")



"""
    Derive the SPKI public KeyMaterial matching a private KeyMaterial.
"""
def public_key_from_private(private_key: KeyMaterial) -> KeyMaterial:
    if not isinstance(private_key, KeyMaterial) or not private_key.is_private:
        raise KeyFormatError("Expected private key material", "private_key", http_code=400)

    public_pem = private_key.key.public_key().public_bytes(encoding=serialization.Encoding.PEM, format=serialization.PublicFormat.SubjectPublicKeyInfo).decode("ascii")
    return load_public_key(public_pem)
