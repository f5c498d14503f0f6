#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: RSA_manager.py

    Description:
        Wraps and unwraps AES-256 session keys with RSA-OAEP (SHA-256 digest,
        MGF1-SHA-256) and generates RSA-2048 key pairs in PKCS8/SPKI PEM form.
        All operations are pure functions of the supplied key material: no key
        is stored, rotated or cached here. Unwrap failures are collapsed into a
        single UnwrapError so callers cannot tell which OAEP check failed.
"""

import typing
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives import serialization, hashes
from hybridsession.handlers.error_handler import HybridSessionError, KeyFormatError, WrapError, UnwrapError
from hybridsession.encryption.pem_manager import KeyMaterial, load_public_key, load_private_key
import hybridsession.constants as CONSTANTS


class RSAManager:

    """
        Initialize an RSAManager.

        @param key_size (int): Modulus size used by generate_key_pair().
        @ensures The OAEP padding configuration is fixed for the lifetime of the instance.
    """
    def __init__(self, key_size: int = CONSTANTS._RSA_KEY_SIZE_BITS) -> None:

        self._key_size: int = key_size


    def _oaep(self) -> padding.OAEP:
        return padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


    """
        Maximum OAEP-SHA256 payload for a modulus of the given size: k - 2*hLen - 2.

        @param key_size_bits (int): RSA modulus size in bits.
        @return int: Largest plaintext in bytes that wrap() accepts.
    """
    @staticmethod
    def oaep_capacity(key_size_bits: int) -> int:
        modulus_bytes = (key_size_bits + 7) // 8
        return modulus_bytes - 2 * CONSTANTS._OAEP_HASH_LEN_BYTES - 2


    """
        Generate a new RSA key pair as PEM text.

        @param key_size (int | None): Modulus size in bits; defaults to the instance size (2048).
        @return tuple[str, str]: (PKCS8 private PEM, SPKI public PEM)
        @ensures Public exponent is 65537 and both PEMs parse with load_private_key / load_public_key.
    """
    def generate_key_pair(self, key_size: typing.Optional[int] = None) -> typing.Tuple[str, str]:
        try:
            # Generate RSA private key (exponent 65537)
            private_key = rsa.generate_private_key(public_exponent=CONSTANTS._RSA_PUBLIC_EXPONENT, key_size=key_size or self._key_size)

            # Serialize to PKCS#8 PEM without encryption (storage must protect it)
            private_pem = private_key.private_bytes(encoding=serialization.Encoding.PEM, format=serialization.PrivateFormat.PKCS8, encryption_algorithm=serialization.NoEncryption()).decode("ascii")

            public_pem = private_key.public_key().public_bytes(encoding=serialization.Encoding.PEM, format=serialization.PublicFormat.SubjectPublicKeyInfo).decode("ascii")

            return private_pem, public_pem

        except Exception:
            raise KeyFormatError("Failed to generate RSA key pair", "rsa_key")


    """
        Wrap an AES session key with RSA-OAEP (SHA-256) under an SPKI public key.

        @param aes_key (bytes): Raw symmetric key (32 bytes for AES-256).
        @param public_key (KeyMaterial | str): Public key material or SPKI PEM text.
        @require isinstance(aes_key, (bytes, bytearray)) and 0 < len(aes_key) <= oaep_capacity(modulus)
        @return bytes: Wrapped key, exactly the modulus size in length.
        @ensures KeyFormatError for non-SPKI material, WrapError for oversize keys or primitive failure.
    """
    def wrap(self, aes_key: bytes, public_key: typing.Union[KeyMaterial, str]) -> bytes:
        try:
            # Accept raw PEM text from callers that have not loaded it yet
            if isinstance(public_key, str):
                public_key = load_public_key(public_key)

            if not isinstance(public_key, KeyMaterial) or not public_key.is_public or public_key.key_format != CONSTANTS._KEY_FORMAT_SPKI:
                raise KeyFormatError("wrap requires SPKI public key material", "public_key", http_code=400)

            if not isinstance(public_key.key, rsa.RSAPublicKey):
                raise KeyFormatError("Public key material is not an RSA public key", "public_key", http_code=400)

            # Validate AES key material
            if not isinstance(aes_key, (bytes, bytearray)) or len(aes_key) == 0:
                raise WrapError("Session key must be non-empty bytes")

            capacity = RSAManager.oaep_capacity(public_key.key.key_size)
            if len(aes_key) > capacity:
                raise WrapError(f"Session key exceeds OAEP capacity ({capacity} bytes)")

            # Encrypt using RSA-OAEP with SHA-256
            wrapped = public_key.key.encrypt(bytes(aes_key), self._oaep())

            if not isinstance(wrapped, bytes) or len(wrapped) != (public_key.key.key_size + 7) // 8:
                raise WrapError("RSA-OAEP wrap produced an invalid ciphertext")

            return wrapped

        except HybridSessionError:
            raise
        except Exception:
            raise WrapError()


    """
        Unwrap an RSA-OAEP wrapped AES-256 key with a PKCS8 private key.

        @param wrapped (bytes): Wrapped key bytes.
        @param private_key (KeyMaterial | str): Private key material or PKCS8 PEM text.
        @return bytes: The 32-byte AES key.
        @ensures KeyFormatError for non-PKCS8 material; every other failure is the same UnwrapError.
    """
    def unwrap(self, wrapped: bytes, private_key: typing.Union[KeyMaterial, str]) -> bytes:

        # Key material problems are configuration errors, reported separately
        if isinstance(private_key, str):
            private_key = load_private_key(private_key)

        if not isinstance(private_key, KeyMaterial) or not private_key.is_private or private_key.key_format != CONSTANTS._KEY_FORMAT_PKCS8:
            raise KeyFormatError("unwrap requires PKCS8 private key material", "private_key", http_code=400)

        if not isinstance(private_key.key, rsa.RSAPrivateKey):
            raise KeyFormatError("Private key material is not an RSA private key", "private_key", http_code=400)

        try:
            aes_key = private_key.key.decrypt(bytes(wrapped), self._oaep())
        except Exception:
            aes_key = None

        # One outcome for every failure: type, length, padding or recovered size
        if not isinstance(aes_key, bytes) or len(aes_key) != CONSTANTS._AES_KEY_LEN_BYTES:
            raise UnwrapError()

        return aes_key
