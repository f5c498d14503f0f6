#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: AES_manager.py

    Description:
        Implements the AES-256-GCM symmetric packet codec. Provides key and
        nonce generation utilities along with encrypt/decrypt methods that turn
        a UTF-8 string into a versioned SymmetricPacket and back. A fresh
        CSPRNG nonce is drawn inside every encrypt call and no GCM context
        outlives a call, so one instance is safe to share across threads.
        Any integrity failure on decrypt surfaces as a single TamperError.
"""


import typing
import os
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from hybridsession.handlers.error_handler import HybridSessionError, TamperError, ApplicationCodes, HTTPCodes
from hybridsession.handlers.packet_handler import PacketHandler, SymmetricPacket
import hybridsession.handlers.sanitization_validation as VALIDATION
import hybridsession.constants as CONSTANTS



class AESManager:

    """
        Initialize an AESManager. The codec holds no key; every call receives one.

        @ensures A packet handler is available for building and decoding packets.
    """
    def __init__(self) -> None:

        self._packet_handler: PacketHandler = PacketHandler()



    """
        Validate a caller-supplied AES-256 key.

        @param key (bytes): Must be exactly 32 bytes.
        @return bytes: Immutable copy of the key.
    """
    @staticmethod
    def _validate_key(key: typing.Any) -> bytes:

        # Validate type
        if not isinstance(key, (bytes, bytearray)):
            raise HybridSessionError(ApplicationCodes.INVALID_AES_KEY, HTTPCodes.BAD_REQUEST, "AES key must be raw bytes", "aes_key")

        # Key must be 32 bytes
        if len(key) != CONSTANTS._AES_KEY_LEN_BYTES:
            raise HybridSessionError(ApplicationCodes.INVALID_AES_KEY, HTTPCodes.BAD_REQUEST, "AES-256 key must be exactly 32 bytes", "aes_key")

        return bytes(key)



    """
        Generate a fresh 32-byte AES-256 key using a CSPRNG.

        @return bytes: A newly generated 32-byte AES-256 key.
        @ensures The returned key is cryptographically random and exactly 32 bytes long.
    """
    @staticmethod
    def generate_key() -> bytes:

        try:
            # Generate 32 random bytes for AES-256
            key = os.urandom(CONSTANTS._AES_KEY_LEN_BYTES)

            # Validate key properties
            if not isinstance(key, bytes) or len(key) != CONSTANTS._AES_KEY_LEN_BYTES:
                raise HybridSessionError(ApplicationCodes.INVALID_AES_KEY, HTTPCodes.INTERNAL_SERVER_ERROR, "Generated AES key must be 32 bytes", "generated_key")

            # Return the generated key
            return key

        except HybridSessionError:
            raise
        except Exception:
            raise HybridSessionError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected AES key generation failure", "generate_key")


    """
        Generate a fresh 12-byte nonce suitable for AES-GCM.

        @return bytes: A newly generated 12-byte GCM nonce.
        @ensures The returned nonce is cryptographically random and exactly 12 bytes long.
    """
    @staticmethod
    def generate_nonce() -> bytes:

        try:
            # Generate 12 random bytes as the GCM nonce
            nonce = os.urandom(CONSTANTS._AES_GCM_NONCE_LEN_BYTES)

            # Validate nonce type and length
            if not isinstance(nonce, bytes) or len(nonce) != CONSTANTS._AES_GCM_NONCE_LEN_BYTES:
                raise HybridSessionError(ApplicationCodes.INVALID_NONCE, HTTPCodes.INTERNAL_SERVER_ERROR, "Generated GCM nonce must be 12 bytes", "nonce")

            return nonce

        except HybridSessionError:
            raise
        except Exception:
            raise HybridSessionError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected GCM nonce generation failure", "generate_nonce")




    """
        Encrypt and authenticate a UTF-8 string using AES-256-GCM.

        @param plaintext (str): Text to encrypt (JSON encoding is the caller's job); may be empty.
        @param key (bytes): 32-byte AES-256 key.
        @require isinstance(plaintext, str)
        @require isinstance(key, (bytes, bytearray)) and len(key) == 32
        @return SymmetricPacket: {v:1, sym_alg:"AES-256-GCM", nonce_b64, ciphertext_b64}
        @ensures A new random nonce is used for every call; ciphertext_b64 carries the 16-byte tag.
    """
    def encrypt(self, plaintext: str, key: bytes) -> SymmetricPacket:

        try:
            # Validate plaintext
            if not isinstance(plaintext, str):
                raise HybridSessionError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Plaintext must be a string", "plaintext")

            aes = AESGCM(AESManager._validate_key(key))

            # Generate 12-byte GCM nonce
            nonce = AESManager.generate_nonce()

            # Perform GCM encryption
            ciphertext_with_tag = aes.encrypt(nonce, VALIDATION.encode_utf8_text_to_bytes(plaintext), None)

            # Validate ciphertext
            if not isinstance(ciphertext_with_tag, bytes) or len(ciphertext_with_tag) < CONSTANTS._AES_GCM_TAG_LEN_BYTES:
                raise HybridSessionError(ApplicationCodes.ENCRYPTION_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Ciphertext output invalid (missing GCM tag)", "ciphertext")

            return self._packet_handler.create_symmetric_packet(nonce, ciphertext_with_tag)

        except HybridSessionError:
            raise
        except Exception:
            raise HybridSessionError(ApplicationCodes.ENCRYPTION_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "AES-GCM encryption failed", "ciphertext")


    """
        Decrypt and authenticate an AES-256-GCM packet.

        @param packet (SymmetricPacket | dict | str): Packet record, dict, or its JSON text.
        @param key (bytes): 32-byte AES-256 key.
        @return str: The decrypted UTF-8 plaintext.
        @ensures UnsupportedVersionError for unknown v/sym_alg; TamperError for any decode or
                 authentication failure, with no partial plaintext exposed.
    """
    def decrypt(self, packet: typing.Union[SymmetricPacket, dict, str], key: bytes) -> str:

        # Structure and version checks come first and are reported as such
        packet = self._packet_handler.parse_symmetric_packet(packet)
        aes = AESGCM(AESManager._validate_key(key))

        try:
            nonce = VALIDATION.decode_base64url_to_bytes("nonce_b64", packet.nonce_b64)
            ciphertext_with_tag = VALIDATION.decode_base64url_to_bytes("ciphertext_b64", packet.ciphertext_b64)

            if len(nonce) != CONSTANTS._AES_GCM_NONCE_LEN_BYTES or len(ciphertext_with_tag) < CONSTANTS._AES_GCM_TAG_LEN_BYTES:
                raise TamperError()

            # Perform authenticated decryption
            plaintext = aes.decrypt(nonce, ciphertext_with_tag, None)

            return VALIDATION.decode_bytes_to_utf8_text(plaintext)

        except Exception:
            raise TamperError()
