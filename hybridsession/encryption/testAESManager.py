#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testAESManager.py

    Description:
        Test suite for the AES-256-GCM packet codec. Verifies key/nonce
        generation, packet shape, encryption/decryption correctness, nonce
        freshness, tamper detection on every bit of the nonce and ciphertext,
        version handling and key validation.
"""

import json
import unittest
from hybridsession.encryption.AES_manager import AESManager
from hybridsession.handlers.packet_handler import SymmetricPacket
from hybridsession.handlers.error_handler import HybridSessionError, TamperError, UnsupportedVersionError, ApplicationCodes, HTTPCodes
import hybridsession.handlers.sanitization_validation as VALIDATION


def _flip_bit(b64_text: str, bit_index: int) -> str:
    raw = bytearray(VALIDATION.decode_base64url_to_bytes("field", b64_text))
    raw[bit_index // 8] ^= 1 << (bit_index % 8)
    return VALIDATION.encode_bytes_to_base64url(bytes(raw))


class TestAESManager(unittest.TestCase):

    PLAINTEXT = "{\"hello\":\"world\"}"

    """
        Prepare a fresh AESManager and key.
    """
    def setUp(self) -> None:

        self.key = AESManager.generate_key()
        self.manager = AESManager()

    """
        generate_key() must return 32-byte random values.
    """
    def test_generate_key_properties(self):

        key1 = AESManager.generate_key()
        key2 = AESManager.generate_key()

        self.assertIsInstance(key1, bytes)
        self.assertEqual(32, len(key1))
        self.assertNotEqual(key1, key2)

    """
        generate_nonce() must return 12-byte random values.
    """
    def test_generate_nonce_properties(self):

        nonce1 = AESManager.generate_nonce()
        nonce2 = AESManager.generate_nonce()

        self.assertIsInstance(nonce1, bytes)
        self.assertEqual(12, len(nonce1))
        self.assertNotEqual(nonce1, nonce2)

    """
        encrypt() produces a version 1 packet with a 12-byte nonce and tag-suffixed ciphertext.
    """
    def test_encrypt_packet_shape(self):

        packet = self.manager.encrypt(self.PLAINTEXT, self.key)

        self.assertIsInstance(packet, SymmetricPacket)
        self.assertEqual(packet.v, 1)
        self.assertEqual(packet.sym_alg, "AES-256-GCM")
        self.assertNotIn("=", packet.nonce_b64 + packet.ciphertext_b64)

        nonce = VALIDATION.decode_base64url_to_bytes("nonce_b64", packet.nonce_b64)
        ciphertext = VALIDATION.decode_base64url_to_bytes("ciphertext_b64", packet.ciphertext_b64)

        self.assertEqual(len(nonce), 12)
        self.assertEqual(len(ciphertext), len(self.PLAINTEXT.encode("utf-8")) + 16)

        self.assertEqual(set(json.loads(packet.to_json()).keys()), {"v", "sym_alg", "nonce_b64", "ciphertext_b64"})

    """
        decrypt(encrypt(p)) == p for ordinary, unicode and empty plaintexts.
    """
    def test_encrypt_decrypt_round_trip(self):

        for plaintext in (self.PLAINTEXT, "héllo wörld ✓", "", "x" * 10000):
            with self.subTest(length=len(plaintext)):
                packet = self.manager.encrypt(plaintext, self.key)
                self.assertEqual(self.manager.decrypt(packet, self.key), plaintext)

    """
        decrypt accepts the packet as record, dict or JSON text.
    """
    def test_decrypt_accepts_all_packet_forms(self):

        packet = self.manager.encrypt(self.PLAINTEXT, self.key)

        self.assertEqual(self.manager.decrypt(packet.to_dict(), self.key), self.PLAINTEXT)
        self.assertEqual(self.manager.decrypt(packet.to_json(), self.key), self.PLAINTEXT)

    """
        Every call draws a new nonce, so equal plaintexts never share a ciphertext.
    """
    def test_nonce_is_fresh_per_call(self):

        packets = [self.manager.encrypt(self.PLAINTEXT, self.key) for _ in range(50)]

        self.assertEqual(len({p.nonce_b64 for p in packets}), 50)
        self.assertEqual(len({p.ciphertext_b64 for p in packets}), 50)

    """
        Flipping any single bit of the nonce is detected.
    """
    def test_nonce_bit_flip_is_tamper(self):

        packet = self.manager.encrypt(self.PLAINTEXT, self.key)

        for bit in range(12 * 8):
            with self.subTest(bit=bit):
                tampered = SymmetricPacket(packet.v, packet.sym_alg, _flip_bit(packet.nonce_b64, bit), packet.ciphertext_b64)
                with self.assertRaises(TamperError):
                    self.manager.decrypt(tampered, self.key)

    """
        Flipping any single bit of the ciphertext or tag is detected.
    """
    def test_ciphertext_bit_flip_is_tamper(self):

        packet = self.manager.encrypt(self.PLAINTEXT, self.key)
        total_bits = len(VALIDATION.decode_base64url_to_bytes("ciphertext_b64", packet.ciphertext_b64)) * 8

        for bit in range(total_bits):
            with self.subTest(bit=bit):
                tampered = SymmetricPacket(packet.v, packet.sym_alg, packet.nonce_b64, _flip_bit(packet.ciphertext_b64, bit))
                with self.assertRaises(TamperError):
                    self.manager.decrypt(tampered, self.key)

    """
        Truncation, wrong nonce length and non-canonical Base64URL are tamper errors too.
    """
    def test_malformed_binary_fields_are_tamper(self):

        packet = self.manager.encrypt(self.PLAINTEXT, self.key)
        short_nonce = VALIDATION.encode_bytes_to_base64url(b"\x00" * 8)

        variants = {
            "truncated_ciphertext": SymmetricPacket(1, "AES-256-GCM", packet.nonce_b64, packet.ciphertext_b64[:-4]),
            "short_ciphertext": SymmetricPacket(1, "AES-256-GCM", packet.nonce_b64, "AAAA"),
            "short_nonce": SymmetricPacket(1, "AES-256-GCM", short_nonce, packet.ciphertext_b64),
            "bad_alphabet": SymmetricPacket(1, "AES-256-GCM", packet.nonce_b64, packet.ciphertext_b64[:-1] + "+"),
            "padded": SymmetricPacket(1, "AES-256-GCM", packet.nonce_b64 + "==", packet.ciphertext_b64),
        }

        for name, tampered in variants.items():
            with self.subTest(case=name):
                with self.assertRaises(TamperError) as cm:
                    self.manager.decrypt(tampered, self.key)

                exc = cm.exception
                self.assertEqual(exc.application_code, ApplicationCodes.TAMPER_ERROR)
                self.assertEqual(exc.detail, "decryption failed")

    """
        Decrypting under a different key is indistinguishable from tampering.
    """
    def test_wrong_key_is_tamper(self):

        packet = self.manager.encrypt(self.PLAINTEXT, self.key)

        with self.assertRaises(TamperError):
            self.manager.decrypt(packet, AESManager.generate_key())

    """
        Unknown versions and algorithms fail closed before any decryption.
    """
    def test_unsupported_version(self):

        packet = self.manager.encrypt(self.PLAINTEXT, self.key).to_dict()

        for v, sym_alg in ((2, "AES-256-GCM"), (0, "AES-256-GCM"), (1, "AES-128-GCM"), (1, "ChaCha20-Poly1305")):
            with self.subTest(v=v, sym_alg=sym_alg):
                with self.assertRaises(UnsupportedVersionError) as cm:
                    self.manager.decrypt(dict(packet, v=v, sym_alg=sym_alg), self.key)

                self.assertEqual(cm.exception.application_code, ApplicationCodes.UNSUPPORTED_VERSION)

        with self.assertRaises(UnsupportedVersionError):
            self.manager.decrypt(dict(packet, v="1"), self.key)

    """
        Structural problems are reported as such, not as tampering.
    """
    def test_structure_errors(self):

        packet = self.manager.encrypt(self.PLAINTEXT, self.key).to_dict()

        missing = dict(packet)
        del missing["nonce_b64"]

        with self.assertRaises(HybridSessionError) as cm:
            self.manager.decrypt(missing, self.key)
        self.assertEqual(cm.exception.application_code, ApplicationCodes.MISSING_FIELDS)

        with self.assertRaises(HybridSessionError) as cm:
            self.manager.decrypt(dict(packet, extra="x"), self.key)
        self.assertEqual(cm.exception.application_code, ApplicationCodes.UNKNOWN_FIELDS)

        with self.assertRaises(HybridSessionError) as cm:
            self.manager.decrypt("{not json", self.key)
        self.assertEqual(cm.exception.application_code, ApplicationCodes.MALFORMED_JSON)

    """
        Keys that are not exactly 32 raw bytes are rejected on both paths.
    """
    def test_invalid_keys(self):

        packet = self.manager.encrypt(self.PLAINTEXT, self.key)

        for bad_key in (b"", b"\x00" * 16, b"\x00" * 31, b"\x00" * 33, "k" * 32, None):
            with self.subTest(bad_key=bad_key):
                with self.assertRaises(HybridSessionError) as cm:
                    self.manager.encrypt(self.PLAINTEXT, bad_key)  # type: ignore

                self.assertEqual(cm.exception.application_code, ApplicationCodes.INVALID_AES_KEY)
                self.assertEqual(cm.exception.http_code, HTTPCodes.BAD_REQUEST)

                with self.assertRaises(HybridSessionError) as cm:
                    self.manager.decrypt(packet, bad_key)  # type: ignore

                self.assertEqual(cm.exception.application_code, ApplicationCodes.INVALID_AES_KEY)

    """
        Non-string plaintext is refused.
    """
    def test_encrypt_rejects_non_string(self):

        with self.assertRaises(HybridSessionError) as cm:
            self.manager.encrypt(b"bytes", self.key)  # type: ignore

        self.assertEqual(cm.exception.application_code, ApplicationCodes.INVALID_TYPE)


if __name__ == "__main__":
    unittest.main()
