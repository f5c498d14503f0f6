#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testPEMManager.py

    Description:
        Test suite for PEM normalization and key loading. Covers the forms
        PEM text takes in environment variables (quoted, escaped newlines,
        CRLF, indented, surrounded by stray text), idempotence of
        normalize_pem, and the KeyFormatError cases of the loaders.
"""

import unittest
from cryptography.hazmat.primitives.asymmetric import rsa, ec
from cryptography.hazmat.primitives import serialization
from hybridsession.encryption.pem_manager import KeyMaterial, normalize_pem, load_public_key, load_private_key, public_key_from_private
from hybridsession.encryption.RSA_manager import RSAManager
from hybridsession.handlers.error_handler import KeyFormatError, HybridSessionError, ApplicationCodes


class TestPEMManager(unittest.TestCase):

    """
        One RSA key pair for the whole suite; generation dominates runtime.
    """
    @classmethod
    def setUpClass(cls) -> None:
        cls.private_pem, cls.public_pem = RSAManager().generate_key_pair()

    """
        The canonical form has LF endings, no blank lines and a trailing newline.
    """
    def test_normalize_canonical_pem_is_unchanged(self):

        self.assertEqual(normalize_pem(self.public_pem), self.public_pem)
        self.assertTrue(self.public_pem.endswith("-----END PUBLIC KEY-----\n"))

    """
        Quoted single-line value with literal \\n escapes.
    """
    def test_normalize_quoted_escaped_value(self):

        raw = "\"" + self.public_pem.strip().replace("\n", "\\n") + "\""
        self.assertEqual(normalize_pem(raw), self.public_pem)

        raw_single = "'" + self.public_pem.strip().replace("\n", "\\n") + "'"
        self.assertEqual(normalize_pem(raw_single), self.public_pem)

    """
        Short synthetic block from a typical .env file.
    """
    def test_normalize_short_escaped_block(self):

        raw = "\"-----BEGIN PUBLIC KEY-----\\nMIIB\\n-----END PUBLIC KEY-----\""
        self.assertEqual(normalize_pem(raw), "-----BEGIN PUBLIC KEY-----\nMIIB\n-----END PUBLIC KEY-----\n")

    """
        Quoted value whose escaped text already ends in \\n keeps a single trailing newline.
    """
    def test_normalize_escaped_block_with_trailing_escape(self):

        raw = "\"-----BEGIN PUBLIC KEY-----\\nAAAA\\n-----END PUBLIC KEY-----\\n\""
        self.assertEqual(normalize_pem(raw), "-----BEGIN PUBLIC KEY-----\nAAAA\n-----END PUBLIC KEY-----\n")

    """
        CRLF and CR line endings, literal and real.
    """
    def test_normalize_line_endings(self):

        crlf = self.public_pem.replace("\n", "\r\n")
        self.assertEqual(normalize_pem(crlf), self.public_pem)

        cr = self.public_pem.replace("\n", "\r")
        self.assertEqual(normalize_pem(cr), self.public_pem)

        literal_crlf = self.public_pem.strip().replace("\n", "\\r\\n")
        self.assertEqual(normalize_pem(literal_crlf), self.public_pem)

    """
        Indentation and blank lines inside the block are dropped.
    """
    def test_normalize_indentation_and_blank_lines(self):

        indented = "\n".join("    " + line + "   " for line in self.public_pem.splitlines())
        self.assertEqual(normalize_pem(indented), self.public_pem)

        spaced = self.public_pem.replace("\n", "\n\n")
        self.assertEqual(normalize_pem(spaced), self.public_pem)

        # A blank line in the middle of the base64 body still yields a loadable key
        body = self.public_pem.splitlines()
        gapped = "\n".join(body[:2] + [""] + body[2:]) + "\n"
        self.assertEqual(load_public_key(gapped).pem, self.public_pem)

    """
        Only the armored block survives when text surrounds it.
    """
    def test_normalize_strips_surrounding_text(self):

        raw = "key follows:\n" + self.public_pem + "trailing comment\n"
        self.assertEqual(normalize_pem(raw), self.public_pem)

    """
        Absent or blank values normalize to "" without raising.
    """
    def test_normalize_blank_values(self):

        for raw in (None, "", "   ", "\n\n", "\"\"", "''", 42):
            with self.subTest(raw=raw):
                self.assertEqual(normalize_pem(raw), "")

    """
        normalize_pem(normalize_pem(x)) == normalize_pem(x) across awkward inputs.
    """
    def test_normalize_is_idempotent(self):

        samples = [
            self.public_pem,
            "\"" + self.private_pem.replace("\n", "\\n") + "\"",
            "\"'abc'\"",
            "\\n'abc'",
            "'\"\\n\"'",
            "  \r\n -----BEGIN PUBLIC KEY----- \r\n abc \r\n",
            "-----END PUBLIC KEY-----\n-----BEGIN PUBLIC KEY-----\nabc",
            "\\\\n",
            "\"",
        ]

        for raw in samples:
            with self.subTest(raw=raw):
                once = normalize_pem(raw)
                self.assertEqual(normalize_pem(once), once)

    """
        load_public_key accepts every normalizable form and fingerprints the DER SPKI.
    """
    def test_load_public_key(self):

        key = load_public_key("\"" + self.public_pem.strip().replace("\n", "\\n") + "\"")

        self.assertIsInstance(key, KeyMaterial)
        self.assertTrue(key.is_public)
        self.assertFalse(key.is_private)
        self.assertEqual(key.key_format, "SPKI")
        self.assertEqual(key.key_size, 2048)
        self.assertEqual(len(key.fingerprint), 64)
        self.assertEqual(key.pem, self.public_pem)

    """
        Private and public halves of one pair share a fingerprint.
    """
    def test_load_private_key_and_derive_public(self):

        private = load_private_key(self.private_pem)

        self.assertTrue(private.is_private)
        self.assertEqual(private.key_format, "PKCS8")

        public = public_key_from_private(private)
        self.assertEqual(public.fingerprint, private.fingerprint)
        self.assertEqual(public.fingerprint, load_public_key(self.public_pem).fingerprint)

    """
        Blank, garbage and wrong-label input raise KeyFormatError.
    """
    def test_load_rejects_bad_material(self):

        bad_values = [
            None,
            "",
            "not-a-pem",
            "-----BEGIN PUBLIC KEY-----\nMIIB\n-----END PUBLIC KEY-----",
            self.private_pem,
        ]

        for raw in bad_values:
            with self.subTest(raw=raw):
                with self.assertRaises(KeyFormatError) as cm:
                    load_public_key(raw)
                self.assertEqual(cm.exception.application_code, ApplicationCodes.KEY_FORMAT_ERROR)

        with self.assertRaises(KeyFormatError):
            load_private_key(self.public_pem)

        with self.assertRaises(KeyFormatError):
            load_private_key("")

    """
        A PKCS1 ("BEGIN RSA PRIVATE KEY") private key is not accepted.
    """
    def test_load_private_key_rejects_pkcs1(self):

        private = serialization.load_pem_private_key(self.private_pem.encode("ascii"), password=None)
        pkcs1 = private.private_bytes(serialization.Encoding.PEM, serialization.PrivateFormat.TraditionalOpenSSL, serialization.NoEncryption()).decode("ascii")

        with self.assertRaises(KeyFormatError):
            load_private_key(pkcs1)

    """
        Non-RSA keys are rejected even when correctly armored.
    """
    def test_load_rejects_non_rsa_keys(self):

        ec_private = ec.generate_private_key(ec.SECP256R1())
        ec_public_pem = ec_private.public_key().public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo).decode("ascii")
        ec_private_pem = ec_private.private_bytes(serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()).decode("ascii")

        with self.assertRaises(KeyFormatError):
            load_public_key(ec_public_pem)

        with self.assertRaises(KeyFormatError):
            load_private_key(ec_private_pem)

    """
        KeyFormatError belongs to the shared error hierarchy.
    """
    def test_key_format_error_is_hybrid_session_error(self):

        with self.assertRaises(HybridSessionError):
            load_public_key("garbage")

        self.assertTrue(issubclass(KeyFormatError, HybridSessionError))

    """
        Loaded key objects are cryptography RSA keys.
    """
    def test_loaded_key_objects(self):

        self.assertIsInstance(load_public_key(self.public_pem).key, rsa.RSAPublicKey)
        self.assertIsInstance(load_private_key(self.private_pem).key, rsa.RSAPrivateKey)


if __name__ == "__main__":
    unittest.main()
