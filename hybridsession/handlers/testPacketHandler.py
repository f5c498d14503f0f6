#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testPacketHandler.py

    Description:
        Test suite for the wire records and PacketHandler: version-driven
        symmetric packet decoding, wrapped key envelope checks, request
        envelope validation and response envelope construction/parsing.
"""

import json
import unittest
from hybridsession.handlers.packet_handler import PacketHandler, SymmetricPacket, WrappedKeyEnvelope, RequestEnvelope, ResponseEnvelope
from hybridsession.handlers.error_handler import HybridSessionError, UnsupportedVersionError, ApplicationCodes, HTTPCodes
import hybridsession.handlers.sanitization_validation as VALIDATION


class TestPacketHandler(unittest.TestCase):

    def setUp(self) -> None:

        self.handler = PacketHandler()
        self.packet = self.handler.create_symmetric_packet(b"\x01" * 12, b"\x02" * 40)

    """
        create_symmetric_packet encodes unpadded Base64URL under version 1.
    """
    def test_create_symmetric_packet(self):

        self.assertEqual(self.packet.v, 1)
        self.assertEqual(self.packet.sym_alg, "AES-256-GCM")
        self.assertEqual(self.packet.nonce_b64, VALIDATION.encode_bytes_to_base64url(b"\x01" * 12))
        self.assertNotIn("=", self.packet.ciphertext_b64)

    """
        Packets parse back from dict and JSON text into equal records.
    """
    def test_parse_symmetric_packet_forms(self):

        self.assertEqual(self.handler.parse_symmetric_packet(self.packet.to_dict()), self.packet)
        self.assertEqual(self.handler.parse_symmetric_packet(self.packet.to_json()), self.packet)
        self.assertEqual(SymmetricPacket.from_json(self.packet.to_json()), self.packet)
        self.assertEqual(SymmetricPacket.from_dict(self.packet), self.packet)

    """
        JSON text is compact and holds exactly the four wire fields.
    """
    def test_symmetric_packet_json_is_compact(self):

        text = self.packet.to_json()

        self.assertNotIn(" ", text)
        self.assertEqual(json.loads(text), {"v": 1, "sym_alg": "AES-256-GCM", "nonce_b64": self.packet.nonce_b64, "ciphertext_b64": self.packet.ciphertext_b64})

    """
        Version is read first; unknown pairs never reach the v1 decoder.
    """
    def test_unknown_version_fails_closed(self):

        unknown = {"v": 2, "sym_alg": "AES-256-GCM", "whatever": True}

        with self.assertRaises(UnsupportedVersionError) as cm:
            self.handler.parse_symmetric_packet(unknown)

        self.assertEqual(cm.exception.application_code, ApplicationCodes.UNSUPPORTED_VERSION)
        self.assertEqual(cm.exception.http_code, HTTPCodes.BAD_REQUEST)

        with self.assertRaises(UnsupportedVersionError):
            self.handler.parse_symmetric_packet(dict(self.packet.to_dict(), v=True))

        with self.assertRaises(UnsupportedVersionError):
            self.handler.parse_symmetric_packet(dict(self.packet.to_dict(), sym_alg=None))

    """
        Missing, unknown and mistyped fields of a v1 packet.
    """
    def test_symmetric_packet_structure_errors(self):

        base = self.packet.to_dict()

        cases = [
            ({k: v for k, v in base.items() if k != "v"}, ApplicationCodes.MISSING_FIELDS),
            ({k: v for k, v in base.items() if k != "ciphertext_b64"}, ApplicationCodes.MISSING_FIELDS),
            (dict(base, aad="x"), ApplicationCodes.UNKNOWN_FIELDS),
            (dict(base, nonce_b64=123), ApplicationCodes.INVALID_TYPE),
            (dict(base, ciphertext_b64=""), ApplicationCodes.INVALID_TYPE),
            ([1, 2, 3], ApplicationCodes.INVALID_PACKET_STRUCTURE),
            ("[1, 2, 3]", ApplicationCodes.MALFORMED_JSON),
        ]

        for obj, code in cases:
            with self.subTest(obj=obj):
                with self.assertRaises(HybridSessionError) as cm:
                    self.handler.parse_symmetric_packet(obj)
                self.assertEqual(cm.exception.application_code, code)

    """
        Oversize binary fields are rejected by length.
    """
    def test_symmetric_packet_length_cap(self):

        with self.assertRaises(HybridSessionError) as cm:
            self.handler.parse_symmetric_packet(dict(self.packet.to_dict(), ciphertext_b64="A" * 300000))

        self.assertEqual(cm.exception.application_code, ApplicationCodes.INVALID_LENGTH)

    """
        Wrapped key envelopes carry the fixed algorithm tags and round-trip through dicts.
    """
    def test_wrapped_key_envelope(self):

        envelope = self.handler.create_wrapped_key_envelope("AQID", True, 1700000000000)

        self.assertIsInstance(envelope, WrappedKeyEnvelope)
        self.assertEqual(envelope.alg, "RSA-OAEP-256")
        self.assertEqual(envelope.sym_alg, "AES-256-GCM")
        self.assertEqual(WrappedKeyEnvelope.from_dict(envelope.to_dict()), envelope)
        self.assertEqual(self.handler.parse_wrapped_key_envelope(envelope.to_json()), envelope)

    """
        Unsupported algorithm triples and bad field types in an envelope.
    """
    def test_wrapped_key_envelope_errors(self):

        base = self.handler.create_wrapped_key_envelope("AQID", False, 1).to_dict()

        with self.assertRaises(UnsupportedVersionError):
            self.handler.parse_wrapped_key_envelope(dict(base, alg="RSA-OAEP"))

        with self.assertRaises(UnsupportedVersionError):
            self.handler.parse_wrapped_key_envelope(dict(base, v=2))

        cases = [
            (dict(base, fresh="yes"), ApplicationCodes.INVALID_TYPE),
            (dict(base, created_ms=1.5), ApplicationCodes.INVALID_TYPE),
            (dict(base, wrapped_key_b64="a+b/"), ApplicationCodes.INVALID_BASE64URL),
            (dict(base, extra=1), ApplicationCodes.UNKNOWN_FIELDS),
        ]

        for obj, code in cases:
            with self.subTest(obj=obj):
                with self.assertRaises(HybridSessionError) as cm:
                    self.handler.parse_wrapped_key_envelope(obj)
                self.assertEqual(cm.exception.application_code, code)

    """
        Request envelopes carry the wrapped key and the serialized packet.
    """
    def test_request_envelope(self):

        request = self.handler.create_request_envelope("AQID", self.packet)

        self.assertIsInstance(request, RequestEnvelope)
        self.assertEqual(request.to_dict(), {"wrapped_key_b64": "AQID", "payload": self.packet.to_json()})
        self.assertEqual(RequestEnvelope.from_dict(request.to_dict()), request)

    """
        Missing fields share one message; unknown fields and wrong types are reported.
    """
    def test_request_envelope_errors(self):

        for obj in ({"payload": "x"}, {"wrapped_key_b64": "AQID"}, {}):
            with self.subTest(obj=obj):
                with self.assertRaises(HybridSessionError) as cm:
                    self.handler.parse_request_envelope(obj)
                self.assertEqual(cm.exception.application_code, ApplicationCodes.MISSING_FIELDS)
                self.assertEqual(cm.exception.detail, "Missing wrapped_key_b64 or payload")
                self.assertEqual(cm.exception.http_code, HTTPCodes.BAD_REQUEST)

        with self.assertRaises(HybridSessionError) as cm:
            self.handler.parse_request_envelope({"wrapped_key_b64": "AQID", "payload": "x", "debug": True})
        self.assertEqual(cm.exception.application_code, ApplicationCodes.UNKNOWN_FIELDS)

        with self.assertRaises(HybridSessionError) as cm:
            self.handler.parse_request_envelope({"wrapped_key_b64": 5, "payload": "x"})
        self.assertEqual(cm.exception.application_code, ApplicationCodes.INVALID_TYPE)

    """
        The success response holds ok, the serialized packet and timings.
    """
    def test_create_success_response_packet(self):

        response = self.handler.create_success_response_packet(self.packet, {"server_decrypt_ms": 0.1, "server_encrypt_ms": 0.2})

        self.assertEqual(response["ok"], True)
        self.assertEqual(response["payload"], self.packet.to_json())
        self.assertEqual(response["timings"]["server_encrypt_ms"], 0.2)
        self.assertNotIn("error", response)

        with self.assertRaises(HybridSessionError):
            self.handler.create_success_response_packet({"not": "a packet"})  # type: ignore

    """
        Response envelopes parse in both success and failure shapes.
    """
    def test_parse_response_envelope(self):

        ok = self.handler.parse_response_envelope({"ok": True, "payload": self.packet.to_json()})
        self.assertEqual(ok, ResponseEnvelope(ok=True, payload=self.packet.to_json()))

        failed = self.handler.parse_response_envelope(json.dumps({"ok": False, "error": "decryption failed"}))
        self.assertFalse(failed.ok)
        self.assertEqual(failed.error, "decryption failed")
        self.assertEqual(failed.to_dict(), {"ok": False, "error": "decryption failed"})

    """
        Malformed response envelopes.
    """
    def test_parse_response_envelope_errors(self):

        cases = [
            {"payload": "x"},
            {"ok": "true", "payload": "x"},
            {"ok": True},
            {"ok": False},
            {"ok": False, "error": 5},
            {"ok": True, "payload": "x", "timings": [1, 2]},
            {"ok": True, "payload": "x", "debug": "x"},
        ]

        for obj in cases:
            with self.subTest(obj=obj):
                with self.assertRaises(HybridSessionError):
                    self.handler.parse_response_envelope(obj)


if __name__ == "__main__":
    unittest.main()
