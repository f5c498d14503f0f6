#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testRequestHandler.py

    Description:
        Test suite for ServerRequestHandler and ErrorHandler. Drives the
        unwrap -> decrypt -> business logic -> encrypt cycle with requests
        built by a real client session, and checks that every failure maps
        to the expected error type and failure packet.
"""

import json
import os
import shutil
import tempfile
import unittest
from hybridsession.handlers.request_handler import ServerRequestHandler, echo_business_logic
from hybridsession.handlers.session_handler import ClientSessionHandler
from hybridsession.handlers.packet_handler import PacketHandler, SymmetricPacket
from hybridsession.handlers.error_handler import (ErrorHandler, HybridSessionError, UnwrapError, TamperError, UnsupportedVersionError,
                                                  KeyFormatError, ApplicationCodes, HTTPCodes)
from hybridsession.encryption.RSA_manager import RSAManager
from hybridsession.encryption.AES_manager import AESManager
from hybridsession.encryption.pem_manager import load_public_key, load_private_key
from hybridsession.utilities.audit_log import AuditLog
import hybridsession.handlers.sanitization_validation as VALIDATION


class TestRequestHandler(unittest.TestCase):

    @classmethod
    def setUpClass(cls) -> None:

        rsa_manager = RSAManager()

        private_pem, public_pem = rsa_manager.generate_key_pair()
        cls.private_key = load_private_key(private_pem)
        cls.public_key = load_public_key(public_pem)

        other_private_pem, _ = rsa_manager.generate_key_pair()
        cls.other_private_key = load_private_key(other_private_pem)

    def setUp(self) -> None:

        self.temp_dir = tempfile.mkdtemp(prefix="request_handler_test_")
        self.audit_log = AuditLog(os.path.join(self.temp_dir, "audit.log"))

        self.handler = ServerRequestHandler(self.private_key, audit_log=self.audit_log)
        self.client = ClientSessionHandler()
        self.packet_handler = PacketHandler()

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _build_request(self, obj) -> dict:
        envelope = self.client.ensure_session(self.public_key)
        packet = self.client.encrypt_with_session(json.dumps(obj))
        return self.packet_handler.create_request_envelope(envelope.wrapped_key_b64, packet).to_dict()

    def _audit_records(self) -> list:
        with open(self.audit_log.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    """
        Default business logic echoes the client object with a server timestamp.
    """
    def test_echo_business_logic(self):

        out = json.loads(echo_business_logic("{\"hello\":\"world\"}"))

        self.assertEqual(out["echo"], {"hello": "world"})
        self.assertEqual(out["msg"], "server encrypted response")
        self.assertIsInstance(out["serverTime"], int)

        self.assertEqual(json.loads(echo_business_logic("plain text"))["echo"], "plain text")

    """
        Full cycle: the client decrypts the echo of what it sent.
    """
    def test_respond_to_encrypted_request(self):

        response, status = self.handler.respond_to_encrypted_request(self._build_request({"hello": "world"}))

        self.assertEqual(status, HTTPCodes.OK)
        self.assertTrue(response["ok"])
        self.assertIn("server_decrypt_ms", response["timings"])
        self.assertIn("server_encrypt_ms", response["timings"])

        decrypted = json.loads(self.client.decrypt_with_session(response["payload"]))
        self.assertEqual(decrypted["echo"], {"hello": "world"})

    """
        handle() returns the response packet under the client's key.
    """
    def test_handle_returns_packet(self):

        request = self._build_request([1, 2, 3])

        packet = self.handler.handle(request["wrapped_key_b64"], request["payload"])

        self.assertIsInstance(packet, SymmetricPacket)
        self.assertEqual(json.loads(self.client.decrypt_with_session(packet))["echo"], [1, 2, 3])

    """
        A custom business transform is applied to the plaintext.
    """
    def test_custom_business_logic(self):

        handler = ServerRequestHandler(self.private_key, business_logic=lambda text: text.upper())

        response, _ = handler.respond_to_encrypted_request(self._build_request({"k": "v"}))

        self.assertEqual(self.client.decrypt_with_session(response["payload"]), "{\"K\": \"V\"}")

    """
        Requests reusing one session key are each handled independently.
    """
    def test_stateless_across_requests(self):

        first, _ = self.handler.respond_to_encrypted_request(self._build_request({"n": 1}))
        second, _ = self.handler.respond_to_encrypted_request(self._build_request({"n": 2}))

        self.assertEqual(json.loads(self.client.decrypt_with_session(first["payload"]))["echo"], {"n": 1})
        self.assertEqual(json.loads(self.client.decrypt_with_session(second["payload"]))["echo"], {"n": 2})
        self.assertNotEqual(first["payload"], second["payload"])

    """
        A key wrapped for another server cannot be unwrapped.
    """
    def test_wrong_server_key_is_unwrap_error(self):

        handler = ServerRequestHandler(self.other_private_key)

        with self.assertRaises(UnwrapError):
            handler.respond_to_encrypted_request(self._build_request({}))

    """
        Corrupted wrapped keys are all the same UnwrapError, whether or not they decode.
    """
    def test_corrupted_wrapped_key(self):

        request = self._build_request({})
        wrapped = VALIDATION.decode_base64url_to_bytes("wrapped_key_b64", request["wrapped_key_b64"])
        flipped = VALIDATION.encode_bytes_to_base64url(wrapped[:10] + bytes([wrapped[10] ^ 0x80]) + wrapped[11:])

        for bad in (flipped, request["wrapped_key_b64"][:-2], "AAAA", "not base64!"):
            with self.subTest(bad=bad[:12]):
                with self.assertRaises(UnwrapError) as cm:
                    self.handler.respond_to_encrypted_request(dict(request, wrapped_key_b64=bad))
                self.assertEqual(cm.exception.detail, "Unable to unwrap session key")

    """
        Tampered payloads are rejected with TamperError.
    """
    def test_tampered_payload(self):

        request = self._build_request({"x": 1})
        packet = json.loads(request["payload"])
        ciphertext = VALIDATION.decode_base64url_to_bytes("ciphertext_b64", packet["ciphertext_b64"])
        packet["ciphertext_b64"] = VALIDATION.encode_bytes_to_base64url(bytes([ciphertext[0] ^ 0x01]) + ciphertext[1:])

        with self.assertRaises(TamperError):
            self.handler.respond_to_encrypted_request(dict(request, payload=json.dumps(packet)))

    """
        An unknown packet version is rejected as such.
    """
    def test_unsupported_payload_version(self):

        request = self._build_request({"x": 1})
        packet = dict(json.loads(request["payload"]), v=2)

        with self.assertRaises(UnsupportedVersionError):
            self.handler.respond_to_encrypted_request(dict(request, payload=json.dumps(packet)))

    """
        Business logic failures never leak their detail.
    """
    def test_business_logic_failures(self):

        def explode(_text):
            raise RuntimeError("secret detail")

        for logic in (explode, lambda _text: {"not": "a string"}):
            with self.subTest(logic=logic):
                handler = ServerRequestHandler(self.private_key, business_logic=logic)
                with self.assertRaises(HybridSessionError) as cm:
                    handler.respond_to_encrypted_request(self._build_request({}))

                self.assertEqual(cm.exception.application_code, ApplicationCodes.BUSINESS_LOGIC_ERROR)
                self.assertNotIn("secret", cm.exception.detail)

    """
        The handler requires private key material and callable business logic.
    """
    def test_constructor_validation(self):

        with self.assertRaises(KeyFormatError):
            ServerRequestHandler(self.public_key)

        with self.assertRaises(HybridSessionError):
            ServerRequestHandler(self.private_key, business_logic="not callable")  # type: ignore

    """
        Processing is logged without any key or plaintext material.
    """
    def test_audit_log_records_request(self):

        request = self._build_request({"secret": "value"})
        self.handler.respond_to_encrypted_request(request)

        records = self._audit_records()
        processed = [r for r in records if r.get("event") == "request_processed"]

        self.assertEqual(len(processed), 1)
        self.assertIn("server_decrypt_ms", processed[0])
        self.assertTrue(processed[0]["timestamp"].endswith("Z"))

        raw = json.dumps(records)
        self.assertNotIn("value", raw)
        self.assertNotIn(request["wrapped_key_b64"], raw)

    """
        ErrorHandler maps domain errors to their message and hides unexpected ones.
    """
    def test_error_handler_packets(self):

        error_handler = ErrorHandler(self.audit_log)

        packet, status = error_handler.handle_server_error(TamperError(), context="test")
        self.assertEqual(packet, {"ok": False, "error": "decryption failed"})
        self.assertEqual(status, HTTPCodes.BAD_REQUEST)

        packet, status = error_handler.handle_server_error(UnwrapError(), context="test")
        self.assertEqual(packet, {"ok": False, "error": "Unable to unwrap session key"})

        packet, status = error_handler.handle_server_error(ValueError("internal detail"), context="test")
        self.assertFalse(packet["ok"])
        self.assertNotIn("internal detail", packet["error"])
        self.assertEqual(status, HTTPCodes.INTERNAL_SERVER_ERROR)

        events = [r for r in self._audit_records() if r.get("event") == "server_exception"]
        self.assertEqual(len(events), 3)
        self.assertEqual(events[0]["error_code"], ApplicationCodes.TAMPER_ERROR)

    """
        A fresh AES key in a request is only ever used for that request's response.
    """
    def test_response_uses_request_key(self):

        request = self._build_request({"q": 1})
        aes_key = RSAManager().unwrap(VALIDATION.decode_base64url_to_bytes("wrapped_key_b64", request["wrapped_key_b64"]), self.private_key)

        response, _ = self.handler.respond_to_encrypted_request(request)

        self.assertEqual(json.loads(AESManager().decrypt(response["payload"], aes_key))["echo"], {"q": 1})


if __name__ == "__main__":
    unittest.main()
