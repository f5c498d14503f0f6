#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testServer.py

    Description:
        End-to-end tests for the Flask application through its test client.
        A real client session encrypts each request, the app decrypts and
        echoes it, and the client decrypts the reply. Failure cases check the
        {ok:false, error} shape and status codes for every rejection path.
"""

import json
import os
import shutil
import tempfile
import unittest
from hybridsession.server import create_app
from hybridsession.config import ServerConfig
from hybridsession.handlers.session_handler import ClientSessionHandler
from hybridsession.handlers.packet_handler import PacketHandler
from hybridsession.handlers.error_handler import KeyFormatError, TamperError, HybridSessionError
from hybridsession.encryption.RSA_manager import RSAManager
from hybridsession.encryption.pem_manager import load_public_key
from hybridsession.utilities.audit_log import AuditLog
import hybridsession.handlers.sanitization_validation as VALIDATION


class TestServer(unittest.TestCase):

    @classmethod
    def setUpClass(cls) -> None:

        rsa_manager = RSAManager()
        cls.private_pem, cls.public_pem = rsa_manager.generate_key_pair()
        cls.public_key = load_public_key(cls.public_pem)

        _, other_public_pem = rsa_manager.generate_key_pair()
        cls.other_public_key = load_public_key(other_public_pem)

    def setUp(self) -> None:

        self.temp_dir = tempfile.mkdtemp(prefix="server_test_")
        self.audit_log = AuditLog(os.path.join(self.temp_dir, "audit.log"))

        # Key delivered the way a .env file would deliver it
        escaped_private = "\"" + self.private_pem.strip().replace("\n", "\\n") + "\""
        self.config = ServerConfig(private_key_pem=escaped_private, max_content_length=64 * 1024)

        self.app = create_app(audit_log=self.audit_log, config=self.config)
        self.app.testing = True
        self.http = self.app.test_client()

        self.session = ClientSessionHandler()
        self.packet_handler = PacketHandler()

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _build_request(self, obj, public_key=None) -> dict:
        envelope = self.session.ensure_session(public_key or self.public_key)
        packet = self.session.encrypt_with_session(json.dumps(obj))
        return self.packet_handler.create_request_envelope(envelope.wrapped_key_b64, packet).to_dict()

    def _post(self, body):
        return self.http.post("/api/decrypt", json=body)

    def _assert_failure(self, response, status: int, message: str = None):
        self.assertEqual(response.status_code, status)
        body = response.get_json()
        self.assertEqual(body["ok"], False)
        self.assertIsInstance(body["error"], str)
        self.assertNotIn("payload", body)
        if message is not None:
            self.assertEqual(body["error"], message)

    """
        {"hello":"world"} comes back as the decrypted echo.
    """
    def test_hello_world_round_trip(self):

        response = self._post(self._build_request({"hello": "world"}))

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(body["ok"])
        self.assertEqual(set(body["timings"].keys()), {"server_decrypt_ms", "server_encrypt_ms"})

        decrypted = json.loads(self.session.decrypt_with_session(body["payload"]))
        self.assertEqual(decrypted["echo"], {"hello": "world"})
        self.assertEqual(decrypted["msg"], "server encrypted response")

    """
        Successive requests within the TTL reuse the wrapped key and still succeed.
    """
    def test_session_reuse_across_requests(self):

        first = self._build_request({"n": 1})
        second = self._build_request({"n": 2})

        self.assertEqual(first["wrapped_key_b64"], second["wrapped_key_b64"])

        for request, n in ((first, 1), (second, 2)):
            body = self._post(request).get_json()
            self.assertEqual(json.loads(self.session.decrypt_with_session(body["payload"]))["echo"], {"n": n})

    """
        The response is encrypted under the client's own session key.
    """
    def test_response_not_readable_by_other_session(self):

        body = self._post(self._build_request({"a": 1})).get_json()

        other = ClientSessionHandler()
        other.ensure_session(self.public_key)

        with self.assertRaises(TamperError):
            other.decrypt_with_session(body["payload"])

    """
        Missing fields are a 400 with one fixed message.
    """
    def test_missing_fields(self):

        request = self._build_request({})

        self._assert_failure(self._post({"payload": request["payload"]}), 400, "Missing wrapped_key_b64 or payload")
        self._assert_failure(self._post({"wrapped_key_b64": request["wrapped_key_b64"]}), 400, "Missing wrapped_key_b64 or payload")

    """
        A flipped bit in the ciphertext is reported as "decryption failed".
    """
    def test_tampered_payload(self):

        request = self._build_request({"x": 1})
        packet = json.loads(request["payload"])
        raw = VALIDATION.decode_base64url_to_bytes("ciphertext_b64", packet["ciphertext_b64"])
        packet["ciphertext_b64"] = VALIDATION.encode_bytes_to_base64url(raw[:-1] + bytes([raw[-1] ^ 0x01]))

        self._assert_failure(self._post(dict(request, payload=json.dumps(packet))), 400, "decryption failed")

    """
        A key wrapped for a different server yields the unwrap message.
    """
    def test_wrong_public_key(self):

        request = self._build_request({"x": 1}, public_key=self.other_public_key)

        self._assert_failure(self._post(request), 400, "Unable to unwrap session key")

    """
        Unknown packet versions are rejected.
    """
    def test_unsupported_version(self):

        request = self._build_request({"x": 1})
        packet = dict(json.loads(request["payload"]), v=99)

        self._assert_failure(self._post(dict(request, payload=json.dumps(packet))), 400)

    """
        Non-JSON content types are refused with 415.
    """
    def test_wrong_content_type(self):

        response = self.http.post("/api/decrypt", data="wrapped_key_b64=x", content_type="application/x-www-form-urlencoded")

        self._assert_failure(response, 415)

    """
        Unparseable or non-object JSON bodies are 400s.
    """
    def test_malformed_json(self):

        response = self.http.post("/api/decrypt", data="{not json", content_type="application/json")
        self._assert_failure(response, 400, "Failed to parse JSON body")

        response = self.http.post("/api/decrypt", data="[1, 2]", content_type="application/json")
        self._assert_failure(response, 400)

    """
        Bodies above the configured limit are 413s.
    """
    def test_payload_too_large(self):

        body = json.dumps({"wrapped_key_b64": "A" * (70 * 1024), "payload": "x"})
        response = self.http.post("/api/decrypt", data=body, content_type="application/json")

        self._assert_failure(response, 413)

    """
        Routing errors keep their status but use the failure shape.
    """
    def test_routing_errors(self):

        self._assert_failure(self.http.get("/api/decrypt"), 405)
        self._assert_failure(self.http.post("/api/unknown", json={}), 404)

    """
        Business logic exceptions become a generic 500.
    """
    def test_business_logic_error(self):

        def explode(_text):
            raise RuntimeError("database password is hunter2")

        app = create_app(self.private_pem, business_logic=explode, audit_log=self.audit_log, config=self.config)
        response = app.test_client().post("/api/decrypt", json=self._build_request({}))

        self._assert_failure(response, 500, "Request processing failed")

    """
        The app refuses to start without a usable private key.
    """
    def test_create_app_requires_private_key(self):

        with self.assertRaises(KeyFormatError):
            create_app(audit_log=self.audit_log, config=ServerConfig())

        with self.assertRaises(KeyFormatError):
            create_app(self.public_pem, audit_log=self.audit_log, config=ServerConfig())

    """
        Startup, requests and rejections are written to the audit log.
    """
    def test_audit_events(self):

        self._post(self._build_request({"x": 1}))
        self._post({})

        with open(self.audit_log.path, "r", encoding="utf-8") as f:
            events = [json.loads(line)["event"] for line in f if line.strip()]

        self.assertIn("server_started", events)
        self.assertIn("request_processed", events)
        self.assertIn("server_exception", events)

    """
        Configuration is read from the environment mapping.
    """
    def test_server_config_from_env(self):

        config = ServerConfig.from_env({
            "PRIVATE_KEY_PEM": self.private_pem,
            "HYBRIDSESSION_MAX_CONTENT_LENGTH": "1024",
            "HYBRIDSESSION_AUDIT_LOG": self.audit_log.path,
            "FLASK_SECRET_KEY": "ignored",
        })

        self.assertEqual(config.max_content_length, 1024)
        self.assertFalse(hasattr(config, "secret_key"))

        app = create_app(config=config)
        self.assertEqual(app.config["MAX_CONTENT_LENGTH"], 1024)
        self.assertIsNone(app.config["SECRET_KEY"])
        self.assertEqual(app.audit_log.path, self.audit_log.path)

        with self.assertRaises(HybridSessionError):
            ServerConfig.from_env({"HYBRIDSESSION_MAX_CONTENT_LENGTH": "-5"})


if __name__ == "__main__":
    unittest.main()
