#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testSecureClient.py

    Description:
        Test suite for SecureClient. The Flask test client stands in for the
        network through a small requests-compatible transport, so full
        exchanges run in-process; transport failures are simulated with
        requests exceptions.
"""

import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from urllib.parse import urlsplit
import requests
from hybridsession.client.secure_client import SecureClient, SecureExchange, SecureTransportError, ServerRejectedError
from hybridsession.server import create_app
from hybridsession.config import ServerConfig
from hybridsession.handlers.session_handler import ClientSessionHandler
from hybridsession.handlers.error_handler import HybridSessionError, KeyFormatError, ApplicationCodes
from hybridsession.encryption.RSA_manager import RSAManager
from hybridsession.utilities.audit_log import AuditLog


class _FlaskResponse:

    def __init__(self, response) -> None:
        self._response = response
        self.status_code = response.status_code

    def json(self):
        body = self._response.get_json(silent=True)
        if body is None:
            raise ValueError("response is not JSON")
        return body


"""
    requests.Session stand-in that routes post() into a Flask test client.
"""
class FlaskTransport:

    def __init__(self, flask_client) -> None:
        self._client = flask_client
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append((url, json, timeout))
        return _FlaskResponse(self._client.post(urlsplit(url).path, json=json))


class _FailingTransport:

    def post(self, url, json=None, timeout=None):
        raise requests.ConnectionError("connection refused")


class _TextResponse:

    status_code = 502

    def json(self):
        raise ValueError("Expecting value")


class _TextTransport:

    def post(self, url, json=None, timeout=None):
        return _TextResponse()


"""
    Transport that lets another caller replace the shared session while the request is in flight.
"""
class _RefreshingTransport(FlaskTransport):

    def __init__(self, flask_client, on_post) -> None:
        super().__init__(flask_client)
        self._on_post = on_post

    def post(self, url, json=None, timeout=None):
        self._on_post()
        return super().post(url, json=json, timeout=timeout)


class _FakeClock:

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class TestSecureClient(unittest.TestCase):

    BASE_URL = "http://127.0.0.1:5000"

    @classmethod
    def setUpClass(cls) -> None:

        rsa_manager = RSAManager()
        cls.private_pem, cls.public_pem = rsa_manager.generate_key_pair()
        _, cls.other_public_pem = rsa_manager.generate_key_pair()

    def setUp(self) -> None:

        self.temp_dir = tempfile.mkdtemp(prefix="secure_client_test_")
        audit_log = AuditLog(os.path.join(self.temp_dir, "audit.log"))

        app = create_app(self.private_pem, audit_log=audit_log, config=ServerConfig())
        self.transport = FlaskTransport(app.test_client())
        self.client = SecureClient(self.BASE_URL + "/", self.public_pem, http_session=self.transport, timeout=5.0)

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    """
        send() returns the decrypted echo and marks the first exchange fresh.
    """
    def test_send_round_trip(self):

        exchange = self.client.send({"hello": "world"})

        self.assertIsInstance(exchange, SecureExchange)
        self.assertTrue(exchange.fresh)
        self.assertEqual(exchange.response["echo"], {"hello": "world"})
        self.assertIn("server_decrypt_ms", exchange.server_timings)
        self.assertGreaterEqual(exchange.session_ms, 0.0)

        url, body, timeout = self.transport.calls[0]
        self.assertEqual(url, self.BASE_URL + "/api/decrypt")
        self.assertEqual(set(body.keys()), {"wrapped_key_b64", "payload"})
        self.assertEqual(timeout, 5.0)

    """
        The second exchange reuses the wrapped key.
    """
    def test_send_reuses_session(self):

        first = self.client.send({"n": 1})
        second = self.client.send({"n": 2})

        self.assertTrue(first.fresh)
        self.assertFalse(second.fresh)
        self.assertEqual(first.wrapped_key_b64, second.wrapped_key_b64)
        self.assertEqual(second.response["echo"], {"n": 2})

    """
        Clients can share one session handler.
    """
    def test_shared_session_handler(self):

        sessions = ClientSessionHandler()
        first = SecureClient(self.BASE_URL, self.public_pem, session_handler=sessions, http_session=self.transport)
        second = SecureClient(self.BASE_URL, self.public_pem, session_handler=sessions, http_session=self.transport)

        self.assertTrue(first.send([1]).fresh)
        self.assertFalse(second.send([2]).fresh)
        self.assertIs(first.session_handler, second.session_handler)

    """
        A server rejection surfaces as ServerRejectedError with its status code.
    """
    def test_server_rejection(self):

        client = SecureClient(self.BASE_URL, self.other_public_pem, http_session=self.transport)

        with self.assertRaises(ServerRejectedError) as cm:
            client.send({"x": 1})

        self.assertEqual(cm.exception.status_code, 400)
        self.assertEqual(cm.exception.detail, "Unable to unwrap session key")
        self.assertEqual(cm.exception.application_code, ApplicationCodes.SERVER_REJECTED)

    """
        Connection failures and non-JSON bodies are SecureTransportError.
    """
    def test_transport_failures(self):

        for transport in (_FailingTransport(), _TextTransport()):
            with self.subTest(transport=type(transport).__name__):
                client = SecureClient(self.BASE_URL, self.public_pem, http_session=transport)
                with self.assertRaises(SecureTransportError) as cm:
                    client.send({})
                self.assertEqual(cm.exception.application_code, ApplicationCodes.TRANSPORT_ERROR)

    """
        Objects that cannot be JSON encoded are refused before anything is sent.
    """
    def test_unserializable_object(self):

        with self.assertRaises(HybridSessionError) as cm:
            self.client.send({"when": object()})

        self.assertEqual(cm.exception.application_code, ApplicationCodes.MALFORMED_JSON)
        self.assertEqual(self.transport.calls, [])

    """
        A bad public key fails at construction.
    """
    def test_bad_public_key(self):

        with self.assertRaises(KeyFormatError):
            SecureClient(self.BASE_URL, "not-a-pem", http_session=self.transport)

    """
        A session refreshed by another caller mid-request does not break the exchange in flight.
    """
    def test_session_refreshed_during_request(self):

        clock = _FakeClock()
        sessions = ClientSessionHandler(clock=clock)

        def refresh():
            clock.now = clock.now + timedelta(minutes=15)
            sessions.ensure_session(self.public_pem)

        transport = _RefreshingTransport(self.transport._client, refresh)
        client = SecureClient(self.BASE_URL, self.public_pem, session_handler=sessions, http_session=transport)

        exchange = client.send({"hello": "world"})

        self.assertEqual(exchange.response["echo"], {"hello": "world"})
        self.assertTrue(exchange.fresh)
        self.assertEqual(transport.calls[0][1]["wrapped_key_b64"], exchange.wrapped_key_b64)
        self.assertNotEqual(sessions.current_wrapped_key_b64(), exchange.wrapped_key_b64)

    """
        Expiry between checkout and encryption does not fail the exchange.
    """
    def test_session_expiring_after_checkout(self):

        clock = _FakeClock()
        sessions = ClientSessionHandler(clock=clock)
        client = SecureClient(self.BASE_URL, self.public_pem, session_handler=sessions, http_session=self.transport)

        first = client.send({"n": 1})

        def expire():
            clock.now = clock.now + timedelta(minutes=15)

        client._http = _RefreshingTransport(self.transport._client, expire)
        clock.now = clock.now + timedelta(minutes=14, seconds=59)

        second = client.send({"n": 2})

        self.assertFalse(second.fresh)
        self.assertEqual(second.wrapped_key_b64, first.wrapped_key_b64)
        self.assertEqual(second.response["echo"], {"n": 2})

    """
        from_env reads the key, URL and TTL from the environment.
    """
    def test_from_env(self):

        env = {
            "PUBLIC_KEY_PEM": "\"" + self.public_pem.strip().replace("\n", "\\n") + "\"",
            "HYBRIDSESSION_SERVER_URL": "http://example.test:8080/",
            "HYBRIDSESSION_SESSION_TTL_SECONDS": "60",
        }

        saved = {k: os.environ.get(k) for k in env}
        os.environ.update(env)
        try:
            client = SecureClient.from_env(http_session=self.transport)
        finally:
            for k, v in saved.items():
                if v is None:
                    os.environ.pop(k, None)
                else:
                    os.environ[k] = v

        exchange = client.send({"env": True})
        self.assertEqual(exchange.response["echo"], {"env": True})
        self.assertEqual(self.transport.calls[-1][0], "http://example.test:8080/api/decrypt")


if __name__ == "__main__":
    unittest.main()
