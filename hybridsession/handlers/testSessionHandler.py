#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testSessionHandler.py

    Description:
        Test suite for ClientSessionHandler and SessionStore. Uses an injected
        clock to walk sessions across the 15-minute boundary, a counting
        RSAManager to observe how often wrapping actually runs, and threads
        to check that concurrent first use performs exactly one wrap.
"""

import json
import os
import shutil
import tempfile
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from hybridsession.handlers.session_handler import ClientSessionHandler, SessionStore, ClientSessionDataObject
from hybridsession.handlers.packet_handler import WrappedKeyEnvelope
from hybridsession.handlers.error_handler import HybridSessionError, NoActiveSessionError, KeyFormatError, TamperError, ApplicationCodes
from hybridsession.encryption.RSA_manager import RSAManager
from hybridsession.encryption.AES_manager import AESManager
from hybridsession.encryption.pem_manager import load_public_key, load_private_key
from hybridsession.utilities.audit_log import AuditLog
import hybridsession.handlers.sanitization_validation as VALIDATION


class FakeClock:

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


"""
    RSAManager that counts wrap calls and can slow them down to widen race windows.
"""
class CountingRSAManager(RSAManager):

    def __init__(self, delay: float = 0.0) -> None:
        super().__init__()
        self.wrap_calls = 0
        self._delay = delay
        self._count_lock = threading.Lock()

    def wrap(self, aes_key, public_key):
        with self._count_lock:
            self.wrap_calls += 1
        if self._delay:
            time.sleep(self._delay)
        return super().wrap(aes_key, public_key)


class TestSessionHandler(unittest.TestCase):

    START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    @classmethod
    def setUpClass(cls) -> None:

        rsa_manager = RSAManager()

        private_pem, public_pem = rsa_manager.generate_key_pair()
        cls.private_key = load_private_key(private_pem)
        cls.public_key = load_public_key(public_pem)

        other_private_pem, other_public_pem = rsa_manager.generate_key_pair()
        cls.other_private_key = load_private_key(other_private_pem)
        cls.other_public_key = load_public_key(other_public_pem)

    def setUp(self) -> None:

        self.clock = FakeClock(self.START)
        self.rsa = CountingRSAManager()
        self.handler = ClientSessionHandler(rsa_manager=self.rsa, clock=self.clock)

    def _unwrap(self, envelope: WrappedKeyEnvelope, private_key=None) -> bytes:
        wrapped = VALIDATION.decode_base64url_to_bytes("wrapped_key_b64", envelope.wrapped_key_b64)
        return RSAManager().unwrap(wrapped, private_key or self.private_key)

    """
        First use creates a fresh session; reuse inside the TTL does no RSA work.
    """
    def test_first_call_fresh_then_reused(self):

        first = self.handler.ensure_session(self.public_key)
        self.assertTrue(first.fresh)
        self.assertEqual(self.rsa.wrap_calls, 1)

        self.clock.advance(minutes=10)
        second = self.handler.ensure_session(self.public_key)

        self.assertFalse(second.fresh)
        self.assertEqual(second.wrapped_key_b64, first.wrapped_key_b64)
        self.assertEqual(second.created_ms, first.created_ms)
        self.assertEqual(self.rsa.wrap_calls, 1)

    """
        The envelope carries the fixed tags and the creation time from the injected clock.
    """
    def test_envelope_contents(self):

        envelope = self.handler.ensure_session(self.public_key)

        self.assertEqual(envelope.v, 1)
        self.assertEqual(envelope.alg, "RSA-OAEP-256")
        self.assertEqual(envelope.sym_alg, "AES-256-GCM")
        self.assertEqual(envelope.created_ms, int(self.START.timestamp() * 1000))
        self.assertEqual(len(self._unwrap(envelope)), 32)

    """
        Raw PEM text works as the public key argument.
    """
    def test_accepts_pem_text(self):

        escaped = "\"" + self.public_key.pem.strip().replace("\n", "\\n") + "\""
        envelope = self.handler.ensure_session(escaped)

        self.assertTrue(envelope.fresh)
        self.assertFalse(self.handler.ensure_session(self.public_key).fresh)

    """
        Just before the boundary the session is reused; at exactly 15 minutes it is replaced.
    """
    def test_ttl_boundary(self):

        first = self.handler.ensure_session(self.public_key)

        self.clock.advance(minutes=14, seconds=59)
        self.assertFalse(self.handler.ensure_session(self.public_key).fresh)

        self.clock.advance(seconds=1)
        replaced = self.handler.ensure_session(self.public_key)

        self.assertTrue(replaced.fresh)
        self.assertNotEqual(replaced.wrapped_key_b64, first.wrapped_key_b64)
        self.assertNotEqual(self._unwrap(replaced), self._unwrap(first))
        self.assertEqual(self.rsa.wrap_calls, 2)

    """
        A different public key always gets a new session.
    """
    def test_public_key_change_creates_new_session(self):

        first = self.handler.ensure_session(self.public_key)
        other = self.handler.ensure_session(self.other_public_key)

        self.assertTrue(other.fresh)
        self.assertNotEqual(other.wrapped_key_b64, first.wrapped_key_b64)
        self.assertEqual(len(self._unwrap(other, self.other_private_key)), 32)

        # The single slot now belongs to the other key
        self.assertTrue(self.handler.ensure_session(self.public_key).fresh)

    """
        A custom TTL is honoured.
    """
    def test_custom_ttl(self):

        handler = ClientSessionHandler(rsa_manager=self.rsa, clock=self.clock, ttl_seconds=60)

        handler.ensure_session(self.public_key)
        self.clock.advance(seconds=59)
        self.assertFalse(handler.ensure_session(self.public_key).fresh)
        self.clock.advance(seconds=1)
        self.assertTrue(handler.ensure_session(self.public_key).fresh)

    """
        Session encryption produces packets the receiving side can open with the unwrapped key.
    """
    def test_encrypt_and_decrypt_with_session(self):

        envelope = self.handler.ensure_session(self.public_key)
        packet = self.handler.encrypt_with_session("{\"a\":1}")

        aes = AESManager()
        key = self._unwrap(envelope)
        self.assertEqual(aes.decrypt(packet, key), "{\"a\":1}")

        response = aes.encrypt("{\"b\":2}", key)
        self.assertEqual(self.handler.decrypt_with_session(response.to_json()), "{\"b\":2}")
        self.assertEqual(self.handler.current_wrapped_key_b64(), envelope.wrapped_key_b64)

    """
        Responses encrypted under a different key are tamper errors.
    """
    def test_decrypt_with_session_detects_foreign_key(self):

        self.handler.ensure_session(self.public_key)
        foreign = AESManager().encrypt("{}", AESManager.generate_key())

        with self.assertRaises(TamperError):
            self.handler.decrypt_with_session(foreign)

    """
        Using the session before ensure_session is a NoActiveSessionError.
    """
    def test_no_active_session(self):

        for call in (lambda: self.handler.encrypt_with_session("{}"),
                     lambda: self.handler.decrypt_with_session("{}"),
                     self.handler.current_wrapped_key_b64):
            with self.assertRaises(NoActiveSessionError) as cm:
                call()
            self.assertEqual(cm.exception.application_code, ApplicationCodes.NO_ACTIVE_SESSION)

    """
        Encrypting under an expired session is refused; decrypting its late response is allowed.
    """
    def test_expired_session(self):

        envelope = self.handler.ensure_session(self.public_key)
        response = AESManager().encrypt("late", self._unwrap(envelope))

        self.clock.advance(minutes=15)

        with self.assertRaises(NoActiveSessionError) as cm:
            self.handler.encrypt_with_session("{}")
        self.assertEqual(cm.exception.application_code, ApplicationCodes.SESSION_EXPIRED)

        self.assertEqual(self.handler.decrypt_with_session(response), "late")

    """
        end_session drops the key; the next ensure_session wraps again.
    """
    def test_end_session(self):

        self.handler.ensure_session(self.public_key)
        self.handler.end_session()

        self.assertIsNone(self.handler.store.current())
        with self.assertRaises(NoActiveSessionError):
            self.handler.encrypt_with_session("{}")

        self.assertTrue(self.handler.ensure_session(self.public_key).fresh)
        self.assertEqual(self.rsa.wrap_calls, 2)

    """
        Bad key material surfaces as KeyFormatError and leaves no session behind.
    """
    def test_bad_public_key(self):

        with self.assertRaises(KeyFormatError):
            self.handler.ensure_session("not-a-pem")

        with self.assertRaises(KeyFormatError):
            self.handler.ensure_session(self.private_key)

        self.assertIsNone(self.handler.store.current())

    """
        Invalid constructor arguments are rejected.
    """
    def test_invalid_constructor_arguments(self):

        for kwargs in ({"store": object()}, {"rsa_manager": object()}, {"aes_manager": object()}, {"ttl_seconds": 0}, {"ttl_seconds": True}):
            with self.subTest(kwargs=list(kwargs)):
                with self.assertRaises(HybridSessionError):
                    ClientSessionHandler(**kwargs)

    """
        Sessions never expose key bytes through repr.
    """
    def test_session_repr_hides_key(self):

        self.handler.ensure_session(self.public_key)
        session = self.handler.store.current()

        self.assertIsInstance(session, ClientSessionDataObject)
        self.assertNotIn("raw_key_bytes", repr(session))
        self.assertNotIn(session.wrapped_key_b64, repr(session))

    """
        Concurrent first use: exactly one wrap, every caller sees the same wrapped key.
    """
    def test_concurrent_first_use_wraps_once(self):

        rsa = CountingRSAManager(delay=0.05)
        handler = ClientSessionHandler(rsa_manager=rsa, clock=self.clock)

        workers = 16
        barrier = threading.Barrier(workers)
        results = []
        errors = []
        results_lock = threading.Lock()

        def worker():
            try:
                barrier.wait()
                envelope = handler.ensure_session(self.public_key)
                with results_lock:
                    results.append(envelope)
            except Exception as exc:
                with results_lock:
                    errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        self.assertEqual(errors, [])
        self.assertEqual(len(results), workers)
        self.assertEqual(rsa.wrap_calls, 1)
        self.assertEqual(len({r.wrapped_key_b64 for r in results}), 1)
        self.assertEqual(sum(1 for r in results if r.fresh), 1)

    """
        Two handlers sharing one store share the session.
    """
    def test_shared_store(self):

        store = SessionStore()
        first = ClientSessionHandler(store=store, rsa_manager=self.rsa, clock=self.clock)
        second = ClientSessionHandler(store=store, rsa_manager=self.rsa, clock=self.clock)

        created = first.ensure_session(self.public_key)
        reused = second.ensure_session(self.public_key)

        self.assertFalse(reused.fresh)
        self.assertEqual(reused.wrapped_key_b64, created.wrapped_key_b64)
        self.assertEqual(self.rsa.wrap_calls, 1)

    """
        session_created records whether any session was displaced, including one for another public key.
    """
    def test_session_created_reports_replacement(self):

        temp_dir = tempfile.mkdtemp(prefix="session_handler_test_")
        self.addCleanup(shutil.rmtree, temp_dir, True)
        audit_log = AuditLog(os.path.join(temp_dir, "audit.log"))
        handler = ClientSessionHandler(rsa_manager=self.rsa, clock=self.clock, audit_log=audit_log)

        handler.ensure_session(self.public_key)
        handler.ensure_session(self.other_public_key)
        self.clock.advance(minutes=15)
        handler.ensure_session(self.other_public_key)

        with open(audit_log.path, encoding="utf-8") as f:
            records = [json.loads(line) for line in f if line.strip()]

        created = [r for r in records if r["event"] == "session_created"]
        self.assertEqual([r["replaced_previous"] for r in created], [False, True, True])
        self.assertNotIn("replaced_expired", created[0])

    """
        A checked-out session keeps working after the store moves on.
    """
    def test_checkout_session_pins_key(self):

        envelope, session = self.handler.checkout_session(self.public_key)
        self.assertTrue(envelope.fresh)
        self.assertEqual(session.wrapped_key_b64, envelope.wrapped_key_b64)

        self.clock.advance(minutes=15)
        self.handler.ensure_session(self.public_key)
        self.assertNotEqual(self.handler.current_wrapped_key_b64(), session.wrapped_key_b64)

        packet = self.handler.encrypt_with_session("{\"a\":1}", session)
        key = self._unwrap(envelope)
        self.assertEqual(AESManager().decrypt(packet, key), "{\"a\":1}")

        response = AESManager().encrypt("{\"b\":2}", key)
        self.assertEqual(self.handler.decrypt_with_session(response.to_json(), session), "{\"b\":2}")

        with self.assertRaises(TamperError):
            self.handler.decrypt_with_session(response.to_json())

        reused, same = self.handler.checkout_session(self.public_key)
        self.assertFalse(reused.fresh)
        self.assertIs(same, self.handler.store.current())


if __name__ == "__main__":
    unittest.main()
