#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testGenerateKeys.py

    Description:
        Tests for the key generation command and the audit log writer.
"""

import contextlib
import io
import json
import os
import shutil
import stat
import tempfile
import unittest
from hybridsession.utilities.generate_keys import main, to_env_value
from hybridsession.utilities.audit_log import AuditLog
from hybridsession.encryption.pem_manager import load_private_key, load_public_key


class TestGenerateKeys(unittest.TestCase):

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp(prefix="generate_keys_test_")

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    """
        Key files are written as a matching PKCS8 / SPKI pair.
    """
    def test_writes_key_files(self):

        with contextlib.redirect_stdout(io.StringIO()):
            self.assertEqual(main(["--out", self.temp_dir]), 0)

        with open(os.path.join(self.temp_dir, "private_key.pem"), "r", encoding="ascii") as f:
            private = load_private_key(f.read())
        with open(os.path.join(self.temp_dir, "public_key.pem"), "r", encoding="ascii") as f:
            public = load_public_key(f.read())

        self.assertEqual(private.fingerprint, public.fingerprint)
        self.assertEqual(private.key_size, 2048)

        if os.name == "posix":
            mode = stat.S_IMODE(os.stat(os.path.join(self.temp_dir, "private_key.pem")).st_mode)
            self.assertEqual(mode, 0o600)

    """
        --env prints single-line values that load back through PEM normalization.
    """
    def test_env_output_round_trips(self):

        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            self.assertEqual(main(["--env"]), 0)

        lines = out.getvalue().splitlines()
        self.assertEqual(len(lines), 2)

        values = dict(line.split("=", 1) for line in lines)
        private = load_private_key(values["PRIVATE_KEY_PEM"])
        public = load_public_key(values["PUBLIC_KEY_PEM"])

        self.assertEqual(private.fingerprint, public.fingerprint)
        self.assertEqual(os.listdir(self.temp_dir), [])

    """
        Moduli under 2048 bits are refused.
    """
    def test_rejects_small_keys(self):

        with contextlib.redirect_stderr(io.StringIO()):
            self.assertEqual(main(["--bits", "1024", "--out", self.temp_dir]), 2)

        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_to_env_value(self):
        self.assertEqual(to_env_value("-----BEGIN X-----\nAB\n-----END X-----\n"), "\"-----BEGIN X-----\\nAB\\n-----END X-----\"")

    """
        Audit records are JSON lines with a UTC timestamp, appended in order.
    """
    def test_audit_log_json_lines(self):

        log = AuditLog(os.path.join(self.temp_dir, "audit.log"))
        log.event(event="first", n=1)
        log.event(event="second", n=2)

        with open(log.path, "r", encoding="utf-8") as f:
            records = [json.loads(line) for line in f]

        self.assertEqual([r["event"] for r in records], ["first", "second"])
        self.assertTrue(records[0]["timestamp"].endswith("Z"))

    """
        A write failure is reported on stderr, never raised.
    """
    def test_audit_log_write_failure(self):

        log = AuditLog(os.path.join(self.temp_dir, "missing", "dir", "audit.log"))

        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            log.event(event="lost")

        self.assertIn("Audit log write error", err.getvalue())


if __name__ == "__main__":
    unittest.main()
