# TaskDAV
# Copyright (C) 2016-2017 Jelmer Vernooĳ <jelmer@jelmer.uk>, et al.
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; version 3
# of the License or (at your option) any later version of
# the License.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston,
# MA  02110-1301, USA.

"""Tests for taskdav.auth."""

import asyncio
import base64
import logging
import os
import shutil
import tempfile
import threading
import unittest
from unittest.mock import patch

import bcrypt

from .. import auth
from ..auth import (
    check_token,
    generate_token,
    hash_token,
    parse_basic_auth,
    verify_credentials,
    verify_credentials_async,
)
from ..store.sql import SQLStore


def basic_auth(username, password):
    return "Basic " + base64.b64encode(
        f"{username}:{password}".encode("utf-8")).decode("ascii")


def quick_hash(token):
    return bcrypt.hashpw(
        token.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("ascii")


class ParseBasicAuthTests(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(
            ("alice", "s3cret"), parse_basic_auth(basic_auth("alice", "s3cret")))

    def test_password_with_colon(self):
        self.assertEqual(
            ("alice", "a:b"), parse_basic_auth(basic_auth("alice", "a:b")))

    def test_scheme_case(self):
        header = basic_auth("alice", "x").replace("Basic", "basic")
        self.assertEqual(("alice", "x"), parse_basic_auth(header))

    def test_missing(self):
        self.assertIsNone(parse_basic_auth(None))
        self.assertIsNone(parse_basic_auth(""))

    def test_other_scheme(self):
        self.assertIsNone(parse_basic_auth("Bearer abcdef"))

    def test_no_credentials(self):
        self.assertIsNone(parse_basic_auth("Basic"))

    def test_invalid_base64(self):
        self.assertIsNone(parse_basic_auth("Basic !!!notbase64"))

    def test_no_colon(self):
        header = "Basic " + base64.b64encode(b"alice").decode("ascii")
        self.assertIsNone(parse_basic_auth(header))


class TokenTests(unittest.TestCase):
    def test_generate(self):
        token = generate_token()
        self.assertGreaterEqual(len(token), 40)
        self.assertNotEqual(token, generate_token())

    def test_hash(self):
        token_hash = hash_token("abc")
        self.assertTrue(token_hash.startswith("$2"))
        self.assertTrue(check_token("abc", token_hash))
        self.assertFalse(check_token("abd", token_hash))

    def test_malformed_hash(self):
        logging.disable(logging.WARNING)
        self.addCleanup(logging.disable, logging.NOTSET)
        self.assertFalse(check_token("abc", "not-a-hash"))


class CredentialStoreTestCase(unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.tempdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tempdir)
        self.store = SQLStore(
            "sqlite:///" + os.path.join(self.tempdir, "taskdav.db"))
        self.user = self.store.create_user("alice")


class VerifyCredentialsTests(CredentialStoreTestCase):
    def test_no_such_user(self):
        self.assertIsNone(verify_credentials(self.store, "bob", "x"))

    def test_no_credentials(self):
        self.assertIsNone(verify_credentials(self.store, "alice", "x"))

    def test_any_credential(self):
        self.store.add_credential(self.user.id, quick_hash("first"))
        self.store.add_credential(self.user.id, quick_hash("second"))
        self.assertEqual(
            self.user, verify_credentials(self.store, "alice", "first"))
        self.assertEqual(
            self.user, verify_credentials(self.store, "alice", "second"))
        self.assertIsNone(verify_credentials(self.store, "alice", "third"))

    def test_revoked(self):
        self.store.add_credential(self.user.id, quick_hash("first"))
        self.store.revoke_credentials(self.user.id)
        self.assertIsNone(verify_credentials(self.store, "alice", "first"))


class VerifyCredentialsAsyncTests(CredentialStoreTestCase):
    def verify(self, username, password):
        return asyncio.run(
            verify_credentials_async(self.store, username, password))

    def test_match(self):
        self.store.add_credential(self.user.id, quick_hash("first"))
        self.assertEqual(self.user, self.verify("alice", "first"))
        self.assertIsNone(self.verify("alice", "second"))
        self.assertIsNone(self.verify("bob", "first"))

    def test_bcrypt_off_event_loop(self):
        self.store.add_credential(self.user.id, quick_hash("first"))
        threads = []
        real_check_token = auth.check_token

        def check_token(token, token_hash):
            threads.append(threading.get_ident())
            return real_check_token(token, token_hash)

        with patch.object(auth, "check_token", check_token):
            self.assertEqual(self.user, self.verify("alice", "first"))
        self.assertEqual(1, len(threads))
        self.assertNotEqual(threading.get_ident(), threads[0])


if __name__ == "__main__":
    unittest.main()
