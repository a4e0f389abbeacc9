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

"""Tests for the taskdav command-line interface."""

import asyncio
import os
import shutil
import tempfile
import unittest
from io import StringIO
from unittest.mock import patch

from ..__main__ import main
from ..auth import verify_credentials
from ..store.sql import SQLStore


class CommandLineTests(unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.tempdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tempdir)
        self.url = "sqlite:///" + os.path.join(self.tempdir, "taskdav.db")
        self.store = SQLStore(self.url)

    def run_main(self, *argv):
        with patch("sys.stdout", new_callable=StringIO) as stdout, \
                patch("sys.stderr", new_callable=StringIO) as stderr:
            ret = asyncio.run(main(list(argv) + ["--sql-url", self.url]))
        return ret, stdout.getvalue(), stderr.getvalue()

    def test_create_user(self):
        ret, out, err = self.run_main(
            "create-user", "alice", "--display-name", "Alice Example")
        self.assertEqual(0, ret)
        user = self.store.get_user("alice")
        self.assertEqual("Alice Example", user.display_name)
        self.assertEqual(f"Created user alice ({user.id})\n", out)

    def test_create_user_exists(self):
        self.store.create_user("alice")
        ret, out, err = self.run_main("create-user", "alice")
        self.assertEqual(1, ret)
        self.assertEqual("User alice already exists.\n", err)

    def test_create_token(self):
        user = self.store.create_user("alice")
        ret, out, err = self.run_main("create-token", "alice")
        self.assertEqual(0, ret)
        token = out.strip()
        self.assertTrue(token)
        self.assertEqual(1, len(self.store.get_credential_hashes(user.id)))
        self.assertEqual(user, verify_credentials(self.store, "alice", token))

    def test_create_token_no_user(self):
        ret, out, err = self.run_main("create-token", "bob")
        self.assertEqual(1, ret)
        self.assertEqual("No such user: bob\n", err)
        self.assertEqual("", out)

    def test_revoke_tokens(self):
        user = self.store.create_user("alice")
        self.run_main("create-token", "alice")
        self.run_main("create-token", "alice")
        ret, out, err = self.run_main("revoke-tokens", "alice")
        self.assertEqual(0, ret)
        self.assertEqual("Revoked 2 token(s) for alice\n", out)
        self.assertEqual([], self.store.get_credential_hashes(user.id))

    def test_create_project(self):
        user = self.store.create_user("alice")
        ret, out, err = self.run_main("create-project", "alice", "Groceries")
        self.assertEqual(0, ret)
        [project] = self.store.list_projects(user.id)
        self.assertEqual("Groceries", project.name)
        self.assertEqual(
            f"Created project 'Groceries' with id {project.id}\n", out)

    def test_create_project_no_user(self):
        ret, out, err = self.run_main("create-project", "bob", "Groceries")
        self.assertEqual(1, ret)
        self.assertEqual("No such user: bob\n", err)


if __name__ == "__main__":
    unittest.main()
