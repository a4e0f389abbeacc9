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

"""HTTP Basic authentication against hashed access tokens.

Each user can have several access tokens; they are stored as bcrypt
hashes and can be revoked individually.
"""

import asyncio
import base64
import binascii
import logging
import secrets
from typing import Optional

import bcrypt

from .store import User

logger = logging.getLogger("taskdav")

# Length (in bytes of randomness) of generated access tokens.
TOKEN_BYTES = 32


def parse_basic_auth(header: Optional[str]) -> Optional[tuple[str, str]]:
    """Parse a HTTP Basic Authorization header.

    Args:
      header: Authorization header value, or None
    Returns: (username, password) tuple, or None if the header is absent
      or is not valid Basic authentication
    """
    if not header:
        return None
    try:
        scheme, value = header.strip().split(None, 1)
    except ValueError:
        return None
    if scheme.lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return (username, password)


def hash_token(token: str) -> str:
    return bcrypt.hashpw(token.encode("utf-8"), bcrypt.gensalt()).decode("ascii")


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def check_token(token: str, token_hash: str) -> bool:
    try:
        return bcrypt.checkpw(token.encode("utf-8"), token_hash.encode("ascii"))
    except ValueError as exc:
        logger.warning("Ignoring malformed credential hash: %s", exc)
        return False


def match_token(token: str, token_hashes: list[str]) -> bool:
    return any(check_token(token, token_hash) for token_hash in token_hashes)


def _lookup_hashes(store, username: str):
    user = store.get_user(username)
    if user is None:
        logger.info("Authentication failed: no such user %r", username)
        return (None, [])
    return (user, store.get_credential_hashes(user.id))


def verify_credentials(store, username: str, password: str) -> Optional[User]:
    """Verify a username and password.

    The password is compared against every credential of the user that has
    not been revoked.

    Returns: the User on success, None if there is no match
    """
    (user, token_hashes) = _lookup_hashes(store, username)
    if user is None:
        return None
    if match_token(password, token_hashes):
        return user
    logger.info("Authentication failed for user %r", username)
    return None


async def verify_credentials_async(store, username: str,
                                   password: str) -> Optional[User]:
    """Like verify_credentials, for use from the event loop.

    The store is queried on the loop; the bcrypt comparisons, which take
    tens of milliseconds each, run in the default executor.
    """
    (user, token_hashes) = _lookup_hashes(store, username)
    if user is None:
        return None
    loop = asyncio.get_running_loop()
    if await loop.run_in_executor(None, match_token, password, token_hashes):
        return user
    logger.info("Authentication failed for user %r", username)
    return None
