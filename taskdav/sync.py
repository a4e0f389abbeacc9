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

"""Collection synchronisation.

See https://tools.ietf.org/html/rfc6578
"""

import logging
import urllib.parse

from . import davcommon, webdav

ET = webdav.ET

# Advertised in the DAV header.
FEATURE = "sync-collection"


class InvalidToken(Exception):
    """Requested token is invalid."""

    def __init__(self, token) -> None:
        super().__init__(f"Invalid sync token {token!r}")
        self.token = token


class SyncToken:
    """The sync-token element closing a sync-collection response."""

    def __init__(self, token) -> None:
        self.token = token

    def aselement(self):
        ret = ET.Element("{DAV:}sync-token")
        ret.text = self.token
        return ret


class SyncCollectionReporter(webdav.Reporter):
    """sync-collection.

    Changed members are returned with their data inlined, deleted ones
    as 410. Only sync-level 1 is meaningful as collections are flat.

    See https://tools.ietf.org/html/rfc6578, section 3.2.
    """

    name = "{DAV:}sync-collection"
    resource_type = webdav.COLLECTION_RESOURCE_TYPE

    def __init__(self, data_property: webdav.Property) -> None:
        self.data_property = data_property

    @webdav.multistatus
    async def report(self, environ, body, properties, href, resource, depth):
        old_token = None
        requested = None
        for el in body:
            if el.tag == "{DAV:}sync-token":
                old_token = (el.text or "").strip() or None
            elif el.tag == "{DAV:}prop":
                requested = el
            else:
                logging.debug("Ignoring %s in sync-collection", el.tag)

        try:
            new_token = resource.get_sync_token()
            diff = list(resource.iter_differences_since(old_token, new_token))
        except InvalidToken as exc:
            raise webdav.PreconditionFailure(
                "{DAV:}valid-sync-token", str(exc)) from exc
        except (KeyError, NotImplementedError):
            yield webdav.Status(
                href, "403 Forbidden",
                error=ET.Element("{DAV:}sync-traversal-supported"))
            return

        base_href = webdav.ensure_trailing_slash(href)
        for (name, unused_old, new) in diff:
            member_href = urllib.parse.urljoin(base_href, name)
            if new is None:
                yield webdav.Status(member_href, "410 Gone")
            else:
                yield webdav.Status(
                    member_href,
                    propstat=await davcommon.get_properties_with_data(
                        self.data_property, member_href, new, properties,
                        environ, requested))
        yield SyncToken(new_token)


class SyncTokenProperty(webdav.Property):
    """sync-token.

    See https://tools.ietf.org/html/rfc6578, section 4
    """

    name = "{DAV:}sync-token"
    resource_type = webdav.COLLECTION_RESOURCE_TYPE

    async def get_value(self, href, resource, el, environ):
        el.text = resource.get_sync_token()
