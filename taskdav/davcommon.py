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

"""Report machinery shared by CalDAV and sync-collection."""

import posixpath

from . import webdav


async def get_properties_with_data(data_property, href, resource, properties,
                                   environ, requested):
    """Look up the requested properties plus the object data.

    Clients that only ask for getetag still get the data inline, which
    saves them a GET per object. Without a {DAV:}prop element, getetag
    and the data are returned.

    Returns: list of PropStatus
    """
    if requested is None:
        names = ["{DAV:}getetag"]
    else:
        names = [el.tag for el in requested]
    if data_property.name not in names:
        names.append(data_property.name)
    properties = dict(properties)
    properties[data_property.name] = data_property
    return await webdav.get_properties(
        href, resource, properties, environ, names)


def member_name_from_href(href: str) -> str:
    """Extract the member name (last path segment) from a decoded href."""
    return posixpath.basename(href.rstrip("/"))


class MultiGetReporter(webdav.Reporter):
    """Returns the members named by {DAV:}href elements.

    Names are resolved in the addressed collection only. A name that
    can not be found is reported as 410 if it was deleted, 404
    otherwise.
    """

    resource_type = webdav.COLLECTION_RESOURCE_TYPE

    # Property inlined for every member found
    data_property: webdav.Property

    @webdav.multistatus
    async def report(self, environ, body, properties, href, resource, depth):
        requested = body.find("{DAV:}prop")
        for href_el in body.iterfind("{DAV:}href"):
            member_href = webdav.read_href_element(href_el)
            name = member_name_from_href(member_href or "")
            if not name:
                continue
            try:
                member = resource.lookup_member(name)
            except KeyError:
                if resource.is_member_gone(name):
                    yield webdav.Status(member_href, "410 Gone")
                else:
                    yield webdav.Status(member_href, "404 Not Found")
                continue
            yield webdav.Status(
                member_href,
                propstat=await get_properties_with_data(
                    self.data_property, member_href, member, properties,
                    environ, requested))
