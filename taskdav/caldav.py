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

"""CalDAV support for task lists.

https://tools.ietf.org/html/rfc4791
"""

import logging
import urllib.parse

from . import davcommon, webdav

ET = webdav.ET

WELLKNOWN_CALDAV_PATH = "/.well-known/caldav"

NAMESPACE = "urn:ietf:params:xml:ns:caldav"

# https://tools.ietf.org/html/rfc4791, section 4.2
CALENDAR_RESOURCE_TYPE = "{%s}calendar" % NAMESPACE

# Advertised in the DAV header.
FEATURE = "calendar-access"

# Collections here only ever hold tasks.
TODO_COMPONENT = "VTODO"


class CalendarHomeSetProperty(webdav.Property):
    """calendar-home-set.

    See https://www.ietf.org/rfc/rfc4791.txt, section 6.2.1.
    """

    name = "{%s}calendar-home-set" % NAMESPACE
    resource_type = webdav.PRINCIPAL_RESOURCE_TYPE

    async def get_value(self, href, resource, el, environ):
        for home_href in resource.get_calendar_home_set():
            el.append(webdav.create_href(
                webdav.ensure_trailing_slash(home_href.lstrip("/")),
                environ["SCRIPT_NAME"]))


class SupportedCalendarComponentSetProperty(webdav.Property):
    """supported-calendar-component-set.

    See https://www.ietf.org/rfc/rfc4791.txt, section 5.2.3
    """

    name = "{%s}supported-calendar-component-set" % NAMESPACE
    resource_type = webdav.COLLECTION_RESOURCE_TYPE

    async def get_value(self, href, resource, el, environ):
        try:
            components = resource.get_supported_calendar_components()
        except AttributeError as exc:
            raise KeyError(self.name) from exc
        for component in components:
            ET.SubElement(el, "{%s}comp" % NAMESPACE, name=component)


class CalendarDataProperty(webdav.Property):
    """calendar-data.

    Only returned from reports, never from PROPFIND. The whole object is
    returned; component and property subsets in the request are ignored.

    See https://tools.ietf.org/html/rfc4791, section 9.6
    """

    name = "{%s}calendar-data" % NAMESPACE

    async def get_value(self, href, resource, el, environ):
        if webdav.base_content_type(
                resource.get_content_type()) != "text/calendar":
            raise KeyError(self.name)
        el.text = b"".join(await resource.get_body()).decode("utf-8")


def filter_components(filter_el) -> set[str]:
    """Determine which component types a calendar-query filter selects.

    Only component names are honoured; time ranges and property filters
    match everything.

    Returns: set of component names (empty if nothing can match)
    """
    selected = {TODO_COMPONENT}
    if filter_el is None:
        return selected
    for comp_el in filter_el.iterfind("{%s}comp-filter" % NAMESPACE):
        if comp_el.get("name", "").upper() != "VCALENDAR":
            return set()
        for subel in comp_el:
            if subel.tag == "{%s}comp-filter" % NAMESPACE:
                selected &= {subel.get("name", "").upper()}
            elif subel.tag == "{%s}is-not-defined" % NAMESPACE:
                return set()
            else:
                logging.debug(
                    "Ignoring %s in calendar-query filter", subel.tag)
    return selected


class CalendarMultiGetReporter(davcommon.MultiGetReporter):

    name = "{%s}calendar-multiget" % NAMESPACE
    resource_type = CALENDAR_RESOURCE_TYPE
    data_property = CalendarDataProperty()


class CalendarQueryReporter(webdav.Reporter):
    """calendar-query; also answers REPORTs with an unknown root element.

    Every task in the collection is returned, regardless of depth.
    """

    name = "{%s}calendar-query" % NAMESPACE
    resource_type = CALENDAR_RESOURCE_TYPE
    data_property = CalendarDataProperty()

    @webdav.multistatus
    async def report(self, environ, body, properties, href, resource, depth):
        requested = None
        filter_el = None
        for el in body:
            if el.tag == "{DAV:}prop":
                requested = el
            elif el.tag == "{%s}filter" % NAMESPACE:
                filter_el = el
            else:
                # timezone is irrelevant as only UTC timestamps are stored.
                logging.debug("Ignoring %s in %s", el.tag, body.tag)
        if TODO_COMPONENT not in filter_components(filter_el):
            return
        base_href = webdav.ensure_trailing_slash(href)
        for (name, member) in resource.members():
            member_href = urllib.parse.urljoin(base_href, name)
            yield webdav.Status(
                member_href,
                propstat=await davcommon.get_properties_with_data(
                    self.data_property, member_href, member, properties,
                    environ, requested))
