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

"""WebDAV protocol engine.

Resources, properties and reporters are registered with a WebDAVApp,
which reads requests, dispatches them per HTTP method and turns errors
into responses. CalDAV specifics live in taskdav.caldav.
"""

import asyncio
import functools
import logging
import os
import posixpath
import urllib.parse
from collections.abc import Iterator
from datetime import datetime
from typing import NamedTuple, Optional
from wsgiref.util import request_uri
# defusedxml only parses; documents are built with ElementTree.
from xml.etree import ElementTree as ET

from defusedxml.ElementTree import fromstring as xmlparse
from multidict import CIMultiDict

DEFAULT_ENCODING = "utf-8"
COLLECTION_RESOURCE_TYPE = "{DAV:}collection"
PRINCIPAL_RESOURCE_TYPE = "{DAV:}principal"

XML_CONTENT_TYPES = ("text/xml", "application/xml")

# Upper bound for request bodies, in bytes.
MAX_BODY_SIZE = 256 * 1024
BODY_CHUNK_SIZE = 64 * 1024


class BadRequestError(Exception):
    """The request could not be understood."""

    def __init__(self, message) -> None:
        super().__init__(message)
        self.message = message


class UnsupportedMediaType(Exception):
    """The request body has a content type we can not handle."""

    def __init__(self, content_type) -> None:
        super().__init__(f"Unsupported media type: {content_type!r}")
        self.content_type = content_type


class UnauthorizedError(Exception):
    """The request lacks valid credentials."""

    def __init__(self, realm: str = "CalDAV") -> None:
        super().__init__("Request unauthorized")
        self.realm = realm


class PayloadTooLarge(Exception):
    """The request body exceeds the maximum allowed size."""

    def __init__(self, max_size: int) -> None:
        super().__init__(f"Request body larger than {max_size} bytes")
        self.max_size = max_size


class PreconditionFailure(Exception):
    """A DAV precondition (e.g. CalDAV no-uid-conflict) failed."""

    def __init__(self, precondition: str, description: str) -> None:
        super().__init__(description)
        self.precondition = precondition
        self.description = description


class Response:
    """A status line, a list of headers and the body chunks."""

    def __init__(self, status: str, headers=None, body=None) -> None:
        (code, self.reason) = status.split(" ", 1)
        self.status = int(code)
        self.headers = list(headers or [])
        self.body = list(body or [])

    @classmethod
    def text(cls, status: str, text: str, headers=()) -> "Response":
        body = text.encode(DEFAULT_ENCODING)
        return cls(
            status,
            [("Content-Type", "text/plain; charset=utf-8"),
             ("Content-Length", str(len(body)))] + list(headers),
            [body])

    def get_header(self, name: str) -> Optional[str]:
        for (key, value) in self.headers:
            if key.lower() == name.lower():
                return value
        return None

    def for_wsgi(self, start_response):
        start_response(f"{self.status} {self.reason}", self.headers)
        return self.body

    def for_aiohttp(self):
        from aiohttp import web

        return web.Response(
            status=self.status, reason=self.reason,
            headers=CIMultiDict(self.headers), body=b"".join(self.body))


def base_content_type(content_type: Optional[str]) -> str:
    """Strip the parameters from a Content-Type value."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def parse_depth(value: Optional[str]) -> str:
    """Normalize a Depth header to "0" or "1".

    Infinity is served as 1; an absent or unrecognized value as 0.
    """
    if value is not None and value.strip().lower() in ("1", "infinity"):
        return "1"
    return "0"


def etag_matches(condition: str, etag: Optional[str]) -> bool:
    """Check an If-Match or If-None-Match value against an ETag.

    Args:
      condition: Header value, e.g. '*' or '"1", "2"'
      etag: Current ETag, None if the resource does not exist
    """
    if etag is None:
        return False
    for candidate in condition.split(","):
        if candidate.strip() in ("*", etag):
            return True
    return False


def format_http_date(dt: datetime) -> str:
    # RFC 7231 IMF-fixdate
    return dt.strftime("%a, %d %b %Y %H:%M:%S GMT")


def ensure_trailing_slash(href: str) -> str:
    return href if href.endswith("/") else href + "/"


def canonical_href(href: str) -> str:
    """Tasks keep their .ics name; anything else is a collection."""
    if href.endswith(".ics"):
        return href
    return ensure_trailing_slash(href)


def create_href(href: str, base_href: Optional[str] = None) -> ET.Element:
    if base_href is not None:
        href = urllib.parse.urljoin(ensure_trailing_slash(base_href), href)
    el = ET.Element("{DAV:}href")
    el.text = urllib.parse.quote(href)
    return el


def read_href_element(el: ET.Element) -> Optional[str]:
    """Return the unquoted path of a {DAV:}href element."""
    if el.text is None:
        return None
    return urllib.parse.urlsplit(urllib.parse.unquote(el.text.strip())).path


def path_from_environ(environ, name: str) -> str:
    # PEP 3333 decodes paths as iso-8859-1; clients send UTF-8.
    path = environ[name].encode("iso-8859-1").decode(DEFAULT_ENCODING)
    return posixpath.normpath(path) if path else path


class PropStatus(NamedTuple):

    statuscode: str
    prop: ET.Element


class Status:
    """A single {DAV:}response in a multistatus body."""

    def __init__(self, href: str, status: Optional[str] = None,
                 propstat: Optional[list[PropStatus]] = None,
                 error: Optional[ET.Element] = None) -> None:
        self.href = href
        self.status = status
        self.propstat = propstat
        self.error = error

    def __repr__(self) -> str:
        return f"<{type(self).__name__}({self.href!r}, {self.status!r})>"

    def aselement(self) -> ET.Element:
        ret = ET.Element("{DAV:}response")
        ret.append(create_href(self.href))
        if self.propstat:
            by_status: dict[str, list[ET.Element]] = {}
            for ps in self.propstat:
                by_status.setdefault(ps.statuscode, []).append(ps.prop)
            for statuscode in sorted(by_status):
                propstat_el = ET.SubElement(ret, "{DAV:}propstat")
                ET.SubElement(propstat_el, "{DAV:}prop").extend(
                    by_status[statuscode])
                ET.SubElement(propstat_el, "{DAV:}status").text = (
                    "HTTP/1.1 " + statuscode)
        elif self.status is not None:
            ET.SubElement(ret, "{DAV:}status").text = "HTTP/1.1 " + self.status
        if self.error is not None:
            ET.SubElement(ret, "{DAV:}error").append(self.error)
        return ret


def xml_response(status: str, et: ET.Element) -> Response:
    if os.environ.get("TASKDAV_DUMP_DAV_XML"):
        logging.info("OUT: %s", ET.tostring(et).decode(DEFAULT_ENCODING))
    body = ET.tostringlist(et, encoding=DEFAULT_ENCODING)
    return Response(status, [
        ("Content-Type", f'text/xml; charset="{DEFAULT_ENCODING}"'),
        ("Content-Length", str(sum(map(len, body)))),
    ], body)


def multistatus_response(responses) -> Response:
    """Render objects with an aselement() method as a 207 response."""
    ret = ET.Element("{DAV:}multistatus")
    for response in responses:
        ret.append(response.aselement())
    return xml_response("207 Multi-Status", ret)


def multistatus(fn):
    """Turn an async generator of Status objects into a 207 response."""

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        return multistatus_response([r async for r in fn(*args, **kwargs)])

    return wrapper


def dav_error_response(status: str, condition: str,
                       description: Optional[str] = None) -> Response:
    """Respond with a {DAV:}error body naming a failed condition.

    See https://tools.ietf.org/html/rfc4918, section 16
    """
    if description:
        logging.debug("%s: %s", condition, description)
    el = ET.Element("{DAV:}error")
    ET.SubElement(el, condition)
    return xml_response(status, el)


def not_found_response(request) -> Response:
    return Response.text("404 Not Found", f"Path {request.path} not found.")


def method_not_allowed_response(allowed_methods) -> Response:
    return Response(
        "405 Method Not Allowed", [("Allow", ", ".join(allowed_methods))])


class Resource:
    """A WebDAV resource.

    Getters raise KeyError when the resource has no such value; the
    matching property is then reported as 404 in a propstat.
    """

    # e.g. ['{DAV:}collection']
    resource_types: list[str] = []

    # Properties reported for allprop, or a PROPFIND without a body,
    # when the resource has a value for them.
    allprops: list[str] = ["{DAV:}resourcetype"]

    def get_displayname(self) -> str:
        raise KeyError

    def set_displayname(self, displayname: Optional[str]) -> None:
        raise NotImplementedError(self.set_displayname)

    def get_content_type(self) -> str:
        raise KeyError

    async def get_etag(self) -> str:
        raise KeyError

    async def get_body(self) -> list[bytes]:
        raise NotImplementedError(self.get_body)

    async def get_content_length(self) -> int:
        return sum(map(len, await self.get_body()))

    def get_last_modified(self) -> datetime:
        raise KeyError

    async def render(self) -> tuple[list[bytes], Optional[str], str]:
        """Render the resource for a GET.

        Returns: Tuple with body chunks, ETag and content type
        Raises:
          NotImplementedError: if the resource can not be retrieved
        """
        return (await self.get_body(), await self.get_etag(),
                self.get_content_type())

    async def set_body(self, body: list[bytes],
                       replace_etag: Optional[str] = None) -> str:
        """Replace the contents of this resource.

        Returns: the new ETag
        """
        raise NotImplementedError(self.set_body)


class Collection(Resource):
    """A resource with members."""

    resource_types = [COLLECTION_RESOURCE_TYPE]

    def members(self) -> Iterator[tuple[str, Resource]]:
        return iter([])

    def get_member(self, name: str) -> Resource:
        """Retrieve a member by its exact name.

        Raises:
          KeyError: if there is no member with that name
        """
        raise KeyError(name)

    def lookup_member(self, name: str) -> Resource:
        """Retrieve a member named in a client supplied href.

        May match more loosely than get_member.
        """
        return self.get_member(name)

    def is_member_gone(self, name: str) -> bool:
        """Whether a member with this name existed but has been deleted."""
        return False

    def delete_member(self, name: str, etag: Optional[str] = None) -> None:
        raise NotImplementedError(self.delete_member)

    async def create_member(
            self, name: str, contents: list[bytes]) -> tuple[str, str]:
        """Create a member.

        Returns: Tuple with the name and ETag of the new member
        """
        raise NotImplementedError(self.create_member)

    def get_ctag(self) -> str:
        raise KeyError

    def get_sync_token(self) -> str:
        raise KeyError

    def iter_differences_since(self, old_token: Optional[str],
                               new_token: str):
        """List changes since old_token.

        Returns: iterable over (name, old resource, new resource); the new
          resource is None for deleted members. With old_token None, all
          current members are listed.
        """
        raise NotImplementedError(self.iter_differences_since)

    async def get_content_length(self):
        raise KeyError

    async def render(self):
        raise NotImplementedError(self.render)


class Property:
    """A DAV property."""

    # e.g. '{DAV:}getetag'
    name: str

    # Resource type this property is limited to; None for any resource.
    resource_type: Optional[str] = None

    def supported_on(self, resource: Resource) -> bool:
        return (self.resource_type is None
                or self.resource_type in resource.resource_types)

    async def get_value(self, href: str, resource: Resource, el: ET.Element,
                        environ) -> None:
        """Fill in the value of this property.

        Raises:
          KeyError: if the property is not set on this resource
        """
        raise KeyError(self.name)

    async def set_value(self, href: str, resource: Resource,
                        el: Optional[ET.Element]) -> None:
        """Set the property from el, or remove it if el is None.

        Raises:
          NotImplementedError: if the property is protected
        """
        raise NotImplementedError(self.set_value)


class ResourceTypeProperty(Property):

    name = "{DAV:}resourcetype"

    async def get_value(self, href, resource, el, environ):
        for resource_type in resource.resource_types:
            ET.SubElement(el, resource_type)


class DisplayNameProperty(Property):

    name = "{DAV:}displayname"

    async def get_value(self, href, resource, el, environ):
        el.text = resource.get_displayname()

    async def set_value(self, href, resource, el):
        resource.set_displayname(el.text if el is not None else None)


class GetETagProperty(Property):

    name = "{DAV:}getetag"

    async def get_value(self, href, resource, el, environ):
        el.text = await resource.get_etag()


class GetContentTypeProperty(Property):

    name = "{DAV:}getcontenttype"

    async def get_value(self, href, resource, el, environ):
        el.text = resource.get_content_type()


class GetContentLengthProperty(Property):

    name = "{DAV:}getcontentlength"

    async def get_value(self, href, resource, el, environ):
        el.text = str(await resource.get_content_length())


class GetLastModifiedProperty(Property):

    name = "{DAV:}getlastmodified"

    async def get_value(self, href, resource, el, environ):
        el.text = format_http_date(resource.get_last_modified())


class CurrentUserPrincipalProperty(Property):
    """current-user-principal.

    See https://tools.ietf.org/html/rfc5397
    """

    name = "{DAV:}current-user-principal"

    def __init__(self, get_current_user_principal) -> None:
        # Maps a request environment to a principal path, or None
        self.get_current_user_principal = get_current_user_principal

    async def get_value(self, href, resource, el, environ):
        principal = self.get_current_user_principal(environ)
        if principal is None:
            ET.SubElement(el, "{DAV:}unauthenticated")
        else:
            el.append(create_href(
                ensure_trailing_slash(principal.lstrip("/")),
                environ["SCRIPT_NAME"]))


class PrincipalURLProperty(Property):

    name = "{DAV:}principal-URL"
    resource_type = PRINCIPAL_RESOURCE_TYPE

    async def get_value(self, href, resource, el, environ):
        el.append(create_href(
            ensure_trailing_slash(resource.get_principal_url().lstrip("/")),
            environ["SCRIPT_NAME"]))


class SupportedReportSetProperty(Property):

    name = "{DAV:}supported-report-set"
    resource_type = COLLECTION_RESOURCE_TYPE

    def __init__(self, reporters) -> None:
        self._reporters = reporters

    async def get_value(self, href, resource, el, environ):
        for (name, reporter) in self._reporters.items():
            if reporter.supported_on(resource):
                report_el = ET.SubElement(
                    ET.SubElement(el, "{DAV:}supported-report"),
                    "{DAV:}report")
                ET.SubElement(report_el, name)


class GetCTagProperty(Property):
    """CalendarServer getctag; changes whenever a member changes."""

    name = "{http://calendarserver.org/ns/}getctag"
    resource_type = COLLECTION_RESOURCE_TYPE

    async def get_value(self, href, resource, el, environ):
        el.text = resource.get_ctag()


async def get_property(href: str, resource: Resource,
                       properties: dict[str, Property], environ,
                       name: str) -> PropStatus:
    el = ET.Element(name)
    prop = properties.get(name)
    if prop is None:
        logging.warning(
            "Client requested unknown property %s on %s", name, href)
        return PropStatus("404 Not Found", el)
    if not prop.supported_on(resource):
        return PropStatus("404 Not Found", el)
    try:
        await prop.get_value(href, resource, el, environ)
    except KeyError:
        return PropStatus("404 Not Found", ET.Element(name))
    return PropStatus("200 OK", el)


async def get_properties(href, resource, properties, environ,
                         names) -> list[PropStatus]:
    return [await get_property(href, resource, properties, environ, name)
            for name in names]


async def get_all_properties(href, resource, properties,
                             environ) -> list[PropStatus]:
    """Look up the allprop set of a resource, leaving out unset ones."""
    ret = []
    for name in resource.allprops:
        ps = await get_property(href, resource, properties, environ, name)
        if ps.statuscode == "200 OK":
            ret.append(ps)
    return ret


def traverse_resource(resource: Resource, href: str,
                      depth: str) -> Iterator[tuple[str, Resource]]:
    """Yield (href, resource) for a resource and, at depth 1, its members."""
    href = canonical_href(href)
    yield (href, resource)
    if depth == "1" and COLLECTION_RESOURCE_TYPE in resource.resource_types:
        for (name, member) in resource.members():
            yield (canonical_href(urllib.parse.urljoin(href, name)), member)


async def apply_property_update(update: ET.Element, href: str,
                                resource: Resource,
                                properties: dict[str, Property]
                                ) -> list[PropStatus]:
    """Apply a {DAV:}set or {DAV:}remove element of a PROPPATCH."""
    ret = []
    for prop_el in update:
        if prop_el.tag != "{DAV:}prop":
            raise BadRequestError(f"Expected prop tag, got {prop_el.tag}")
        for el in prop_el:
            handler = properties.get(el.tag)
            if handler is None:
                logging.warning(
                    "Client attempted to modify unknown property %s on %s",
                    el.tag, href)
                statuscode = "404 Not Found"
            elif not handler.supported_on(resource):
                statuscode = "404 Not Found"
            else:
                try:
                    await handler.set_value(
                        href, resource,
                        None if update.tag == "{DAV:}remove" else el)
                except NotImplementedError:
                    statuscode = "409 Conflict"
                else:
                    statuscode = "200 OK"
            ret.append(PropStatus(statuscode, ET.Element(el.tag)))
    return ret


class Reporter:
    """Handler for one kind of REPORT."""

    # Root element of the REPORT body
    name: str

    resource_type: Optional[str] = None

    def supported_on(self, resource: Resource) -> bool:
        return (self.resource_type is None
                or self.resource_type in resource.resource_types)

    async def report(self, environ, body: ET.Element,
                     properties: dict[str, Property], href: str,
                     resource: Resource, depth: str) -> Response:
        """Answer a REPORT request.

        Args:
          environ: Request environment
          body: Parsed request body
          properties: Registered properties, by name
          href: href of the resource the REPORT was sent to
          resource: The resource the REPORT was sent to
          depth: "0" or "1"
        Raises:
          PreconditionFailure: to answer 403 with a DAV:error body
        """
        raise NotImplementedError(self.report)


class Backend:
    """Maps request paths to resources."""

    def get_resource(self, relpath: str, environ) -> Optional[Resource]:
        """Look up a resource.

        Args:
          relpath: Path relative to the application root
          environ: Request environment, including the authenticated user
        Returns: A Resource, or None if there is none at relpath
        """
        raise NotImplementedError(self.get_resource)


async def read_body(request, max_size: int = MAX_BODY_SIZE) -> list[bytes]:
    """Read a request body, refusing bodies larger than max_size.

    The limit is checked against Content-Length and the bytes read.

    Raises:
      PayloadTooLarge: if the body exceeds max_size bytes
    """
    if request.content_length is not None and request.content_length > max_size:
        raise PayloadTooLarge(max_size)
    chunks = []
    size = 0
    while True:
        chunk = await request.content.read(BODY_CHUNK_SIZE)
        if not chunk:
            return chunks
        size += len(chunk)
        if size > max_size:
            raise PayloadTooLarge(max_size)
        chunks.append(chunk)


async def read_xml_body(request, expected_tag: Optional[str] = None,
                        strict: bool = True) -> ET.Element:
    if strict and base_content_type(
            request.content_type) not in XML_CONTENT_TYPES:
        raise UnsupportedMediaType(request.content_type)
    body = b"".join(await read_body(request))
    if os.environ.get("TASKDAV_DUMP_DAV_XML"):
        logging.info("IN: %s", body.decode(DEFAULT_ENCODING, "replace"))
    try:
        et = xmlparse(body)
    except ET.ParseError as exc:
        raise BadRequestError("Unable to parse body.") from exc
    if expected_tag is not None and et.tag != expected_tag:
        raise BadRequestError(f"Expected {expected_tag} tag, got {et.tag}")
    return et


class Method:

    @property
    def name(self):
        return type(self).__name__.upper()[:-len("METHOD")]

    async def handle(self, request, environ, app) -> Response:
        raise NotImplementedError(self.handle)


class DeleteMethod(Method):

    async def handle(self, request, environ, app):
        (unused_href, path, resource) = app._get_resource_from_environ(
            request, environ)
        if resource is None:
            return not_found_response(request)
        if COLLECTION_RESOURCE_TYPE in resource.resource_types:
            return method_not_allowed_response(
                app._get_allowed_methods(request))
        (container_path, name) = posixpath.split(path.rstrip("/"))
        container = app.backend.get_resource(container_path, environ)
        if container is None:
            return not_found_response(request)
        etag = await resource.get_etag()
        if_match = request.headers.get("If-Match")
        if if_match is not None and not etag_matches(if_match, etag):
            return Response("412 Precondition Failed")
        try:
            container.delete_member(name, etag)
        except KeyError:
            return not_found_response(request)
        return Response("204 No Content")


async def _put_result(resource: Resource, status: str) -> Response:
    (body, etag, content_type) = await resource.render()
    return Response(status, [
        ("ETag", etag),
        ("Content-Type", content_type),
        ("Content-Length", str(sum(map(len, body)))),
    ], body)


class PutMethod(Method):

    async def handle(self, request, environ, app):
        contents = await read_body(request)
        (unused_href, path, resource) = app._get_resource_from_environ(
            request, environ)
        etag = None if resource is None else await resource.get_etag()
        if_match = request.headers.get("If-Match")
        if if_match is not None and not etag_matches(if_match, etag):
            return Response("412 Precondition Failed")
        if_none_match = request.headers.get("If-None-Match")
        if if_none_match and etag_matches(if_none_match, etag):
            return Response("412 Precondition Failed")
        try:
            if resource is not None:
                await resource.set_body(contents, etag)
                return await _put_result(resource, "200 OK")
            (container_path, name) = posixpath.split(path)
            container = app.backend.get_resource(container_path, environ)
            if container is None:
                return not_found_response(request)
            if COLLECTION_RESOURCE_TYPE not in container.resource_types:
                raise NotImplementedError(container.create_member)
            (name, unused_etag) = await container.create_member(
                name, contents)
            return await _put_result(
                container.get_member(name), "201 Created")
        except PreconditionFailure as e:
            return dav_error_response(
                "412 Precondition Failed", e.precondition, e.description)
        except NotImplementedError:
            return method_not_allowed_response(
                app._get_allowed_methods(request))


class ReportMethod(Method):

    async def handle(self, request, environ, app):
        # See https://tools.ietf.org/html/rfc3253, section 3.6
        (href, unused_path, resource) = app._get_resource_from_environ(
            request, environ)
        if resource is None:
            return not_found_response(request)
        body = await read_xml_body(request, strict=app.strict)
        reporter = app.reporters.get(body.tag)
        if reporter is None:
            if app.default_reporter is None:
                logging.warning("Client requested unknown REPORT %s", body.tag)
                return dav_error_response(
                    "403 Forbidden", "{DAV:}supported-report",
                    f"Unknown report {body.tag}.")
            logging.debug(
                "Unknown REPORT %s; answering as %s", body.tag,
                app.default_reporter.name)
            reporter = app.default_reporter
        if not reporter.supported_on(resource):
            return dav_error_response(
                "403 Forbidden", "{DAV:}supported-report",
                f"Report {body.tag} not supported on {href}.")
        try:
            return await reporter.report(
                environ, body, app.properties, href, resource,
                parse_depth(request.headers.get("Depth")))
        except PreconditionFailure as e:
            return dav_error_response(
                "403 Forbidden", e.precondition, e.description)


class PropfindMethod(Method):

    async def handle(self, request, environ, app):
        (href, unused_path, resource) = app._get_resource_from_environ(
            request, environ)
        if resource is None:
            return not_found_response(request)
        # None means allprop
        names = None
        if request.can_read_body:
            body = await read_xml_body(
                request, "{DAV:}propfind", strict=app.strict)
            prop_el = body.find("{DAV:}prop")
            if prop_el is not None:
                names = [el.tag for el in prop_el]
        return await self._propfind(
            environ, app, href, resource, names,
            parse_depth(request.headers.get("Depth")))

    @multistatus
    async def _propfind(self, environ, app, href, resource, names, depth):
        # Always a 207, even for Depth 0; some clients insist on it.
        for (member_href, member) in traverse_resource(resource, href, depth):
            if names is None:
                propstat = await get_all_properties(
                    member_href, member, app.properties, environ)
            else:
                propstat = await get_properties(
                    member_href, member, app.properties, environ, names)
            yield Status(member_href, propstat=propstat)


class ProppatchMethod(Method):

    async def handle(self, request, environ, app):
        (href, unused_path, resource) = app._get_resource_from_environ(
            request, environ)
        if resource is None:
            return not_found_response(request)
        body = await read_xml_body(
            request, "{DAV:}propertyupdate", strict=app.strict)
        propstat = []
        for update in body:
            if update.tag not in ("{DAV:}set", "{DAV:}remove"):
                logging.debug("Ignoring %s in propertyupdate", update.tag)
                continue
            propstat.extend(await apply_property_update(
                update, href, resource, app.properties))
        return multistatus_response(
            [Status(canonical_href(href), propstat=propstat)])


class OptionsMethod(Method):

    async def handle(self, request, environ, app):
        (unused_href, unused_path, resource) = app._get_resource_from_environ(
            request, environ)
        if resource is None:
            return not_found_response(request)
        # Thunderbird does not accept a 204 here.
        return Response("200 OK", [
            ("DAV", ", ".join(app.dav_features)),
            ("Allow", ", ".join(app._get_allowed_methods(request))),
            ("Content-Length", "0"),
        ])


class GetMethod(Method):

    async def handle(self, request, environ, app):
        (unused_href, unused_path, resource) = app._get_resource_from_environ(
            request, environ)
        if resource is None:
            return not_found_response(request)
        try:
            (body, etag, content_type) = await resource.render()
        except NotImplementedError:
            return method_not_allowed_response(
                app._get_allowed_methods(request))
        if_none_match = request.headers.get("If-None-Match")
        if if_none_match and etag_matches(if_none_match, etag):
            return Response("304 Not Modified")
        headers = [
            ("Content-Length", str(sum(map(len, body)))),
            ("Content-Type", content_type),
        ]
        if etag is not None:
            headers.append(("ETag", etag))
        try:
            headers.append(("Last-Modified",
                            format_http_date(resource.get_last_modified())))
        except KeyError:
            pass
        return Response("200 OK", headers, body)


class _WSGIInput:
    """Async reader over wsgi.input that stops at Content-Length."""

    def __init__(self, stream, length: Optional[int]) -> None:
        self._stream = stream
        self._remaining = length

    async def read(self, size: int = -1) -> bytes:
        if self._remaining is not None:
            if size < 0 or size > self._remaining:
                size = self._remaining
            if size == 0:
                return b""
        data = self._stream.read(size)
        if self._remaining is not None:
            self._remaining -= len(data)
        return data


class WSGIRequest:
    """Adapts a WSGI environ to the parts of aiohttp's Request we use."""

    def __init__(self, environ) -> None:
        self._environ = environ
        self.method = environ["REQUEST_METHOD"]
        self.path = environ["SCRIPT_NAME"] + path_from_environ(
            environ, "PATH_INFO")
        self.url = request_uri(environ)
        self.content_type = environ.get(
            "CONTENT_TYPE", "application/octet-stream")
        try:
            self.content_length: Optional[int] = int(environ["CONTENT_LENGTH"])
        except (KeyError, ValueError):
            self.content_length = None
        self.headers = CIMultiDict(
            (key[len("HTTP_"):].replace("_", "-"), value)
            for (key, value) in environ.items() if key.startswith("HTTP_"))
        self.content = _WSGIInput(environ["wsgi.input"], self.content_length)
        self.match_info = {"path_info": environ["PATH_INFO"]}

    @property
    def can_read_body(self) -> bool:
        return ("CONTENT_TYPE" in self._environ
                or self._environ.get("CONTENT_LENGTH", "0") not in ("", "0"))


class WebDAVApp:
    """A WebDAV server, usable as a WSGI app or from aiohttp.

    The backend maps paths to resources (None when there is none).
    """

    dav_features = ["1", "2"]

    def __init__(self, backend: Backend, strict: bool = True) -> None:
        self.backend = backend
        # Whether XML bodies must be sent as text/xml or application/xml
        self.strict = strict
        self.properties: dict[str, Property] = {}
        self.reporters: dict[str, Reporter] = {}
        # Answers REPORT bodies with an unknown root element
        self.default_reporter: Optional[Reporter] = None
        self.methods: dict[str, Method] = {}
        self.register_methods([
            DeleteMethod(),
            GetMethod(),
            OptionsMethod(),
            PropfindMethod(),
            ProppatchMethod(),
            PutMethod(),
            ReportMethod(),
        ])

    def register_properties(self, properties):
        for prop in properties:
            self.properties[prop.name] = prop

    def register_reporters(self, reporters):
        for reporter in reporters:
            self.reporters[reporter.name] = reporter

    def register_methods(self, methods):
        for method in methods:
            self.methods[method.name] = method

    def _get_resource_from_environ(self, request, environ):
        path = "/" + request.match_info["path_info"].lstrip("/")
        return (request.path, path, self.backend.get_resource(path, environ))

    def _get_allowed_methods(self, request) -> list[str]:
        return sorted(self.methods)

    async def authenticate(self, request, environ) -> None:
        """Check the credentials of a request.

        Implementations store the authenticated identity in environ.

        Raises:
          UnauthorizedError: if the request is not authorized
        """

    async def _handle_request(self, request, environ) -> Response:
        try:
            method = self.methods[request.method]
        except KeyError:
            return method_not_allowed_response(
                self._get_allowed_methods(request))
        try:
            await self.authenticate(request, environ)
            response = await method.handle(request, environ, self)
        except BadRequestError as e:
            logging.debug("Bad request: %s", e.message)
            return Response.text("400 Bad Request", e.message)
        except UnsupportedMediaType as e:
            return Response.text(
                "415 Unsupported Media Type",
                f"Unsupported media type {e.content_type!r}")
        except PayloadTooLarge as e:
            logging.debug("Payload too large: %s", e)
            return Response.text("413 Request Entity Too Large", str(e))
        except UnauthorizedError as e:
            return Response.text(
                "401 Unauthorized", "Please login.",
                [("WWW-Authenticate", f'Basic realm="{e.realm}"')])
        if response.status == 207 and response.get_header("DAV") is None:
            response.headers.append(("DAV", ", ".join(self.dav_features)))
        return response

    def handle_wsgi_request(self, environ, start_response):
        environ.setdefault("SCRIPT_NAME", "")
        request = WSGIRequest(environ)
        response = asyncio.run(self._handle_request(
            request, {"SCRIPT_NAME": environ["SCRIPT_NAME"]}))
        return response.for_wsgi(start_response)

    async def aiohttp_handler(self, request, route_prefix: str = "/"):
        environ = {"SCRIPT_NAME": route_prefix.rstrip("/")}
        response = await self._handle_request(request, environ)
        return response.for_aiohttp()

    __call__ = handle_wsgi_request
