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

"""Web server implementation..

This is the concrete web server implementation. It provides the
high level application logic that combines the WebDAV server,
the CalDAV support and the SQL task store.
"""

import asyncio
import hashlib
import logging
import os
import posixpath
import signal

import jinja2

from . import __version__ as taskdav_version
from . import caldav, sync, webdav
from .auth import parse_basic_auth, verify_credentials_async
from .icalendar import MalformedCalendarData, decode_vtodo, encode_vtodo
from .store import (
    DuplicateUidError,
    NoSuchItem,
    Project,
    StorageError,
    Task,
    User,
    from_millis,
)
from .store.sql import SQLStore, get_db_url

logger = logging.getLogger("taskdav")

DAV_ROOT = "/dav"
PRINCIPALS_PATH = DAV_ROOT + "/principals"
PROJECTS_PATH = DAV_ROOT + "/projects"

REALM = "CalDAV"
ENTRY_DISPLAYNAME = "CalDAV"

# Content type served for task bodies.
TASK_CONTENT_TYPE = "text/calendar; charset=utf-8"
# Content type advertised in getcontenttype.
TASK_PROPERTY_CONTENT_TYPE = TASK_CONTENT_TYPE + "; component=VTODO"

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")
jinja_env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(TEMPLATES_DIR), autoescape=True)


def render_jinja_page(name, **kwargs) -> bytes:
    """Render a HTML page from a jinja template."""
    template = jinja_env.get_template(name)
    return template.render(
        version=".".join(map(str, taskdav_version)), **kwargs
    ).encode("utf-8")


def uid_from_name(name: str) -> str:
    """Map a member name to a task UID.

    The .ics suffix is optional and matched case-insensitively.
    """
    if name.lower().endswith(".ics"):
        return name[:-len(".ics")]
    return name


def name_from_uid(uid: str) -> str:
    return uid + ".ics"


def principal_path(username: str) -> str:
    return f"{PRINCIPALS_PATH}/{username}/"


def normalize_path(path_info: str) -> str:
    return posixpath.normpath("/" + path_info.lstrip("/"))


def is_dav_path(path: str) -> bool:
    return path == DAV_ROOT or path.startswith(DAV_ROOT + "/")


def _decode_task(contents):
    try:
        return decode_vtodo(b"".join(contents))
    except MalformedCalendarData as e:
        raise webdav.BadRequestError(str(e.error)) from e


class TaskResource(webdav.Resource):
    """A single task, served as an iCalendar object with one VTODO."""

    allprops = [
        "{DAV:}resourcetype",
        "{DAV:}getetag",
        "{DAV:}getcontenttype",
        "{DAV:}getcontentlength",
        "{DAV:}getlastmodified",
    ]

    def __init__(self, backend, user: User, project: Project,
                 task: Task) -> None:
        self.backend = backend
        self.user = user
        self.project = project
        self.task = task

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.project.id!r}, {self.task.uid!r})"

    def get_content_type(self):
        return TASK_PROPERTY_CONTENT_TYPE

    async def get_etag(self):
        return self.task.etag

    async def get_body(self):
        return [encode_vtodo(self.task, self.project.name)]

    def get_last_modified(self):
        return self.task.updated_at

    async def render(self):
        return (await self.get_body(), self.task.etag, TASK_CONTENT_TYPE)

    async def set_body(self, body, replace_etag=None):
        task_input = _decode_task(body)
        (self.task, unused_created) = self.backend.store.put_task(
            self.user.id, self.project.id, self.task.uid, task_input)
        return self.task.etag


class ProjectCollection(webdav.Collection):
    """A project, exposed as a calendar collection of tasks."""

    resource_types = [
        webdav.COLLECTION_RESOURCE_TYPE, caldav.CALENDAR_RESOURCE_TYPE]

    allprops = [
        "{DAV:}resourcetype",
        "{DAV:}displayname",
        caldav.SupportedCalendarComponentSetProperty.name,
        webdav.GetCTagProperty.name,
    ]

    def __init__(self, backend, user: User, project: Project) -> None:
        self.backend = backend
        self.user = user
        self.project = project

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.project.id!r})"

    @property
    def store(self):
        return self.backend.store

    def get_displayname(self):
        return self.project.name

    def set_displayname(self, displayname):
        if displayname is None or not displayname.strip():
            logger.debug(
                "Ignoring empty display name for project %d", self.project.id)
            return
        self.project = self.store.rename_project(
            self.project.id, self.user.id, displayname.strip())

    def get_ctag(self):
        return self.project.ctag

    def get_sync_token(self):
        return self.store.get_sync_token(self.project.id)

    def get_supported_calendar_components(self):
        return [caldav.TODO_COMPONENT]

    def _task_resource(self, task):
        return TaskResource(self.backend, self.user, self.project, task)

    def members(self):
        for task in self.store.list_tasks(self.project.id):
            yield (name_from_uid(task.uid), self._task_resource(task))

    def _get_member(self, name, case_insensitive):
        uid = uid_from_name(name)
        if not uid:
            raise KeyError(name)
        task = self.store.get_task(
            self.project.id, uid, case_insensitive=case_insensitive)
        if task is None:
            raise KeyError(name)
        return self._task_resource(task)

    def get_member(self, name):
        return self._get_member(name, case_insensitive=False)

    def lookup_member(self, name):
        return self._get_member(name, case_insensitive=True)

    def is_member_gone(self, name):
        uid = uid_from_name(name)
        return bool(uid) and self.store.has_tombstone(
            self.project.id, uid, case_insensitive=True)

    def delete_member(self, name, etag=None):
        try:
            self.store.delete_task(self.project.id, uid_from_name(name))
        except NoSuchItem as exc:
            raise KeyError(name) from exc

    async def create_member(self, name, contents):
        uid = uid_from_name(name)
        if not uid:
            raise webdav.BadRequestError("Invalid UID")
        task_input = _decode_task(contents)
        try:
            (task, unused_created) = self.store.put_task(
                self.user.id, self.project.id, uid, task_input)
        except DuplicateUidError as exc:
            raise webdav.PreconditionFailure(
                "{%s}no-uid-conflict" % caldav.NAMESPACE,
                "UID already in use.") from exc
        return (name_from_uid(task.uid), task.etag)

    def iter_differences_since(self, old_token, new_token):
        if old_token is None:
            since = None
        else:
            try:
                since = from_millis(int(old_token))
            except (ValueError, OverflowError) as exc:
                raise sync.InvalidToken(old_token) from exc
        ret = []
        for task in self.store.list_tasks(self.project.id, since=since):
            ret.append((name_from_uid(task.uid), None,
                        self._task_resource(task)))
        # A full sync does not report deletions.
        if since is not None:
            for tombstone in self.store.list_tombstones(
                    self.project.id, since=since):
                ret.append((name_from_uid(tombstone.uid), None, None))
        return ret


class ProjectSetResource(webdav.Collection):
    """The calendar home set: all projects owned by a user."""

    allprops = [
        "{DAV:}resourcetype",
        "{DAV:}displayname",
        caldav.SupportedCalendarComponentSetProperty.name,
    ]

    def __init__(self, backend, user: User) -> None:
        self.backend = backend
        self.user = user

    def get_displayname(self):
        return f"{self.user.username} Calendars"

    def get_supported_calendar_components(self):
        return [caldav.TODO_COMPONENT]

    def members(self):
        for project in self.backend.store.list_projects(self.user.id):
            yield (str(project.id),
                   ProjectCollection(self.backend, self.user, project))

    def get_member(self, name):
        try:
            project_id = int(name)
        except ValueError as exc:
            raise KeyError(name) from exc
        project = self.backend.store.get_project(project_id, self.user.id)
        if project is None:
            raise KeyError(name)
        return ProjectCollection(self.backend, self.user, project)


class PrincipalResource(webdav.Collection):
    """Principal for an authenticated user."""

    resource_types = [
        webdav.COLLECTION_RESOURCE_TYPE, webdav.PRINCIPAL_RESOURCE_TYPE]

    allprops = [
        "{DAV:}resourcetype",
        "{DAV:}displayname",
        "{DAV:}principal-URL",
        "{DAV:}current-user-principal",
        caldav.CalendarHomeSetProperty.name,
    ]

    def __init__(self, backend, user: User) -> None:
        self.backend = backend
        self.user = user

    def get_displayname(self):
        return self.user.display_name or self.user.username

    def get_principal_url(self):
        return principal_path(self.user.username)

    def get_calendar_home_set(self):
        return [PROJECTS_PATH + "/"]


class EntryResource(webdav.Collection):
    """The DAV root; points clients at their principal."""

    allprops = [
        "{DAV:}resourcetype",
        "{DAV:}current-user-principal",
        "{DAV:}displayname",
    ]

    def __init__(self, backend, user: User) -> None:
        self.backend = backend
        self.user = user

    def get_displayname(self):
        return ENTRY_DISPLAYNAME


class RootPage(webdav.Resource):
    """A non-DAV resource."""

    allprops = ["{DAV:}getetag", "{DAV:}getcontenttype"]

    def __init__(self, backend) -> None:
        self.backend = backend

    def get_content_type(self):
        return "text/html; charset=utf-8"

    async def get_body(self):
        return [render_jinja_page("root.html", dav_root=DAV_ROOT + "/")]

    async def get_etag(self):
        h = hashlib.md5()
        for chunk in await self.get_body():
            h.update(chunk)
        return '"' + h.hexdigest() + '"'


class TaskDAVBackend(webdav.Backend):

    def __init__(self, store) -> None:
        self.store = store

    def get_resource(self, relpath, environ):
        relpath = normalize_path(relpath)
        if relpath == "/":
            return RootPage(self)
        user = environ.get("taskdav.user")
        if user is None or not is_dav_path(relpath):
            return None
        parts = relpath.strip("/").split("/")[1:]
        if not parts:
            return EntryResource(self, user)
        if parts[0] == "principals":
            if len(parts) == 2 and parts[1] == user.username:
                return PrincipalResource(self, user)
            return None
        if parts[0] != "projects":
            return None
        resource = ProjectSetResource(self, user)
        for name in parts[1:]:
            if webdav.COLLECTION_RESOURCE_TYPE not in resource.resource_types:
                return None
            try:
                resource = resource.get_member(name)
            except KeyError:
                return None
        return resource


class TaskDAVApp(webdav.WebDAVApp):
    """A wsgi App that provides a TaskDAV web server."""

    dav_features = webdav.WebDAVApp.dav_features + [
        caldav.FEATURE, sync.FEATURE]

    def __init__(self, backend, strict=True) -> None:
        super().__init__(backend, strict=strict)

        def get_current_user_principal(env):
            user = env.get("taskdav.user")
            if user is None:
                return None
            return principal_path(user.username)

        self.register_properties([
            webdav.ResourceTypeProperty(),
            webdav.DisplayNameProperty(),
            webdav.GetETagProperty(),
            webdav.GetContentTypeProperty(),
            webdav.GetContentLengthProperty(),
            webdav.GetLastModifiedProperty(),
            webdav.CurrentUserPrincipalProperty(get_current_user_principal),
            webdav.PrincipalURLProperty(),
            webdav.SupportedReportSetProperty(self.reporters),
            webdav.GetCTagProperty(),
            caldav.CalendarHomeSetProperty(),
            caldav.SupportedCalendarComponentSetProperty(),
            sync.SyncTokenProperty(),
        ])
        self.register_reporters([
            caldav.CalendarMultiGetReporter(),
            caldav.CalendarQueryReporter(),
            sync.SyncCollectionReporter(caldav.CalendarDataProperty()),
        ])
        self.default_reporter = self.reporters[
            caldav.CalendarQueryReporter.name]

    @property
    def store(self):
        return self.backend.store

    async def authenticate(self, request, environ):
        path = normalize_path(request.match_info["path_info"])
        if not is_dav_path(path):
            return
        credentials = parse_basic_auth(request.headers.get("Authorization"))
        if credentials is None:
            raise webdav.UnauthorizedError(REALM)
        user = await verify_credentials_async(self.store, *credentials)
        if user is None:
            raise webdav.UnauthorizedError(REALM)
        environ["REMOTE_USER"] = user.username
        environ["taskdav.user"] = user

    def _options_response(self, request):
        return webdav.Response("200 OK", [
            ("DAV", ", ".join(self.dav_features)),
            ("Allow", ", ".join(self._get_allowed_methods(request))),
            ("Content-Length", "0"),
        ])

    async def _handle_request(self, request, environ):
        path = normalize_path(request.match_info["path_info"])
        if path == caldav.WELLKNOWN_CALDAV_PATH:
            # See https://tools.ietf.org/html/rfc6764
            if request.method == "OPTIONS":
                return self._options_response(request)
            return webdav.Response("301 Moved Permanently", [
                ("Location", environ["SCRIPT_NAME"] + DAV_ROOT + "/"),
                ("Content-Length", "0"),
            ])
        if is_dav_path(path) and request.method == "OPTIONS":
            return self._options_response(request)
        try:
            return await super()._handle_request(request, environ)
        except NoSuchItem:
            return webdav.not_found_response(request)
        except StorageError:
            return webdav.Response.text(
                "500 Internal Server Error", "Internal Server Error")


def add_parser(parser):
    access_group = parser.add_argument_group(title="Access Options")
    access_group.add_argument(
        "-l",
        "--listen-address",
        dest="listen_address",
        default="localhost",
        help="Bind to this address. [%(default)s]",
    )
    access_group.add_argument(
        "-p",
        "--port",
        dest="port",
        type=int,
        default=8080,
        help="Port to listen on. [%(default)s]",
    )
    access_group.add_argument(
        "--metrics-port",
        dest="metrics_port",
        type=int,
        default=None,
        help="Port to serve prometheus metrics on. [%(default)s]",
    )
    access_group.add_argument(
        "--route-prefix",
        default="/",
        help=(
            "Path to TaskDAV. "
            "(useful when TaskDAV is behind a reverse proxy) "
            "[%(default)s]"
        ),
    )
    add_store_argument(parser)
    debug_group = parser.add_argument_group(title="Debugging Options")
    debug_group.add_argument(
        "--dump-dav-xml",
        action="store_true",
        dest="dump_dav_xml",
        help="Print DAV XML request/responses.",
    )
    debug_group.add_argument(
        "--no-strict",
        action="store_false",
        dest="strict",
        help="Accept XML request bodies with a non-XML content type.",
    )


def add_store_argument(parser):
    parser.add_argument(
        "--sql-url",
        dest="sql_url",
        default=None,
        help=(
            "SQLAlchemy database URL. Defaults to $TASKDAV_SQL_URL, "
            "or a SQLite database in the current directory."
        ),
    )


def open_store(options) -> SQLStore:
    return SQLStore(options.sql_url or get_db_url())


def create_web_app(app: TaskDAVApp, route_prefix: str = "/",
                   metrics: bool = False):
    from aiohttp import web

    async def taskdav_handler(request):
        return await app.aiohttp_handler(request, route_prefix)

    if metrics:
        from .metrics import metrics_middleware

        middlewares = [metrics_middleware]
    else:
        middlewares = []
    web_app = web.Application(middlewares=middlewares)
    web_app.router.add_route(
        "*", route_prefix.rstrip("/") + "/{path_info:.*}", taskdav_handler,
        name="taskdav")
    return web_app


async def main(options, parser):
    from aiohttp import web

    if options.dump_dav_xml:
        # TODO(jelmer): Find a way to propagate this without abusing
        # os.environ.
        os.environ["TASKDAV_DUMP_DAV_XML"] = "1"

    logging.basicConfig(level=logging.INFO, format="%(message)s")

    store = open_store(options)
    backend = TaskDAVBackend(store)
    app = TaskDAVApp(backend, strict=options.strict)

    main_app = create_web_app(
        app, options.route_prefix, metrics=options.metrics_port is not None)
    runners = []
    main_runner = web.AppRunner(main_app)
    await main_runner.setup()
    runners.append(main_runner)
    sites = [web.TCPSite(main_runner, options.listen_address, options.port)]

    if options.metrics_port is not None:
        from .metrics import setup_metrics

        metrics_app = web.Application()
        setup_metrics(metrics_app)
        metrics_runner = web.AppRunner(metrics_app)
        await metrics_runner.setup()
        runners.append(metrics_runner)
        sites.append(web.TCPSite(
            metrics_runner, options.listen_address, options.metrics_port))
        logger.info(
            "Serving metrics on %s:%d", options.listen_address,
            options.metrics_port)

    for site in sites:
        await site.start()
    logger.info("Listening on %s:%d (using %r)", options.listen_address,
                options.port, store)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    try:
        await stop.wait()
    finally:
        for runner in runners:
            await runner.cleanup()
    return 0
