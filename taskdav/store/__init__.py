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

"""Task storage.

This module contains the objects that are passed between the DAV layer
and a store implementation. Timestamps are always timezone-aware UTC
datetimes, truncated to millisecond precision.

ETags (https://en.wikipedia.org/wiki/HTTP_ETag) derived here are strong
and include the wrapping quotes.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DEFAULT_SQL_URL = "sqlite:///taskdav.db"


class RelationType(enum.Enum):
    """Type of a link between two tasks (RELTYPE in iCalendar)."""

    PARENT = "PARENT"
    CHILD = "CHILD"
    RELATED = "RELATED"


class ReminderAnchor(enum.Enum):
    """What a relative reminder offset is measured from."""

    START = "start"
    END = "end"


class RepeatMode(enum.Enum):

    DEFAULT = "default"
    MONTH = "month"
    FROM_CURRENT = "from_current"


class StorageError(Exception):
    """The storage backend failed to carry out an operation."""


class NoSuchItem(Exception):
    """No such item."""

    def __init__(self, name) -> None:
        super().__init__(name)
        self.name = name


class AlreadyExists(Exception):
    """An item with this name already exists."""

    def __init__(self, name) -> None:
        super().__init__(name)
        self.name = name


class DuplicateUidError(Exception):
    """UID already in use by a task in another project."""

    def __init__(self, uid, existing_project_id, new_project_id) -> None:
        super().__init__(
            f"UID {uid!r} already in use in project {existing_project_id}")
        self.uid = uid
        self.existing_project_id = existing_project_id
        self.new_project_id = new_project_id


def truncate_to_millis(dt: datetime) -> datetime:
    return dt.replace(microsecond=dt.microsecond - dt.microsecond % 1000)


def utcnow() -> datetime:
    return truncate_to_millis(datetime.now(timezone.utc))


def to_millis(dt: datetime) -> int:
    """Convert a datetime to milliseconds since the epoch."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def from_millis(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


@dataclass
class User:

    id: str
    username: str
    display_name: Optional[str] = None


@dataclass
class Project:
    """A task list, exposed as a calendar collection."""

    id: int
    owner_id: str
    name: str
    ctag: str
    updated_at: datetime


@dataclass
class Label:

    title: str
    # None until the store has resolved the title for an owner
    id: Optional[int] = None


@dataclass
class Reminder:
    """A task reminder.

    Either reminder_at is set (absolute trigger), or relative_seconds
    and relative_to are (trigger relative to the task start or end).
    """

    reminder_at: Optional[datetime] = None
    relative_seconds: Optional[int] = None
    relative_to: Optional[ReminderAnchor] = None

    @property
    def is_absolute(self) -> bool:
        return self.reminder_at is not None


@dataclass
class Relation:

    uid: str
    reltype: RelationType = RelationType.RELATED


@dataclass
class TaskInput:
    """Client supplied task fields, as decoded from a VTODO."""

    uid: Optional[str] = None
    title: str = ""
    # None means the client did not send a description at all
    description: Optional[str] = None
    due_at: Optional[datetime] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    priority: Optional[int] = None
    percent_done: Optional[int] = None
    color: Optional[str] = None
    repeat_after: Optional[int] = None
    repeat_mode: Optional[RepeatMode] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    labels: list[Label] = field(default_factory=list)
    reminders: list[Reminder] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)


@dataclass
class Task:
    """A stored task, with its child sets hydrated."""

    id: int
    project_id: int
    uid: str
    created_at: datetime
    updated_at: datetime
    title: str = ""
    description: Optional[str] = None
    due_at: Optional[datetime] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    priority: Optional[int] = None
    percent_done: Optional[int] = None
    color: Optional[str] = None
    repeat_after: Optional[int] = None
    repeat_mode: Optional[RepeatMode] = None
    labels: list[Label] = field(default_factory=list)
    reminders: list[Reminder] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)

    @property
    def etag(self) -> str:
        return '"%d"' % to_millis(self.updated_at)


@dataclass
class Tombstone:
    """Marker left behind when a task is deleted from a project."""

    project_id: int
    uid: str
    deleted_at: datetime
