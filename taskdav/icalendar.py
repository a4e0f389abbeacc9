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

"""Conversion between iCalendar VTODO components and tasks.

See https://tools.ietf.org/html/rfc5545 for the wire format.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from icalendar.cal import Alarm, Calendar, Component, Todo
from icalendar.prop import vDuration, vRecur

from .store import (
    Label,
    Relation,
    RelationType,
    Reminder,
    ReminderAnchor,
    RepeatMode,
    Task,
    TaskInput,
)

# Property values that fail to parse inside a task or one of its alarms
# are dropped and recorded in the component's errors, so e.g. a
# PRIORITY of "high" is read as no priority rather than rejecting the
# whole object.
Todo.ignore_exceptions = True
Alarm.ignore_exceptions = True

PRODID = "-//vtodo//EN"

# X-PUBLISHED-TTL advertised to subscribers
PUBLISHED_TTL = timedelta(hours=4)

# Checked in order; the first one present wins.
COLOR_PROPERTIES = [
    "X-APPLE-CALENDAR-COLOR",
    "X-OUTLOOK-COLOR",
    "X-FUNAMBOL-COLOR",
    "COLOR",
]

# RFC5545 PRIORITY (1 = highest, 9 = lowest) to internal (1 = highest,
# 5 = lowest). Values not listed here, other than 0, map to 1.
PRIORITY_FROM_ICAL = {
    1: 5,
    2: 4,
    3: 3,
    4: 3,
    5: 2,
}

PRIORITY_TO_ICAL = {
    1: 9,
    2: 5,
    3: 3,
    4: 2,
    5: 1,
}

WEEK = 7 * 24 * 60 * 60
DAY = 24 * 60 * 60
HOUR = 60 * 60
MINUTE = 60

FREQUENCY_SECONDS = {
    "WEEKLY": WEEK,
    "DAILY": DAY,
    "HOURLY": HOUR,
    "MINUTELY": MINUTE,
    "SECONDLY": 1,
}


class MalformedCalendarData(Exception):
    """The calendar data could not be parsed, or contains no VTODO."""

    def __init__(self, error) -> None:
        super().__init__(error)
        self.error = error


def priority_from_ical(value: int) -> Optional[int]:
    if not value:
        return None
    return PRIORITY_FROM_ICAL.get(value, 1)


def priority_to_ical(priority: Optional[int]) -> Optional[int]:
    if priority is None:
        return None
    return PRIORITY_TO_ICAL.get(priority)


def as_utc(dt) -> Optional[datetime]:
    """Convert a date or datetime to a timezone-aware UTC datetime.

    Floating times are interpreted as UTC.
    """
    if isinstance(dt, datetime):
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    if isinstance(dt, date):
        return datetime.combine(dt, time(), tzinfo=timezone.utc)
    return None


def _get_datetime(comp: Component, name: str) -> Optional[datetime]:
    prop = comp.get(name)
    if prop is None:
        return None
    return as_utc(getattr(prop, "dt", None))


def _get_int(comp: Component, name: str) -> Optional[int]:
    value = comp.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logging.debug("Ignoring non-integer %s value %r", name, value)
        return None


def _iter_props(comp: Component, name: str):
    value = comp.get(name)
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def get_color(comp: Component) -> Optional[str]:
    for name in COLOR_PROPERTIES:
        value = comp.get(name)
        if value is None:
            continue
        return str(value).lstrip("#")[:6]
    return None


def parse_rrule(comp: Component) -> tuple[Optional[int], Optional[RepeatMode]]:
    """Fold a RRULE into (repeat_after, repeat_mode).

    Only the first RRULE and its FREQ and INTERVAL parts are considered.
    """
    rrules = _iter_props(comp, "RRULE")
    if not rrules or not isinstance(rrules[0], vRecur):
        return None, None
    rrule = rrules[0]
    try:
        [freq] = rrule.get("FREQ", [None])
    except ValueError:
        return None, None
    freq = str(freq).upper() if freq else None
    if freq == "MONTHLY":
        return None, RepeatMode.MONTH
    try:
        unit = FREQUENCY_SECONDS[freq]
    except KeyError:
        return None, None
    try:
        interval = int(rrule.get("INTERVAL", [1])[0])
    except (TypeError, ValueError, IndexError):
        interval = 1
    return interval * unit, RepeatMode.DEFAULT


def parse_reminders(comp: Component) -> list[Reminder]:
    reminders = []
    for alarm in comp.subcomponents:
        if alarm.name != "VALARM":
            continue
        trigger = alarm.get("TRIGGER")
        if trigger is None:
            continue
        value = getattr(trigger, "dt", None)
        related = trigger.params.get("RELATED")
        if isinstance(value, datetime):
            if related is not None:
                continue
            reminders.append(Reminder(reminder_at=as_utc(value)))
        elif isinstance(value, timedelta):
            if str(related).upper() == "END":
                anchor = ReminderAnchor.END
            else:
                anchor = ReminderAnchor.START
            reminders.append(Reminder(
                relative_seconds=int(value.total_seconds()),
                relative_to=anchor))
    return reminders


def parse_relations(comp: Component) -> list[Relation]:
    relations = []
    for prop in _iter_props(comp, "RELATED-TO"):
        uid = str(prop)
        if not uid:
            continue
        reltype = str(getattr(prop, "params", {}).get("RELTYPE", "")).upper()
        if reltype == "PARENT":
            relations.append(Relation(uid, RelationType.PARENT))
        elif reltype == "CHILD":
            relations.append(Relation(uid, RelationType.CHILD))
        else:
            relations.append(Relation(uid, RelationType.RELATED))
    return relations


def parse_categories(comp: Component) -> list[Label]:
    labels = []
    seen = set()
    for prop in _iter_props(comp, "CATEGORIES"):
        for title in getattr(prop, "cats", [prop]):
            title = str(title).strip()
            if not title or title in seen:
                continue
            seen.add(title)
            labels.append(Label(title=title))
    return labels


def parse_calendar(data) -> Calendar:
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedCalendarData(str(exc)) from exc
    try:
        return Calendar.from_ical(data)
    except (ValueError, IndexError) as exc:
        raise MalformedCalendarData(str(exc)) from exc


def decode_vtodo(data) -> TaskInput:
    """Decode a VCALENDAR containing a VTODO.

    Args:
      data: iCalendar text, as str or bytes
    Returns: A TaskInput
    Raises:
      MalformedCalendarData: if the data can not be parsed or there is
        no VTODO in it
    """
    cal = parse_calendar(data)
    todos = cal.walk("VTODO")
    if not todos:
        raise MalformedCalendarData("VTODO not found")
    todo = todos[0]
    for (name, error) in todo.errors:
        logging.debug("Ignoring invalid %s in task: %s", name, error)

    description = todo.get("DESCRIPTION")
    percent_done = _get_int(todo, "PERCENT-COMPLETE")
    if percent_done is not None:
        percent_done = max(0, min(100, percent_done))
    if str(todo.get("STATUS", "")).upper() == "COMPLETED":
        completed_at = _get_datetime(todo, "COMPLETED")
    else:
        completed_at = None
    repeat_after, repeat_mode = parse_rrule(todo)

    return TaskInput(
        uid=str(todo["UID"]) if "UID" in todo else None,
        title=str(todo.get("SUMMARY", "")),
        description=str(description) if description is not None else None,
        due_at=_get_datetime(todo, "DUE"),
        start_at=_get_datetime(todo, "DTSTART"),
        end_at=_get_datetime(todo, "DTEND"),
        completed_at=completed_at,
        priority=priority_from_ical(_get_int(todo, "PRIORITY") or 0),
        percent_done=percent_done,
        color=get_color(todo),
        repeat_after=repeat_after,
        repeat_mode=repeat_mode,
        created_at=_get_datetime(todo, "CREATED"),
        updated_at=(_get_datetime(todo, "LAST-MODIFIED")
                    or _get_datetime(todo, "DTSTAMP")),
        labels=parse_categories(todo),
        reminders=parse_reminders(todo),
        relations=parse_relations(todo),
    )


def build_rrule(task: Task) -> Optional[dict]:
    if task.repeat_mode == RepeatMode.MONTH:
        base = task.due_at or task.start_at or task.updated_at
        return {"FREQ": "MONTHLY", "BYMONTHDAY": [base.day]}
    if not task.repeat_after or task.repeat_after <= 0:
        return None
    for freq, unit in FREQUENCY_SECONDS.items():
        if task.repeat_after % unit == 0:
            return {"FREQ": freq, "INTERVAL": task.repeat_after // unit}
    return None


def build_alarm(task: Task, reminder: Reminder) -> Alarm:
    alarm = Alarm()
    if reminder.is_absolute:
        alarm.add(
            "TRIGGER", reminder.reminder_at,
            parameters={"VALUE": "DATE-TIME"})
    else:
        if reminder.relative_to == ReminderAnchor.END:
            related = "END"
        elif reminder.relative_to in (ReminderAnchor.START, None):
            related = "START"
        else:
            raise AssertionError(f"invalid anchor {reminder.relative_to!r}")
        alarm.add(
            "TRIGGER", timedelta(seconds=reminder.relative_seconds or 0),
            parameters={"RELATED": related})
    alarm.add("ACTION", "DISPLAY")
    alarm.add("DESCRIPTION", task.title or "Reminder")
    return alarm


def encode_vtodo(task: Task, calendar_name: Optional[str] = None) -> bytes:
    """Encode a task as a VCALENDAR with a single VTODO.

    Args:
      task: Task to encode
      calendar_name: Name to advertise as X-WR-CALNAME
    Returns: iCalendar text as bytes
    """
    cal = Calendar()
    cal.add("PRODID", PRODID)
    cal.add("VERSION", "2.0")
    if calendar_name:
        cal.add("X-WR-CALNAME", calendar_name)
    cal.add("X-PUBLISHED-TTL", vDuration(PUBLISHED_TTL))

    todo = Todo()
    todo.add("UID", task.uid)
    todo.add("DTSTAMP", task.updated_at)
    todo.add("LAST-MODIFIED", task.updated_at)
    if task.title:
        todo.add("SUMMARY", task.title)
    if task.description is not None:
        todo.add("DESCRIPTION", task.description)
    if task.created_at:
        todo.add("CREATED", task.created_at)
    if task.completed_at:
        todo.add("COMPLETED", task.completed_at)
        todo.add("STATUS", "COMPLETED")
    else:
        todo.add("STATUS", "NEEDS-ACTION")
    if task.due_at:
        todo.add("DUE", task.due_at)
    if task.start_at:
        todo.add("DTSTART", task.start_at)
    if task.end_at:
        todo.add("DTEND", task.end_at)
    rrule = build_rrule(task)
    if rrule is not None:
        todo.add("RRULE", rrule)
    priority = priority_to_ical(task.priority)
    if priority is not None:
        todo.add("PRIORITY", priority)
    if task.percent_done is not None:
        todo.add("PERCENT-COMPLETE", task.percent_done)
    if task.color:
        color = ("#" + task.color)[:7]
        for name in COLOR_PROPERTIES:
            todo.add(name, color)
    if task.labels:
        todo.add("CATEGORIES", [label.title for label in task.labels])
    for relation in task.relations:
        if relation.reltype not in (
                RelationType.PARENT, RelationType.CHILD,
                RelationType.RELATED):
            raise AssertionError(f"invalid relation {relation.reltype!r}")
        todo.add(
            "RELATED-TO", relation.uid,
            parameters={"RELTYPE": relation.reltype.value})
    for reminder in task.reminders:
        todo.add_component(build_alarm(task, reminder))

    cal.add_component(todo)
    return cal.to_ical()
