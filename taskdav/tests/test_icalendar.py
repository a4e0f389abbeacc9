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

"""Tests for taskdav.icalendar."""

import unittest
from datetime import datetime, timedelta, timezone

from ..icalendar import (
    DAY,
    MalformedCalendarData,
    decode_vtodo,
    encode_vtodo,
    get_color,
    priority_from_ical,
    priority_to_ical,
)
from ..store import (
    Label,
    Relation,
    RelationType,
    Reminder,
    ReminderAnchor,
    RepeatMode,
    Task,
)

EXAMPLE_VTODO = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//bitfire web engineering//DAVdroid 0.8.0 (ical4j 1.0.x)//EN
BEGIN:VTODO
CREATED:20150314T223512Z
DTSTAMP:20150527T221952Z
LAST-MODIFIED:20150314T223512Z
STATUS:NEEDS-ACTION
SUMMARY:do something
DESCRIPTION:with some details
UID:bdc22720-b9e1-42c9-89c2-a85405d8fbff
END:VTODO
END:VCALENDAR
"""

EXAMPLE_VTODO_FULL = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Example Corp.//CalDAV Client//EN
BEGIN:VTODO
UID:full-task
DTSTAMP:20240101T120000Z
SUMMARY:Water the plants
DUE:20240105T170000Z
DTSTART:20240102T090000Z
PRIORITY:1
PERCENT-COMPLETE:150
STATUS:COMPLETED
COMPLETED:20240103T100000Z
X-APPLE-CALENDAR-COLOR:#FF8800FF
CATEGORIES:home,garden
RELATED-TO;RELTYPE=PARENT:parent-task
RELATED-TO:sibling-task
RRULE:FREQ=DAILY;INTERVAL=2
BEGIN:VALARM
TRIGGER;RELATED=END:-PT15M
ACTION:DISPLAY
DESCRIPTION:Reminder
END:VALARM
BEGIN:VALARM
TRIGGER;VALUE=DATE-TIME:20240104T080000Z
ACTION:DISPLAY
DESCRIPTION:Reminder
END:VALARM
END:VTODO
END:VCALENDAR
"""

EXAMPLE_VEVENT = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Example Corp.//CalDAV Client//EN
BEGIN:VEVENT
UID:an-event
DTSTAMP:20240101T120000Z
DTSTART:20240102T090000Z
SUMMARY:Not a task
END:VEVENT
END:VCALENDAR
"""


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class DecodeVtodoTests(unittest.TestCase):
    def test_simple(self):
        task = decode_vtodo(EXAMPLE_VTODO)
        self.assertEqual("bdc22720-b9e1-42c9-89c2-a85405d8fbff", task.uid)
        self.assertEqual("do something", task.title)
        self.assertEqual("with some details", task.description)
        self.assertEqual(utc(2015, 3, 14, 22, 35, 12), task.created_at)
        self.assertEqual(utc(2015, 3, 14, 22, 35, 12), task.updated_at)
        self.assertIsNone(task.completed_at)
        self.assertIsNone(task.priority)
        self.assertEqual([], task.labels)

    def test_str(self):
        task = decode_vtodo(EXAMPLE_VTODO.decode("utf-8"))
        self.assertEqual("do something", task.title)

    def test_full(self):
        task = decode_vtodo(EXAMPLE_VTODO_FULL)
        self.assertEqual("full-task", task.uid)
        self.assertIsNone(task.description)
        self.assertEqual(utc(2024, 1, 5, 17), task.due_at)
        self.assertEqual(utc(2024, 1, 2, 9), task.start_at)
        self.assertEqual(utc(2024, 1, 3, 10), task.completed_at)
        self.assertEqual(5, task.priority)
        self.assertEqual(100, task.percent_done)
        self.assertEqual("FF8800", task.color)
        self.assertEqual(2 * DAY, task.repeat_after)
        self.assertEqual(RepeatMode.DEFAULT, task.repeat_mode)
        self.assertEqual(["home", "garden"], [lb.title for lb in task.labels])
        self.assertEqual(
            [Relation("parent-task", RelationType.PARENT),
             Relation("sibling-task", RelationType.RELATED)],
            task.relations)
        self.assertEqual(
            [Reminder(relative_seconds=-900,
                      relative_to=ReminderAnchor.END),
             Reminder(reminder_at=utc(2024, 1, 4, 8))],
            task.reminders)
        # DTSTAMP is used when there is no LAST-MODIFIED.
        self.assertEqual(utc(2024, 1, 1, 12), task.updated_at)

    def test_monthly(self):
        task = decode_vtodo(EXAMPLE_VTODO.replace(
            b"STATUS:NEEDS-ACTION\n",
            b"STATUS:NEEDS-ACTION\nRRULE:FREQ=MONTHLY\n"))
        self.assertIsNone(task.repeat_after)
        self.assertEqual(RepeatMode.MONTH, task.repeat_mode)

    def test_completed_without_status(self):
        task = decode_vtodo(EXAMPLE_VTODO.replace(
            b"STATUS:NEEDS-ACTION\n", b"COMPLETED:20240103T100000Z\n"))
        self.assertIsNone(task.completed_at)

    def test_no_vtodo(self):
        self.assertRaises(MalformedCalendarData, decode_vtodo, EXAMPLE_VEVENT)

    def test_garbage(self):
        self.assertRaises(
            MalformedCalendarData, decode_vtodo, b"this is not a calendar")

    def test_invalid_utf8(self):
        self.assertRaises(
            MalformedCalendarData, decode_vtodo, b"BEGIN:VCALENDAR\xff\n")

    def test_invalid_priority(self):
        task = decode_vtodo(EXAMPLE_VTODO.replace(
            b"STATUS:NEEDS-ACTION\n", b"STATUS:NEEDS-ACTION\nPRIORITY:high\n"))
        self.assertEqual("do something", task.title)
        self.assertIsNone(task.priority)

    def test_invalid_rrule_interval(self):
        task = decode_vtodo(EXAMPLE_VTODO.replace(
            b"STATUS:NEEDS-ACTION\n",
            b"STATUS:NEEDS-ACTION\nRRULE:FREQ=DAILY;INTERVAL=abc\n"))
        self.assertEqual("do something", task.title)
        self.assertIsNone(task.repeat_after)
        self.assertIsNone(task.repeat_mode)

    def test_invalid_trigger(self):
        task = decode_vtodo(EXAMPLE_VTODO.replace(
            b"END:VTODO\n",
            b"BEGIN:VALARM\nTRIGGER:garbage\nACTION:DISPLAY\n"
            b"DESCRIPTION:Reminder\nEND:VALARM\nEND:VTODO\n"))
        self.assertEqual("do something", task.title)
        self.assertEqual([], task.reminders)

    def test_invalid_values_keep_valid_ones(self):
        task = decode_vtodo(EXAMPLE_VTODO_FULL.replace(
            b"PRIORITY:1\n", b"PRIORITY:high\n"))
        self.assertIsNone(task.priority)
        self.assertEqual(utc(2024, 1, 5, 17), task.due_at)
        self.assertEqual(2, len(task.reminders))


class PriorityTests(unittest.TestCase):
    def test_from_ical(self):
        self.assertIsNone(priority_from_ical(0))
        self.assertEqual(5, priority_from_ical(1))
        self.assertEqual(3, priority_from_ical(4))
        self.assertEqual(2, priority_from_ical(5))
        self.assertEqual(1, priority_from_ical(9))

    def test_to_ical(self):
        self.assertIsNone(priority_to_ical(None))
        self.assertEqual(9, priority_to_ical(1))
        self.assertEqual(1, priority_to_ical(5))


class GetColorTests(unittest.TestCase):
    def test_none(self):
        task = decode_vtodo(EXAMPLE_VTODO)
        self.assertIsNone(task.color)

    def test_order(self):
        from icalendar.cal import Todo

        todo = Todo()
        todo.add("COLOR", "#000000")
        todo.add("X-OUTLOOK-COLOR", "#123456")
        self.assertEqual("123456", get_color(todo))


class EncodeVtodoTests(unittest.TestCase):
    def make_task(self, **kwargs):
        return Task(
            id=1,
            project_id=1,
            uid="task-1",
            created_at=utc(2024, 1, 1, 10),
            updated_at=utc(2024, 1, 1, 12),
            **kwargs)

    def test_minimal(self):
        data = encode_vtodo(self.make_task(title="Buy milk"), "Groceries")
        self.assertTrue(data.startswith(b"BEGIN:VCALENDAR\r\n"))
        self.assertIn(b"BEGIN:VTODO\r\n", data)
        self.assertIn(b"UID:task-1\r\n", data)
        self.assertIn(b"SUMMARY:Buy milk\r\n", data)
        self.assertIn(b"STATUS:NEEDS-ACTION\r\n", data)
        self.assertIn(b"DTSTAMP:20240101T120000Z\r\n", data)
        self.assertIn(b"X-WR-CALNAME:Groceries\r\n", data)
        self.assertIn(b"X-PUBLISHED-TTL:PT4H\r\n", data)
        self.assertNotIn(b"DESCRIPTION", data)
        self.assertNotIn(b"PRIORITY", data)

    def test_completed(self):
        data = encode_vtodo(self.make_task(
            completed_at=utc(2024, 1, 2, 8), percent_done=100))
        self.assertIn(b"STATUS:COMPLETED\r\n", data)
        self.assertIn(b"COMPLETED:20240102T080000Z\r\n", data)
        self.assertIn(b"PERCENT-COMPLETE:100\r\n", data)
        self.assertNotIn(b"X-WR-CALNAME", data)

    def test_priority(self):
        data = encode_vtodo(self.make_task(priority=5))
        self.assertIn(b"PRIORITY:1\r\n", data)

    def test_repeat(self):
        data = encode_vtodo(self.make_task(
            repeat_after=3 * 60 * 60, repeat_mode=RepeatMode.DEFAULT))
        self.assertIn(b"FREQ=HOURLY", data)
        self.assertIn(b"INTERVAL=3", data)

    def test_repeat_monthly(self):
        data = encode_vtodo(self.make_task(
            due_at=utc(2024, 1, 15, 9), repeat_mode=RepeatMode.MONTH))
        self.assertIn(b"FREQ=MONTHLY", data)
        self.assertIn(b"BYMONTHDAY=15", data)

    def test_repeat_odd_interval(self):
        data = encode_vtodo(self.make_task(repeat_after=90))
        self.assertIn(b"FREQ=SECONDLY", data)

    def test_children(self):
        task = self.make_task(
            title="Plan trip",
            color="00ff00",
            labels=[Label("travel")],
            relations=[Relation("child-1", RelationType.CHILD)],
            reminders=[
                Reminder(relative_seconds=-600,
                         relative_to=ReminderAnchor.START)],
        )
        data = encode_vtodo(task)
        self.assertIn(b"CATEGORIES:travel\r\n", data)
        self.assertIn(b"RELATED-TO;RELTYPE=CHILD:child-1\r\n", data)
        self.assertIn(b"X-APPLE-CALENDAR-COLOR:#00ff00\r\n", data)
        self.assertIn(b"BEGIN:VALARM\r\n", data)
        self.assertIn(b"TRIGGER;RELATED=START:-PT10M\r\n", data)

    def test_decodes(self):
        task = self.make_task(
            title="Plan trip", description="", due_at=utc(2024, 2, 1),
            priority=3, labels=[Label("travel"), Label("work")],
            reminders=[Reminder(reminder_at=utc(2024, 1, 31, 18))])
        decoded = decode_vtodo(encode_vtodo(task))
        self.assertEqual("task-1", decoded.uid)
        self.assertEqual("Plan trip", decoded.title)
        self.assertEqual("", decoded.description)
        self.assertEqual(utc(2024, 2, 1), decoded.due_at)
        self.assertEqual(3, decoded.priority)
        self.assertEqual(
            ["travel", "work"], [lb.title for lb in decoded.labels])
        self.assertEqual(task.reminders, decoded.reminders)
        self.assertEqual(task.updated_at, decoded.updated_at)
        self.assertEqual(task.created_at, decoded.created_at)
        self.assertIsNone(decoded.completed_at)

    def test_relative_reminder_default_anchor(self):
        data = encode_vtodo(self.make_task(
            reminders=[Reminder(relative_seconds=timedelta(hours=1).seconds)]))
        self.assertIn(b"TRIGGER;RELATED=START:PT1H\r\n", data)
