# calquery
# Copyright (C) 2016-2026 Jelmer Vernooĳ <jelmer@jelmer.uk>, et al.
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

"""Tests for calquery.caldav."""

import unittest
from datetime import datetime, timezone

from icalendar.cal import Calendar

from calquery.caldav import (
    CalendarMultiget,
    CalendarQuery,
    FreeBusyQuery,
    calendar_multiget,
    calendar_query,
    free_busy_query,
    parse_report,
    run_report,
)
from calquery.dav import BadRequestError, InvalidFilter, UnsupportedFilter

EVENT = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calquery//tests//EN
BEGIN:VEVENT
UID:event@example.com
DTSTAMP:20060101T000000Z
DTSTART:20060104T100000
DURATION:PT1H
SUMMARY:Dentist
ATTENDEE;PARTSTAT=ACCEPTED:mailto:bob@example.com
END:VEVENT
END:VCALENDAR
"""

TODO = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calquery//tests//EN
BEGIN:VTODO
UID:todo@example.com
DTSTAMP:20060101T000000Z
SUMMARY:Pay bills
END:VTODO
END:VCALENDAR
"""

CANCELLED = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calquery//tests//EN
BEGIN:VEVENT
UID:cancelled@example.com
DTSTAMP:20060101T000000Z
DTSTART:20060104T120000Z
DURATION:PT1H
STATUS:CANCELLED
SUMMARY:Lunch
END:VEVENT
END:VCALENDAR
"""

UNBOUNDED = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calquery//tests//EN
BEGIN:VEVENT
UID:forever@example.com
DTSTAMP:20060101T000000Z
DTSTART:20060102T100000Z
DURATION:PT1H
RRULE:FREQ=DAILY
SUMMARY:Forever
END:VEVENT
END:VCALENDAR
"""

BAD_RRULE = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calquery//tests//EN
BEGIN:VEVENT
UID:badrule@example.com
DTSTAMP:20060101T000000Z
DTSTART:20060104T080000Z
DURATION:PT1H
RRULE:FREQ=DAILY;BYDAY=XX
SUMMARY:Bad rule
END:VEVENT
END:VCALENDAR
"""

BROKEN_DTSTART = b"""\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calquery//tests//EN
BEGIN:VEVENT
UID:broken@example.com
DTSTAMP:20060101T000000Z
DTSTART:garbage
DURATION:PT1H
SUMMARY:Broken
END:VEVENT
END:VCALENDAR
"""

NEW_YORK = """\
BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calquery//tests//EN
BEGIN:VTIMEZONE
TZID:America/New_York
BEGIN:STANDARD
DTSTART:19671029T020000
RRULE:FREQ=YEARLY;BYDAY=-1SU;BYMONTH=10
TZOFFSETFROM:-0400
TZOFFSETTO:-0500
TZNAME:EST
END:STANDARD
BEGIN:DAYLIGHT
DTSTART:19870405T020000
RRULE:FREQ=YEARLY;BYDAY=1SU;BYMONTH=4
TZOFFSETFROM:-0500
TZOFFSETTO:-0400
TZNAME:EDT
END:DAYLIGHT
END:VTIMEZONE
END:VCALENDAR
"""

OBJECTS = [("event.ics", EVENT), ("todo.ics", TODO), ("cancelled.ics", CANCELLED)]


def calendar_query_body(filter, extra=""):
    return f"""\
<C:calendar-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  {extra}
  <C:filter>{filter}</C:filter>
</C:calendar-query>
"""


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class ParseReportTests(unittest.TestCase):
    def test_calendar_query(self):
        report = parse_report(
            calendar_query_body('<C:comp-filter name="VCALENDAR"/>')
        )
        self.assertIsInstance(report, CalendarQuery)
        self.assertIsNone(report.calendar_data)

    def test_element(self):
        from calquery.dav import parse_xml_body

        body = parse_xml_body(calendar_query_body('<C:comp-filter name="VCALENDAR"/>'))
        self.assertIsInstance(parse_report(body), CalendarQuery)

    def test_missing_filter(self):
        self.assertRaises(
            InvalidFilter,
            parse_report,
            '<C:calendar-query xmlns:C="urn:ietf:params:xml:ns:caldav"/>',
        )

    def test_unknown_report(self):
        self.assertRaises(
            UnsupportedFilter,
            parse_report,
            '<C:calendar-bogus xmlns:C="urn:ietf:params:xml:ns:caldav"/>',
        )

    def test_not_xml(self):
        self.assertRaises(BadRequestError, parse_report, b"<C:calendar-query")

    def test_unknown_element_strict(self):
        body = calendar_query_body(
            '<C:comp-filter name="VCALENDAR"/>', extra="<D:bogus/>"
        )
        self.assertIsInstance(parse_report(body), CalendarQuery)
        self.assertRaises(BadRequestError, parse_report, body, strict=True)

    def test_invalid_timezone(self):
        body = calendar_query_body(
            '<C:comp-filter name="VCALENDAR"/>',
            extra="<C:timezone>not a calendar</C:timezone>",
        )
        self.assertRaises(InvalidFilter, parse_report, body)

    def test_calendar_data_checked(self):
        body = calendar_query_body(
            '<C:comp-filter name="VCALENDAR"/>',
            extra="<D:prop><C:calendar-data><C:comp/></C:calendar-data></D:prop>",
        )
        self.assertRaises(InvalidFilter, parse_report, body)

    def test_multiget(self):
        report = parse_report(
            """\
<C:calendar-multiget xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:prop><D:getetag/></D:prop>
  <D:href>/cal/event.ics</D:href>
  <D:href>/cal/todo.ics</D:href>
</C:calendar-multiget>"""
        )
        self.assertIsInstance(report, CalendarMultiget)
        self.assertEqual(["/cal/event.ics", "/cal/todo.ics"], report.hrefs)
        self.assertTrue(report.matches(Calendar.from_ical(EVENT)))

    def test_free_busy_query(self):
        report = parse_report(
            """\
<C:free-busy-query xmlns:C="urn:ietf:params:xml:ns:caldav">
  <C:time-range start="20060104T000000Z" end="20060105T000000Z"/>
</C:free-busy-query>"""
        )
        self.assertIsInstance(report, FreeBusyQuery)
        self.assertEqual(utc(2006, 1, 4), report.time_range.start)

    def test_free_busy_query_without_range(self):
        self.assertRaises(
            InvalidFilter,
            parse_report,
            '<C:free-busy-query xmlns:C="urn:ietf:params:xml:ns:caldav"/>',
        )


class CalendarQueryTests(unittest.TestCase):
    def query(self, filter, extra="", objects=OBJECTS, **kwargs):
        report = parse_report(calendar_query_body(filter, extra), **kwargs)
        return list(calendar_query(report, objects))

    def test_comp(self):
        matches = self.query(
            '<C:comp-filter name="VCALENDAR"><C:comp-filter name="VEVENT"/></C:comp-filter>'
        )
        self.assertEqual(["event.ics", "cancelled.ics"], [m.name for m in matches])
        self.assertIsNone(matches[0].calendar)

    def test_is_not_defined(self):
        matches = self.query(
            '<C:comp-filter name="VCALENDAR">'
            '<C:comp-filter name="VEVENT"><C:is-not-defined/></C:comp-filter>'
            "</C:comp-filter>"
        )
        self.assertEqual(["todo.ics"], [m.name for m in matches])

    def test_text_match(self):
        matches = self.query(
            '<C:comp-filter name="VCALENDAR"><C:comp-filter name="VEVENT">'
            '<C:prop-filter name="ATTENDEE">'
            '<C:text-match collation="i;ascii-casemap">MAILTO:BOB@example.com</C:text-match>'
            "</C:prop-filter></C:comp-filter></C:comp-filter>"
        )
        self.assertEqual(["event.ics"], [m.name for m in matches])

    def test_timezone(self):
        # The floating 10:00 event is at 15:00 UTC in New York
        filter = (
            '<C:comp-filter name="VCALENDAR"><C:comp-filter name="VEVENT">'
            '<C:time-range start="20060104T150000Z" end="20060104T153000Z"/>'
            "</C:comp-filter></C:comp-filter>"
        )
        self.assertEqual([], self.query(filter))
        matches = self.query(filter, extra=f"<C:timezone>{NEW_YORK}</C:timezone>")
        self.assertEqual(["event.ics"], [m.name for m in matches])

    def test_default_timezone(self):
        filter = (
            '<C:comp-filter name="VCALENDAR"><C:comp-filter name="VEVENT">'
            '<C:time-range start="20060104T150000Z" end="20060104T153000Z"/>'
            "</C:comp-filter></C:comp-filter>"
        )
        matches = self.query(filter, default_timezone="America/New_York")
        self.assertEqual(["event.ics"], [m.name for m in matches])

    def test_projection(self):
        matches = self.query(
            '<C:comp-filter name="VCALENDAR"><C:comp-filter name="VTODO"/></C:comp-filter>',
            extra=(
                "<D:prop><C:calendar-data>"
                '<C:comp name="VCALENDAR"><C:comp name="VTODO">'
                '<C:prop name="SUMMARY"/>'
                "</C:comp></C:comp>"
                "</C:calendar-data></D:prop>"
            ),
        )
        [match] = matches
        self.assertEqual(
            b"BEGIN:VCALENDAR\r\nBEGIN:VTODO\r\nSUMMARY:Pay bills\r\n"
            b"END:VTODO\r\nEND:VCALENDAR\r\n",
            match.calendar.to_ical(),
        )

    def test_unparseable_object_skipped(self):
        with self.assertLogs(level="WARNING"):
            matches = self.query(
                '<C:comp-filter name="VCALENDAR"/>',
                objects=[("bad.ics", b"not a calendar"), ("todo.ics", TODO)],
            )
        self.assertEqual(["todo.ics"], [m.name for m in matches])

    def test_recurrence_limit_skipped(self):
        filter = (
            '<C:comp-filter name="VCALENDAR"><C:comp-filter name="VEVENT">'
            '<C:time-range start="20070101T110000Z" end="20070201T000000Z"/>'
            "</C:comp-filter></C:comp-filter>"
        )
        with self.assertLogs(level="WARNING"):
            matches = self.query(
                filter,
                objects=[("forever.ics", UNBOUNDED), ("event.ics", EVENT)],
                max_instances=1,
            )
        self.assertEqual([], matches)

    def test_invalid_rrule_skipped(self):
        filter = (
            '<C:comp-filter name="VCALENDAR"><C:comp-filter name="VEVENT">'
            '<C:time-range start="20060104T000000Z" end="20060105T000000Z"/>'
            "</C:comp-filter></C:comp-filter>"
        )
        with self.assertLogs(level="WARNING"):
            matches = self.query(
                filter, objects=[("bad.ics", BAD_RRULE), ("event.ics", EVENT)]
            )
        self.assertEqual(["event.ics"], [m.name for m in matches])

    def test_broken_property_skipped(self):
        filter = (
            '<C:comp-filter name="VCALENDAR"><C:comp-filter name="VEVENT">'
            '<C:time-range start="20060104T000000Z" end="20060105T000000Z"/>'
            "</C:comp-filter></C:comp-filter>"
        )
        with self.assertLogs(level="WARNING"):
            matches = self.query(
                filter,
                objects=[("broken.ics", BROKEN_DTSTART), ("event.ics", EVENT)],
            )
        self.assertEqual(["event.ics"], [m.name for m in matches])

    def test_parsed_objects(self):
        matches = self.query(
            '<C:comp-filter name="VCALENDAR"/>',
            objects=[("todo.ics", Calendar.from_ical(TODO))],
        )
        self.assertEqual(["todo.ics"], [m.name for m in matches])


class CalendarMultigetTests(unittest.TestCase):
    def test_multiget(self):
        report = parse_report(
            """\
<C:calendar-multiget xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:prop><C:calendar-data>
    <C:comp name="VCALENDAR"><C:comp name="VEVENT"><C:prop name="UID"/></C:comp></C:comp>
  </C:calendar-data></D:prop>
  <D:href>event.ics</D:href>
  <D:href>todo.ics</D:href>
</C:calendar-multiget>"""
        )
        matches = list(calendar_multiget(report, OBJECTS))
        self.assertEqual(["event.ics", "todo.ics"], [m.name for m in matches])
        self.assertEqual(
            ["VEVENT"], [c.name for c in matches[0].calendar.subcomponents]
        )
        self.assertEqual([], matches[1].calendar.subcomponents)


class FreeBusyQueryTests(unittest.TestCase):
    def test_free_busy(self):
        report = parse_report(
            """\
<C:free-busy-query xmlns:C="urn:ietf:params:xml:ns:caldav">
  <C:time-range start="20060104T000000Z" end="20060105T000000Z"/>
</C:free-busy-query>"""
        )
        cal = free_busy_query(report, OBJECTS)
        self.assertEqual("2.0", cal["VERSION"])
        [fb] = cal.subcomponents
        self.assertEqual("VFREEBUSY", fb.name)
        period = fb["FREEBUSY"]
        self.assertEqual((utc(2006, 1, 4, 10), utc(2006, 1, 4, 11)), (period.start, period.end))
        self.assertEqual("BUSY", period.params["FBTYPE"])

    def test_bad_objects_skipped(self):
        report = parse_report(
            """\
<C:free-busy-query xmlns:C="urn:ietf:params:xml:ns:caldav">
  <C:time-range start="20060104T000000Z" end="20060105T000000Z"/>
</C:free-busy-query>"""
        )
        with self.assertLogs(level="WARNING"):
            cal = free_busy_query(
                report,
                [
                    ("bad.ics", BAD_RRULE),
                    ("broken.ics", BROKEN_DTSTART),
                    ("event.ics", EVENT),
                ],
            )
        [fb] = cal.subcomponents
        period = fb["FREEBUSY"]
        self.assertEqual(
            (utc(2006, 1, 4, 10), utc(2006, 1, 4, 11)), (period.start, period.end)
        )

    def test_empty(self):
        report = parse_report(
            """\
<C:free-busy-query xmlns:C="urn:ietf:params:xml:ns:caldav">
  <C:time-range start="20070104T000000Z" end="20070105T000000Z"/>
</C:free-busy-query>"""
        )
        cal = run_report(report, OBJECTS)
        [fb] = cal.subcomponents
        self.assertNotIn("FREEBUSY", fb)
        self.assertEqual(utc(2007, 1, 4), fb["DTSTART"].dt)
