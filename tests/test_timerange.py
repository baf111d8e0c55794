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

"""Tests for calquery.timerange."""

import unittest
from datetime import datetime, timezone

from calquery.dav import ET, InvalidFilter, caldav_tag
from calquery.timerange import (
    TimeRange,
    overlaps_timestamp,
    parse_time_range,
    resolve_time_range,
    spans_overlap,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class ResolveTimeRangeTests(unittest.TestCase):
    def test_both(self):
        self.assertEqual(
            TimeRange(utc(2006, 1, 4), utc(2006, 1, 5)),
            resolve_time_range("20060104T000000Z", "20060105T000000Z"),
        )

    def test_start_only(self):
        tr = resolve_time_range("20060104T000000Z", None)
        self.assertEqual(utc(2006, 1, 4), tr.start)
        self.assertEqual(utc(9999, 12, 31, 23, 59, 59), tr.end)

    def test_end_only(self):
        tr = resolve_time_range(None, "20060105T000000Z")
        self.assertEqual(utc(1, 1, 1), tr.start)
        self.assertEqual(utc(2006, 1, 5), tr.end)

    def test_neither(self):
        self.assertRaises(InvalidFilter, resolve_time_range, None, None)

    def test_not_utc(self):
        self.assertRaises(InvalidFilter, resolve_time_range, "20060104T000000", None)

    def test_date(self):
        self.assertRaises(InvalidFilter, resolve_time_range, None, "20060104")

    def test_garbage(self):
        self.assertRaises(InvalidFilter, resolve_time_range, "20061304T000000Z", None)

    def test_inverted_is_accepted(self):
        tr = resolve_time_range("20060105T000000Z", "20060104T000000Z")
        self.assertGreater(tr.start, tr.end)

    def test_parse_element(self):
        el = ET.Element(caldav_tag("time-range"))
        el.set("start", "20060104T140000Z")
        self.assertEqual(utc(2006, 1, 4, 14), parse_time_range(el).start)


class OverlapTests(unittest.TestCase):
    def test_spans(self):
        a, b, c, d = (utc(2006, 1, day) for day in range(1, 5))
        self.assertTrue(spans_overlap(a, c, b, d))
        self.assertFalse(spans_overlap(a, b, b, d))
        self.assertFalse(spans_overlap(d, utc(2006, 1, 5), b, d))

    def test_instant(self):
        t = utc(2006, 1, 2)
        self.assertTrue(spans_overlap(t, t, utc(2006, 1, 2), utc(2006, 1, 3)))
        self.assertFalse(spans_overlap(t, t, utc(2006, 1, 1), utc(2006, 1, 2)))

    def test_timestamp(self):
        tr = TimeRange(utc(2006, 1, 2), utc(2006, 1, 3))
        self.assertTrue(overlaps_timestamp(utc(2006, 1, 2), tr))
        self.assertFalse(overlaps_timestamp(utc(2006, 1, 3), tr))
        self.assertFalse(overlaps_timestamp(utc(2006, 1, 1), tr))
