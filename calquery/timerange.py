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

"""Time ranges, as used by CALDAV:time-range and CALDAV:expand.

See https://tools.ietf.org/html/rfc4791, section 9.9.
"""

import re
from datetime import datetime, timezone
from typing import NamedTuple, Optional

from icalendar.prop import vDatetime

from .dav import ET, InvalidFilter

# datetime can not represent year 0, so the open start of a range is
# the first moment of year 1 rather than 00000101T000000Z.
MIN_DATE_TIME = "00010101T000000Z"
MAX_DATE_TIME = "99991231T235959Z"

_UTC_DATE_TIME_RE = re.compile(r"^\d{8}T\d{6}Z$")


class TimeRange(NamedTuple):
    """A [start, end) interval in UTC."""

    start: datetime
    end: datetime

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.start!r}, {self.end!r})"


def parse_utc_date_time(value: str) -> datetime:
    """Parse an iCalendar "date with UTC time".

    Raises:
      InvalidFilter: if value is not of the form YYYYMMDDTHHMMSSZ
    """
    if not _UTC_DATE_TIME_RE.match(value):
        raise InvalidFilter(f"Invalid UTC date-time {value!r} in time-range")
    try:
        dt = vDatetime.from_ical(value)
    except ValueError as exc:
        raise InvalidFilter(
            f"Invalid UTC date-time {value!r} in time-range"
        ) from exc
    return dt.astimezone(timezone.utc)


MIN_EXPANSION_TIME = parse_utc_date_time(MIN_DATE_TIME)
MAX_EXPANSION_TIME = parse_utc_date_time(MAX_DATE_TIME)


def resolve_time_range(start: Optional[str], end: Optional[str]) -> TimeRange:
    """Resolve a start/end attribute pair into a TimeRange.

    Either start OR end OR both need to be specified; the missing bound
    is open-ended. Note that start <= end is not checked.
    """
    if start is None and end is None:
        raise InvalidFilter("Start and/or end attribute must exist in time-range")
    if start is None:
        start_dt = MIN_EXPANSION_TIME
    else:
        start_dt = parse_utc_date_time(start)
    if end is None:
        end_dt = MAX_EXPANSION_TIME
    else:
        end_dt = parse_utc_date_time(end)
    return TimeRange(start_dt, end_dt)


def parse_time_range(el: ET.Element) -> TimeRange:
    return resolve_time_range(el.get("start"), el.get("end"))


def spans_overlap(a: datetime, b: datetime, c: datetime, d: datetime) -> bool:
    """Check whether [a, b) and [c, d) intersect.

    A zero-length span [a, a] is treated as the instant a, which
    intersects [c, d) when c <= a < d.
    """
    if b <= a:
        return c <= a and a < d
    return a < d and c < b


def overlaps_timestamp(timestamp: datetime, time_range: TimeRange) -> bool:
    """Check whether a date-time property value falls within a range.

    (start <= date-time) AND (end > date-time)
    """
    return time_range.start <= timestamp and time_range.end > timestamp
