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

"""CalDAV report evaluation.

https://tools.ietf.org/html/rfc4791

This module parses calendar-query, calendar-multiget and free-busy-query
report bodies and evaluates them against sets of calendar objects.
"""

import logging
from collections.abc import Iterable, Iterator
from datetime import tzinfo
from typing import NamedTuple, Optional, Union

from icalendar.cal import Calendar
from icalendar.error import BrokenCalendarProperty

from .dav import (
    ET,
    InvalidFilter,
    RecurrenceLimitExceeded,
    UnsupportedFilter,
    caldav_tag,
    nonfatal_bad_request,
    parse_xml_body,
)
from .filters import DEFAULT_MAX_INSTANCES, CalendarFilter, parse_filter
from .freebusy import build_freebusy, find_source_freebusy, iter_freebusy
from .icalendar import (
    InvalidCalendar,
    TzifyFunction,
    get_tz_from_text,
    parse_calendar,
    tzifier,
)
from .projection import check_calendar_data, project
from .timerange import TimeRange, parse_time_range

PRODID = "-//Jelmer Vernooĳ//calquery//EN"

CalendarObject = Union[bytes, str, Calendar]


class Match(NamedTuple):
    """A calendar object selected by a report.

    ``calendar`` is the projected calendar data, or None if no calendar
    data was requested (or the projection selected nothing).
    """

    name: str
    calendar: Optional[Calendar]


class Report:
    """A parsed report."""

    name: str

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class CalendarQuery(Report):
    """calendar-query report.

    See https://tools.ietf.org/html/rfc4791, section 7.8
    """

    name = caldav_tag("calendar-query")

    def __init__(
        self,
        filter: CalendarFilter,
        calendar_data: Optional[ET.Element] = None,
    ) -> None:
        self.filter = filter
        self.calendar_data = calendar_data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.filter!r})"

    @property
    def tzify(self) -> TzifyFunction:
        return self.filter.tzify

    @property
    def max_instances(self) -> int:
        return self.filter.max_instances

    def matches(self, calendar: Calendar) -> bool:
        return self.filter.check(calendar)


class CalendarMultiget(Report):
    """calendar-multiget report.

    See https://tools.ietf.org/html/rfc4791, section 7.9
    """

    name = caldav_tag("calendar-multiget")

    def __init__(
        self,
        hrefs: list[str],
        calendar_data: Optional[ET.Element] = None,
        tzify: Optional[TzifyFunction] = None,
        max_instances: int = DEFAULT_MAX_INSTANCES,
    ) -> None:
        self.hrefs = hrefs
        self.calendar_data = calendar_data
        self.tzify = tzify or tzifier("UTC")
        self.max_instances = max_instances

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.hrefs!r})"

    def matches(self, calendar: Calendar) -> bool:
        return True


class FreeBusyQuery(Report):
    """free-busy-query report.

    See https://tools.ietf.org/html/rfc4791, section 7.10
    """

    name = caldav_tag("free-busy-query")

    def __init__(
        self,
        time_range: TimeRange,
        tzify: Optional[TzifyFunction] = None,
        max_instances: int = DEFAULT_MAX_INSTANCES,
    ) -> None:
        self.time_range = time_range
        self.tzify = tzify or tzifier("UTC")
        self.max_instances = max_instances

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.time_range!r})"


def _find_calendar_data(requested: Optional[ET.Element]) -> Optional[ET.Element]:
    if requested is None or requested.tag != "{DAV:}prop":
        return None
    calendar_data = requested.find(caldav_tag("calendar-data"))
    if calendar_data is not None:
        check_calendar_data(calendar_data)
    return calendar_data


def _parse_calendar_query(body, default_timezone, max_instances, strict):
    requested = None
    filter_el = None
    tztext = None
    for el in body:
        if el.tag in ("{DAV:}prop", "{DAV:}propname", "{DAV:}allprop"):
            requested = el
        elif el.tag == caldav_tag("filter"):
            filter_el = el
        elif el.tag == caldav_tag("timezone"):
            tztext = el.text
        else:
            nonfatal_bad_request(
                f"Unknown tag {el.tag} in report calendar-query", strict
            )
    if tztext is not None:
        try:
            tz = get_tz_from_text(tztext)
        except InvalidCalendar as exc:
            raise InvalidFilter(f"Invalid timezone: {exc.reason}") from exc
    else:
        tz = default_timezone
    calendar_filter = parse_filter(filter_el, CalendarFilter(tz, max_instances))
    return CalendarQuery(calendar_filter, _find_calendar_data(requested))


def _parse_calendar_multiget(body, default_timezone, max_instances, strict):
    requested = None
    hrefs = []
    for el in body:
        if el.tag in ("{DAV:}prop", "{DAV:}propname", "{DAV:}allprop"):
            requested = el
        elif el.tag == "{DAV:}href":
            hrefs.append((el.text or "").strip())
        else:
            nonfatal_bad_request(
                f"Unknown tag {el.tag} in report calendar-multiget", strict
            )
    return CalendarMultiget(
        hrefs,
        _find_calendar_data(requested),
        tzify=tzifier(default_timezone),
        max_instances=max_instances,
    )


def _parse_free_busy_query(body, default_timezone, max_instances, strict):
    time_range = None
    for el in body:
        if el.tag == caldav_tag("time-range"):
            if time_range is not None:
                raise InvalidFilter("Only one time-range allowed in free-busy-query")
            time_range = parse_time_range(el)
        else:
            nonfatal_bad_request(
                f"Unknown tag {el.tag} in report free-busy-query", strict
            )
    if time_range is None:
        raise InvalidFilter("Missing time-range in free-busy-query")
    return FreeBusyQuery(
        time_range, tzify=tzifier(default_timezone), max_instances=max_instances
    )


report_parsers = {
    CalendarQuery.name: _parse_calendar_query,
    CalendarMultiget.name: _parse_calendar_multiget,
    FreeBusyQuery.name: _parse_free_busy_query,
}


def parse_report(
    body: Union[ET.Element, bytes, str],
    default_timezone: Union[str, tzinfo] = "UTC",
    max_instances: int = DEFAULT_MAX_INSTANCES,
    strict: bool = False,
) -> Report:
    """Parse a report body.

    Args:
      body: Report root element, or the serialized report
      default_timezone: Timezone for floating times, unless the report
        carries a timezone element
      max_instances: Maximum number of recurrence instances to expand
      strict: Whether to reject unknown elements
    Returns: A Report instance
    Raises:
      BadRequestError: if the body can not be parsed
      InvalidFilter: if the filter is invalid
      UnsupportedFilter: for unsupported reports
    """
    if not isinstance(body, ET.Element):
        body = parse_xml_body(body)
    try:
        parser = report_parsers[body.tag]
    except KeyError as exc:
        raise UnsupportedFilter(f"Unsupported report {body.tag}") from exc
    return parser(body, default_timezone, max_instances, strict)


def _iter_calendars(
    objects: Iterable[tuple[str, CalendarObject]],
    max_resource_size: Optional[int],
) -> Iterator[tuple[str, Calendar]]:
    for name, obj in objects:
        if isinstance(obj, Calendar):
            yield name, obj
            continue
        try:
            yield name, parse_calendar(obj, max_resource_size)
        except InvalidCalendar as exc:
            logging.warning("Ignoring calendar object %s: %s", name, exc.reason)


def evaluate(
    report: Union[CalendarQuery, CalendarMultiget], name: str, calendar: Calendar
) -> Optional[Match]:
    """Evaluate a calendar-query or calendar-multiget against one object.

    Returns: a Match, or None if the object was not selected
    Raises:
      RecurrenceLimitExceeded: if recurrence expansion exceeds the limit
      InvalidCalendar: if a recurrence rule can not be parsed
      BrokenCalendarProperty: if a property value is malformed
    """
    if not report.matches(calendar):
        return None
    if report.calendar_data is None:
        return Match(name, None)
    return Match(
        name,
        project(
            calendar,
            report.calendar_data,
            tzify=report.tzify,
            max_instances=report.max_instances,
        ),
    )


def calendar_query(
    report: Union[CalendarQuery, CalendarMultiget],
    objects: Iterable[tuple[str, CalendarObject]],
    max_resource_size: Optional[int] = None,
) -> Iterator[Match]:
    """Run a calendar-query over a set of calendar objects.

    Objects that can not be parsed, that carry malformed properties or
    recurrence rules, or that exceed the recurrence limit are logged and
    skipped.

    Args:
      report: Parsed report
      objects: Iterable over (name, calendar object) tuples
      max_resource_size: Maximum size of serialized calendar objects
    Returns: iterator over Match tuples for matching objects
    """
    for name, calendar in _iter_calendars(objects, max_resource_size):
        try:
            match = evaluate(report, name, calendar)
        except RecurrenceLimitExceeded as exc:
            logging.warning("Ignoring calendar object %s: %s", name, exc.description)
            continue
        except InvalidCalendar as exc:
            logging.warning("Ignoring calendar object %s: %s", name, exc.reason)
            continue
        except BrokenCalendarProperty as exc:
            logging.warning("Ignoring calendar object %s: %s", name, exc)
            continue
        if match is not None:
            yield match


def calendar_multiget(
    report: CalendarMultiget,
    objects: Iterable[tuple[str, CalendarObject]],
    max_resource_size: Optional[int] = None,
) -> Iterator[Match]:
    """Retrieve the objects named in a calendar-multiget report.

    Objects are selected by name; if the report lists no hrefs, every
    object is returned.
    """
    wanted = set(report.hrefs)
    return calendar_query(
        report,
        ((name, obj) for (name, obj) in objects if not wanted or name in wanted),
        max_resource_size,
    )


def free_busy_query(
    report: FreeBusyQuery,
    objects: Iterable[tuple[str, CalendarObject]],
    max_resource_size: Optional[int] = None,
) -> Calendar:
    """Run a free-busy-query over a set of calendar objects.

    Returns: VCALENDAR with a single VFREEBUSY component
    """
    periods = []
    source = None
    for name, calendar in _iter_calendars(objects, max_resource_size):
        try:
            periods.extend(
                list(
                    iter_freebusy(
                        calendar, report.time_range, report.tzify, report.max_instances
                    )
                )
            )
        except RecurrenceLimitExceeded as exc:
            logging.warning("Ignoring calendar object %s: %s", name, exc.description)
            continue
        except InvalidCalendar as exc:
            logging.warning("Ignoring calendar object %s: %s", name, exc.reason)
            continue
        except BrokenCalendarProperty as exc:
            logging.warning("Ignoring calendar object %s: %s", name, exc)
            continue
        if source is None:
            source = find_source_freebusy(calendar)
    ret = Calendar()
    ret["VERSION"] = "2.0"
    ret["PRODID"] = PRODID
    fb = build_freebusy(periods, report.time_range, source, omit_empty=False)
    assert fb is not None
    ret.add_component(fb)
    return ret


def run_report(
    report: Report,
    objects: Iterable[tuple[str, CalendarObject]],
    max_resource_size: Optional[int] = None,
) -> Union[Iterator[Match], Calendar]:
    """Run any parsed report over a set of calendar objects."""
    if isinstance(report, CalendarQuery):
        return calendar_query(report, objects, max_resource_size)
    elif isinstance(report, CalendarMultiget):
        return calendar_multiget(report, objects, max_resource_size)
    elif isinstance(report, FreeBusyQuery):
        return free_busy_query(report, objects, max_resource_size)
    raise UnsupportedFilter(f"Unsupported report {report.name}")
