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

"""Free/busy aggregation.

See https://tools.ietf.org/html/rfc4791, section 7.10.
"""

import datetime
from collections.abc import Iterable, Iterator
from typing import Optional

from icalendar.cal import Calendar, Component, FreeBusy
from icalendar.parser import Parameters
from icalendar.prop import vDDDTypes, vPeriod

from .icalendar import (
    ComponentKind,
    TzifyFunction,
    asutc,
    iter_freebusy_periods,
    kind_of,
)
from .recurrence import index_overrides, instance_bounds, is_recurring, iter_instances
from .timerange import TimeRange, spans_overlap

Period = tuple[datetime.datetime, datetime.datetime, str]


def map_freebusy(comp: Component) -> Optional[str]:
    """Determine the free/busy type of an event.

    Returns: FBTYPE value, or None if the event does not take up time
    """
    transp = str(comp.get("TRANSP", "OPAQUE")).upper()
    if transp == "TRANSPARENT":
        return None
    status = str(comp.get("STATUS", "CONFIRMED")).upper()
    if status == "CANCELLED":
        return None
    elif status == "TENTATIVE":
        return "BUSY-TENTATIVE"
    return "BUSY"


def _clip(start, end, fbtype, time_range: TimeRange) -> Period:
    return (
        asutc(max(start, time_range.start)),
        asutc(min(end, time_range.end)),
        fbtype,
    )


def iter_freebusy(
    calendar: Calendar,
    time_range: TimeRange,
    tzify: TzifyFunction,
    max_instances: int,
) -> Iterator[Period]:
    """Iterate over the busy periods of a calendar object within a range.

    Returns: iterator over (start, end, fbtype) tuples, clipped to the
      range and in UTC
    Raises:
      RecurrenceLimitExceeded: if expanding a recurring event exceeds
        the instance limit
    """
    overrides = index_overrides(calendar)
    masters = {
        str(comp["UID"])
        for comp in calendar.subcomponents
        if kind_of(comp) == ComponentKind.VEVENT
        and is_recurring(comp)
        and "UID" in comp
    }
    for comp in calendar.subcomponents:
        kind = kind_of(comp)
        if kind == ComponentKind.VEVENT:
            if "RECURRENCE-ID" in comp and str(comp.get("UID")) in masters:
                # Counted as an instance of its master
                continue
            for instance in iter_instances(
                comp, time_range, tzify, max_instances, overrides
            ):
                fbtype = map_freebusy(instance.component)
                if fbtype is None:
                    continue
                bounds = instance_bounds(instance, tzify)
                if bounds is None or bounds[0] == bounds[1]:
                    continue
                if not spans_overlap(
                    bounds[0], bounds[1], time_range.start, time_range.end
                ):
                    continue
                yield _clip(bounds[0], bounds[1], fbtype, time_range)
        elif kind == ComponentKind.VFREEBUSY:
            for start, end, fbtype in iter_freebusy_periods(comp, tzify):
                if start < time_range.end and end > time_range.start:
                    yield _clip(start, end, fbtype, time_range)


def find_source_freebusy(calendar: Calendar) -> Optional[Component]:
    for comp in calendar.subcomponents:
        if kind_of(comp) == ComponentKind.VFREEBUSY:
            return comp
    return None


def build_freebusy(
    periods: Iterable[Period],
    time_range: TimeRange,
    source: Optional[Component] = None,
    omit_empty: bool = True,
) -> Optional[FreeBusy]:
    """Create a VFREEBUSY component from a set of busy periods.

    Args:
      periods: Iterable over (start, end, fbtype) tuples
      time_range: Queried range
      source: VFREEBUSY component to take DTSTART and DTEND from
      omit_empty: Return None rather than a VFREEBUSY without periods
    """
    periods = sorted(periods)
    if not periods and omit_empty:
        return None
    fb = FreeBusy()
    fb["DTSTAMP"] = vDDDTypes(
        datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
    )
    if source is not None and "DTSTART" in source and "DTEND" in source:
        fb["DTSTART"] = source["DTSTART"]
        fb["DTEND"] = source["DTEND"]
    else:
        fb["DTSTART"] = vDDDTypes(time_range.start)
        fb["DTEND"] = vDDDTypes(time_range.end)
    for start, end, fbtype in periods:
        vp = vPeriod((start, end))
        vp.params = Parameters({"FBTYPE": fbtype})
        fb.add("FREEBUSY", vp)
    return fb


def aggregate_freebusy(
    calendars: Iterable[Calendar],
    time_range: TimeRange,
    tzify: TzifyFunction,
    max_instances: int,
    omit_empty: bool = True,
) -> Optional[FreeBusy]:
    """Aggregate the busy time of a set of calendar objects.

    Args:
      calendars: Calendar objects
      time_range: Range to report on
      tzify: Function to make floating values timezone-aware
      max_instances: Maximum number of instances to expand per component
      omit_empty: Return None if there is no busy time in the range
    Returns: VFREEBUSY component, or None
    """
    periods: list[Period] = []
    source = None
    for calendar in calendars:
        if source is None:
            source = find_source_freebusy(calendar)
        periods.extend(iter_freebusy(calendar, time_range, tzify, max_instances))
    return build_freebusy(periods, time_range, source, omit_empty=omit_empty)
