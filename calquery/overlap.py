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

"""Time-range overlap tests.

See https://tools.ietf.org/html/rfc4791, section 9.9.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from icalendar.cal import Component

from .icalendar import (
    ComponentKind,
    TzifyFunction,
    is_date,
    iter_freebusy_periods,
    kind_of,
)
from .recurrence import (
    Instance,
    OverrideIndex,
    index_overrides,
    instance_bounds,
    iter_instances,
)
from .timerange import (
    MAX_EXPANSION_TIME,
    MIN_EXPANSION_TIME,
    TimeRange,
    overlaps_timestamp,
    spans_overlap,
)

# Properties that a CALDAV:time-range inside a CALDAV:prop-filter applies to
TIMESTAMP_PROPERTIES = frozenset(
    [
        "COMPLETED",
        "CREATED",
        "DTEND",
        "DTSTAMP",
        "DTSTART",
        "DUE",
        "LAST-MODIFIED",
    ]
)


def apply_time_range_vevent(
    time_range: TimeRange, instance: Instance, tzify: TzifyFunction
) -> bool:
    bounds = instance_bounds(instance, tzify)
    if bounds is None or "DTSTART" not in instance.component:
        return False
    return spans_overlap(bounds[0], bounds[1], time_range.start, time_range.end)


def apply_time_range_vjournal(
    time_range: TimeRange, instance: Instance, tzify: TzifyFunction
) -> bool:
    comp, offset = instance
    dtstart = comp.get("DTSTART")
    if dtstart is None:
        return False
    start = tzify(dtstart.dt) + offset
    if is_date(dtstart.dt):
        end = start + timedelta(days=1)
    else:
        end = start
    return spans_overlap(start, end, time_range.start, time_range.end)


def apply_time_range_vtodo(
    time_range: TimeRange, instance: Instance, tzify: TzifyFunction
) -> bool:
    comp, offset = instance
    start = time_range.start
    end = time_range.end
    dtstart = comp.get("DTSTART")
    due = comp.get("DUE")
    duration = comp.get("DURATION")

    if dtstart is not None:
        s = tzify(dtstart.dt) + offset
        if duration is not None and due is None:
            e = s + duration.dt
            return start <= e and (end > s or end >= e)
        elif due is not None:
            d = tzify(due.dt) + offset
            return (start < d or start <= s) and (end > s or end >= d)
        else:
            return start <= s and end > s

    if due is not None:
        d = tzify(due.dt) + offset
        return start < d and end >= d

    completed = comp.get("COMPLETED")
    created = comp.get("CREATED")
    if completed is not None:
        c = tzify(completed.dt)
        if created is not None:
            cr = tzify(created.dt)
            return (start <= cr or start <= c) and (end >= cr or end >= c)
        return start <= c and end >= c
    elif created is not None:
        return end > tzify(created.dt)
    return True


def apply_time_range_vfreebusy(
    time_range: TimeRange, comp: Component, tzify: TzifyFunction
) -> bool:
    dtstart = comp.get("DTSTART")
    dtend = comp.get("DTEND")
    if dtstart is not None and dtend is not None:
        return time_range.start <= tzify(dtend.dt) and time_range.end > tzify(
            dtstart.dt
        )

    for period_start, period_end, _ in iter_freebusy_periods(comp, tzify):
        if time_range.start < period_end and time_range.end > period_start:
            return True

    return False


def _widen(time_range: TimeRange, delta: timedelta) -> TimeRange:
    try:
        start = time_range.start - delta
    except OverflowError:
        start = MIN_EXPANSION_TIME
    try:
        end = time_range.end + delta
    except OverflowError:
        end = MAX_EXPANSION_TIME
    return TimeRange(start, end)


class TimeRangeMatcher:
    """Match components and properties against a time range."""

    def __init__(
        self, time_range: TimeRange, tzify: TzifyFunction, max_instances: int
    ) -> None:
        self.time_range = time_range
        self.tzify = tzify
        self.max_instances = max_instances
        self.instance_handlers = {
            ComponentKind.VEVENT: apply_time_range_vevent,
            ComponentKind.VTODO: apply_time_range_vtodo,
            ComponentKind.VJOURNAL: apply_time_range_vjournal,
        }

    def __repr__(self) -> str:
        return "{}({!r}, {!r})".format(
            self.__class__.__name__, self.time_range.start, self.time_range.end
        )

    def _instances(self, comp, time_range, overrides):
        return iter_instances(
            comp, time_range, self.tzify, self.max_instances, overrides
        )

    def can_match(self, comp: Component) -> bool:
        kind = kind_of(comp)
        return kind in self.instance_handlers or kind in (
            ComponentKind.VFREEBUSY,
            ComponentKind.VALARM,
        )

    def match_component(
        self,
        comp: Component,
        parent: Optional[Component] = None,
        overrides: Optional[OverrideIndex] = None,
    ) -> bool:
        """Check whether a component overlaps the time range.

        Args:
          comp: Component to check
          parent: Parent component (needed for VALARM)
          overrides: Overridden instances, as returned by index_overrides
        Raises:
          RecurrenceLimitExceeded: if expansion of a recurring component
            exceeds the instance limit
        """
        kind = kind_of(comp)
        if kind == ComponentKind.VCALENDAR:
            if overrides is None:
                overrides = index_overrides(comp)
            return any(
                self.match_component(sub, comp, overrides)
                for sub in comp.subcomponents
                if self.can_match(sub) and kind_of(sub) != ComponentKind.VALARM
            )
        try:
            handler = self.instance_handlers[kind]  # type: ignore
        except KeyError:
            pass
        else:
            return any(
                handler(self.time_range, instance, self.tzify)
                for instance in self._instances(comp, self.time_range, overrides)
            )
        if kind == ComponentKind.VFREEBUSY:
            return apply_time_range_vfreebusy(self.time_range, comp, self.tzify)
        if kind == ComponentKind.VALARM:
            return self._match_valarm(comp, parent, overrides)
        logging.warning("Ignoring time-range on unsupported component %s", comp.name)
        return False

    def _alarm_fires(self, trigger: datetime, repeat: int, step) -> bool:
        for k in range(repeat + 1):
            if overlaps_timestamp(trigger + step * k, self.time_range):
                return True
        return False

    def _match_valarm(self, comp, parent, overrides) -> bool:
        """Check whether any trigger of an alarm falls within the range.

        A relative trigger is resolved against each instance of the
        parent component. Repetitions (REPEAT and DURATION) count as
        additional triggers.
        """
        trigger = comp.get("TRIGGER")
        if trigger is None:
            return False
        duration = comp.get("DURATION")
        try:
            repeat = int(comp.get("REPEAT", 0))
        except ValueError:
            repeat = 0
        if duration is None:
            repeat = 0
            step = timedelta(0)
        else:
            step = duration.dt

        if not isinstance(trigger.dt, timedelta):
            return self._alarm_fires(self.tzify(trigger.dt), repeat, step)

        if parent is None:
            return False
        related = str(trigger.params.get("RELATED", "START")).upper()
        widened = _widen(self.time_range, abs(trigger.dt) + abs(step) * (repeat + 1))
        for instance in self._instances(parent, widened, overrides):
            bounds = instance_bounds(instance, self.tzify)
            if bounds is None:
                continue
            if related == "END":
                base = bounds[1]
            else:
                base = bounds[0]
            if self._alarm_fires(base + trigger.dt, repeat, step):
                return True
        return False

    def match_property(self, comp: Component, name: str, prop) -> bool:
        """Check whether a date-time property value falls within the range."""
        if name not in TIMESTAMP_PROPERTIES:
            return False
        try:
            value = prop.dt
        except AttributeError:
            return False
        if not hasattr(value, "year"):
            return False
        return overlaps_timestamp(self.tzify(value), self.time_range)
