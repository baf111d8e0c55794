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

"""Recurrence expansion.

Instances of a recurring component are produced lazily, so that callers
looking for any overlapping instance can stop at the first one.
"""

import logging
from collections.abc import Iterator
from datetime import date, datetime, time, timedelta
from typing import NamedTuple, Optional, Union

import dateutil.rrule
from icalendar.cal import Calendar, Component

from .dav import RecurrenceLimitExceeded
from .icalendar import (
    ComponentKind,
    InvalidCalendar,
    TzifyFunction,
    asutc,
    create_prop_from_date_or_datetime,
    is_date,
    kind_of,
)
from .timerange import MIN_EXPANSION_TIME, TimeRange, spans_overlap

ZERO = timedelta(0)

RECURRING_KINDS = frozenset(
    [ComponentKind.VEVENT, ComponentKind.VTODO, ComponentKind.VJOURNAL]
)

RECURRENCE_PROPERTIES = ["RRULE", "EXRULE", "RDATE", "EXDATE"]

OverrideIndex = dict[str, dict[Union[date, datetime], Component]]


class Instance(NamedTuple):
    """One occurrence of a component.

    ``offset`` is the shift to apply to the DTSTART, DTEND and DUE of
    ``component`` to obtain this occurrence.
    """

    component: Component
    offset: timedelta


def is_recurring(comp: Component) -> bool:
    return "DTSTART" in comp and ("RRULE" in comp or "RDATE" in comp)


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _iter_dates(value) -> Iterator[Union[date, datetime, tuple]]:
    """Iterate over the values of (possibly repeated) RDATE/EXDATE properties."""
    for prop in _as_list(value):
        dts = getattr(prop, "dts", None)
        if dts is None:
            yield prop.dt
            continue
        for dt in dts:
            yield dt.dt


def _normalize_dt_for_rrule(
    dt: Union[date, datetime], original_dt: Union[date, datetime]
) -> datetime:
    """Normalize a datetime to the form of the occurrences of an rrule.

    dateutil produces naive datetimes for date and floating DTSTART values
    and aware ones otherwise; values mixed into the same set have to agree.
    """
    if not isinstance(dt, datetime):
        dt = datetime.combine(dt, time())
    if not isinstance(original_dt, datetime) or original_dt.tzinfo is None:
        if dt.tzinfo is not None:
            return dt.replace(tzinfo=None)
        return dt
    if dt.tzinfo is None:
        return dt.replace(tzinfo=original_dt.tzinfo)
    return dt


def rruleset_from_comp(comp: Component) -> dateutil.rrule.rruleset:
    """Build the recurrence set of a component.

    EXDATE is not part of the returned set; see iter_instances.

    Raises:
      InvalidCalendar: if a recurrence rule can not be parsed
    """
    original = comp["DTSTART"].dt
    dtstart = _normalize_dt_for_rrule(original, original)
    rs = dateutil.rrule.rruleset()
    try:
        for rrule in _as_list(comp.get("RRULE")):
            rrulestr = rrule.to_ical().decode("utf-8")
            rs.rrule(dateutil.rrule.rrulestr(rrulestr, dtstart=dtstart))  # type: ignore
        for exrule in _as_list(comp.get("EXRULE")):
            exrulestr = exrule.to_ical().decode("utf-8")
            rs.exrule(dateutil.rrule.rrulestr(exrulestr, dtstart=dtstart))  # type: ignore
    except ValueError as exc:
        raise InvalidCalendar(f"Invalid recurrence rule: {exc}") from exc
    if "RRULE" not in comp:
        # RDATE only; DTSTART is the first instance
        rs.rdate(dtstart)
    for rdate in _iter_dates(comp.get("RDATE")):
        if isinstance(rdate, tuple):
            # PERIOD value
            rdate = rdate[0]
        rs.rdate(_normalize_dt_for_rrule(rdate, original))
    return rs


def occurrence_key(dt: Union[date, datetime], date_based: bool, tzify: TzifyFunction):
    """Key used to compare occurrences with EXDATE and RECURRENCE-ID values."""
    if date_based:
        if isinstance(dt, datetime):
            return dt.date()
        return dt
    if not isinstance(dt, datetime):
        return dt
    return asutc(tzify(dt))


def component_extent(comp: Component) -> timedelta:
    """Length of a single occurrence of a component."""
    dtstart = comp.get("DTSTART")
    if dtstart is None:
        return ZERO
    if "DURATION" in comp:
        extent = comp["DURATION"].dt
    elif "DTEND" in comp:
        extent = comp["DTEND"].dt - dtstart.dt
    elif "DUE" in comp:
        extent = comp["DUE"].dt - dtstart.dt
    elif is_date(dtstart.dt):
        extent = timedelta(days=1)
    else:
        extent = ZERO
    if not isinstance(extent, timedelta) or extent < ZERO:
        return ZERO
    return extent


def instance_bounds(
    instance: Instance, tzify: TzifyFunction
) -> Optional[tuple[datetime, datetime]]:
    """Effective start and end of an instance.

    Returns None if the component has no DTSTART (or DUE, for to-dos).
    """
    comp, offset = instance
    dtstart = comp.get("DTSTART")
    if dtstart is None:
        due = comp.get("DUE")
        if due is None:
            return None
        t = tzify(due.dt) + offset
        return (t, t)
    start = tzify(dtstart.dt) + offset
    if "DTEND" in comp:
        end = tzify(comp["DTEND"].dt) + offset
    elif "DUE" in comp:
        end = tzify(comp["DUE"].dt) + offset
    elif "DURATION" in comp:
        end = start + comp["DURATION"].dt
    elif is_date(dtstart.dt):
        end = start + timedelta(days=1)
    else:
        end = start
    if end < start:
        logging.debug("Invalid DTEND < DTSTART in %s", comp.get("UID"))
        end = start
    return (start, end)


def index_overrides(calendar: Calendar) -> OverrideIndex:
    """Index the overridden instances in a calendar.

    Returns: dictionary mapping UID to a dictionary mapping RECURRENCE-ID
        values to the component that overrides that instance
    """
    ret: OverrideIndex = {}
    for comp in calendar.subcomponents:
        rid = comp.get("RECURRENCE-ID")
        if rid is None or "UID" not in comp:
            continue
        ret.setdefault(str(comp["UID"]), {})[rid.dt] = comp
    return ret


def _range_start(time_range: TimeRange, extent: timedelta, original):
    try:
        lower = time_range.start - extent
    except OverflowError:
        lower = MIN_EXPANSION_TIME
    if not isinstance(original, datetime) or original.tzinfo is None:
        # Floating occurrences; the local offset is at most a day
        try:
            lower = asutc(lower) - timedelta(days=1)
        except OverflowError:
            lower = MIN_EXPANSION_TIME
        return lower.replace(tzinfo=None)
    return lower


def iter_instances(
    comp: Component,
    time_range: TimeRange,
    tzify: TzifyFunction,
    max_instances: int,
    overrides: Optional[OverrideIndex] = None,
) -> Iterator[Instance]:
    """Iterate over the instances of a component that may overlap a range.

    Args:
      comp: Master component
      time_range: Range of interest
      tzify: Function to make floating values timezone-aware
      max_instances: Maximum number of occurrences to scan
      overrides: Overridden instances, as returned by index_overrides
    Raises:
      RecurrenceLimitExceeded: if more than max_instances occurrences
        are scanned
    """
    if not is_recurring(comp) or kind_of(comp) not in RECURRING_KINDS:
        yield Instance(comp, ZERO)
        return

    original = comp["DTSTART"].dt
    date_based = is_date(original)
    base = _normalize_dt_for_rrule(original, original)

    by_key = {}
    this_and_future = []
    uid = comp.get("UID")
    if overrides and uid is not None:
        for rid, override in overrides.get(str(uid), {}).items():
            if override.name != comp.name:
                continue
            key = occurrence_key(rid, date_based, tzify)
            by_key[key] = override
            range_param = override["RECURRENCE-ID"].params.get("RANGE")
            if range_param and range_param.upper() == "THISANDFUTURE":
                this_and_future.append((key, rid, override))
    this_and_future.sort(key=lambda x: x[0])

    exdates = set()
    for exdate in _iter_dates(comp.get("EXDATE")):
        exdates.add(occurrence_key(exdate, date_based, tzify))
        if not date_based and is_date(exdate):
            exdates.add(exdate)

    rs = rruleset_from_comp(comp)
    lower = _range_start(time_range, component_extent(comp), original)

    seen = set()
    count = 0
    for ts in rs.xafter(lower, inc=True):
        if tzify(ts) >= time_range.end:
            break
        count += 1
        if count > max_instances:
            raise RecurrenceLimitExceeded(max_instances)
        key = occurrence_key(ts, date_based, tzify)
        if key in exdates or (not date_based and ts.date() in exdates):
            continue
        try:
            override = by_key[key]
        except KeyError:
            pass
        else:
            seen.add(key)
            yield Instance(override, ZERO)
            continue
        template = None
        for tf_key, tf_rid, tf_comp in this_and_future:
            if tf_key > key:
                break
            template = (tf_rid, tf_comp)
        if template is not None:
            tf_rid, tf_comp = template
            yield Instance(tf_comp, tzify(ts) - tzify(tf_rid))
        else:
            yield Instance(comp, ts - base)

    for key, override in by_key.items():
        if key not in seen:
            yield Instance(override, ZERO)


def _shifted_prop(prop, offset: timedelta):
    dt = prop.dt
    if offset:
        dt = dt + offset
    if isinstance(dt, datetime) and dt.tzinfo is not None:
        return create_prop_from_date_or_datetime(asutc(dt))
    ret = create_prop_from_date_or_datetime(dt)
    if prop.params:
        ret.params = prop.params.copy()
    return ret


def materialize_instance(instance: Instance, tzify: TzifyFunction) -> Component:
    """Create a standalone component for an instance."""
    comp, offset = instance
    out = comp.copy()
    for field in RECURRENCE_PROPERTIES:
        if field in out:
            del out[field]
    for field in ["DTSTART", "DTEND", "DUE"]:
        if field in comp:
            out[field] = _shifted_prop(comp[field], offset)
    if "RECURRENCE-ID" in comp:
        rid = comp["RECURRENCE-ID"].dt
    else:
        rid = comp["DTSTART"].dt
    if is_date(rid):
        out["RECURRENCE-ID"] = create_prop_from_date_or_datetime(rid + offset)
    else:
        out["RECURRENCE-ID"] = create_prop_from_date_or_datetime(
            asutc(tzify(rid) + offset)
        )
    out.subcomponents = list(comp.subcomponents)
    return out


def expand_calendar(
    calendar: Calendar,
    time_range: TimeRange,
    tzify: TzifyFunction,
    max_instances: int,
) -> Calendar:
    """Replace recurring components by their instances within a range.

    Timezone definitions are dropped, since the instances carry UTC
    date-times.
    """
    if calendar.name != "VCALENDAR":
        raise AssertionError(f"called on file with root component {calendar.name}")
    outcal = Calendar()
    for field in calendar:
        outcal[field] = calendar[field]

    overrides = index_overrides(calendar)
    masters = set()
    for comp in calendar.subcomponents:
        if is_recurring(comp) and "UID" in comp:
            masters.add((comp.name, str(comp["UID"])))

    for comp in calendar.subcomponents:
        if kind_of(comp) == ComponentKind.VTIMEZONE:
            continue
        if "RECURRENCE-ID" in comp and (comp.name, str(comp.get("UID"))) in masters:
            # Emitted along with its master
            continue
        if not is_recurring(comp):
            outcal.add_component(comp)
            continue
        for instance in iter_instances(
            comp, time_range, tzify, max_instances, overrides
        ):
            bounds = instance_bounds(instance, tzify)
            if bounds is None or not spans_overlap(
                bounds[0], bounds[1], time_range.start, time_range.end
            ):
                continue
            outcal.add_component(materialize_instance(instance, tzify))
    return outcal
