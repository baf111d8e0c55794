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

"""ICalendar object handling.

The iCalendar parser and serializer are those of the icalendar package;
this module adds the few helpers the filter code needs on top of them.
"""

import enum
import logging
from collections.abc import Iterator
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable, Optional, Union
from zoneinfo import ZoneInfo

import pytz
from icalendar.cal import Calendar, Component
from icalendar.prop import vCategory, vDate, vDatetime, vPeriod

TzifyFunction = Callable[[Union[date, datetime]], datetime]

DEFAULT_MAX_RESOURCE_SIZE = 10 * 1024 * 1024


class InvalidCalendar(Exception):
    """The calendar object could not be parsed."""

    def __init__(self, reason) -> None:
        super().__init__(reason)
        self.reason = reason


class ComponentKind(enum.Enum):
    """Calendar component kinds that filters can refer to.

    Components with names outside this set (such as experimental X-
    components) can not be matched by a comp-filter.
    """

    VCALENDAR = "VCALENDAR"
    VEVENT = "VEVENT"
    VTODO = "VTODO"
    VJOURNAL = "VJOURNAL"
    VFREEBUSY = "VFREEBUSY"
    VTIMEZONE = "VTIMEZONE"
    STANDARD = "STANDARD"
    DAYLIGHT = "DAYLIGHT"
    VALARM = "VALARM"
    VAVAILABILITY = "VAVAILABILITY"
    AVAILABLE = "AVAILABLE"
    VPOLL = "VPOLL"
    VVOTER = "VVOTER"
    PARTICIPANT = "PARTICIPANT"
    VLOCATION = "VLOCATION"
    VRESOURCE = "VRESOURCE"


def kind_from_name(name: Optional[str]) -> Optional[ComponentKind]:
    if not name:
        return None
    try:
        return ComponentKind(name.upper())
    except ValueError:
        return None


def kind_of(comp: Component) -> Optional[ComponentKind]:
    return kind_from_name(comp.name)


def new_component(name: str) -> Component:
    """Create an empty component of the same type as name."""
    cls = Component.get_component_class(name)
    ret = cls()
    if cls is Component:
        ret.name = name
    return ret


def iter_properties(comp: Component) -> Iterator[tuple[str, Any]]:
    """Iterate over the properties of a component.

    Properties that occur more than once are yielded once per occurrence.
    """
    for name, value in comp.items():
        if isinstance(value, list):
            for v in value:
                yield name, v
        else:
            yield name, value


def property_text(prop) -> str:
    """Return the text a text-match on this property runs against."""
    if isinstance(prop, str):
        return str(prop)
    if isinstance(prop, vCategory):
        return ",".join(str(cat) for cat in prop.cats)
    return prop.to_ical().decode("utf-8")


def parameter_text(value) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def as_tz_aware_ts(
    dt: Union[datetime, date], default_timezone: Union[str, tzinfo]
) -> datetime:
    if not getattr(dt, "time", None):
        _dt = datetime.combine(dt, time())
    else:
        _dt = dt  # type: ignore
    if _dt.tzinfo is None:
        if isinstance(default_timezone, str):
            default_timezone = ZoneInfo(default_timezone)
        localize = getattr(default_timezone, "localize", None)
        if localize is not None:
            # pytz zones need localize() to pick the right offset
            _dt = localize(_dt)
        else:
            _dt = _dt.replace(tzinfo=default_timezone)
    assert _dt.tzinfo
    return _dt


def tzifier(default_timezone: Union[str, tzinfo]) -> TzifyFunction:
    """Create a function that makes date/datetime values timezone-aware.

    Floating times and dates are interpreted in default_timezone.
    """

    def tzify(dt):
        return as_tz_aware_ts(dt, default_timezone)

    return tzify


def asutc(dt):
    if isinstance(dt, date) and not isinstance(dt, datetime):
        return dt
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc)


def is_date(dt) -> bool:
    return isinstance(dt, date) and not isinstance(dt, datetime)


def create_prop_from_date_or_datetime(dt):
    """Create appropriate vDate or vDatetime property based on input type."""
    if is_date(dt):
        return vDate(dt)
    else:
        return vDatetime(dt)


def parse_calendar(
    data: Union[bytes, str], max_resource_size: Optional[int] = None
) -> Calendar:
    """Parse a calendar object.

    Args:
      data: Serialized iCalendar data
      max_resource_size: Optional maximum size in bytes
    Returns: VCALENDAR component
    Raises:
      InvalidCalendar: if the data is too large or not a calendar
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    if max_resource_size is not None and len(data) > max_resource_size:
        raise InvalidCalendar(
            f"Calendar object of {len(data)} bytes exceeds "
            f"maximum of {max_resource_size} bytes"
        )
    try:
        cal = Calendar.from_ical(data)
    except ValueError as exc:
        raise InvalidCalendar(str(exc)) from exc
    if cal.name != "VCALENDAR":
        raise InvalidCalendar(f"Root component is {cal.name}, not VCALENDAR")
    return cal


def extract_tzid(cal: Component) -> str:
    for comp in cal.walk("VTIMEZONE"):
        return str(comp["TZID"])
    raise KeyError("TZID")


def get_tz_from_text(tztext: Union[str, bytes]) -> tzinfo:
    """Find the timezone described by an iCalendar object.

    Args:
      tztext: Calendar object with exactly one VTIMEZONE component
    Returns: tzinfo
    Raises:
      InvalidCalendar: if the text does not contain a usable VTIMEZONE
    """
    cal = parse_calendar(tztext)
    try:
        tzid = extract_tzid(cal)
    except KeyError as exc:
        raise InvalidCalendar("No VTIMEZONE with TZID in timezone") from exc
    try:
        return pytz.timezone(tzid)
    except pytz.UnknownTimeZoneError:
        pass
    for comp in cal.walk("VTIMEZONE"):
        try:
            return comp.to_tz()
        except (ValueError, KeyError) as exc:
            raise InvalidCalendar(f"Unable to use timezone {tzid!r}: {exc}") from exc
    raise InvalidCalendar(f"Unknown timezone {tzid!r}")


def _period_bounds(value) -> tuple[datetime, datetime]:
    start, end_or_duration = value
    if isinstance(end_or_duration, timedelta):
        return start, start + end_or_duration
    return start, end_or_duration


def _parse_periods(prop) -> list[tuple[datetime, datetime]]:
    if isinstance(prop, vPeriod):
        return [(prop.start, prop.end)]
    dts = getattr(prop, "dts", None)
    if dts is not None:
        return [_period_bounds(dt.dt) for dt in dts]
    text = prop.to_ical()
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    return [_period_bounds(vPeriod.from_ical(v)) for v in text.split(",")]


def iter_freebusy_periods(
    comp: Component, tzify: TzifyFunction
) -> Iterator[tuple[datetime, datetime, str]]:
    """Iterate over the FREEBUSY periods of a component.

    Returns: iterator over (start, end, fbtype) tuples
    """
    value = comp.get("FREEBUSY")
    if value is None:
        return
    if not isinstance(value, list):
        value = [value]
    for prop in value:
        params = getattr(prop, "params", {})
        fbtype = str(params.get("FBTYPE", "BUSY")).upper()
        try:
            periods = _parse_periods(prop)
        except (ValueError, TypeError) as exc:
            logging.debug("Ignoring invalid FREEBUSY value %r: %s", prop, exc)
            continue
        for start, end in periods:
            yield tzify(start), tzify(end), fbtype
