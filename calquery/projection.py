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

"""Calendar data projection.

See https://tools.ietf.org/html/rfc4791, section 9.6.
"""

from typing import Optional

from icalendar.cal import Calendar, Component
from icalendar.prop import vText

from .dav import (
    ET,
    InvalidFilter,
    UnsupportedFilter,
    caldav_tag,
    get_required_attribute,
)
from .icalendar import TzifyFunction, kind_from_name, kind_of, new_component, tzifier
from .recurrence import expand_calendar
from .timerange import parse_time_range

DEFAULT_MAX_INSTANCES = 1000


def _blank_value(value):
    """Return an empty value for a property requested with novalue.

    The parameters are kept, including an explicit VALUE type, so that
    the property keeps the type it was stored with; the value itself is
    serialized as empty text.
    """
    if isinstance(value, list):
        return [_blank_value(v) for v in value]
    ret = vText("")
    params = getattr(value, "params", None)
    if params:
        ret.params = params.copy()
    return ret


def _matches_kind(comp: Component, name: str) -> bool:
    kind = kind_from_name(name)
    return kind is not None and kind_of(comp) == kind


def _extract_from_component(
    incomp: Component, outcomp: Component, requested: ET.Element
) -> None:
    """Extract specific properties and subcomponents from a component.

    Args:
      incomp: Incoming component
      outcomp: Outgoing component
      requested: comp element listing the wanted components/properties
    """
    for tag in requested:
        if tag.tag == caldav_tag("comp"):
            name = get_required_attribute(tag, "name")
            for insub in incomp.subcomponents:
                if _matches_kind(insub, name):
                    outsub = new_component(insub.name)
                    outcomp.add_component(outsub)
                    _extract_from_component(insub, outsub, tag)
        elif tag.tag == caldav_tag("prop"):
            name = get_required_attribute(tag, "name")
            try:
                value = incomp[name]
            except KeyError:
                continue
            if tag.get("novalue", "no") == "yes":
                value = _blank_value(value)
            outcomp[name] = value
        elif tag.tag == caldav_tag("allprop"):
            for propname in incomp:
                outcomp[propname] = incomp[propname]
        elif tag.tag == caldav_tag("allcomp"):
            for insub in incomp.subcomponents:
                outcomp.add_component(insub)
        else:
            raise InvalidFilter(f"Invalid element {tag.tag!r} in comp")


def project(
    calendar: Calendar,
    calendar_data_el: ET.Element,
    tzify: Optional[TzifyFunction] = None,
    max_instances: int = DEFAULT_MAX_INSTANCES,
) -> Optional[Calendar]:
    """Extract requested components/properties from a calendar.

    Args:
      calendar: Calendar to project; not modified
      calendar_data_el: calendar-data element with requested
        components/properties
      tzify: Function to make floating values timezone-aware, used for
        expansion
      max_instances: Maximum number of instances to expand
    Returns: new calendar, the unmodified calendar if nothing specific
      was requested, or None if the root component was not selected
    Raises:
      InvalidFilter: if the calendar-data element is malformed
      UnsupportedFilter: for limit-recurrence-set and limit-freebusy-set
    """
    if len(calendar_data_el) == 0:
        return calendar
    if tzify is None:
        tzify = tzifier("UTC")

    selection = None
    for tag in calendar_data_el:
        if tag.tag == caldav_tag("comp"):
            if selection is not None:
                raise InvalidFilter("Only one comp allowed in calendar-data")
            selection = tag
        elif tag.tag == caldav_tag("expand"):
            calendar = expand_calendar(
                calendar, parse_time_range(tag), tzify, max_instances
            )
        elif tag.tag == caldav_tag("limit-recurrence-set"):
            raise UnsupportedFilter("limit-recurrence-set is not supported")
        elif tag.tag == caldav_tag("limit-freebusy-set"):
            raise UnsupportedFilter("limit-freebusy-set is not supported")
        else:
            raise InvalidFilter(f"Invalid element {tag.tag!r} in calendar-data")

    if selection is None:
        return calendar
    name = get_required_attribute(selection, "name")
    if not _matches_kind(calendar, name):
        return None
    ret = Calendar()
    _extract_from_component(calendar, ret, selection)
    return ret


def check_calendar_data(calendar_data_el: ET.Element) -> None:
    """Check a calendar-data element for errors before it is used.

    Raises:
      InvalidFilter: if the element is malformed
      UnsupportedFilter: for limit-recurrence-set and limit-freebusy-set
    """
    for tag in calendar_data_el:
        if tag.tag == caldav_tag("comp"):
            _check_comp(tag)
        elif tag.tag == caldav_tag("expand"):
            parse_time_range(tag)
        elif tag.tag == caldav_tag("limit-recurrence-set"):
            raise UnsupportedFilter("limit-recurrence-set is not supported")
        elif tag.tag == caldav_tag("limit-freebusy-set"):
            raise UnsupportedFilter("limit-freebusy-set is not supported")
        else:
            raise InvalidFilter(f"Invalid element {tag.tag!r} in calendar-data")


def _check_comp(el: ET.Element) -> None:
    get_required_attribute(el, "name")
    for tag in el:
        if tag.tag == caldav_tag("comp"):
            _check_comp(tag)
        elif tag.tag == caldav_tag("prop"):
            get_required_attribute(tag, "name")
        elif tag.tag not in (caldav_tag("allprop"), caldav_tag("allcomp")):
            raise InvalidFilter(f"Invalid element {tag.tag!r} in comp")
