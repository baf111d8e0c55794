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

"""Calendar-query filters.

See https://tools.ietf.org/html/rfc4791, section 9.7.

A filter is a tree of comp-filter, prop-filter and param-filter nodes.
Siblings with the same name are alternatives: a group of siblings matches
as soon as one of them matches one of the actual children in scope.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, tzinfo
from typing import Optional, Union

from icalendar.cal import Component

from .collation import DEFAULT_COLLATION, get_collation
from .dav import ET, InvalidFilter, caldav_tag, get_required_attribute
from .icalendar import (
    TzifyFunction,
    iter_properties,
    kind_from_name,
    kind_of,
    parameter_text,
    property_text,
    tzifier,
)
from .overlap import TimeRangeMatcher
from .recurrence import OverrideIndex, index_overrides
from .timerange import TimeRange, parse_time_range

DEFAULT_MAX_INSTANCES = 1000


class TextMatch:
    """A CALDAV:text-match element."""

    def __init__(
        self,
        text: str,
        collation: Optional[str] = None,
        negate_condition: bool = False,
    ) -> None:
        assert isinstance(text, str)
        self.text = text
        if collation is None:
            collation = DEFAULT_COLLATION
        self.collation = collation
        self._contains = get_collation(collation)
        self.negate_condition = negate_condition

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.text!r}, "
            f"collation={self.collation!r}, negate_condition={self.negate_condition!r})"
        )

    def match(self, candidate: str) -> bool:
        matches = self._contains(candidate, self.text)
        if self.negate_condition:
            return not matches
        return matches


class ParamFilter:
    """A CALDAV:param-filter element."""

    text_match: Optional[TextMatch]

    def __init__(self, name: str, is_not_defined: bool = False) -> None:
        self.name = name
        self.is_not_defined = is_not_defined
        self.text_match = None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.name!r}, "
            f"is_not_defined={self.is_not_defined!r}, text_match={self.text_match!r})"
        )

    def filter_text_match(
        self, text: str, collation: Optional[str] = None, negate_condition: bool = False
    ) -> TextMatch:
        self.text_match = TextMatch(
            text, collation=collation, negate_condition=negate_condition
        )
        return self.text_match

    def is_empty(self) -> bool:
        return self.text_match is None

    def matches_name(self, name: str) -> bool:
        return name == self.name


class PropFilter:
    """A CALDAV:prop-filter element."""

    text_match: Optional[TextMatch]
    children: list[ParamFilter]

    def __init__(
        self,
        name: str,
        is_not_defined: bool = False,
        time_range: Optional[TimeRange] = None,
    ) -> None:
        self.name = name
        self.is_not_defined = is_not_defined
        self.time_range = time_range
        self.text_match = None
        self.children = []

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.name!r}, children={self.children!r}, "
            f"is_not_defined={self.is_not_defined!r}, time_range={self.time_range!r}, "
            f"text_match={self.text_match!r})"
        )

    def filter_parameter(self, name: str, is_not_defined: bool = False) -> ParamFilter:
        ret = ParamFilter(name=name, is_not_defined=is_not_defined)
        self.children.append(ret)
        return ret

    def filter_time_range(self, start: datetime, end: datetime) -> TimeRange:
        self.time_range = TimeRange(start, end)
        return self.time_range

    def filter_text_match(
        self, text: str, collation: Optional[str] = None, negate_condition: bool = False
    ) -> TextMatch:
        self.text_match = TextMatch(
            text, collation=collation, negate_condition=negate_condition
        )
        return self.text_match

    def is_empty(self) -> bool:
        return self.time_range is None and self.text_match is None and not self.children

    def matches_name(self, name: str) -> bool:
        return name == self.name


class CompFilter:
    """A CALDAV:comp-filter element."""

    children: list[Union["CompFilter", PropFilter]]

    def __init__(
        self,
        name: str,
        is_not_defined: bool = False,
        time_range: Optional[TimeRange] = None,
    ) -> None:
        self.name = name
        self.kind = kind_from_name(name)
        if self.kind is None:
            logging.debug("comp-filter for unknown component %s never matches", name)
        self.is_not_defined = is_not_defined
        self.time_range = time_range
        self.children = []

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.name!r}, children={self.children!r}, "
            f"is_not_defined={self.is_not_defined!r}, time_range={self.time_range!r})"
        )

    def filter_subcomponent(
        self,
        name: str,
        is_not_defined: bool = False,
        time_range: Optional[TimeRange] = None,
    ) -> "CompFilter":
        ret = CompFilter(name=name, is_not_defined=is_not_defined, time_range=time_range)
        self.children.append(ret)
        return ret

    def filter_property(
        self,
        name: str,
        is_not_defined: bool = False,
        time_range: Optional[TimeRange] = None,
    ) -> PropFilter:
        ret = PropFilter(name=name, is_not_defined=is_not_defined, time_range=time_range)
        self.children.append(ret)
        return ret

    def filter_time_range(self, start: datetime, end: datetime) -> TimeRange:
        self.time_range = TimeRange(start, end)
        return self.time_range

    @property
    def prop_filters(self) -> list[PropFilter]:
        return [c for c in self.children if isinstance(c, PropFilter)]

    @property
    def comp_filters(self) -> list["CompFilter"]:
        return [c for c in self.children if isinstance(c, CompFilter)]

    def is_empty(self) -> bool:
        return self.time_range is None and not self.children

    def matches_name(self, comp: Component) -> bool:
        return self.kind is not None and kind_of(comp) == self.kind


def _match_group(filters, children, matches_name, match_one) -> bool:
    """Match a group of sibling filters against the children in scope.

    The group matches if any filter matches any child with that name, or
    if none of the filters' names occur among the children and one of the
    filters is an is-not-defined filter.
    """
    found = False
    for child in children:
        for f in filters:
            if not matches_name(f, child):
                continue
            found = True
            if f.is_not_defined:
                continue
            if match_one(f, child):
                return True
    if not found and any(f.is_not_defined for f in filters):
        return True
    return False


class CalendarFilter:
    """A filter that works on calendar objects."""

    def __init__(
        self,
        default_timezone: Union[str, tzinfo],
        max_instances: int = DEFAULT_MAX_INSTANCES,
    ) -> None:
        self.tzify: TzifyFunction = tzifier(default_timezone)
        self.max_instances = max_instances
        self.children: list[CompFilter] = []

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.children!r})"

    def filter_subcomponent(
        self,
        name: str,
        is_not_defined: bool = False,
        time_range: Optional[TimeRange] = None,
    ) -> CompFilter:
        ret = CompFilter(name=name, is_not_defined=is_not_defined, time_range=time_range)
        self.children.append(ret)
        return ret

    def _time_range_matcher(self, time_range: TimeRange) -> TimeRangeMatcher:
        return TimeRangeMatcher(time_range, self.tzify, self.max_instances)

    def check(self, calendar: Component) -> bool:
        """Check whether a calendar object matches this filter.

        Raises:
          RecurrenceLimitExceeded: if expanding a recurring component
            exceeds the instance limit
        """
        overrides = index_overrides(calendar)
        return self._match_comp_group(self.children, [calendar], None, overrides)

    def _match_comp_group(
        self,
        filters: list[CompFilter],
        comps: Iterable[Component],
        parent: Optional[Component],
        overrides: OverrideIndex,
    ) -> bool:
        def match_one(f: CompFilter, comp: Component) -> bool:
            if f.is_empty():
                return True
            if f.time_range is not None and self._time_range_matcher(
                f.time_range
            ).match_component(comp, parent, overrides):
                return True
            prop_filters = f.prop_filters
            if prop_filters and self._match_prop_group(prop_filters, comp):
                return True
            comp_filters = f.comp_filters
            if comp_filters and self._match_comp_group(
                comp_filters, comp.subcomponents, comp, overrides
            ):
                return True
            return False

        return _match_group(
            filters, comps, lambda f, comp: f.matches_name(comp), match_one
        )

    def _match_prop_group(self, filters: list[PropFilter], comp: Component) -> bool:
        def match_one(f: PropFilter, item) -> bool:
            name, prop = item
            if f.is_empty():
                return True
            if f.time_range is not None and self._time_range_matcher(
                f.time_range
            ).match_property(comp, name, prop):
                return True
            if f.text_match is not None and f.text_match.match(property_text(prop)):
                return True
            params = getattr(prop, "params", None)
            if f.children and params is not None:
                return _match_param_group(f.children, params)
            return False

        return _match_group(
            filters,
            iter_properties(comp),
            lambda f, item: f.matches_name(item[0]),
            match_one,
        )


def _match_param_group(filters: list[ParamFilter], params) -> bool:
    def match_one(f: ParamFilter, item) -> bool:
        if f.text_match is None:
            return True
        return f.text_match.match(parameter_text(item[1]))

    return _match_group(
        filters,
        params.items(),
        lambda f, item: f.matches_name(item[0]),
        match_one,
    )


def _parse_bool_attribute(el: ET.Element, name: str, default: str = "no") -> bool:
    value = el.get(name, default)
    if value == "yes":
        return True
    if value == "no":
        return False
    raise InvalidFilter(f"Invalid value {value!r} for {name} attribute")


def _check_is_not_defined(el: ET.Element, is_not_defined: bool, others: int) -> None:
    if is_not_defined and others:
        local = el.tag.rsplit("}", 1)[-1]
        raise InvalidFilter(
            f"is-not-defined can not be combined with other elements in {local}"
        )


def parse_text_match(el: ET.Element, cls: Callable[..., TextMatch]) -> TextMatch:
    collation = el.get("collation", DEFAULT_COLLATION)
    negate_condition = _parse_bool_attribute(el, "negate-condition")
    return cls(
        (el.text or "").strip(),
        collation=collation,
        negate_condition=negate_condition,
    )


def parse_param_filter(el: ET.Element, cls: Callable[..., ParamFilter]) -> ParamFilter:
    name = get_required_attribute(el, "name")

    param_filter = cls(name=name)

    others = 0
    for subel in el:
        if subel.tag == caldav_tag("is-not-defined"):
            param_filter.is_not_defined = True
        elif subel.tag == caldav_tag("text-match"):
            if param_filter.text_match is not None:
                raise InvalidFilter("Only one text-match allowed in param-filter")
            parse_text_match(subel, param_filter.filter_text_match)
            others += 1
        else:
            raise InvalidFilter(f"Unknown tag {subel.tag!r} in param-filter")
    _check_is_not_defined(el, param_filter.is_not_defined, others)
    return param_filter


def parse_prop_filter(el: ET.Element, cls: Callable[..., PropFilter]) -> PropFilter:
    name = get_required_attribute(el, "name")

    # From https://tools.ietf.org/html/rfc4791, 9.7.2:
    # A CALDAV:prop-filter is said to match if it contains is-not-defined and
    # the property is absent, or the property exists and its time-range,
    # text-match and param-filter children match it.
    prop_filter = cls(name=name)

    others = 0
    for subel in el:
        if subel.tag == caldav_tag("is-not-defined"):
            prop_filter.is_not_defined = True
            continue
        if subel.tag == caldav_tag("time-range"):
            if prop_filter.time_range is not None:
                raise InvalidFilter("Only one time-range allowed in prop-filter")
            if prop_filter.text_match is not None:
                raise InvalidFilter(
                    "time-range and text-match are exclusive in prop-filter"
                )
            tr = parse_time_range(subel)
            prop_filter.filter_time_range(tr.start, tr.end)
        elif subel.tag == caldav_tag("text-match"):
            if prop_filter.text_match is not None:
                raise InvalidFilter("Only one text-match allowed in prop-filter")
            if prop_filter.time_range is not None:
                raise InvalidFilter(
                    "time-range and text-match are exclusive in prop-filter"
                )
            parse_text_match(subel, prop_filter.filter_text_match)
        elif subel.tag == caldav_tag("param-filter"):
            parse_param_filter(subel, prop_filter.filter_parameter)
        else:
            raise InvalidFilter(f"Unknown tag {subel.tag!r} in prop-filter")
        others += 1
    _check_is_not_defined(el, prop_filter.is_not_defined, others)
    return prop_filter


def parse_comp_filter(el: ET.Element, cls: Callable[..., CompFilter]) -> CompFilter:
    """Compile a comp-filter element."""
    name = get_required_attribute(el, "name")

    comp_filter = cls(name=name)

    others = 0
    for subel in el:
        if subel.tag == caldav_tag("is-not-defined"):
            comp_filter.is_not_defined = True
            continue
        if subel.tag == caldav_tag("comp-filter"):
            parse_comp_filter(subel, comp_filter.filter_subcomponent)
        elif subel.tag == caldav_tag("prop-filter"):
            parse_prop_filter(subel, comp_filter.filter_property)
        elif subel.tag == caldav_tag("time-range"):
            if comp_filter.time_range is not None:
                raise InvalidFilter("Only one time-range allowed in comp-filter")
            tr = parse_time_range(subel)
            comp_filter.filter_time_range(tr.start, tr.end)
        else:
            raise InvalidFilter(f"Unknown filter tag {subel.tag!r} in comp-filter")
        others += 1
    _check_is_not_defined(el, comp_filter.is_not_defined, others)
    return comp_filter


def parse_filter(filter_el: Optional[ET.Element], cls: CalendarFilter) -> CalendarFilter:
    """Parse a CALDAV:filter element into a CalendarFilter.

    Raises:
      InvalidFilter: if the filter is missing or malformed
    """
    if filter_el is None:
        raise InvalidFilter("Missing filter element")
    for subel in filter_el:
        if subel.tag != caldav_tag("comp-filter"):
            raise InvalidFilter(f"Unknown filter tag {subel.tag!r}")
        if cls.children:
            raise InvalidFilter("Only one comp-filter allowed in filter")
        parse_comp_filter(subel, cls.filter_subcomponent)
    if not cls.children:
        raise InvalidFilter("Missing comp-filter element in filter")
    return cls
