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

"""XML and error plumbing shared by the CalDAV report code.

Report bodies are parsed with defusedxml; everything else works on
``xml.etree.ElementTree`` elements.
"""

import logging

# Hmm, defusedxml doesn't have XML generation functions? :(
from xml.etree import ElementTree as ET

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import fromstring as xmlparse

DEFAULT_ENCODING = "utf-8"

NAMESPACE = "urn:ietf:params:xml:ns:caldav"

VALID_FILTER = "{%s}valid-filter" % NAMESPACE
SUPPORTED_FILTER = "{%s}supported-filter" % NAMESPACE
SUPPORTED_COLLATION = "{%s}supported-collation" % NAMESPACE
NUMBER_OF_MATCHES_WITHIN_LIMITS = "{DAV:}number-of-matches-within-limits"


def caldav_tag(name: str) -> str:
    return "{%s}%s" % (NAMESPACE, name)


class BadRequestError(Exception):
    """Base class for bad request errors."""

    def __init__(self, message) -> None:
        super().__init__(message)
        self.message = message


def nonfatal_bad_request(message, strict=False):
    if strict:
        raise BadRequestError(message)
    logging.debug("Bad request: %s", message)


class PreconditionFailure(Exception):
    """A precondition failed."""

    def __init__(self, precondition, description) -> None:
        super().__init__(description)
        self.precondition = precondition
        self.description = description


class InvalidFilter(PreconditionFailure):
    """The filter violates a MUST of RFC 4791, section 9.7."""

    def __init__(self, description, precondition=VALID_FILTER) -> None:
        super().__init__(precondition, description)


class UnsupportedFilter(PreconditionFailure):
    """The report or calendar-data element is not supported."""

    def __init__(self, description) -> None:
        super().__init__(SUPPORTED_FILTER, description)


class RecurrenceLimitExceeded(PreconditionFailure):
    """Recurrence expansion produced more instances than allowed."""

    def __init__(self, max_instances) -> None:
        super().__init__(
            NUMBER_OF_MATCHES_WITHIN_LIMITS,
            f"Recurrence expansion exceeded {max_instances} instances",
        )
        self.max_instances = max_instances


def parse_xml_body(body) -> ET.Element:
    """Parse a report body.

    Args:
      body: XML document, as bytes or str
    Returns: root element
    Raises:
      BadRequestError: if the body is not well-formed XML
    """
    try:
        return xmlparse(body)
    except (ET.ParseError, DefusedXmlException) as exc:
        raise BadRequestError(f"Unable to parse body: {exc}") from exc


def get_required_attribute(el: ET.Element, name: str) -> str:
    value = el.get(name)
    if value is None:
        local = el.tag.rsplit("}", 1)[-1]
        raise InvalidFilter(f"{name.capitalize()} attribute must exist in {local}")
    return value
