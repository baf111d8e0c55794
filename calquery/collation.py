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

"""Collations.

See https://tools.ietf.org/html/rfc4790, sections 9.2 and 9.3.
"""

from collections.abc import Callable

from .dav import SUPPORTED_COLLATION, InvalidFilter

DEFAULT_COLLATION = "i;ascii-casemap"


class UnknownCollation(InvalidFilter):
    def __init__(self, collation: str) -> None:
        super().__init__(
            f"Collation {collation!r} is not supported",
            precondition=SUPPORTED_COLLATION,
        )
        self.collation = collation


def _ascii_casemap(candidate: str, pattern: str) -> bool:
    # bytes.upper() only touches a-z, leaving other octets alone
    return (
        pattern.encode("utf-8", "surrogateescape").upper()
        in candidate.encode("utf-8", "surrogateescape").upper()
    )


def _octet(candidate: str, pattern: str) -> bool:
    return pattern.encode("utf-8", "surrogateescape") in candidate.encode(
        "utf-8", "surrogateescape"
    )


collations: dict[str, Callable[[str, str], bool]] = {
    "i;ascii-casemap": _ascii_casemap,
    "i;octet": _octet,
}


def get_collation(name: str) -> Callable[[str, str], bool]:
    """Get a collation by name.

    Args:
      name: Collation name
    Returns: function taking (candidate, pattern), returning whether
      pattern occurs in candidate
    Raises:
      UnknownCollation: If the collation is not supported
    """
    try:
        return collations[name]
    except KeyError as exc:
        raise UnknownCollation(name) from exc


def text_match(
    collation: str, pattern: str, candidate: str, negate: bool = False
) -> bool:
    """Run a substring match with the given collation.

    Args:
      collation: Collation name
      pattern: Text to look for
      candidate: Text to look in
      negate: Whether to invert the outcome
    """
    matches = get_collation(collation)(candidate, pattern)
    if negate:
        return not matches
    return matches
