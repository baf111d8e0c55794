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

"""Query engine configuration file.

The configuration lives in the ``[calquery]`` section of an INI file::

    [calquery]
    timezone = Europe/London
    max-instances = 1000
    max-resource-size = 10485760
    strict = false
"""

import configparser
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

SECTION = "calquery"

DEFAULT_TIMEZONE = "UTC"
DEFAULT_MAX_INSTANCES = 1000
DEFAULT_MAX_RESOURCE_SIZE = 10 * 1024 * 1024
MIN_MAX_RESOURCE_SIZE = 4096


class QueryConfig:
    """Settings for report evaluation."""

    def __init__(self, cp=None):
        if cp is None:
            cp = configparser.ConfigParser()
        if not cp.has_section(SECTION):
            cp.add_section(SECTION)
        self._configparser = cp

    @classmethod
    def from_file(cls, f):
        """Load configuration from a file-like object.

        Raises:
          ValueError: if a setting has an invalid value
        """
        cp = configparser.ConfigParser()
        cp.read_file(f)
        ret = cls(cp)
        ret.validate()
        return ret

    def _section(self):
        return self._configparser[SECTION]

    def validate(self):
        self.get_timezone()
        if self.get_max_instances() < 1:
            raise ValueError("max-instances must be positive")
        if self.get_max_resource_size() < MIN_MAX_RESOURCE_SIZE:
            raise ValueError(
                f"max-resource-size must be at least {MIN_MAX_RESOURCE_SIZE}"
            )
        self.get_strict()

    def get_timezone(self):
        """Timezone to interpret floating times in."""
        name = self._section().get("timezone", DEFAULT_TIMEZONE)
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {name!r}") from exc
        return name

    def set_timezone(self, name):
        if name is None:
            self._section().pop("timezone", None)
        else:
            self._section()["timezone"] = name

    def get_max_instances(self):
        return self._section().getint("max-instances", DEFAULT_MAX_INSTANCES)

    def set_max_instances(self, max_instances):
        self._section()["max-instances"] = str(max_instances)

    def get_max_resource_size(self):
        return self._section().getint(
            "max-resource-size", DEFAULT_MAX_RESOURCE_SIZE
        )

    def set_max_resource_size(self, size):
        self._section()["max-resource-size"] = str(size)

    def get_strict(self):
        return self._section().getboolean("strict", False)

    def set_strict(self, strict):
        self._section()["strict"] = "true" if strict else "false"
