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

"""calquery command-line handling."""

import argparse
import logging
import sys

from icalendar.cal import Calendar

from . import __version__
from .caldav import parse_report, run_report
from .config import QueryConfig
from .dav import BadRequestError, PreconditionFailure


def add_report_parser(parser):
    parser.add_argument("report", help="File with the XML report body.")
    parser.add_argument(
        "calendars", nargs="*", metavar="CALENDAR", help="iCalendar files to query."
    )


def _load_config(path):
    if path is None:
        return QueryConfig()
    with open(path) as f:
        return QueryConfig.from_file(f)


def _read_objects(paths):
    for path in paths:
        with open(path, "rb") as f:
            yield path, f.read()


def report_main(args, config, out):
    with open(args.report, "rb") as f:
        body = f.read()
    try:
        report = parse_report(
            body,
            default_timezone=config.get_timezone(),
            max_instances=config.get_max_instances(),
            strict=config.get_strict(),
        )
        result = run_report(
            report, _read_objects(args.calendars), config.get_max_resource_size()
        )
        if isinstance(result, Calendar):
            out.write(result.to_ical().decode("utf-8"))
            return 0
        for match in result:
            out.write(match.name + "\n")
            if match.calendar is not None:
                out.write(match.calendar.to_ical().decode("utf-8"))
    except PreconditionFailure as e:
        logging.error("%s: %s", e.precondition, e.description)
        return 1
    except BadRequestError as e:
        logging.error("Bad request: %s", e.message)
        return 1
    return 0


def main(argv=None, out=None):
    parser = argparse.ArgumentParser(prog="calquery")

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s " + ".".join(map(str, __version__)),
    )
    parser.add_argument(
        "--config", type=str, default=None, help="Path to configuration file."
    )
    parser.add_argument(
        "--debug", action="store_true", help="Print debug messages."
    )

    subparsers = parser.add_subparsers(help="Subcommands", dest="subcommand")
    report_parser = subparsers.add_parser(
        "report",
        usage="%(prog)s REPORT CALENDAR...",
        help="Evaluate a CalDAV report against calendar objects",
    )
    add_report_parser(report_parser)

    args = parser.parse_args(argv)

    if args.debug:
        loglevel = logging.DEBUG
    else:
        loglevel = logging.INFO

    logging.basicConfig(level=loglevel, format="%(message)s")

    try:
        config = _load_config(args.config)
    except (OSError, ValueError) as e:
        logging.error("Unable to load configuration: %s", e)
        return 1

    if out is None:
        out = sys.stdout

    if args.subcommand == "report":
        return report_main(args, config, out)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
