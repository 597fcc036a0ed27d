# This file is part of the python-keyedarchive library.
# Copyright (C) 2020 dgelessus
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.


import argparse
import logging
import sys
import typing


from . import __version__
from . import advanced_repr
from . import archive
from . import export
from . import unarchiving


def make_subcommand_parser(subs: typing.Any, name: str, *, help: str, description: str, **kwargs: typing.Any) -> argparse.ArgumentParser:
	"""Add a subcommand parser with some slightly modified defaults to a subcommand set.
	
	This function is used to ensure that all subcommands use the same base configuration for their ArgumentParser.
	"""
	
	ap = subs.add_parser(
		name,
		formatter_class=argparse.RawDescriptionHelpFormatter,
		help=help,
		description=description,
		allow_abbrev=False,
		add_help=False,
		**kwargs,
	)
	
	ap.add_argument("--help", action="help", help="Display this help message and exit.")
	
	return ap


def add_decoding_options(ap: argparse.ArgumentParser) -> None:
	ap.add_argument("--treat-all-as-classes", action="store_true", help="Decode arrays and dictionaries like objects of any other class, keeping their $classes information.")
	ap.add_argument("--leave-null-values", action="store_true", help="Keep references to the $null object as the string \"$null\" instead of omitting them.")


def open_archive_file(file: str) -> archive.KeyedArchive:
	if file == "-":
		return archive.KeyedArchive.from_stream(sys.stdin.buffer)
	else:
		return archive.KeyedArchive.open(file)


def make_unarchiver(ns: argparse.Namespace) -> unarchiving.Unarchiver:
	return unarchiving.Unarchiver(
		open_archive_file(ns.file),
		treat_all_as_classes=ns.treat_all_as_classes,
		leave_null_values=ns.leave_null_values,
	)


def do_read(ns: argparse.Namespace) -> typing.NoReturn:
	keyed_archive = open_archive_file(ns.file)
	for line in advanced_repr.as_multiline_string(keyed_archive):
		print(line)
	
	sys.exit(0)


def dump_decoded_archive(unarchiver: unarchiving.Unarchiver) -> typing.Iterable[str]:
	for name, value in unarchiver.decode_all().items():
		yield from advanced_repr.as_multiline_string(value, prefix=f"{name}: ")


def do_decode(ns: argparse.Namespace) -> typing.NoReturn:
	for line in dump_decoded_archive(make_unarchiver(ns)):
		print(line)
	
	sys.exit(0)


def do_convert(ns: argparse.Namespace) -> typing.NoReturn:
	decoded = make_unarchiver(ns).decode_all()
	data = export.dump(decoded, "binary" if ns.binary else ns.format)
	
	if ns.file_out == "-":
		sys.stdout.buffer.write(data)
		sys.stdout.buffer.flush()
	else:
		with open(ns.file_out, "wb") as f:
			f.write(data)
	
	sys.exit(0)


def main() -> typing.NoReturn:
	"""Main function of the CLI.
	
	This function is a valid setuptools entry point.
	Arguments are passed in sys.argv,
	and every execution path ends with a sys.exit call.
	(setuptools entry points are also permitted to return an integer,
	which will be treated as an exit code.
	We do not use this feature and instead always call sys.exit ourselves.)
	"""
	
	ap = argparse.ArgumentParser(
		prog="keyedarchive",
		formatter_class=argparse.RawDescriptionHelpFormatter,
		description="""
%(prog)s is a tool for reading archives produced by the NSKeyedArchiver class
in Apple's Foundation framework and converting them to plain, human-readable
property lists or JSON.
""",
		allow_abbrev=False,
		add_help=False,
	)
	
	ap.add_argument("--help", action="help", help="Display this help message and exit.")
	ap.add_argument("--version", action="version", version=__version__, help="Display version information and exit.")
	ap.add_argument("--verbose", action="store_true", help="Log details about the decoding process to stderr.")
	
	subs = ap.add_subparsers(
		dest="subcommand",
		metavar="SUBCOMMAND",
	)
	
	sub_read = make_subcommand_parser(
		subs,
		"read",
		help="Read and display the raw contents of a keyed archive.",
		description="""
Read and display the raw contents of a keyed archive.

The archive header and every entry of the object table are displayed as they
are stored in the archive. Object references are not resolved (each object's
number is displayed, so that the references can be followed manually).
""",
	)
	sub_read.add_argument("file", help="The archive file to read (binary or XML plist), or - for stdin.")
	
	sub_decode = make_subcommand_parser(
		subs,
		"decode",
		help="Read, decode and display the contents of a keyed archive.",
		description="""
Read, decode and display the contents of a keyed archive.

All object references are resolved and the objects are converted into a plain
tree of values. Arrays are displayed as arrays, dictionaries as arrays of
key/value entries (because their keys don't have to be strings), and objects
of all other classes as dictionaries of their fields with an additional
$classes entry.
""",
	)
	sub_decode.add_argument("file", help="The archive file to read (binary or XML plist), or - for stdin.")
	add_decoding_options(sub_decode)
	
	sub_convert = make_subcommand_parser(
		subs,
		"convert",
		help="Decode a keyed archive and write the result to a file.",
		description="""
Decode a keyed archive and write the result to a file.

The objects are decoded in the same way as by the decode subcommand. The result
is written as an XML property list (the default), a binary property list,
or JSON.
""",
	)
	sub_convert.add_argument("file", help="The archive file to read (binary or XML plist), or - for stdin.")
	sub_convert.add_argument("file_out", help="The file to write the decoded contents to, or - for stdout.")
	sub_convert.add_argument("-f", "--format", choices=export.FORMATS, default="xml", help="The output format (default: %(default)s).")
	sub_convert.add_argument("-b", "--binary", action="store_true", help="Write a binary property list. Same as --format=binary.")
	add_decoding_options(sub_convert)
	
	ns = ap.parse_args()
	
	if ns.verbose:
		logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
	
	try:
		if ns.subcommand is None:
			print("Missing subcommand", file=sys.stderr)
			sys.exit(2)
		elif ns.subcommand == "read":
			do_read(ns)
		elif ns.subcommand == "decode":
			do_decode(ns)
		elif ns.subcommand == "convert":
			do_convert(ns)
		else:
			print(f"Unknown subcommand: {ns.subcommand!r}", file=sys.stderr)
			sys.exit(2)
	except (archive.InvalidKeyedArchiveError, OSError) as exc:
		print(f"{ap.prog}: error: {exc}", file=sys.stderr)
		sys.exit(1)


if __name__ == "__main__":
	sys.exit(main())
