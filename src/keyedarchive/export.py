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


"""Writing decoded value trees (or raw archives) as XML plist, binary plist or JSON."""


import base64
import datetime
import json
import plistlib
import typing


__all__ = [
	"FORMATS",
	"replace_uids",
	"dump_xml",
	"dump_binary",
	"dump_json",
	"dump",
]


FORMATS = ("xml", "binary", "json")


def replace_uids(value: typing.Any) -> typing.Any:
	"""Replace all :class:`plistlib.UID` objects in a value tree with ``{"CF$UID": n}`` dictionaries.
	
	This is how CoreFoundation writes UIDs in formats that have no native UID type.
	"""
	
	if isinstance(value, plistlib.UID):
		return {"CF$UID": value.data}
	elif isinstance(value, dict):
		return {key: replace_uids(element) for key, element in value.items()}
	elif isinstance(value, list):
		return [replace_uids(element) for element in value]
	else:
		return value


def dump_xml(value: typing.Any) -> bytes:
	return plistlib.dumps(replace_uids(value), fmt=plistlib.FMT_XML, sort_keys=False)


def dump_binary(value: typing.Any) -> bytes:
	return plistlib.dumps(value, fmt=plistlib.FMT_BINARY, sort_keys=False)


def _json_default(value: typing.Any) -> typing.Any:
	if isinstance(value, (bytes, bytearray)):
		return base64.b64encode(value).decode("ascii")
	elif isinstance(value, datetime.datetime):
		return value.isoformat()
	else:
		raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_json(value: typing.Any) -> str:
	"""Convert a value tree to indented JSON text.
	
	Data is written as base64 strings and dates as ISO 8601 strings,
	so unlike the plist formats, this conversion is lossy.
	"""
	
	return json.dumps(replace_uids(value), indent=2, ensure_ascii=False, default=_json_default)


def dump(value: typing.Any, fmt: str) -> bytes:
	"""Serialize a value tree in one of the :data:`FORMATS`."""
	
	if fmt == "xml":
		return dump_xml(value)
	elif fmt == "binary":
		return dump_binary(value)
	elif fmt == "json":
		return (dump_json(value) + "\n").encode("utf-8")
	else:
		raise ValueError(f"Unknown output format: {fmt!r}")
