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


"""Building NSKeyedArchiver archives from plain value trees.

This is the reverse of :mod:`keyedarchive.unarchiving`, with a few restrictions:

* Dictionaries that contain a ``$classes`` key are archived as objects of the listed class,
  with every other entry archived as a field of the object.
* All other dictionaries are archived as ``NSDictionary`` (so their keys must be strings).
* Lists are archived as ``NSArray``.
* Strings, numbers, booleans, data and dates are archived as plain values.
  The string ``"$null"`` is rejected, because it would decode as a null reference.

Decoding the result gives back the original tree,
except that dictionaries without ``$classes`` decode to lists of ``{"key": ..., "value": ...}`` entries.
"""


import datetime
import plistlib
import typing

from . import archive
from . import export


__all__ = [
	"Archiver",
	"archive_value",
	"archive_to_data",
]


_LEAF_TYPES = (str, bool, int, float, bytes, datetime.datetime)


class Archiver(object):
	"""Builds the object table of a keyed archive.
	
	Class information entries are shared between all objects of the same class.
	Plain values are stored once for every time they are archived.
	"""
	
	objects: typing.List[typing.Any]
	top: typing.Dict[str, plistlib.UID]
	_class_uids: typing.Dict[typing.Tuple[str, ...], plistlib.UID]
	
	def __init__(self) -> None:
		super().__init__()
		
		self.objects = [archive.NULL_OBJECT_NAME]
		self.top = {}
		self._class_uids = {}
	
	def _append(self, obj: typing.Any) -> plistlib.UID:
		self.objects.append(obj)
		return plistlib.UID(len(self.objects) - 1)
	
	def encode_class(self, class_names: typing.Sequence[str]) -> plistlib.UID:
		"""Get the UID of the class information for the given class name chain,
		adding it to the object table if necessary.
		"""
		
		if not class_names:
			raise ValueError("An archived class needs at least one class name")
		elif not all(isinstance(name, str) for name in class_names):
			raise TypeError(f"Class names must be strings, not {class_names!r}")
		
		key = tuple(class_names)
		try:
			return self._class_uids[key]
		except KeyError:
			uid = self._class_uids[key] = self._append({"$classes": list(class_names), "$classname": class_names[0]})
			return uid
	
	def encode_object(self, value: typing.Any) -> plistlib.UID:
		"""Archive a value and return the UID referring to it.
		
		:raise ValueError: If the value is ``None`` or the string ``"$null"``,
			which have no archived representation other than a null reference.
		:raise TypeError: If the value (or something nested inside it) has an unsupported type.
		"""
		
		# Containers get their object number before their contents are archived,
		# like in NSKeyedArchiver output,
		# so a placeholder is inserted first and replaced once the contents are known.
		if value is None:
			raise ValueError("None cannot be archived")
		elif value == archive.NULL_OBJECT_NAME:
			raise ValueError(f"The string {archive.NULL_OBJECT_NAME!r} cannot be archived, because it decodes as a null reference")
		elif isinstance(value, dict) and "$classes" in value:
			placeholder = self._append(None)
			class_uid = self.encode_class(value["$classes"])
			obj: typing.Dict[str, typing.Any] = {"$class": class_uid}
			for key, field_value in value.items():
				if key != "$classes":
					obj[key] = self.encode_object(field_value)
			self.objects[placeholder.data] = obj
			return placeholder
		elif isinstance(value, dict):
			for key in value:
				if not isinstance(key, str):
					raise TypeError(f"Only dictionaries with string keys can be archived, not {type(key)}")
			placeholder = self._append(None)
			keys = [self.encode_object(key) for key in value]
			objects = [self.encode_object(element) for element in value.values()]
			self.objects[placeholder.data] = {
				"$class": self.encode_class(["NSDictionary", "NSObject"]),
				"NS.keys": keys,
				"NS.objects": objects,
			}
			return placeholder
		elif isinstance(value, list):
			placeholder = self._append(None)
			objects = [self.encode_object(element) for element in value]
			self.objects[placeholder.data] = {
				"$class": self.encode_class(["NSArray", "NSObject"]),
				"NS.objects": objects,
			}
			return placeholder
		elif isinstance(value, _LEAF_TYPES):
			return self._append(value)
		else:
			raise TypeError(f"Cannot archive value of type {type(value)}")
	
	def add_root(self, name: str, value: typing.Any) -> plistlib.UID:
		uid = self.top[name] = self.encode_object(value)
		return uid
	
	def to_plist(self) -> typing.Dict[str, typing.Any]:
		"""Build the complete archive (header and object table) as a plist dictionary."""
		
		return {
			"$archiver": archive.ARCHIVER_NAME,
			"$version": archive.ARCHIVER_VERSION,
			"$top": dict(self.top),
			"$objects": list(self.objects),
		}


def archive_value(value: typing.Any, *, root_name: str = "root") -> typing.Dict[str, typing.Any]:
	"""Archive a value tree as the single root object of a new archive."""
	
	archiver = Archiver()
	archiver.add_root(root_name, value)
	return archiver.to_plist()


def archive_to_data(value: typing.Any, fmt: plistlib.PlistFormat = plistlib.FMT_BINARY, *, root_name: str = "root") -> bytes:
	"""Archive a value tree and serialize the archive as a binary or XML plist."""
	
	plist = archive_value(value, root_name=root_name)
	if fmt == plistlib.FMT_XML:
		return export.dump_xml(plist)
	else:
		return export.dump_binary(plist)
