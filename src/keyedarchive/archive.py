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


"""Low-level access to NSKeyedArchiver archives.

An NSKeyedArchiver archive is a property list (binary or XML)
whose root dictionary contains four header keys:
the archiver name, the archive format version,
a "top" dictionary naming the root objects,
and a flat table of all archived objects.
Objects refer to each other (and to their class information)
using UID values that are indexes into that table.

This module only loads and validates this structure.
Resolving the references into a plain value tree is done by :mod:`keyedarchive.unarchiving`.
"""


import os
import plistlib
import typing
import xml.parsers.expat

from . import advanced_repr


__all__ = [
	"ARCHIVER_NAME",
	"ARCHIVER_VERSION",
	"NULL_OBJECT_NAME",
	"InvalidKeyedArchiveError",
	"InvalidPlistError",
	"WrongValueTypeError",
	"MissingHeaderKeyError",
	"UnsupportedArchiverError",
	"UnsupportedArchiverVersionError",
	"DanglingReferenceError",
	"MalformedObjectError",
	"InvalidClassReferenceError",
	"ExpectedUIDError",
	"CyclicReferenceError",
	"MissingRootError",
	"load_plist",
	"ObjectTable",
	"KeyedArchive",
]


# The only archiver name and version that are supported.
# Every NSKeyedArchiver produced by Apple's Foundation framework so far writes exactly these values.
ARCHIVER_NAME = "NSKeyedArchiver"
ARCHIVER_VERSION = 100000

_ARCHIVER_KEY = "$archiver"
_VERSION_KEY = "$version"
_TOP_KEY = "$top"
_OBJECTS_KEY = "$objects"

# Conventionally stored at index 0 of the object table.
NULL_OBJECT_NAME = "$null"

# XML plists have no native UID type,
# so CoreFoundation spells UIDs as dictionaries with this single key.
_XML_UID_KEY = "CF$UID"


class InvalidKeyedArchiveError(ValueError):
	"""Base class for all errors raised while loading or decoding a keyed archive."""


class InvalidPlistError(InvalidKeyedArchiveError):
	"""Raised if the data can't be parsed as a property list at all."""


class WrongValueTypeError(InvalidKeyedArchiveError):
	"""Raised if a header value has the wrong type."""
	
	key: str
	expected_type: str
	
	def __init__(self, key: str, expected_type: str) -> None:
		super().__init__(f"Expected {key!r} key to be a type of {expected_type!r}")
		
		self.key = key
		self.expected_type = expected_type


class MissingHeaderKeyError(InvalidKeyedArchiveError):
	key: str
	
	def __init__(self, key: str) -> None:
		super().__init__(f"Missing {key!r} header key")
		
		self.key = key


class UnsupportedArchiverError(InvalidKeyedArchiveError):
	archiver: str
	
	def __init__(self, archiver: str) -> None:
		super().__init__(f"Unsupported archiver {archiver!r}. Only {ARCHIVER_NAME!r} is supported")
		
		self.archiver = archiver


class UnsupportedArchiverVersionError(InvalidKeyedArchiveError):
	version: int
	
	def __init__(self, version: int) -> None:
		super().__init__(f"Unsupported archiver version {version}. Only {ARCHIVER_VERSION} is supported")
		
		self.version = version


class DanglingReferenceError(InvalidKeyedArchiveError):
	"""Raised if a UID points past the end of the object table."""
	
	uid: int
	
	def __init__(self, uid: int) -> None:
		super().__init__(f"Invalid object reference ({uid}). The data may be corrupt.")
		
		self.uid = uid


class MalformedObjectError(InvalidKeyedArchiveError):
	"""Raised if an archived object doesn't have the structure expected for its kind,
	for example a dictionary without ``NS.keys``.
	"""
	
	uid: int
	
	def __init__(self, uid: int) -> None:
		super().__init__(f"Invalid object encoding ({uid}). The data may be corrupt.")
		
		self.uid = uid


class InvalidClassReferenceError(InvalidKeyedArchiveError):
	"""Raised if an object's ``$class`` value is not a UID."""
	
	value: typing.Any
	
	def __init__(self, value: typing.Any) -> None:
		super().__init__(f"Invalid class reference ({value!r}). The data may be corrupt.")
		
		self.value = value


class ExpectedUIDError(InvalidKeyedArchiveError):
	key: str
	
	def __init__(self, key: str) -> None:
		super().__init__(f"Expected uid value for key {key!r}")
		
		self.key = key


class CyclicReferenceError(InvalidKeyedArchiveError):
	"""Raised if an object (directly or indirectly) contains itself.
	
	The decoded output is a plain tree without backreferences,
	so such an object graph cannot be represented.
	"""
	
	uid: int
	
	def __init__(self, uid: int) -> None:
		super().__init__(f"Cyclic object reference ({uid}). The object contains itself.")
		
		self.uid = uid


class MissingRootError(KeyError):
	"""Raised when asking for a root object name that the archive's ``$top`` dictionary doesn't contain."""


def _convert_xml_uids(value: typing.Any) -> typing.Any:
	"""Replace all ``{"CF$UID": n}`` dictionaries in a parsed plist with :class:`plistlib.UID` objects.
	
	plistlib only produces real UID objects when reading binary plists.
	"""
	
	if isinstance(value, dict):
		if len(value) == 1 and isinstance(value.get(_XML_UID_KEY), int) and not isinstance(value[_XML_UID_KEY], bool):
			return plistlib.UID(value[_XML_UID_KEY])
		return {key: _convert_xml_uids(element) for key, element in value.items()}
	elif isinstance(value, list):
		return [_convert_xml_uids(element) for element in value]
	else:
		return value


def load_plist(data: bytes) -> typing.Any:
	"""Parse binary or XML property list data.
	
	The format is detected automatically.
	UIDs are returned as :class:`plistlib.UID` objects in both formats.
	
	:raise InvalidPlistError: If the data is not a valid property list.
	"""
	
	try:
		value = plistlib.loads(data)
	except (plistlib.InvalidFileException, xml.parsers.expat.ExpatError, ValueError) as exc:
		raise InvalidPlistError(f"Plist error: {exc or type(exc).__name__}") from exc
	
	return _convert_xml_uids(value)


def _is_unsigned_integer(value: typing.Any) -> bool:
	return isinstance(value, int) and not isinstance(value, bool) and value >= 0


class ObjectTable(typing.Sequence[typing.Any]):
	"""The flat table of all objects stored in an archive (the ``$objects`` array).
	
	The table is immutable.
	Indexing it with a UID (or a plain int) that is out of range raises :class:`DanglingReferenceError`
	instead of :class:`IndexError`.
	"""
	
	objects: typing.Tuple[typing.Any, ...]
	
	def __init__(self, objects: typing.Iterable[typing.Any]) -> None:
		super().__init__()
		
		self.objects = tuple(objects)
	
	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}({list(self.objects)!r})"
	
	def __len__(self) -> int:
		return len(self.objects)
	
	# The Sequence mixin implementation relies on __getitem__ raising IndexError.
	def __iter__(self) -> typing.Iterator[typing.Any]:
		return iter(self.objects)
	
	@typing.overload
	def __getitem__(self, index: typing.Union[int, plistlib.UID]) -> typing.Any: ...
	
	@typing.overload
	def __getitem__(self, index: slice) -> typing.Sequence[typing.Any]: ...
	
	def __getitem__(self, index: typing.Union[int, plistlib.UID, slice]) -> typing.Any:
		if isinstance(index, slice):
			return self.objects[index]
		
		number = index.data if isinstance(index, plistlib.UID) else index
		# Negative indices are not meaningful for UIDs (plistlib.UID can't be negative anyway).
		if not 0 <= number < len(self.objects):
			raise DanglingReferenceError(number)
		return self.objects[number]
	
	def class_names(self, class_uid: plistlib.UID) -> typing.List[str]:
		"""Look up the class name chain that the given class UID refers to.
		
		The referenced object must be a class information dictionary
		with a ``$classes`` key containing a list of class name strings.
		
		:param class_uid: The value of an object's ``$class`` key.
		:return: The class names, ordered from the most derived class to the root class.
		:raise InvalidClassReferenceError: If ``class_uid`` is not a UID.
		:raise DanglingReferenceError: If the UID is out of range.
		:raise MalformedObjectError: If the referenced object is not a valid class information dictionary.
		"""
		
		if not isinstance(class_uid, plistlib.UID):
			raise InvalidClassReferenceError(class_uid)
		
		class_info = self[class_uid]
		if not isinstance(class_info, dict):
			raise MalformedObjectError(class_uid.data)
		
		names = class_info.get("$classes")
		if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
			raise MalformedObjectError(class_uid.data)
		
		return names


def _pop_header_key(header: typing.Dict[str, typing.Any], key: str) -> typing.Any:
	try:
		return header.pop(key)
	except KeyError:
		raise MissingHeaderKeyError(key) from None


class KeyedArchive(advanced_repr.AsMultilineStringBase):
	"""A validated but not yet decoded NSKeyedArchiver archive."""
	
	objects: ObjectTable
	top: typing.Dict[str, typing.Any]
	extra_header: typing.Dict[str, typing.Any]
	
	@classmethod
	def from_plist(cls, plist: typing.Any) -> "KeyedArchive":
		"""Validate the header of an already parsed property list.
		
		The header keys are checked in a fixed order
		(``$archiver``, ``$version``, ``$top``, ``$objects``),
		so if several of them are invalid,
		the error is reported for the first one.
		The passed-in dictionary is not modified.
		
		:raise WrongValueTypeError: If the root or one of the header values has the wrong type.
		:raise MissingHeaderKeyError: If one of the header keys is missing.
		:raise UnsupportedArchiverError: If the archive wasn't written by NSKeyedArchiver.
		:raise UnsupportedArchiverVersionError: If the archive format version is not supported.
		"""
		
		if not isinstance(plist, dict):
			raise WrongValueTypeError("root", "Dictionary")
		
		header = dict(plist)
		
		archiver = _pop_header_key(header, _ARCHIVER_KEY)
		if not isinstance(archiver, str):
			raise WrongValueTypeError(_ARCHIVER_KEY, "String")
		elif archiver != ARCHIVER_NAME:
			raise UnsupportedArchiverError(archiver)
		
		version = _pop_header_key(header, _VERSION_KEY)
		if not _is_unsigned_integer(version):
			raise WrongValueTypeError(_VERSION_KEY, "Number")
		elif version != ARCHIVER_VERSION:
			raise UnsupportedArchiverVersionError(version)
		
		top = _pop_header_key(header, _TOP_KEY)
		if not isinstance(top, dict):
			raise WrongValueTypeError(_TOP_KEY, "Dictionary")
		
		objects = _pop_header_key(header, _OBJECTS_KEY)
		if not isinstance(objects, list):
			raise WrongValueTypeError(_OBJECTS_KEY, "Array")
		
		return cls(ObjectTable(objects), top, extra_header=header)
	
	@classmethod
	def from_data(cls, data: bytes) -> "KeyedArchive":
		"""Load an archive from binary or XML plist data."""
		
		return cls.from_plist(load_plist(data))
	
	@classmethod
	def from_stream(cls, f: typing.BinaryIO) -> "KeyedArchive":
		"""Load an archive from the remaining data in the given byte stream.
		
		The stream is not closed.
		"""
		
		return cls.from_data(f.read())
	
	@classmethod
	def open(cls, filename: typing.Union[str, bytes, os.PathLike]) -> "KeyedArchive":
		"""Load an archive from the plist file at the given path."""
		
		with open(filename, "rb") as f:
			return cls.from_stream(f)
	
	def __init__(self, objects: ObjectTable, top: typing.Dict[str, typing.Any], *, extra_header: typing.Optional[typing.Dict[str, typing.Any]] = None) -> None:
		super().__init__()
		
		self.objects = objects
		self.top = top
		self.extra_header = {} if extra_header is None else extra_header
	
	def __repr__(self) -> str:
		return f"{type(self).__module__}.{type(self).__qualname__}(objects={self.objects!r}, top={self.top!r}, extra_header={self.extra_header!r})"
	
	def _as_multiline_string_header_(self) -> str:
		return f"{ARCHIVER_NAME} archive, version {ARCHIVER_VERSION}, {len(self.objects)} objects"
	
	def _as_multiline_string_body_(self) -> typing.Iterable[str]:
		for key, value in self.extra_header.items():
			yield from advanced_repr.as_multiline_string(value, prefix=f"extra header {key!r}: ")
		
		yield "top:"
		for name, value in self.top.items():
			yield from advanced_repr.prefix_lines(advanced_repr.as_multiline_string(value, prefix=f"{name!r}: "), first="\t", rest="\t")
		
		yield "objects:"
		for number, value in enumerate(self.objects):
			yield from advanced_repr.prefix_lines(advanced_repr.as_multiline_string(value, prefix=f"#{number}: "), first="\t", rest="\t")
