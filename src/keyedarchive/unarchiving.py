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


import copy
import enum
import logging
import os
import plistlib
import typing

from . import archive


__all__ = [
	"Absent",
	"ABSENT",
	"ContainerKind",
	"DICTIONARY_CLASS_NAMES",
	"ARRAY_CLASS_NAMES",
	"is_container",
	"classify_container",
	"Unarchiver",
	"unarchive_from_plist",
	"unarchive_from_stream",
	"unarchive_from_data",
	"unarchive_from_file",
]


logger = logging.getLogger(__name__)


class Absent(enum.Enum):
	"""Type of the :data:`ABSENT` marker.
	
	``None`` cannot be used to mean "no value here",
	because ``None`` is a valid (null) leaf value.
	"""
	
	ABSENT = "absent"
	
	def __repr__(self) -> str:
		return f"{type(self).__module__}.ABSENT"


# Returned by Unarchiver.decode_object for null references and $null objects.
ABSENT = Absent.ABSENT

DICTIONARY_CLASS_NAMES = frozenset({"NSDictionary", "NSMutableDictionary"})
ARRAY_CLASS_NAMES = frozenset({"NSArray", "NSMutableArray"})


class ContainerKind(enum.Enum):
	"""Describes how an archived object is converted into a plain value."""
	
	ARRAY = "array"
	DICTIONARY = "dictionary"
	CUSTOM_CLASS = "custom class"


def is_container(value: typing.Any) -> bool:
	"""Check whether an object table entry is an archived object instance,
	i. e. a dictionary whose ``$class`` key holds a UID.
	
	Everything else (including dictionaries without a valid ``$class``) is a plain leaf value.
	"""
	
	return isinstance(value, dict) and isinstance(value.get("$class"), plistlib.UID)


def classify_container(class_names: typing.Sequence[str], *, treat_all_as_classes: bool = False) -> typing.Optional[ContainerKind]:
	"""Decide how to convert an archived object based on its class name chain.
	
	Only the most derived class name (the first one in the chain) is looked at.
	
	:param class_names: The object's class names, most derived class first.
	:param treat_all_as_classes: If true, never convert objects to native arrays or dictionaries.
	:return: The kind of conversion to use,
		or ``None`` if the class name chain is empty.
	"""
	
	if not class_names:
		return None
	elif treat_all_as_classes:
		return ContainerKind.CUSTOM_CLASS
	
	name = class_names[0]
	if name in DICTIONARY_CLASS_NAMES:
		return ContainerKind.DICTIONARY
	elif name in ARRAY_CLASS_NAMES:
		return ContainerKind.ARRAY
	else:
		return ContainerKind.CUSTOM_CLASS


def _expect_uid(value: typing.Any, key: str) -> plistlib.UID:
	if not isinstance(value, plistlib.UID):
		raise archive.ExpectedUIDError(key)
	return value


class Unarchiver(object):
	"""Converts the object table of a keyed archive into plain Python values.
	
	Native arrays (``NSArray``, ``NSMutableArray``) become lists.
	Native dictionaries (``NSDictionary``, ``NSMutableDictionary``) become lists of ``{"key": ..., "value": ...}`` dictionaries,
	because dictionary keys in an archive can be arbitrary objects and not just strings.
	Objects of all other classes become dictionaries of their archived fields,
	plus a ``$classes`` entry listing the object's class and its superclasses.
	"""
	
	keyed_archive: archive.KeyedArchive
	treat_all_as_classes: bool
	leave_null_values: bool
	_in_progress: typing.Set[int]
	
	@classmethod
	def from_data(cls, data: bytes, **kwargs: typing.Any) -> "Unarchiver":
		"""Create an unarchiver for the given binary or XML plist data."""
		
		return cls(archive.KeyedArchive.from_data(data), **kwargs)
	
	@classmethod
	def from_stream(cls, f: typing.BinaryIO, **kwargs: typing.Any) -> "Unarchiver":
		"""Create an unarchiver for the plist data in the given byte stream.
		
		The stream is read to the end, but not closed.
		"""
		
		return cls(archive.KeyedArchive.from_stream(f), **kwargs)
	
	@classmethod
	def open(cls, filename: typing.Union[str, bytes, os.PathLike], **kwargs: typing.Any) -> "Unarchiver":
		"""Create an unarchiver for the plist file at the given path."""
		
		return cls(archive.KeyedArchive.open(filename), **kwargs)
	
	def __init__(self, keyed_archive: archive.KeyedArchive, *, treat_all_as_classes: bool = False, leave_null_values: bool = False) -> None:
		"""Create an :class:`Unarchiver` for an already loaded archive.
		
		:param keyed_archive: The archive whose objects should be decoded.
		:param treat_all_as_classes: If true, native arrays and dictionaries are decoded like objects of any other class
			(with their ``NS.keys``/``NS.objects`` fields and a ``$classes`` entry)
			instead of being converted to lists.
		:param leave_null_values: If true, references to the ``$null`` object decode to the string ``"$null"``
			instead of being treated as missing values.
			Null references (UID 0) are still treated as missing.
		"""
		
		super().__init__()
		
		self.keyed_archive = keyed_archive
		self.treat_all_as_classes = treat_all_as_classes
		self.leave_null_values = leave_null_values
		self._in_progress = set()
	
	def __repr__(self) -> str:
		return f"<{type(self).__module__}.{type(self).__qualname__} at {id(self):#x}: {len(self.keyed_archive.objects)} objects, treat_all_as_classes={self.treat_all_as_classes}, leave_null_values={self.leave_null_values}>"
	
	def decode_object(self, uid: plistlib.UID) -> typing.Any:
		"""Decode the object that the given UID refers to, recursively resolving all references inside it.
		
		:return: The decoded value,
			or :data:`ABSENT` if the UID refers to no value
			(UID 0, the ``$null`` object, or an object with an empty class chain).
		:raise DanglingReferenceError: If the UID (or one nested inside the object) is out of range.
		:raise CyclicReferenceError: If the object contains itself.
		:raise InvalidKeyedArchiveError: If the object or one nested inside it is malformed.
		"""
		
		number = uid.data
		if number == 0:
			return ABSENT
		
		obj = self.keyed_archive.objects[uid]
		
		if obj == archive.NULL_OBJECT_NAME and not self.leave_null_values:
			return ABSENT
		
		if not is_container(obj):
			return copy.deepcopy(obj)
		
		kind = classify_container(self.keyed_archive.objects.class_names(obj["$class"]), treat_all_as_classes=self.treat_all_as_classes)
		if kind is None:
			logger.debug("Object #%d has an empty class chain, treating it as absent", number)
			return ABSENT
		
		if number in self._in_progress:
			raise archive.CyclicReferenceError(number)
		
		self._in_progress.add(number)
		try:
			logger.debug("Decoding object #%d as %s", number, kind.value)
			if kind == ContainerKind.DICTIONARY:
				return self._decode_dictionary(number, obj)
			elif kind == ContainerKind.ARRAY:
				return self._decode_array(number, obj)
			elif kind == ContainerKind.CUSTOM_CLASS:
				return self._decode_custom_class(number, obj)
			else:
				raise AssertionError(f"Unhandled container kind: {kind}")
		finally:
			self._in_progress.discard(number)
	
	def _decode_array(self, number: int, obj: typing.Dict[str, typing.Any]) -> typing.List[typing.Any]:
		elements = obj.get("NS.objects")
		if not isinstance(elements, list):
			raise archive.MalformedObjectError(number)
		
		array = []
		for element in elements:
			value = self.decode_object(_expect_uid(element, "NS.objects"))
			if value is ABSENT:
				logger.debug("Dropping absent element from array #%d", number)
			else:
				array.append(value)
		return array
	
	def _decode_dictionary(self, number: int, obj: typing.Dict[str, typing.Any]) -> typing.List[typing.Dict[str, typing.Any]]:
		keys = obj.get("NS.keys")
		values = obj.get("NS.objects")
		if not isinstance(keys, list) or not isinstance(values, list) or len(keys) != len(values):
			raise archive.MalformedObjectError(number)
		
		# A dictionary key can be a number, a string or an arbitrary object,
		# so the result can't be a Python dict keyed by the decoded keys.
		entries = []
		for key_uid, value_uid in zip(keys, values):
			key = self.decode_object(_expect_uid(key_uid, "NS.keys"))
			value = self.decode_object(_expect_uid(value_uid, "NS.objects"))
			if key is ABSENT or value is ABSENT:
				raise archive.MalformedObjectError(number)
			entries.append({"key": key, "value": value})
		return entries
	
	def _decode_class_info(self, number: int, class_uid: plistlib.UID) -> typing.Any:
		class_info = self.decode_object(class_uid)
		if not isinstance(class_info, dict) or "$classes" not in class_info:
			raise archive.MalformedObjectError(number)
		return class_info["$classes"]
	
	def _decode_field_elements(self, number: int, key: str, elements: typing.List[typing.Any]) -> typing.List[typing.Any]:
		decoded = []
		for element in elements:
			uid = _expect_uid(element, key)
			try:
				value = self.decode_object(uid)
			except archive.CyclicReferenceError:
				raise
			except archive.InvalidKeyedArchiveError as exc:
				logger.debug("Skipping undecodable element of field %r of object #%d: %s", key, number, exc)
				continue
			
			if value is not ABSENT:
				decoded.append(value)
		return decoded
	
	def _decode_custom_class(self, number: int, obj: typing.Dict[str, typing.Any]) -> typing.Dict[str, typing.Any]:
		fields: typing.Dict[str, typing.Any] = {}
		for key, raw_value in obj.items():
			if key == "$class":
				fields["$classes"] = self._decode_class_info(number, raw_value)
				continue
			
			if isinstance(raw_value, plistlib.UID):
				value = self.decode_object(raw_value)
			elif isinstance(raw_value, list):
				value = self._decode_field_elements(number, key, raw_value)
			else:
				value = copy.deepcopy(raw_value)
			
			if value is ABSENT:
				logger.debug("Omitting absent field %r of object #%d", key, number)
			else:
				fields[key] = value
		return fields
	
	def decode_all(self) -> typing.Dict[str, typing.Any]:
		"""Decode all root objects listed in the archive's ``$top`` dictionary.
		
		:return: A dictionary mapping each root name to its decoded value,
			in the same order as in the archive.
		:raise ExpectedUIDError: If a ``$top`` entry is not a UID.
		:raise MalformedObjectError: If a root object decodes to no value.
		"""
		
		return {name: self._decode_root_entry(name, value) for name, value in self.keyed_archive.top.items()}
	
	def _decode_root_entry(self, name: str, value: typing.Any) -> typing.Any:
		uid = _expect_uid(value, name)
		decoded = self.decode_object(uid)
		if decoded is ABSENT:
			raise archive.MalformedObjectError(uid.data)
		return decoded
	
	def decode_root(self, name: str = "root") -> typing.Any:
		"""Decode a single root object by its name in the ``$top`` dictionary.
		
		Archives created with ``+[NSKeyedArchiver archivedDataWithRootObject:]`` store their root object under the name ``"root"``.
		
		:raise MissingRootError: If there is no root object with the given name.
		"""
		
		try:
			value = self.keyed_archive.top[name]
		except KeyError:
			raise archive.MissingRootError(name) from None
		
		return self._decode_root_entry(name, value)


def unarchive_from_plist(plist: typing.Any, **kwargs: typing.Any) -> typing.Dict[str, typing.Any]:
	"""Decode all root objects of an already parsed NSKeyedArchiver plist.
	
	Keyword arguments are passed on to :class:`Unarchiver`.
	"""
	
	return Unarchiver(archive.KeyedArchive.from_plist(plist), **kwargs).decode_all()


def unarchive_from_stream(f: typing.BinaryIO, **kwargs: typing.Any) -> typing.Dict[str, typing.Any]:
	"""Decode all root objects of the plist data in the given byte stream."""
	
	return Unarchiver.from_stream(f, **kwargs).decode_all()


def unarchive_from_data(data: bytes, **kwargs: typing.Any) -> typing.Dict[str, typing.Any]:
	"""Decode all root objects of the given binary or XML plist data."""
	
	return Unarchiver.from_data(data, **kwargs).decode_all()


def unarchive_from_file(path: typing.Union[str, bytes, os.PathLike], **kwargs: typing.Any) -> typing.Dict[str, typing.Any]:
	"""Decode all root objects of the plist file at the given path."""
	
	return Unarchiver.open(path, **kwargs).decode_all()
