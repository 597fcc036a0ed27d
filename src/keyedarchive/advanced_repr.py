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


import datetime
import plistlib
import typing


__all__ = [
	"prefix_lines",
	"AsMultilineStringBase",
	"as_multiline_string",
]


def prefix_lines(
	lines: typing.Iterable[str],
	*,
	first: str = "",
	rest: str = "",
) -> typing.Iterable[str]:
	it = iter(lines)
	
	try:
		yield first + next(it)
	except StopIteration:
		if first:
			yield first
	
	if rest:
		for line in it:
			yield rest + line
	else:
		yield from it


class AsMultilineStringBase(object):
	"""Base class for classes that want to implement a custom multiline string representation,
	for use by :func:`as_multiline_string`.
	
	This also provides an implementation of ``__str__`` based on :meth:`~AsMultilineStringBase._as_multiline_string_`.
	"""
	
	def _as_multiline_string_header_(self) -> str:
		"""Render the header part of this object's multiline string representation.
		
		The header should be a compact single-line overview description of the object.
		If the body part is non-empty,
		then the header automatically has a colon appended.
		"""
		
		raise NotImplementedError()
	
	def _as_multiline_string_body_(self) -> typing.Iterable[str]:
		"""Render the body part of this object's multiline string representation.
		
		Each line in the body is automatically indented by one tab
		so that the body appears visually nested under the header.
		"""
		
		raise NotImplementedError()
	
	def _as_multiline_string_(self) -> typing.Iterable[str]:
		"""Convert ``self`` to a multiline string representation.
		
		This method should not be called directly -
		use :func:`as_multiline_string` instead.
		"""
		
		yield from _header_and_body(self._as_multiline_string_header_(), self._as_multiline_string_body_())
	
	def __str__(self) -> str:
		return "\n".join(self._as_multiline_string_())


def _header_and_body(header: str, body: typing.Iterable[str]) -> typing.Iterable[str]:
	body_it = iter(body)
	# Silly hack: append the colon to the first line only if at least one more line comes after it.
	try:
		second = next(body_it)
	except StopIteration:
		yield header
	else:
		yield header + ":"
		yield "\t" + second
		for line in body_it:
			yield "\t" + line


def _count_desc(count: int, singular: str, plural: str) -> str:
	if count == 0:
		return "empty"
	elif count == 1:
		return f"1 {singular}"
	else:
		return f"{count} {plural}"


def _plain_value_lines(obj: typing.Any) -> typing.Iterable[str]:
	if isinstance(obj, dict):
		body = (
			line
			for key, value in obj.items()
			for line in as_multiline_string(value, prefix=f"{key!r}: ")
		)
		yield from _header_and_body(f"dictionary, {_count_desc(len(obj), 'entry', 'entries')}", body)
	elif isinstance(obj, list):
		body = (line for element in obj for line in as_multiline_string(element))
		yield from _header_and_body(f"array, {_count_desc(len(obj), 'element', 'elements')}", body)
	elif isinstance(obj, plistlib.UID):
		yield f"<reference to object #{obj.data}>"
	elif isinstance(obj, bytes):
		yield f"data, {len(obj)} bytes: {obj!r}"
	elif isinstance(obj, datetime.datetime):
		yield f"date: {obj.isoformat()}"
	elif isinstance(obj, str):
		yield repr(obj)
	else:
		yield from str(obj).splitlines()


def as_multiline_string(obj: object, *, prefix: str = "") -> typing.Iterable[str]:
	"""Convert an object to a multiline string representation.
	
	If the object has an :meth:`~AsMultilineStringBase._as_multiline_string_` method,
	it is used to create the multiline string representation.
	Plain property list values (dictionaries, arrays, UIDs, data, dates, strings)
	are rendered in an indented tree format.
	Anything else is converted to a string using default :class:`str` conversion,
	and then split into an iterable of lines.
	
	:param obj: The object to represent.
	:param prefix: An optional prefix to add in front of the first line of the string representation.
		Convenience shortcut for :func:`prefix_lines`.
	:return: The string representation as an iterable of lines (line terminators not included).
	"""
	
	if isinstance(obj, AsMultilineStringBase):
		res = obj._as_multiline_string_()
	else:
		res = _plain_value_lines(obj)
	
	yield from prefix_lines(res, first=prefix)
