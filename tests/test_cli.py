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


import contextlib
import io
import json
import pathlib
import plistlib
import sys
import tempfile
import typing
import unittest
import unittest.mock

import keyedarchive.__main__


DATA_DIR = pathlib.Path(__file__).parent / "data"
PET_DICTIONARY_FILE = str(DATA_DIR / "pet_dictionary.plist")


def run_cli(*args: str) -> typing.Tuple[int, str, str]:
	"""Run the command-line tool with the given arguments and return its exit status, stdout and stderr."""
	
	stdout = io.StringIO()
	stderr = io.StringIO()
	with unittest.mock.patch.object(sys, "argv", ["keyedarchive", *args]):
		with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
			try:
				keyedarchive.__main__.main()
			except SystemExit as exc:
				status = exc.code
			else:
				raise AssertionError("main() returned without calling sys.exit")
	
	return status, stdout.getvalue(), stderr.getvalue()


class CommandLineTests(unittest.TestCase):
	def test_read(self) -> None:
		status, out, _ = run_cli("read", PET_DICTIONARY_FILE)
		self.assertEqual(status, 0)
		lines = out.splitlines()
		self.assertEqual(lines[0], "NSKeyedArchiver archive, version 100000, 14 objects:")
		self.assertIn("\t\t'root': <reference to object #1>", lines)
		self.assertIn("\t\t#13: 'Rex'", lines)
	
	def test_decode(self) -> None:
		status, out, _ = run_cli("decode", PET_DICTIONARY_FILE)
		self.assertEqual(status, 0)
		lines = out.splitlines()
		self.assertEqual(lines[0], "root: array, 3 elements:")
		self.assertIn("\t\t'value': 'Alice'", lines)
		self.assertNotIn("NS.keys", out)
	
	def test_decode_treat_all_as_classes(self) -> None:
		status, out, _ = run_cli("decode", "--treat-all-as-classes", PET_DICTIONARY_FILE)
		self.assertEqual(status, 0)
		self.assertIn("'NS.keys'", out)
		self.assertIn("'$classes'", out)
	
	def test_convert_formats(self) -> None:
		with tempfile.TemporaryDirectory() as tempdir:
			for fmt in ["xml", "binary"]:
				with self.subTest(fmt=fmt):
					out_path = pathlib.Path(tempdir) / f"out.{fmt}"
					status, _, _ = run_cli("convert", "--format", fmt, PET_DICTIONARY_FILE, str(out_path))
					self.assertEqual(status, 0)
					decoded = plistlib.loads(out_path.read_bytes())
					self.assertEqual(decoded["root"][0], {"key": "name", "value": "Alice"})
			
			out_path = pathlib.Path(tempdir) / "out.json"
			status, _, _ = run_cli("convert", "-f", "json", PET_DICTIONARY_FILE, str(out_path))
			self.assertEqual(status, 0)
			decoded = json.loads(out_path.read_text(encoding="utf-8"))
			self.assertEqual(decoded["root"][2]["value"], {"$classes": ["Pet", "NSObject"], "name": "Rex", "age": 3})
	
	def test_convert_binary_flag(self) -> None:
		with tempfile.TemporaryDirectory() as tempdir:
			out_path = pathlib.Path(tempdir) / "out.plist"
			status, _, _ = run_cli("convert", "-b", PET_DICTIONARY_FILE, str(out_path))
			self.assertEqual(status, 0)
			self.assertTrue(out_path.read_bytes().startswith(b"bplist00"))
	
	def test_invalid_archive(self) -> None:
		with tempfile.TemporaryDirectory() as tempdir:
			in_path = pathlib.Path(tempdir) / "in.plist"
			in_path.write_bytes(plistlib.dumps({"$archiver": "NSKeyedArchiver", "$top": {}, "$objects": []}))
			status, _, err = run_cli("decode", str(in_path))
		
		self.assertEqual(status, 1)
		self.assertIn("keyedarchive: error: Missing '$version' header key", err)
	
	def test_missing_file(self) -> None:
		status, _, err = run_cli("read", str(DATA_DIR / "does not exist.plist"))
		self.assertEqual(status, 1)
		self.assertIn("keyedarchive: error:", err)
	
	def test_missing_subcommand(self) -> None:
		status, _, err = run_cli()
		self.assertEqual(status, 2)
		self.assertIn("Missing subcommand", err)


if __name__ == "__main__":
	unittest.main()
