#!/usr/bin/env python3
"""
Test edge cases for cats.py.
"""

import io
import logging
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add parent directory to path to import cats module
sys.path.insert(0, str(Path(__file__).parent.parent))
import cats  # pylint: disable=wrong-import-position

# Disable logging for tests
cats.logger.setLevel(logging.CRITICAL)


def run(data: bytes, **flags) -> bytes:
    out = io.BytesIO()
    cats.cat_stream(
        io.BytesIO(data), cats.OutputSink(out), cats.Config(**flags), cats.FilterState()
    )
    return out.getvalue()


class TestEdgeCases(unittest.TestCase):
    def test_empty_input(self) -> None:
        self.assertEqual(run(b""), b"")
        self.assertEqual(run(b"", line_numbers=True), b"")

    def test_input_shorter_than_bom(self) -> None:
        self.assertEqual(run(b"a"), b"a")
        self.assertEqual(run(b"\n", line_numbers=True), b"     1\t\n")
        self.assertEqual(run(b"\xef\xbb"), b"\xef\xbb")

    def test_bom_only(self) -> None:
        """A lone BOM produces no output at all."""
        self.assertEqual(run(b"\xef\xbb\xbf"), b"")
        self.assertEqual(run(b"\xff\xfe"), b"")
        self.assertEqual(run(b"\xfe\xff"), b"")

    def test_lone_carriage_return(self) -> None:
        """CR without LF is dropped."""
        self.assertEqual(run(b"a\rb\n"), b"ab\n")
        self.assertEqual(run(b"\r"), b"")

    def test_lf_without_cr(self) -> None:
        self.assertEqual(run(b"a\nb\n"), b"a\nb\n")

    def test_no_trailing_newline(self) -> None:
        self.assertEqual(run(b"last line"), b"last line")
        self.assertEqual(run(b"last line\r"), b"last line")

    def test_leading_blank_lines_suppressed(self) -> None:
        self.assertEqual(run(b"\n\r\n\nx\n", suppress_blank=True), b"x\n")

    def test_suppressed_lines_not_counted(self) -> None:
        """Blank lines removed by -s do not use up line numbers."""
        self.assertEqual(
            run(b"a\n\n\nb\n", suppress_blank=True, line_numbers=True),
            b"     1\ta\n     2\tb\n",
        )

    def test_numbered_blank_crlf_line(self) -> None:
        self.assertEqual(
            run(b"a\r\n\r\nb\r\n", line_numbers=True),
            b"     1\ta\n     2\t\n     3\tb\n",
        )

    def test_show_control_table(self) -> None:
        """Every C0 control has a caret rendering."""
        for c in range(0x20):
            if c == cats.LF:
                continue
            expected = b"^" + bytes([c + 0x40])
            self.assertEqual(
                run(bytes([c]) + b"x", show_control=True), expected + b"x"
            )

    def test_show_control_renders_carriage_return(self) -> None:
        self.assertEqual(run(b"a\r\n", show_control=True), b"a^M$\n")

    def test_delete_is_emitted_raw(self) -> None:
        """DEL has no caret rendering and passes through."""
        self.assertEqual(run(b"\x7f\n", show_control=True), b"\x7f$\n")

    def test_rendered_control_keeps_line_start(self) -> None:
        """A rendered control at line start leaves the next byte numbered too."""
        self.assertEqual(
            run(b"\x07x\n", show_control=True, line_numbers=True),
            b"     1\t^G     2\tx$\n",
        )

    def test_high_bytes_pass_through(self) -> None:
        data = "naïve café\n".encode("utf-8")
        self.assertEqual(run(data, show_control=True), data[:-1] + b"$\n")

    def test_long_lines(self) -> None:
        """Lines far longer than the output buffer survive intact."""
        line = b"a" * 10000
        self.assertEqual(run((line + b"\r\n") * 3), (line + b"\n") * 3)


class TestFileEdgeCases(unittest.TestCase):
    def setUp(self) -> None:
        # Create a temporary directory
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self) -> None:
        # Clean up the temporary directory
        shutil.rmtree(self.test_dir)

    def write(self, name: str, content: bytes) -> str:
        path = os.path.join(self.test_dir, name)
        with open(path, "wb") as f:
            f.write(content)
        return path

    def run_main(self, args):
        out = io.BytesIO()
        with patch("sys.argv", ["cats"] + args), patch(
            "sys.stdout", io.TextIOWrapper(out)
        ):
            result = cats.main()
            return result, out.getvalue()

    def test_concatenation_without_trailing_newline(self) -> None:
        """The next file continues the unterminated line without a number."""
        first = self.write("first.txt", b"one\r\ntwo")
        second = self.write("second.txt", b"\xef\xbb\xbfthree\r\n")
        result, output = self.run_main(["-n", first, second])
        self.assertEqual(result, 0)
        self.assertEqual(output, b"     1\tone\n     2\ttwothree\n")

    def test_summary_after_unterminated_output(self) -> None:
        """A newline goes to stderr before the summary of an unterminated file."""
        path = self.write("partial.txt", b"no newline")
        stderr = io.StringIO()
        with patch("sys.stderr", stderr), self.assertLogs("cats", "INFO") as logs:
            result, output = self.run_main(["-v", path])
        self.assertEqual(result, 0)
        self.assertEqual(output, b"no newline")
        self.assertEqual(stderr.getvalue(), "\n")
        self.assertEqual(
            logs.records[0].getMessage(), f"{path}: No CRs found, no BOM found."
        )

    def test_overwrite_empty_and_bom_only_files(self) -> None:
        empty = self.write("empty.txt", b"")
        bom = self.write("bom.txt", b"\xfe\xff")
        result, _ = self.run_main(["-o", empty, bom])
        self.assertEqual(result, 0)
        for path in (empty, bom):
            with open(path, "rb") as f:
                self.assertEqual(f.read(), b"")

    def test_overwrite_replaces_stale_temp_file(self) -> None:
        path = self.write("data.txt", b"x\r\n")
        self.write("data.txt" + cats.TEMP_SUFFIX, b"left over from a crash")
        result, _ = self.run_main(["-o", path])
        self.assertEqual(result, 0)
        with open(path, "rb") as f:
            self.assertEqual(f.read(), b"x\n")
        self.assertEqual(os.listdir(self.test_dir), ["data.txt"])

    def test_overwrite_many_files(self) -> None:
        paths = [self.write(f"file_{i}.txt", b"File %d\r\n" % i) for i in range(20)]
        result, output = self.run_main(["-o"] + paths)
        self.assertEqual(result, 0)
        self.assertEqual(output, b"")
        for i, path in enumerate(paths):
            with open(path, "rb") as f:
                self.assertEqual(f.read(), b"File %d\n" % i)


if __name__ == "__main__":
    unittest.main()
