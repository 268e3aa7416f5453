#!/usr/bin/env python3
"""
cats

Concatenate files to standard output, stripping BOMs and carriage returns
and converting UTF-16 input to UTF-8.
"""

import argparse
import errno
import io
import logging
import os
import signal
import sys
from enum import Enum
from typing import BinaryIO, Iterator, List, NamedTuple, Optional, Tuple

from tqdm import tqdm

# Define version
__version__ = "1.0.0"

PROG = "cats"

BUFFER_SIZE = 1024
TEMP_SUFFIX = ".catstemp"
MAX_PATH_LENGTH = 4095
STDIN_NAME = "STDIN"

LF = 0x0A
CR = 0x0D
DEL = 0x7F

CONTROL_SEQUENCES: Tuple[bytes, ...] = (
    b"^@", b"^A", b"^B", b"^C", b"^D", b"^E", b"^F", b"^G",
    b"^H", b"^I", b"$", b"^K", b"^L", b"^M", b"^N", b"^O",
    b"^P", b"^Q", b"^R", b"^S", b"^T", b"^U", b"^V", b"^W",
    b"^X", b"^Y", b"^Z", b"^[", b"^\\", b"^]", b"^^", b"^_",
)

LOG_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Diagnostics read "cats: <file>: <message>"
logging.basicConfig(
    level=logging.INFO,
    format="%(name)s: %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(PROG)


class CatsError(Exception):
    """Base class for every fatal error reported by cats."""

    def __init__(self, message: str, filename: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.filename = filename

    def __str__(self) -> str:
        if self.filename is None:
            return self.message
        return f"{self.filename}: {self.message}"


class UsageError(CatsError):
    """Bad command line."""


class CatsIOError(CatsError):
    """An input or output could not be opened, read or written."""

    @classmethod
    def from_os_error(cls, filename: str, exc: OSError) -> "CatsIOError":
        return cls(exc.strerror or str(exc), filename)


class TempNameError(CatsError):
    """The temporary file name would collide with the file being rewritten."""


class SetupError(CatsError):
    """The output or logging channels could not be prepared."""


class Bom(Enum):
    """Byte-order marks recognised at the start of an input."""

    NONE = (b"", "none")
    UTF8 = (b"\xef\xbb\xbf", "UTF-8")
    UTF16_BE = (b"\xfe\xff", "UTF-16BE")
    UTF16_LE = (b"\xff\xfe", "UTF-16LE")

    def __init__(self, signature: bytes, label: str) -> None:
        self.signature = signature
        self.label = label

    @property
    def length(self) -> int:
        return len(self.signature)

    @property
    def is_utf16(self) -> bool:
        return self in (Bom.UTF16_BE, Bom.UTF16_LE)


# Checked in this order, first match wins
BOM_CANDIDATES: Tuple[Bom, ...] = (Bom.UTF8, Bom.UTF16_BE, Bom.UTF16_LE)


class Config(NamedTuple):
    """Option toggles, fixed once the command line has been parsed."""

    verbose: bool = False
    line_numbers: bool = False
    show_control: bool = False
    suppress_blank: bool = False
    unbuffered: bool = False
    overwrite: bool = False

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Config":
        return cls(
            verbose=args.verbose,
            line_numbers=args.line_numbers,
            show_control=args.show_control,
            suppress_blank=args.suppress_blank,
            unbuffered=args.unbuffered,
            overwrite=args.overwrite,
        )


class FilterState:
    """
    Running counters of the text filter.

    One instance is shared by every input of an invocation, so line numbers
    continue from file to file and a file that does not end in LF keeps the
    next file's first byte on the same output line.
    """

    def __init__(self) -> None:
        self.current_line: int = 0
        self.prev_was_lf: bool = True
        self.last_byte: Optional[int] = None

    @property
    def ends_with_newline(self) -> bool:
        return self.last_byte is None or self.last_byte == LF


def sniff_bom(stream: BinaryIO) -> Tuple[Bom, bytes]:
    """
    Read up to three bytes from stream and classify them.

    Returns the detected BOM and the bytes that were read but do not belong
    to it. Short inputs are classified with whatever could be read.
    """
    head: bytes = stream.read(3) or b""
    for bom in BOM_CANDIDATES:
        if head.startswith(bom.signature):
            return bom, head[bom.length :]
    return Bom.NONE, head


class PushbackSource:
    """Byte source that replays read-ahead bytes before its stream."""

    def __init__(
        self, stream: BinaryIO, leftover: bytes = b"", chunk_size: int = BUFFER_SIZE
    ) -> None:
        self._stream = stream
        # read1 returns what is available instead of waiting for a full chunk
        self._read = getattr(stream, "read1", stream.read)
        self._chunk_size = chunk_size
        self._buffer: bytes = bytes(leftover)
        self._pos = 0

    def next_byte(self) -> Optional[int]:
        """Return the next byte, or None once leftover and stream are drained."""
        if self._pos >= len(self._buffer):
            chunk = self._read(self._chunk_size)
            if not chunk:
                return None
            self._buffer = chunk
            self._pos = 0
        c = self._buffer[self._pos]
        self._pos += 1
        return c

    def __iter__(self) -> Iterator[int]:
        while True:
            c = self.next_byte()
            if c is None:
                return
            yield c


class Utf16Reader(io.RawIOBase):
    """
    Readable stream of UTF-8 bytes decoded from UTF-16 code units.

    Each code unit is encoded on its own: surrogate halves are not paired and
    come out as separate 3-byte sequences. CR code units are dropped, and a
    LF is appended when the last code unit was not one.
    """

    def __init__(self, source: PushbackSource, big_endian: bool) -> None:
        super().__init__()
        self._source = source
        self._big_endian = big_endian
        self._pending = bytearray()
        self._last_unit: Optional[int] = None
        self._done = False
        self.cr_seen = False

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        while len(self._pending) < len(buffer) and not self._done:
            self._decode_unit()
        count = min(len(buffer), len(self._pending))
        buffer[:count] = self._pending[:count]
        del self._pending[:count]
        return count

    def _decode_unit(self) -> None:
        first = self._source.next_byte()
        second = None if first is None else self._source.next_byte()
        if first is None or second is None:
            # A lone trailing byte is dropped
            self._done = True
            if self._last_unit is not None and self._last_unit != LF:
                self._pending.append(LF)
            return

        if self._big_endian:
            unit = (first << 8) | second
        else:
            unit = (second << 8) | first
        self._last_unit = unit

        if unit == CR:
            self.cr_seen = True
            return
        self._pending += chr(unit).encode("utf-8", "surrogatepass")


class OutputSink:
    """
    Buffered byte sink over a binary stream.

    With buffer_size 0 every write goes straight through; with line_buffered
    the buffer is drained whenever a LF is written.
    """

    def __init__(
        self,
        stream: BinaryIO,
        buffer_size: int = BUFFER_SIZE,
        line_buffered: bool = False,
    ) -> None:
        self.stream = stream
        self.buffer_size = buffer_size
        self.line_buffered = line_buffered
        self._buffer = bytearray()

    def put(self, c: int) -> None:
        self._buffer.append(c)
        if (
            self.buffer_size == 0
            or len(self._buffer) >= self.buffer_size
            or (self.line_buffered and c == LF)
        ):
            self.flush()

    def write(self, data: bytes) -> None:
        self._buffer += data
        if (
            self.buffer_size == 0
            or len(self._buffer) >= self.buffer_size
            or (self.line_buffered and LF in data)
        ):
            self.flush()

    def flush(self) -> None:
        if self._buffer:
            self.stream.write(bytes(self._buffer))
            self._buffer.clear()
        self.stream.flush()


def is_control(c: int) -> bool:
    return c < 0x20 or c == DEL


def filter_stream(
    source: PushbackSource, sink: OutputSink, config: Config, state: FilterState
) -> bool:  # pylint: disable=too-many-branches
    """
    Copy source to sink one byte at a time, applying the text options.

    CR bytes are never written. Returns True if the input contained any CR.
    """
    cr_seen = False
    c: Optional[int] = None

    while True:
        if c == LF:
            state.prev_was_lf = True
            if config.unbuffered:
                sink.flush()

        c = source.next_byte()
        if c is None:
            break

        if c == CR:
            cr_seen = True

        if config.suppress_blank and state.prev_was_lf and c in (CR, LF):
            continue

        if config.line_numbers and state.prev_was_lf:
            state.current_line += 1
            sink.write(b"%6d\t" % state.current_line)
            state.last_byte = ord("\t")

        if is_control(c):
            if config.show_control and c < len(CONTROL_SEQUENCES):
                sequence = CONTROL_SEQUENCES[c]
                sink.write(sequence)
                state.last_byte = sequence[-1]
                # Rendered controls leave the line-start flag alone
                if c != LF:
                    continue
            if c == CR:
                state.prev_was_lf = False
                continue
        else:
            state.prev_was_lf = False

        sink.put(c)
        state.last_byte = c

    sink.flush()
    return cr_seen


def cat_stream(
    stream: BinaryIO, sink: OutputSink, config: Config, state: FilterState
) -> Tuple[Bom, bool]:
    """Sniff, decode if needed, and filter one input into sink."""
    bom, leftover = sniff_bom(stream)
    logger.debug("Detected BOM: %s", bom.label)

    source = PushbackSource(stream, leftover)
    decoder: Optional[Utf16Reader] = None
    if bom.is_utf16:
        decoder = Utf16Reader(source, big_endian=bom is Bom.UTF16_BE)
        source = PushbackSource(decoder)  # type: ignore[arg-type]

    cr_seen = filter_stream(source, sink, config, state)
    if decoder is not None:
        cr_seen = cr_seen or decoder.cr_seen
    return bom, cr_seen


def temp_path(path: str, limit: Optional[int] = None) -> str:
    """
    Name of the temporary file used while rewriting path.

    Names are limited to limit characters. If the suffix does not fit, the
    cut-down name would be the original or some unrelated file, so
    TempNameError is raised instead.
    """
    if limit is None:
        limit = MAX_PATH_LENGTH
    candidate = (path + TEMP_SUFFIX)[:limit]
    if candidate == path or not candidate.endswith(TEMP_SUFFIX):
        raise TempNameError(
            f"Temporary file name would replace the original "
            f"(names are limited to {limit} characters)",
            path,
        )
    return candidate


def overwrite_file(path: str, config: Config, state: FilterState) -> Tuple[Bom, bool]:
    """
    Rewrite path in place with its filtered content.

    Output goes to a temporary file next to path, which is then renamed over
    the original. The original stays intact if anything fails on the way.
    """
    if not os.path.exists(path):
        raise CatsIOError(os.strerror(errno.ENOENT), path)
    if not os.access(path, os.W_OK):
        raise CatsIOError(os.strerror(errno.EACCES), path)

    temp = temp_path(path)
    logger.debug("Writing %s through %s", path, temp)

    try:
        with open(path, "rb") as stream, open(temp, "wb") as out:
            result = cat_stream(stream, OutputSink(out), config, state)
            os.fsync(out.fileno())
        os.replace(temp, path)
    except BaseException:
        if os.path.exists(temp):
            os.remove(temp)
        raise

    logger.debug("Replaced %s", path)
    return result


def summary_message(name: str, bom: Bom, cr_seen: bool, overwrote: bool) -> str:
    parts = [f"{name}: "]
    parts.append("Stripped CRs from line ends" if cr_seen else "No CRs found")
    if bom is Bom.NONE:
        parts.append(", no BOM found")
    else:
        parts.append(f", converted {bom.label} to UTF-8")
    if overwrote:
        parts.append(", overwrote file")
    parts.append(".")
    return "".join(parts)


def report(
    name: str, bom: Bom, cr_seen: bool, config: Config, state: FilterState
) -> None:
    """Log the per-input summary requested with -v."""
    if not config.overwrite and not state.ends_with_newline:
        # Keep the summary off the end of an unterminated output line
        sys.stderr.write("\n")
        sys.stderr.flush()
    logger.info("%s", summary_message(name, bom, cr_seen, config.overwrite))


def cat_file(path: str, config: Config, state: FilterState, sink: OutputSink) -> None:
    """Process one named input."""
    if os.path.isdir(path):
        raise CatsIOError(os.strerror(errno.EISDIR), path)

    try:
        if config.overwrite:
            bom, cr_seen = overwrite_file(path, config, state)
        else:
            with open(path, "rb") as stream:
                bom, cr_seen = cat_stream(stream, sink, config, state)
    except OSError as e:
        raise CatsIOError.from_os_error(path, e) from e

    if config.verbose:
        report(path, bom, cr_seen, config, state)


def cat_stdin(config: Config, state: FilterState, sink: OutputSink) -> None:
    """Process standard input."""
    try:
        bom, cr_seen = cat_stream(sys.stdin.buffer, sink, config, state)
    except OSError as e:
        raise CatsIOError.from_os_error(STDIN_NAME, e) from e

    if config.verbose:
        report(STDIN_NAME, bom, cr_seen, config, state)


def open_stdout_sink(config: Config, line_buffered: bool = False) -> OutputSink:
    stream = getattr(sys.stdout, "buffer", None)
    if stream is None:
        raise SetupError(
            "Could not open standard output for binary writing. "
            "Try running with -u option."
        )
    if config.unbuffered:
        return OutputSink(stream, buffer_size=0)
    return OutputSink(stream, BUFFER_SIZE, line_buffered=line_buffered)


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str):  # type: ignore[override]
        raise UsageError(f"{message}. Try '{self.prog} --help'.")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROG,
        description="Concatenate file(s) to standard output, "
        "stripping BOMs and CRs.",
        add_help=False,
        allow_abbrev=False,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "files",
        nargs="*",
        metavar="file",
        help="Files to concatenate ('-' or none for standard input)",
    )
    parser.add_argument(
        "-v", dest="verbose", action="store_true", help="Output summary."
    )
    parser.add_argument(
        "-n", dest="line_numbers", action="store_true", help="Output line numbers."
    )
    parser.add_argument(
        "-A",
        dest="show_control",
        action="store_true",
        help="Replace control characters with their sequences.",
    )
    parser.add_argument(
        "-s",
        dest="suppress_blank",
        action="store_true",
        help="Suppress all blank lines.",
    )
    parser.add_argument(
        "-u", dest="unbuffered", action="store_true", help="Don't buffer output."
    )
    parser.add_argument(
        "-o",
        "--overwrite",
        action="store_true",
        help="Rewrite each file in place instead of printing it.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also append diagnostics to this file",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--help", action="help", help="Display this message."
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"stripping cat {__version__}\n"
        "(c) toiletbril <https://github.com/toiletbril>",
        help="Display version.",
    )
    return parser


def configure_logging(args: argparse.Namespace) -> None:
    if args.debug:
        logger.setLevel(logging.DEBUG)
    if args.log_file:
        try:
            handler = logging.FileHandler(args.log_file, mode="a")
        except OSError as e:
            raise SetupError(e.strerror or str(e), args.log_file) from e
        handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT))
        logger.addHandler(handler)


def handle_interrupt(config: Optional[Config], sink: Optional[OutputSink]) -> int:
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    if sink is None:
        sink = OutputSink(sys.stdout.buffer, buffer_size=0)
    sink.write(b"\n")
    if config is not None and config.verbose:
        logger.info("Interrupted.")
    sink.flush()
    return 0


def main() -> int:
    config: Optional[Config] = None
    sink: Optional[OutputSink] = None
    try:
        args = build_parser().parse_intermixed_args(sys.argv[1:])
        configure_logging(args)
        config = Config.from_args(args)

        files: List[str] = args.files or ["-"]
        reading_stdin = "-" in files
        if config.overwrite and reading_stdin:
            raise UsageError("--overwrite cannot be used with standard input")

        sink = open_stdout_sink(config, line_buffered=reading_stdin)
        state = FilterState()

        # Progress only makes sense when stdout carries no file content
        show_progress = config.overwrite and not config.verbose and len(files) > 1
        for path in tqdm(
            files,
            desc="Overwriting files",
            unit="file",
            disable=None if show_progress else True,
            leave=False,
        ):
            if path == "-":
                cat_stdin(config, state, sink)
            else:
                cat_file(path, config, state, sink)
        return 0
    except CatsError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return handle_interrupt(config, sink)


if __name__ == "__main__":
    sys.exit(main())
