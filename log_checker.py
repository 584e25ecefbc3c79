# /// script
# requires-python = ">=3.8"
# dependencies = [
#     "genutility[rich]",
#     "rich",
# ]
# ///
import codecs
import logging
import sys
from argparse import ArgumentDefaultsHelpFormatter, ArgumentParser, ArgumentTypeError
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Optional, Sequence

from genutility.rich import MarkdownHighlighter
from rich.logging import RichHandler

logger = logging.getLogger(__name__)


class MarkerPosition(Enum):
    above = "above"
    below = "below"


DEFAULT_MARKERS = {
    MarkerPosition.above: "v",
    MarkerPosition.below: "^",
}


@dataclass(frozen=True)
class CursorStyle:
    marker: str = DEFAULT_MARKERS[MarkerPosition.above]
    position: MarkerPosition = MarkerPosition.above


@dataclass(frozen=True)
class Mismatch:
    """`column` is a byte offset into both lines."""

    line: int
    column: int
    expected: bytes
    actual: bytes


class LogCheckError(Exception):
    pass


class OpenError(LogCheckError):
    def __init__(self, path: Path, error: OSError) -> None:
        super().__init__(path, error)
        self.path = path
        self.error = error

    def __str__(self) -> str:
        return f"Failed to open file `{self.path}`: {self.error.strerror or self.error}"


class ContentMismatch(LogCheckError):
    def __init__(self, mismatch: Mismatch) -> None:
        super().__init__(mismatch)
        self.mismatch = mismatch

    def __str__(self) -> str:
        return f"Mismatch in line {self.mismatch.line} at column {self.mismatch.column}"


class LineLengthMismatch(ContentMismatch):
    """Both lines agree on their shared prefix but one of them is longer."""


class FileLengthMismatch(LogCheckError):
    def __init__(self, line: int) -> None:
        super().__init__(line)
        self.line = line

    def __str__(self) -> str:
        return f"Mismatch file length: one file ends before line {self.line}"


def strip_eol(line: bytes) -> bytes:
    if line.endswith(b"\n"):
        line = line[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line


def read_lines(stream: BinaryIO) -> Iterator[bytes]:
    """Yields the lines of a binary stream without their line terminators."""

    for line in stream:
        yield strip_eol(line)


def compare_line(line: int, expected: bytes, actual: bytes) -> None:
    for column, (e, a) in enumerate(zip(expected, actual)):
        if e != a:
            raise ContentMismatch(Mismatch(line, column, expected, actual))

    if len(expected) != len(actual):
        raise LineLengthMismatch(Mismatch(line, min(len(expected), len(actual)), expected, actual))


def compare_lines(expected: Iterable[bytes], actual: Iterable[bytes]) -> int:
    """Compares two sequences of lines in lockstep and returns the number of lines compared.

    Raises `ContentMismatch` for the first differing line pair and `FileLengthMismatch`
    if one of the sequences has more lines than the other. Nothing after the first
    divergence is read.
    """

    expected_it = iter(expected)
    actual_it = iter(actual)
    line = 1

    while True:
        expected_line = next(expected_it, None)
        if expected_line is None:
            if next(actual_it, None) is not None:
                raise FileLengthMismatch(line)
            return line - 1

        actual_line = next(actual_it, None)
        if actual_line is None:
            raise FileLengthMismatch(line)

        compare_line(line, expected_line, actual_line)
        line += 1


def _open(path: Path) -> BinaryIO:
    try:
        fr = open(path, "rb")
    except OSError as e:
        raise OpenError(path, e) from e
    logger.debug("Opened `%s`", path)
    return fr


def compare_files(expected: Path, actual: Path) -> int:
    with _open(expected) as fe, _open(actual) as fa:
        return compare_lines(read_lines(fe), read_lines(fa))


def format_cursor(column: int, style: CursorStyle = CursorStyle()) -> str:
    return " " * column + style.marker


def format_report(
    mismatch: Mismatch,
    style: CursorStyle = CursorStyle(),
    encoding: str = "utf-8",
    errors: str = "backslashreplace",
) -> str:
    """Lines are decoded for display only. The cursor is placed under the decoded
    width of the common prefix, which is the same for both lines.
    """

    column = len(mismatch.expected[: mismatch.column].decode(encoding, errors))
    cursor = format_cursor(column, style)
    out = [f"Mismatch in line  {mismatch.line}"]

    for title, data in (("Expected:", mismatch.expected), ("Actual:", mismatch.actual)):
        text = data.decode(encoding, errors)
        out.append(title)
        if style.position is MarkerPosition.above:
            out.extend((cursor, text))
        else:
            out.extend((text, cursor))

    return "\n".join(out)


def glyph(s: str) -> str:
    if len(s) != 1 or not s.isprintable() or s.isspace():
        raise ArgumentTypeError(f"`{s}` is not a single printable character")
    return s


def codec(s: str) -> str:
    try:
        return codecs.lookup(s).name
    except LookupError:
        raise ArgumentTypeError(f"`{s}` is not a known encoding") from None


# handlers which never fail when decoding
DISPLAY_ERRORS = (
    "backslashreplace",
    "replace",
    "ignore",
)


def get_parser() -> ArgumentParser:
    parser = ArgumentParser(
        description="Compare an actual log with an expected log line by line and report the first difference",
        formatter_class=ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("expected", type=Path, help="Reference log")
    parser.add_argument("actual", type=Path, help="Log to validate")
    parser.add_argument(
        "--marker",
        type=glyph,
        help="Character pointing at the first differing column. Defaults to `v` above and `^` below the line.",
    )
    parser.add_argument(
        "--marker-position",
        choices=tuple(e.name for e in MarkerPosition),
        default=MarkerPosition.above.name,
        help="Print the marker line above or below the text line",
    )
    parser.add_argument(
        "--encoding", type=codec, default="utf-8", help="Encoding used to display mismatching lines"
    )
    parser.add_argument(
        "--errors",
        choices=DISPLAY_ERRORS,
        default="backslashreplace",
        help="How bytes which cannot be decoded are displayed",
    )
    parser.add_argument("--log", type=Path, help="Write logs to file, otherwise to stderr")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = get_parser().parse_args(argv)

    handler = RichHandler(log_time_format="%Y-%m-%d %H-%M-%S%Z", highlighter=MarkdownHighlighter())
    FORMAT = "%(message)s"

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format=FORMAT, handlers=[handler])
    else:
        logging.basicConfig(level=logging.INFO, format=FORMAT, handlers=[handler])

    filehandler: Optional[logging.Handler] = None
    if args.log:
        filehandler = logging.FileHandler(args.log, encoding="utf-8", delay=True)
        logger.addHandler(filehandler)

    position = MarkerPosition[args.marker_position]
    style = CursorStyle(args.marker or DEFAULT_MARKERS[position], position)

    try:
        num = compare_files(args.expected, args.actual)
    except ContentMismatch as e:
        print(format_report(e.mismatch, style, args.encoding, args.errors))
        return 1
    except LogCheckError as e:
        logger.critical(str(e))
        return 1
    else:
        logger.debug("Compared %d lines", num)
        print("Logs ok")
        return 0
    finally:
        if filehandler is not None:
            logger.removeHandler(filehandler)
            filehandler.close()


if __name__ == "__main__":
    sys.exit(main())
