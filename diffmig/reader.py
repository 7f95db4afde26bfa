"""
Incremental reader for registry export arrays.

An export is one JSON array far too large to load at once. The standard
`json` module only parses whole documents, so elements are cut out of the
text line by line instead and parsed one at a time, holding a single
element's text in memory.

This only works with arrays pretty-printed exactly like the registry export
tool does it:

    [
        {
            ...
        },
        {
            ...
        }
    ]

`[` and `]` alone on their lines, and every element closed by a line holding
nothing but the element's closing brace at a fixed indentation (4 spaces by
default), optionally followed by a comma. Any other layout, including
general JSON arrays, isn't supported.
"""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path
from typing import Any, BinaryIO, Iterator, TextIO, Union

from .exceptions import MalformedElementError

logger = logging.getLogger(__name__)

OPEN_MARKER = "["
CLOSE_MARKERS = ("]", "[]")


class ArrayReader:
    """
    Iterates over the elements of an export array read from a stream.

    Keeps track of how much element text was buffered at most
    (`peak_buffered`, in characters) and of how many elements were
    emitted (`elements_read`).
    """

    def __init__(self, stream: Union[BinaryIO, TextIO], indent: int = 4):
        self.stream = stream
        self.indent = indent
        self.elements_read = 0
        self.peak_buffered = 0
        closing = " " * indent + "}"
        self._terminators = (closing, closing + ",")

    def __iter__(self) -> Iterator[Any]:
        text, wrapped = _as_text(self.stream)
        buffer: list[str] = []
        buffered = 0
        line_number = 0

        try:
            for line_number, raw_line in enumerate(text, start=1):
                line = raw_line.rstrip("\r\n")

                if line == OPEN_MARKER:
                    continue
                if line in CLOSE_MARKERS:
                    break

                if line in self._terminators:
                    buffer.append("}")
                    value = self._parse(buffer, line_number)
                    buffer.clear()
                    buffered = 0
                    self.elements_read += 1
                    yield value
                    continue

                buffer.append(line)
                buffered += len(line) + 1
                if buffered > self.peak_buffered:
                    self.peak_buffered = buffered

            if any(line.strip() for line in buffer):
                raise MalformedElementError(line_number, "unterminated element at end of array")
        finally:
            if wrapped and not self.stream.closed:
                # Leave the caller's stream open
                text.detach()

    def _parse(self, buffer: list[str], line_number: int) -> Any:
        try:
            return json.loads("\n".join(buffer), parse_constant=_reject_constant)
        except ValueError as e:
            logger.debug("Malformed element text:\n%s", "\n".join(buffer))
            raise MalformedElementError(line_number, str(e)) from e


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def _as_text(stream: Union[BinaryIO, TextIO]) -> tuple[TextIO, bool]:
    if isinstance(stream, io.TextIOBase):
        return stream, False
    return io.TextIOWrapper(stream, encoding="utf-8"), True


def read_array(stream: Union[BinaryIO, TextIO], indent: int = 4) -> Iterator[Any]:
    """Lazily read the elements of an export array from a stream."""
    return iter(ArrayReader(stream, indent))


def iter_export(path: Union[str, Path], indent: int = 4) -> Iterator[Any]:
    """
    Lazily read the elements of an export file.

    The file stays open while elements are pulled and is closed once the
    array ends or the generator is closed.
    """
    with open(path, "rb") as f:
        logger.debug("Reading export %s", path)
        yield from ArrayReader(f, indent)
