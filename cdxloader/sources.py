import gzip
import sys
from typing import BinaryIO, Iterable, Iterator

from .tokenizer import RawLine


def open_cdx_file(path: str) -> BinaryIO:
    """
    Opens a CDX file for reading as raw bytes. '-' means stdin (left open
    when the returned file is closed); '.gz' files are decompressed on the fly.
    """
    if path == '-':
        return open(sys.stdin.fileno(), 'rb', closefd=False)
    if path.endswith('.gz'):
        return gzip.open(path, 'rb')  # type: ignore
    return open(path, 'rb')


def iter_raw_lines(cdx_file: Iterable[bytes]) -> Iterator[RawLine]:
    """
    Yields one RawLine per LF-terminated line. Only LF ends a line; a CR is
    left in place for the tokenizer to deal with. The LF itself stays in the
    buffer but is not counted in the line length.
    """
    for raw in cdx_file:
        if not isinstance(raw, (bytes, bytearray)):
            raise TypeError("CDX file must be opened in binary mode")
        length = len(raw)
        if raw.endswith(b"\n"):
            length -= 1
        yield RawLine(raw, length)
