"""
Tokenizer for the 11-column CDX layout used at Internet Archive:

    N b a m s k r M S V g

That is: massaged url (SURT), date, original url, mime type, response code,
SHA-1, redirect url, meta tags, compressed record size, compressed WARC
offset, WARC file name.

Columns are never interpreted here; each comes back as a zero-copy
memoryview over the input buffer, or None for the "-" placeholder.

CDX files written by older derivers may contain unescaped spaces in the
redirect url. Splitting on whitespace would misalign every column after it,
so extra delimiters are folded back into the redirect column, keeping the
last four columns anchored to the end of the line.
"""

from collections import Counter, namedtuple
from typing import List, Optional, Union

CDX_FIELDS = [
    'urlkey',
    'timestamp',
    'original',
    'mimetype',
    'statuscode',
    'digest',
    'redirect',
    'metatags',
    'length',
    'offset',
    'filename',
]

CDX_HEADER_PREFIX = b" CDX "
PLACEHOLDER = ord('-')
SPACE = ord(' ')
CR = ord('\r')

# number of delimiters in a well-formed line
NUM_DELIMITERS = len(CDX_FIELDS) - 1
# index of the delimiter which ends the redirect url column
REDIRECT_END = CDX_FIELDS.index('redirect')

SKIP_BLANK = "blank"
SKIP_HEADER = "header"
SKIP_MALFORMED = "malformed"

RawLine = namedtuple('RawLine', ['buf', 'length'])

CdxSkip = namedtuple('CdxSkip', ['reason'])


class CdxRecord(namedtuple('CdxRecord', CDX_FIELDS)):
    """
    One CDX line. Every field is either None (placeholder "-" or empty) or a
    bytes-like view. Views borrow from the buffer the line was parsed from;
    use detach() to get a copy which does not.
    """
    __slots__ = ()

    def detach(self) -> 'CdxRecord':
        return CdxRecord(*[None if f is None else bytes(f) for f in self])

    def to_line(self) -> bytes:
        return b" ".join(b"-" if f is None else bytes(f) for f in self)

    def to_dict(self) -> dict:
        d = dict()
        for name, f in zip(self._fields, self):
            if f is None:
                d[name] = None
            else:
                d[name] = bytes(f).decode('utf-8', errors='backslashreplace')
        return d


TokenizeResult = Union[CdxRecord, CdxSkip]


def _field(view: memoryview, start: int, end: int) -> Optional[memoryview]:
    if end == start or (end == start + 1 and view[start] == PLACEHOLDER):
        return None
    return view[start:end]


def tokenize_cdx_line(buf: Union[bytes, bytearray],
                      length: Optional[int] = None,
                      counts: Optional[Counter] = None) -> TokenizeResult:
    """
    Splits a single raw CDX line into a CdxRecord, or returns a CdxSkip for
    blank lines, the " CDX " header line, and lines with too few columns.

    Only the first `length` bytes of `buf` are looked at (default: all of
    them); line sources may hand over a buffer which still holds the line
    terminator. A single trailing CR is trimmed.

    Anomalies are tallied in `counts`, if passed:

    - warn-trailing-cr
    - merge-redirect-space
    - skip-blank, skip-header, skip-malformed
    """
    if not isinstance(buf, (bytes, bytearray)):
        raise TypeError("expected bytes or bytearray CDX line, got: {}".format(type(buf)))
    end = len(buf) if length is None else length
    if end < 0 or end > len(buf):
        raise ValueError("line length {} out of range for buffer of {} bytes".format(
            end, len(buf)))
    if counts is None:
        counts = Counter()

    if end > 0 and buf[end - 1] == CR:
        counts['warn-trailing-cr'] += 1
        end -= 1
    if end == 0:
        counts['skip-blank'] += 1
        return CdxSkip(SKIP_BLANK)
    if buf.startswith(CDX_HEADER_PREFIX, 0, end):
        counts['skip-header'] += 1
        return CdxSkip(SKIP_HEADER)

    spidx: List[int] = [0] * NUM_DELIMITERS
    j = 0
    i = buf.find(SPACE, 0, end)
    while i != -1:
        if j == NUM_DELIMITERS:
            # one delimiter too many: assume it is inside the redirect url.
            # forget the delimiter closing that column; tail stays anchored
            spidx[REDIRECT_END:-1] = spidx[REDIRECT_END + 1:]
            j -= 1
            counts['merge-redirect-space'] += 1
        spidx[j] = i
        j += 1
        i = buf.find(SPACE, i + 1, end)

    if j < NUM_DELIMITERS:
        counts['skip-malformed'] += 1
        return CdxSkip(SKIP_MALFORMED)

    view = memoryview(buf)
    fields = []
    s = 0
    for d in spidx:
        fields.append(_field(view, s, d))
        s = d + 1
    fields.append(_field(view, s, end))
    return CdxRecord(*fields)


def tokenize_raw_line(line: RawLine, counts: Optional[Counter] = None) -> TokenizeResult:
    return tokenize_cdx_line(line.buf, line.length, counts=counts)
