from __future__ import annotations

import gzip
import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Tuple

from resiliparse.parse.encoding import detect_encoding

from warc_tools.config import MAX_HEADER_LINES, RECORD_MARKER
from warc_tools.errors import FramingError

logger = logging.getLogger(__name__)

# Header fields we care about. Everything else is kept verbatim in `header`.
TYPE_PREFIX = "WARC-Type: "
LENGTH_PREFIX = "Content-Length: "
REFERS_TO_PREFIX = "WARC-Refers-To: "
RECORD_ID_PREFIX = "WARC-Record-ID: "

# Lines dropped when rebuilding the text of a record
METADATA_PREFIX = "WARC"
CONTENT_PREFIX = "Content-"

INFO_TYPE = "warcinfo"


def decode_body(
        data: bytes,
        *,
        fallback_encoding: str = "utf-8",
        errors: str = "replace",
) -> str:
    """
    Decode a record body to text.

    UTF-8 is tried first; bodies that are not valid UTF-8 (GBK pages, for
    instance) are decoded with the encoding Resiliparse detects.
    """
    if not data:
        return ""

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass

    enc = detect_encoding(data) or fallback_encoding
    try:
        return data.decode(enc, errors=errors)
    except LookupError:
        return data.decode(fallback_encoding, errors=errors)


@dataclass(frozen=True)
class WarcRecord:
    """One record: the marker and header lines, plus exactly `length` body bytes."""
    header: Tuple[str, ...]
    body: bytes
    record_type: str = ""
    record_id: Optional[str] = None
    refers_to: Optional[str] = None
    length: int = 0

    def text_body(self) -> Optional[str]:
        """
        Rebuild the text of the record for classification.

        Blank lines and lines starting with "WARC" or "Content-" are dropped,
        the rest are joined with a single space.

        Returns None (skip, not an error) for warcinfo records and records
        with nothing left after filtering.
        """
        if self.record_type == INFO_TYPE:
            return None

        kept = []
        for line in decode_body(self.body).split("\n"):
            line = line.strip()
            if not line:
                continue
            if line.startswith(METADATA_PREFIX) or line.startswith(CONTENT_PREFIX):
                continue
            kept.append(line)

        if not kept:
            return None
        return " ".join(kept)


class RecordReader:
    """
    Splits a binary stream into WarcRecords.

    The stream must be positioned at a record boundary (blank lines before the
    marker are fine). Any malformed framing raises FramingError; there is no
    attempt to resynchronise on the next marker.
    """

    def __init__(
            self,
            stream: BinaryIO,
            *,
            marker: str = RECORD_MARKER,
            max_header_lines: int = MAX_HEADER_LINES,
    ):
        self.stream = stream
        self.marker = marker
        self.max_header_lines = max_header_lines
        self.records_read = 0

    def __iter__(self) -> Iterator[WarcRecord]:
        while True:
            rec = self.next_record()
            if rec is None:
                return
            yield rec

    def _readline(self) -> Optional[str]:
        raw = self.stream.readline()
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").strip()

    def next_record(self) -> Optional[WarcRecord]:
        """Returns the next record, or None on a clean end of stream."""
        # 1. Find the marker, skipping blank lines
        while True:
            line = self._readline()
            if line is None:
                logger.debug("Reached EOF after %d records", self.records_read)
                return None
            if line == self.marker:
                break
            if line:
                raise FramingError(f"Malformed first line: {line[:80]!r}")

        header = [line]
        record_type = ""
        record_id = None
        refers_to = None
        length = 0

        # 2. Header, up to the first blank line
        while True:
            line = self._readline()
            if line is None:
                raise FramingError("Stream ended inside a record header")
            if not line:
                break

            if line.startswith(TYPE_PREFIX):
                record_type = line[len(TYPE_PREFIX):]
            elif line.startswith(LENGTH_PREFIX):
                try:
                    length = int(line[len(LENGTH_PREFIX):])
                except ValueError:
                    raise FramingError(f"Bad content length: {line!r}") from None
            elif line.startswith(REFERS_TO_PREFIX):
                refers_to = line[len(REFERS_TO_PREFIX):]
            elif line.startswith(RECORD_ID_PREFIX):
                record_id = line[len(RECORD_ID_PREFIX):]

            header.append(line)
            if len(header) - 1 >= self.max_header_lines:
                raise FramingError("Hit failsafe when reading header")

        # 3. Body, exactly `length` bytes
        if length <= 0:
            raise FramingError("No record length")
        body = self._read_exact(length)

        self.records_read += 1
        return WarcRecord(
            header=tuple(header),
            body=body,
            record_type=record_type,
            record_id=record_id,
            refers_to=refers_to,
            length=length,
        )

    def _read_exact(self, length: int) -> bytes:
        chunks = []
        remaining = length
        while remaining > 0:
            chunk = self.stream.read(remaining)
            if not chunk:
                raise FramingError(f"Only read {length - remaining} bytes, expecting {length}")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)


def iter_records(stream: BinaryIO, **kwargs) -> Iterator[WarcRecord]:
    """Convenience wrapper: iterate every record of `stream`."""
    return iter(RecordReader(stream, **kwargs))


@contextmanager
def open_stream(path: Optional[str], default: Optional[BinaryIO] = None) -> Iterator[BinaryIO]:
    """
    Open a record stream for reading.

    `.gz` files are decompressed transparently. With no path, `default` is
    used (standard input if not given) and left open afterwards.
    """
    if not path or path == "-":
        yield default if default is not None else sys.stdin.buffer
        return

    if path.endswith(".gz"):
        f = gzip.open(path, "rb")
    else:
        f = open(path, "rb")
    with f:
        yield f
