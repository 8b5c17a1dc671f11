from __future__ import annotations

import json
import logging
import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Iterable, Iterator, NamedTuple, TextIO

from tqdm import tqdm

from warc_tools.errors import DecodeError, FramingError
from warc_tools.records import RecordReader

logger = logging.getLogger(__name__)

METADATA_TYPE = "metadata"
RESPONSE_TYPE = "response"
HTML_CONTENT_TYPE = "text/html"
OK_STATUS = 200


# --- Reference identifiers ---

class ReferenceSet:
    """Immutable set of record IDs we are looking for in the metadata."""

    def __init__(self, ids: Iterable[str]):
        self._ids = frozenset(i.strip() for i in ids if i.strip())

    @classmethod
    def from_stream(cls, stream: TextIO) -> "ReferenceSet":
        # One ID per line; blank lines are ignored
        return cls(line for line in stream)

    def __contains__(self, record_id) -> bool:
        return record_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self):
        return iter(self._ids)


# --- WAT metadata envelope ---

@dataclass(frozen=True)
class GzipMetadata:
    deflate_length: int = 0
    header_length: int = 0
    inflated_length: int = 0
    footer_length: int = 0


@dataclass(frozen=True)
class Container:
    compressed: bool = False
    offset: int = 0
    filename: str = ""
    gzip_meta: GzipMetadata = field(default_factory=GzipMetadata)


@dataclass(frozen=True)
class HeaderMetadata:
    warc_type: str = ""
    content_length: int = 0
    record_id: str = ""
    target_uri: str = ""
    content_type: str = ""


@dataclass(frozen=True)
class ResponseMetadata:
    status: int = 0
    content_type: str = ""


@dataclass(frozen=True)
class Envelope:
    format: str = ""
    header_length: int = 0
    block_digest: str = ""
    actual_content_length: int = 0
    header_metadata: HeaderMetadata = field(default_factory=HeaderMetadata)
    response: ResponseMetadata = field(default_factory=ResponseMetadata)


@dataclass(frozen=True)
class MetadataEnvelope:
    envelope: Envelope
    container: Container


def _get(obj: Dict[str, Any], key: str):
    """Look a key up exactly, falling back to a case-insensitive match."""
    if key in obj:
        return obj[key]
    lowered = key.lower()
    for k, v in obj.items():
        if k.lower() == lowered:
            return v
    return None


def _get_obj(obj: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = _get(obj, key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DecodeError(f"Expected an object for {key!r}, got {type(value).__name__}")
    return value


def _get_int(obj: Dict[str, Any], key: str) -> int:
    # Numbers are usually quoted in WAT files ("Offset": "1234")
    value = _get(obj, key)
    if value is None:
        return 0
    if isinstance(value, bool):
        raise DecodeError(f"Expected an integer for {key!r}, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            raise DecodeError(f"Expected an integer for {key!r}, got {value!r}") from None
    raise DecodeError(f"Expected an integer for {key!r}, got {value!r}")


def _get_str(obj: Dict[str, Any], key: str) -> str:
    value = _get(obj, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"Expected a string for {key!r}, got {value!r}")
    return value


def _get_bool(obj: Dict[str, Any], key: str) -> bool:
    value = _get(obj, key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise DecodeError(f"Expected a boolean for {key!r}, got {value!r}")
    return value


def decode_envelope(payload: bytes) -> MetadataEnvelope:
    """
    Decode the JSON body of a WAT metadata record.

    Missing fields default to zero values, since only response records carry
    HTTP metadata. Malformed JSON or wrongly typed fields raise DecodeError.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Malformed metadata payload: {e}") from e
    if not isinstance(data, dict):
        raise DecodeError("Metadata payload is not a JSON object")

    env = _get_obj(data, "Envelope")
    con = _get_obj(data, "Container")

    gz = _get_obj(con, "Gzip-Metadata")
    container = Container(
        compressed=_get_bool(con, "Compressed"),
        offset=_get_int(con, "Offset"),
        filename=_get_str(con, "Filename"),
        gzip_meta=GzipMetadata(
            deflate_length=_get_int(gz, "Deflate-Length"),
            header_length=_get_int(gz, "Header-Length"),
            inflated_length=_get_int(gz, "Inflated-Length"),
            footer_length=_get_int(gz, "Footer-Length"),
        ),
    )

    hdr = _get_obj(env, "WARC-Header-Metadata")
    http = _get_obj(_get_obj(env, "Payload-Metadata"), "HTTP-Response-Metadata")
    envelope = Envelope(
        format=_get_str(env, "Format"),
        header_length=_get_int(env, "WARC-Header-Length"),
        block_digest=_get_str(env, "Block-Digest"),
        actual_content_length=_get_int(env, "Actual-Content-Length"),
        header_metadata=HeaderMetadata(
            warc_type=_get_str(hdr, "WARC-Type"),
            content_length=_get_int(hdr, "Content-Length"),
            record_id=_get_str(hdr, "WARC-Record-ID"),
            target_uri=_get_str(hdr, "WARC-Target-URI"),
            content_type=_get_str(hdr, "Content-Type"),
        ),
        response=ResponseMetadata(
            status=_get_int(_get_obj(http, "Response-Message"), "Status"),
            content_type=_get_str(_get_obj(http, "Headers"), "Content-Type"),
        ),
    )
    return MetadataEnvelope(envelope=envelope, container=container)


# --- Correlation ---

class HtmlResponse(NamedTuple):
    filename: str
    offset: int
    length: int


def correlate(
        stream: BinaryIO,
        references: ReferenceSet,
        *,
        progress: bool = False,
) -> Iterator[HtmlResponse]:
    """
    Search a WAT stream for metadata records that refer to `references`.

    Yields (filename, offset, deflate length) for each referenced capture that
    was an HTTP 200 text/html response.
    """
    stats = Counter()
    reader = RecordReader(stream)
    for rec in tqdm(reader, desc="Reading metadata", unit="rec", disable=not progress, file=sys.stderr):
        stats["records"] += 1

        # 1. Only metadata records, and only the ones we are looking for
        if rec.record_type != METADATA_TYPE:
            continue
        if not rec.refers_to:
            raise FramingError("Metadata record has no WARC-Refers-To")
        if rec.refers_to not in references:
            continue
        stats["referenced"] += 1

        # 2. Filter on the decoded envelope
        meta = decode_envelope(rec.body)
        if meta.envelope.header_metadata.warc_type != RESPONSE_TYPE:
            continue
        if meta.envelope.response.status != OK_STATUS:
            stats["skipped_status"] += 1
            continue
        if HTML_CONTENT_TYPE not in meta.envelope.response.content_type:
            stats["skipped_content_type"] += 1
            continue

        stats["emitted"] += 1
        yield HtmlResponse(
            meta.container.filename,
            meta.container.offset,
            meta.container.gzip_meta.deflate_length,
        )

    logger.info(
        "Read %d records: %d referenced, %d emitted",
        stats["records"], stats["referenced"], stats["emitted"],
    )


class GroupedWriter:
    """
    Writes (filename, offset, length) triples grouped by filename.

    Each new filename is printed on its own line, preceded by a blank line
    unless it is the first; entries print as "<offset> <length>". State is
    kept across calls so several metadata files can share one output.
    """

    def __init__(self, out: TextIO):
        self.out = out
        self.filename = ""
        self.count = 0

    def write(self, item: HtmlResponse):
        filename, offset, length = item
        if filename != self.filename:
            if self.filename != "":
                self.out.write("\n")
            self.filename = filename
            self.out.write(f"{filename}\n")
        self.out.write(f"{offset} {length}\n")
        self.count += 1


def write_grouped(items: Iterable[HtmlResponse], out: TextIO) -> int:
    writer = GroupedWriter(out)
    for item in items:
        writer.write(item)
    return writer.count
