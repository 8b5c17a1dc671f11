import json
from typing import Iterable, Optional

from warc_tools.records import WarcRecord

# A handful of common Chinese characters, used as the target set in tests
CHINESE_CHARS = "的一是不了人我在有他这中大来上个国到说们为子和你地出道也时年得就那要下以生会自之可去后"

CHINESE_TEXT = "我们在这个国家生活了很多年，他说这是一个大的地方。" * 3
ENGLISH_TEXT = "The quick brown fox jumps over the lazy dog. " * 3


def make_record(
    body: bytes,
    record_type: str = "response",
    record_id: Optional[str] = "<urn:uuid:00000000-0000-0000-0000-000000000001>",
    refers_to: Optional[str] = None,
    extra_headers: Iterable[str] = (),
    length: Optional[int] = None,
) -> bytes:
    """Serialize one record the way it appears in a WARC file."""
    lines = ["WARC/1.0", f"WARC-Type: {record_type}"]
    if record_id:
        lines.append(f"WARC-Record-ID: {record_id}")
    if refers_to:
        lines.append(f"WARC-Refers-To: {refers_to}")
    lines.extend(extra_headers)
    if length is None:
        length = len(body)
    if length >= 0:
        lines.append(f"Content-Length: {length}")
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head.encode("utf-8") + body + b"\r\n\r\n"


def serialize(record: WarcRecord) -> bytes:
    head = "\r\n".join(record.header) + "\r\n\r\n"
    return head.encode("utf-8") + record.body + b"\r\n\r\n"


def make_text_record(text: str, record_id: str, record_type: str = "response") -> bytes:
    body = ("HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n\r\n" + text + "\r\n").encode("utf-8")
    return make_record(body, record_type=record_type, record_id=record_id)


def make_warcinfo() -> bytes:
    body = b"software: test\r\nformat: WARC File Format 1.0\r\n"
    return make_record(body, record_type="warcinfo", record_id="<urn:uuid:info>")


def make_wat_payload(
    filename: str = "crawl-00000.warc.gz",
    offset: int = 1234,
    deflate_length: int = 5678,
    status: int = 200,
    content_type: str = "text/html; charset=UTF-8",
    warc_type: str = "response",
) -> bytes:
    # WAT files quote their numbers
    payload = {
        "Container": {
            "Compressed": True,
            "Offset": str(offset),
            "Filename": filename,
            "Gzip-Metadata": {
                "Deflate-Length": str(deflate_length),
                "Header-Length": "10",
                "Footer-Length": "8",
                "Inflated-Length": "20000",
            },
        },
        "Envelope": {
            "Format": "WARC",
            "WARC-Header-Length": "400",
            "Block-Digest": "sha1:AAAA",
            "Actual-Content-Length": "19600",
            "WARC-Header-Metadata": {
                "WARC-Type": warc_type,
                "Content-Length": "19600",
                "WARC-Record-ID": "<urn:uuid:source>",
                "WARC-Target-URI": "http://example.com/",
                "Content-Type": "application/http; msgtype=response",
            },
            "Payload-Metadata": {
                "HTTP-Response-Metadata": {
                    "Response-Message": {"Status": str(status), "Version": "HTTP/1.1", "Reason": "OK"},
                    "Headers": {"Content-Type": content_type},
                },
            },
        },
    }
    return json.dumps(payload).encode("utf-8")


def make_metadata_record(refers_to: Optional[str], payload: bytes, record_id: str = "<urn:uuid:meta>") -> bytes:
    return make_record(
        payload,
        record_type="metadata",
        record_id=record_id,
        refers_to=refers_to,
        extra_headers=["Content-Type: application/json"],
    )


class BrokenPipeOut:
    """A stdout whose reader has gone away."""

    def write(self, text):
        raise BrokenPipeError(32, "Broken pipe")

    def flush(self):
        pass
