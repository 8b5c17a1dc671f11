import gzip
import io
from unittest.mock import patch

import pytest

from .adapters import run_read_records
from .common import make_record, make_text_record, make_warcinfo, serialize
from warc_tools.errors import FramingError
from warc_tools.records import RecordReader, decode_body, open_stream


class TrickleStream(io.BytesIO):
    """Returns at most a few bytes per read() call, like a slow pipe."""

    def read(self, size=-1):
        if size is None or size < 0:
            return super().read(size)
        return super().read(min(size, 3))


def test_round_trip():
    body = b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\n\r\n<html>\xe4\xb8\xad</html>"
    data = make_record(body, record_type="metadata", record_id="<urn:uuid:a>", refers_to="<urn:uuid:b>")

    (rec,) = run_read_records(data)
    assert rec.record_type == "metadata"
    assert rec.record_id == "<urn:uuid:a>"
    assert rec.refers_to == "<urn:uuid:b>"
    assert rec.body == body
    assert rec.length == len(body)
    assert rec.header[0] == "WARC/1.0"

    # Feeding the parsed record back gives the same parse
    (again,) = run_read_records(serialize(rec))
    assert again == rec


def test_several_records_with_blank_lines():
    data = b"\r\n\r\n" + make_warcinfo() + make_text_record("one", "<id-1>") + b"\n\n" + make_text_record("two", "<id-2>")
    records = run_read_records(data)
    assert [r.record_type for r in records] == ["warcinfo", "response", "response"]
    assert [r.record_id for r in records] == ["<urn:uuid:info>", "<id-1>", "<id-2>"]


def test_empty_stream_is_clean_eof():
    assert run_read_records(b"") == []
    assert run_read_records(b"\n\r\n\n") == []


def test_next_record_returns_none_at_end():
    reader = RecordReader(io.BytesIO(make_text_record("x", "<id>")))
    assert reader.next_record() is not None
    assert reader.next_record() is None
    assert reader.records_read == 1


def test_partial_reads_are_retried():
    body = "中文内容".encode("utf-8") * 50
    (rec,) = RecordReader(TrickleStream(make_record(body)))
    assert rec.body == body


def test_junk_before_marker():
    with pytest.raises(FramingError):
        run_read_records(b"garbage\r\n" + make_text_record("x", "<id>"))


def test_zero_length():
    with pytest.raises(FramingError):
        run_read_records(make_record(b"", length=0))


def test_missing_length():
    with pytest.raises(FramingError):
        run_read_records(make_record(b"abc", length=-1))


def test_bad_length():
    with pytest.raises(FramingError):
        run_read_records(b"WARC/1.0\r\nContent-Length: lots\r\n\r\nabc")


def test_truncated_body():
    data = make_record(b"0123456789")[:-8]
    with pytest.raises(FramingError, match="Only read"):
        run_read_records(data)


def test_stream_ends_inside_header():
    with pytest.raises(FramingError):
        run_read_records(b"WARC/1.0\r\nWARC-Type: response\r\n")


def test_header_ceiling():
    # make_record writes 3 header lines of its own
    ok = make_record(b"abc", extra_headers=[f"X-Header-{i}: v" for i in range(96)])
    assert len(run_read_records(ok)) == 1

    too_long = make_record(b"abc", extra_headers=[f"X-Header-{i}: v" for i in range(97)])
    with pytest.raises(FramingError, match="failsafe"):
        run_read_records(too_long)


def test_text_body_filters_metadata_lines():
    body = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: text/html\r\n"
        "\r\n"
        "WARC-Something: dropped\r\n"
        "  first line  \r\n"
        "\r\n"
        "second line\r\n"
    ).encode("utf-8")
    (rec,) = run_read_records(make_record(body))
    assert rec.text_body() == "HTTP/1.1 200 OK first line second line"


def test_text_body_skips_warcinfo_and_empty():
    info, empty = run_read_records(
        make_warcinfo() + make_record(b"Content-Length: 3\r\n\r\n", record_id="<empty>")
    )
    assert info.text_body() is None
    assert empty.text_body() is None


def test_decode_body_utf8():
    assert decode_body("中文".encode("utf-8")) == "中文"
    assert decode_body(b"") == ""


def test_decode_body_detects_other_encodings():
    data = "中文网页".encode("gbk")
    with patch("warc_tools.records.detect_encoding", return_value="gbk") as detect:
        assert decode_body(data) == "中文网页"
    detect.assert_called_once_with(data)


def test_decode_body_unknown_encoding_falls_back():
    data = b"abc\xff"
    with patch("warc_tools.records.detect_encoding", return_value="no-such-codec"):
        assert decode_body(data) == "abc\ufffd"


def test_open_stream_gzip(tmp_path):
    path = tmp_path / "sample.warc.gz"
    with gzip.open(path, "wb") as f:
        f.write(make_text_record("hello", "<id-1>") + make_text_record("world", "<id-2>"))

    with open_stream(str(path)) as stream:
        ids = [r.record_id for r in RecordReader(stream)]
    assert ids == ["<id-1>", "<id-2>"]


def test_open_stream_default():
    default = io.BytesIO(make_text_record("x", "<id>"))
    with open_stream(None, default) as stream:
        assert stream is default
    assert not default.closed
