import pytest

from tubelift.utils.http import (
    content_range,
    multipart_related,
    parse_received_bytes,
    status_query_range,
    with_query,
)


def test_with_query_merges_params():
    url = with_query("https://example.com/upload?part=snippet,status", uploadType="resumable", skip=None)

    assert url == "https://example.com/upload?part=snippet,status&uploadType=resumable"


def test_with_query_overrides_existing_param():
    assert with_query("https://example.com/x?a=1", a="2") == "https://example.com/x?a=2"


@pytest.mark.parametrize("offset,length,total,expected", [
    (0, 1000, 5000, "bytes 0-999/5000"),
    (4000, 1000, 5000, "bytes 4000-4999/5000"),
    (8, 4, None, "bytes 8-11/*"),
    (0, 0, 0, "bytes */0"),
    (12, 0, 12, "bytes */12"),
])
def test_content_range(offset, length, total, expected):
    assert content_range(offset, length, total) == expected


def test_status_query_range():
    assert status_query_range(100) == "bytes */100"
    assert status_query_range(None) == "bytes */*"


@pytest.mark.parametrize("header,expected", [
    (None, 0),
    ("", 0),
    ("bytes=0-0", 1),
    ("bytes=0-1048575", 1048576),
    (" bytes=0-9 ", 10),
])
def test_parse_received_bytes(header, expected):
    assert parse_received_bytes(header) == expected


@pytest.mark.parametrize("header", ["bytes=5-9", "bytes 0-9", "0-9", "bytes=0-"])
def test_parse_received_bytes_rejects_malformed(header):
    with pytest.raises(ValueError):
        parse_received_bytes(header)


def test_multipart_related_wraps_metadata_and_media():
    body, content_type = multipart_related({"snippet": {"title": "T"}}, b"\x00\x01media", "video/mp4")

    assert content_type.startswith('multipart/related; boundary="')
    boundary = content_type.split('"')[1]
    assert body.startswith(f"--{boundary}\r\n".encode())
    assert body.endswith(f"\r\n--{boundary}--\r\n".encode())
    assert b'{"snippet": {"title": "T"}}' in body
    assert b"Content-Type: video/mp4\r\n\r\n\x00\x01media" in body
