import pytest

from upload_server.services.content_type import (
    DEFAULT_CONTENT_TYPE,
    TEXT_CONTENT_TYPE,
    guess_content_type,
    sniff_content_type,
)

PNG_HEADER = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"


@pytest.mark.parametrize("name,expected", [
    ("photo.png", "image/png"),
    ("dir/page.html", "text/html"),
    ("notes.txt", "text/plain"),
    ("9f86d081884c7d659a2feaa0c55ad015", None),
    ("0b5b5a9e-0c39-4b0e-9d1e-2f0e6d7c8a11", None),
])
def test_guess_content_type(name, expected):
    assert guess_content_type(name) == expected


@pytest.mark.parametrize("head,expected", [
    (PNG_HEADER, "image/png"),
    (b"GIF89a\x01\x00\x01\x00", "image/gif"),
    (b"\xff\xd8\xff\xe0\x00\x10JFIF", "image/jpeg"),
    (b"%PDF-1.7\n", "application/pdf"),
    (b"PK\x03\x04\x14\x00", "application/zip"),
    (b"\x1f\x8b\x08\x00", "application/x-gzip"),
    (b"RIFF\x24\x00\x00\x00WEBPVP8 ", "image/webp"),
    (b"RIFF\x24\x00\x00\x00WAVEfmt ", "audio/wave"),
    (b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00mp41isom", "video/mp4"),
    (b"  <!DOCTYPE html><html></html>", "text/html; charset=utf-8"),
    (b"<p>hello</p>", "text/html; charset=utf-8"),
    (b"\n<?xml version='1.0'?><a/>", "text/xml; charset=utf-8"),
    (b"hello, world", TEXT_CONTENT_TYPE),
    (b"", TEXT_CONTENT_TYPE),
    (b"\x00\x01\x02\x03binary", DEFAULT_CONTENT_TYPE),
])
def test_sniff_content_type(head, expected):
    assert sniff_content_type(head) == expected


def test_html_tag_needs_terminator():
    # "<pre" is not "<p" followed by a space or ">"
    assert sniff_content_type(b"<pre>text</pre>") == TEXT_CONTENT_TYPE


def test_only_the_first_bytes_are_considered():
    assert sniff_content_type(b"a" * 512 + b"\x00") == TEXT_CONTENT_TYPE
