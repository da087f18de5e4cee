"""Content type of a stored file: from its extension, else from its first bytes.

Generated names (uuid, sha256) carry no extension, so downloads of anonymous
uploads rely on the sniffing below. The signature table follows the WHATWG
MIME sniffing algorithm for the types it knows.
"""
import mimetypes
import posixpath
import struct
from dataclasses import dataclass
from typing import Optional, Tuple

SNIFF_LENGTH = 512
DEFAULT_CONTENT_TYPE = "application/octet-stream"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"

WHITESPACE = b"\t\n\x0c\r "
TAG_TERMINATORS = b" >"

HTML_TAGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1", b"<DIV",
    b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B", b"<BODY", b"<BR", b"<P",
    b"<!--",
)

# Bytes that never show up in text
BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)


@dataclass(frozen=True)
class MagicSignature:
    """Byte patterns at fixed offsets that identify a content type."""
    content_type: str
    parts: Tuple[Tuple[int, bytes], ...]

    def matches(self, head: bytes) -> bool:
        return all(head[offset:offset + len(magic)] == magic for offset, magic in self.parts)


def magic(content_type: str, *parts) -> MagicSignature:
    if len(parts) == 1:
        parts = ((0, parts[0]),)
    return MagicSignature(content_type, tuple(parts))


SIGNATURES = (
    magic("text/xml; charset=utf-8", b"<?xml"),
    magic("application/pdf", b"%PDF-"),
    magic("application/postscript", b"%!PS-Adobe-"),
    magic("text/plain; charset=utf-16be", b"\xfe\xff"),
    magic("text/plain; charset=utf-16le", b"\xff\xfe"),
    magic(TEXT_CONTENT_TYPE, b"\xef\xbb\xbf"),
    magic("image/x-icon", b"\x00\x00\x01\x00"),
    magic("image/x-icon", b"\x00\x00\x02\x00"),
    magic("image/bmp", b"BM"),
    magic("image/gif", b"GIF87a"),
    magic("image/gif", b"GIF89a"),
    magic("image/webp", (0, b"RIFF"), (8, b"WEBPVP")),
    magic("image/png", b"\x89PNG\r\n\x1a\n"),
    magic("image/jpeg", b"\xff\xd8\xff"),
    magic("audio/aiff", (0, b"FORM"), (8, b"AIFF")),
    magic("audio/mpeg", b"ID3"),
    magic("application/ogg", b"OggS\x00"),
    magic("audio/midi", b"MThd\x00\x00\x00\x06"),
    magic("video/avi", (0, b"RIFF"), (8, b"AVI ")),
    magic("audio/wave", (0, b"RIFF"), (8, b"WAVE")),
    magic("video/webm", b"\x1a\x45\xdf\xa3"),
    magic("font/ttf", b"\x00\x01\x00\x00"),
    magic("font/otf", b"OTTO"),
    magic("font/collection", b"ttcf"),
    magic("font/woff", b"wOFF"),
    magic("font/woff2", b"wOF2"),
    magic("application/x-gzip", b"\x1f\x8b\x08"),
    magic("application/zip", b"PK\x03\x04"),
    magic("application/x-rar-compressed", b"Rar!\x1a\x07\x00"),
    magic("application/x-rar-compressed", b"Rar!\x1a\x07\x01\x00"),
    magic("application/wasm", b"\x00asm"),
)


def guess_content_type(name: str) -> Optional[str]:
    content_type, _ = mimetypes.guess_type(posixpath.basename(name))
    return content_type


def is_html(head: bytes) -> bool:
    body = head.lstrip(WHITESPACE)
    for tag in HTML_TAGS:
        candidate = body[:len(tag)]
        if candidate.upper() != tag:
            continue
        terminator = body[len(tag):len(tag) + 1]
        if terminator and terminator in TAG_TERMINATORS:
            return True
    return False


def is_mp4(head: bytes) -> bool:
    if len(head) < 12:
        return False
    box_size = struct.unpack(">I", head[:4])[0]
    if len(head) < box_size or box_size % 4 != 0 or head[4:8] != b"ftyp":
        return False
    for start in range(8, box_size, 4):
        if start == 12:
            # Minor version, not a brand
            continue
        if head[start:start + 3] == b"mp4":
            return True
    return False


def sniff_content_type(head: bytes) -> str:
    """Detect the content type from up to the first SNIFF_LENGTH bytes of a file."""
    head = head[:SNIFF_LENGTH]
    if is_html(head):
        return HTML_CONTENT_TYPE
    stripped = head.lstrip(WHITESPACE)
    for signature in SIGNATURES:
        # Only the markup signatures tolerate leading whitespace
        candidate = stripped if signature.content_type.startswith("text/xml") else head
        if signature.matches(candidate):
            return signature.content_type
    if is_mp4(head):
        return "video/mp4"
    if not any(byte in BINARY_BYTES for byte in head):
        return TEXT_CONTENT_TYPE
    return DEFAULT_CONTENT_TYPE
