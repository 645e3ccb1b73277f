"""A small DER encoder and decoder covering the types CMP messages use."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Iterable, Sequence


class DerError(ValueError):
    """Raised when data is not valid DER or a value cannot be encoded."""


class TagClass(IntEnum):
    """The class bits of an identifier octet."""

    UNIVERSAL = 0
    APPLICATION = 1
    CONTEXT = 2
    PRIVATE = 3


_BOOLEAN = 1
_INTEGER = 2
_BIT_STRING = 3
_OCTET_STRING = 4
_NULL = 5
_OID = 6
_UTF8_STRING = 12
_SEQUENCE = 16
_SET = 17
_NUMERIC_STRING = 18
_PRINTABLE_STRING = 19
_TELETEX_STRING = 20
_IA5_STRING = 22
_UTC_TIME = 23
_GENERALIZED_TIME = 24
_VISIBLE_STRING = 26
_UNIVERSAL_STRING = 28
_BMP_STRING = 30

_STRING_CODECS = {
    _UTF8_STRING: "utf-8",
    _NUMERIC_STRING: "ascii",
    _PRINTABLE_STRING: "ascii",
    _TELETEX_STRING: "latin-1",
    _IA5_STRING: "ascii",
    _VISIBLE_STRING: "ascii",
    _UNIVERSAL_STRING: "utf-32-be",
    _BMP_STRING: "utf-16-be",
}

_PRINTABLE = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789 '()+,-./:=?"
)

_UTC_TIME_RE = re.compile(
    r"(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})?(Z|[+-]\d{4})"
)
_GENERALIZED_TIME_RE = re.compile(
    r"(\d{4})(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})(\.\d+)?(Z|[+-]\d{4})"
)


@dataclass(frozen=True)
class Element:
    """One decoded TLV: its identifier, its content octets and its full encoding."""

    tag_class: TagClass
    constructed: bool
    tag: int
    content: bytes
    raw: bytes

    def children(self) -> list[Element]:
        """Decode the content of a constructed element."""
        if not self.constructed:
            raise DerError("primitive element has no children")
        return decode_many(self.content)

    def to_int(self) -> int:
        content = self.content
        if not content:
            raise DerError("empty integer")
        if len(content) > 1 and (
            (content[0] == 0x00 and content[1] < 0x80)
            or (content[0] == 0xFF and content[1] >= 0x80)
        ):
            raise DerError("integer is not minimally encoded")
        return int.from_bytes(content, "big", signed=True)

    def to_bytes(self) -> bytes:
        if self.constructed:
            raise DerError("constructed octet strings are not allowed in DER")
        return self.content

    def to_bit_string(self) -> tuple[bytes, int]:
        """Return the bits as bytes and the count of unused trailing bits."""
        if not self.content:
            raise DerError("empty bit string")
        unused = self.content[0]
        data = self.content[1:]
        if unused > 7 or (unused and not data):
            raise DerError("invalid padding in bit string")
        return data, unused

    def to_oid(self) -> tuple[int, ...]:
        content = self.content
        if not content or content[-1] & 0x80:
            raise DerError("truncated object identifier")
        arcs: list[int] = []
        value = 0
        fresh = True
        for byte in content:
            if fresh and byte == 0x80:
                raise DerError("object identifier arc is not minimally encoded")
            value = (value << 7) | (byte & 0x7F)
            fresh = not byte & 0x80
            if fresh:
                arcs.append(value)
                value = 0
        first = arcs[0]
        if first < 40:
            head = (0, first)
        elif first < 80:
            head = (1, first - 40)
        else:
            head = (2, first - 80)
        return head + tuple(arcs[1:])

    def to_str(self) -> str:
        codec = "utf-8"
        if self.tag_class is TagClass.UNIVERSAL:
            try:
                codec = _STRING_CODECS[self.tag]
            except KeyError:
                raise DerError(f"universal tag {self.tag} is not a string") from None
        try:
            return self.content.decode(codec)
        except UnicodeDecodeError as exc:
            raise DerError(f"invalid string contents: {exc}") from exc

    def to_datetime(self) -> datetime:
        """Decode a UTCTime or GeneralizedTime as an aware UTC datetime."""
        if self.tag_class is not TagClass.UNIVERSAL or self.tag not in (
            _UTC_TIME,
            _GENERALIZED_TIME,
        ):
            raise DerError("element is not a time")
        try:
            text = self.content.decode("ascii")
        except UnicodeDecodeError as exc:
            raise DerError("invalid time contents") from exc
        try:
            if self.tag == _UTC_TIME:
                match = _UTC_TIME_RE.fullmatch(text)
                if match is None:
                    raise DerError(f"invalid UTCTime: {text!r}")
                yy, mon, day, hour, minute, sec, zone = match.groups()
                year = int(yy) + (1900 if int(yy) >= 50 else 2000)
                moment = datetime(
                    year, int(mon), int(day), int(hour), int(minute),
                    int(sec or 0), tzinfo=_zone(zone),
                )
            else:
                match = _GENERALIZED_TIME_RE.fullmatch(text)
                if match is None:
                    raise DerError(f"invalid GeneralizedTime: {text!r}")
                year, mon, day, hour, minute, sec, frac, zone = match.groups()
                micro = int((frac[1:] + "000000")[:6]) if frac else 0
                moment = datetime(
                    int(year), int(mon), int(day), int(hour), int(minute),
                    int(sec), micro, tzinfo=_zone(zone),
                )
        except ValueError as exc:
            if isinstance(exc, DerError):
                raise
            raise DerError(f"invalid time: {exc}") from exc
        return moment.astimezone(timezone.utc)

    def is_context(self, tag: int) -> bool:
        return self.tag_class is TagClass.CONTEXT and self.tag == tag


def _zone(text: str) -> timezone:
    if text == "Z":
        return timezone.utc
    sign = -1 if text[0] == "-" else 1
    offset = timedelta(hours=int(text[1:3]), minutes=int(text[3:5]))
    return timezone(sign * offset)


def _read(data: bytes, pos: int) -> tuple[Element, int]:
    start = pos
    if pos >= len(data):
        raise DerError("unexpected end of data")
    first = data[pos]
    pos += 1
    tag_class = TagClass(first >> 6)
    constructed = bool(first & 0x20)
    tag = first & 0x1F
    if tag == 0x1F:
        tag = 0
        leading = True
        while True:
            if pos >= len(data):
                raise DerError("truncated tag")
            byte = data[pos]
            pos += 1
            if leading and byte == 0x80:
                raise DerError("tag is not minimally encoded")
            leading = False
            tag = (tag << 7) | (byte & 0x7F)
            if not byte & 0x80:
                break
        if tag < 0x1F:
            raise DerError("tag is not minimally encoded")
    if pos >= len(data):
        raise DerError("truncated length")
    length = data[pos]
    pos += 1
    if length & 0x80:
        count = length & 0x7F
        if count == 0:
            raise DerError("indefinite length is not allowed in DER")
        if pos + count > len(data):
            raise DerError("truncated length")
        if data[pos] == 0:
            raise DerError("length is not minimally encoded")
        length = int.from_bytes(data[pos:pos + count], "big")
        pos += count
        if length < 0x80:
            raise DerError("length is not minimally encoded")
    end = pos + length
    if end > len(data):
        raise DerError("truncated content")
    return Element(tag_class, constructed, tag, data[pos:end], data[start:end]), end


def decode(data: bytes) -> Element:
    """Decode exactly one element; trailing bytes are an error."""
    data = bytes(data)
    element, end = _read(data, 0)
    if end != len(data):
        raise DerError("trailing data after element")
    return element


def decode_many(data: bytes) -> list[Element]:
    """Decode a run of consecutive elements."""
    data = bytes(data)
    elements = []
    pos = 0
    while pos < len(data):
        element, pos = _read(data, pos)
        elements.append(element)
    return elements


def _encode_length(length: int) -> bytes:
    if length < 0x80:
        return bytes([length])
    body = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def _base128(value: int) -> bytes:
    parts = [value & 0x7F]
    value >>= 7
    while value:
        parts.append(0x80 | (value & 0x7F))
        value >>= 7
    return bytes(reversed(parts))


def encode_tlv(tag_class: TagClass, constructed: bool, tag: int, content: bytes) -> bytes:
    if tag < 0:
        raise DerError("tag must not be negative")
    first = (int(tag_class) << 6) | (0x20 if constructed else 0)
    if tag < 0x1F:
        header = bytes([first | tag])
    else:
        header = bytes([first | 0x1F]) + _base128(tag)
    content = bytes(content)
    return header + _encode_length(len(content)) + content


def _universal(tag: int, content: bytes, constructed: bool = False) -> bytes:
    return encode_tlv(TagClass.UNIVERSAL, constructed, tag, content)


def encode_integer(value: int) -> bytes:
    size = (value if value >= 0 else ~value).bit_length() // 8 + 1
    return _universal(_INTEGER, value.to_bytes(size, "big", signed=True))


def encode_boolean(value: bool) -> bytes:
    return _universal(_BOOLEAN, b"\xff" if value else b"\x00")


def encode_null() -> bytes:
    return _universal(_NULL, b"")


def encode_octet_string(data: bytes) -> bytes:
    return _universal(_OCTET_STRING, data)


def encode_bit_string(data: bytes, unused_bits: int = 0) -> bytes:
    if not 0 <= unused_bits <= 7 or (unused_bits and not data):
        raise DerError("invalid number of unused bits")
    return _universal(_BIT_STRING, bytes([unused_bits]) + bytes(data))


def encode_oid(oid: Sequence[int]) -> bytes:
    arcs = list(oid)
    if (
        len(arcs) < 2
        or arcs[0] not in (0, 1, 2)
        or (arcs[0] < 2 and arcs[1] >= 40)
        or any(arc < 0 for arc in arcs)
    ):
        raise DerError(f"invalid object identifier: {arcs}")
    body = b"".join(_base128(arc) for arc in [arcs[0] * 40 + arcs[1], *arcs[2:]])
    return _universal(_OID, body)


def encode_utf8_string(text: str) -> bytes:
    return _universal(_UTF8_STRING, text.encode("utf-8"))


def encode_printable_string(text: str) -> bytes:
    if not all(char in _PRINTABLE for char in text):
        raise DerError(f"not a printable string: {text!r}")
    return _universal(_PRINTABLE_STRING, text.encode("ascii"))


def encode_ia5_string(text: str) -> bytes:
    if not text.isascii():
        raise DerError(f"not an IA5 string: {text!r}")
    return _universal(_IA5_STRING, text.encode("ascii"))


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def encode_generalized_time(moment: datetime) -> bytes:
    """Encode as GeneralizedTime in UTC, without fractional seconds."""
    text = _as_utc(moment).strftime("%Y%m%d%H%M%S") + "Z"
    return _universal(_GENERALIZED_TIME, text.encode("ascii"))


def encode_utc_time(moment: datetime) -> bytes:
    moment = _as_utc(moment)
    if not 1950 <= moment.year <= 2049:
        raise DerError("UTCTime covers only the years 1950 to 2049")
    text = moment.strftime("%y%m%d%H%M%S") + "Z"
    return _universal(_UTC_TIME, text.encode("ascii"))


def encode_sequence(items: Iterable[bytes]) -> bytes:
    return _universal(_SEQUENCE, b"".join(items), constructed=True)


def encode_set(items: Iterable[bytes]) -> bytes:
    """Encode a SET OF, with members in DER order."""
    return _universal(_SET, b"".join(sorted(items)), constructed=True)


def explicit(tag: int, encoded: bytes) -> bytes:
    """Wrap an encoding in an explicit context-specific tag."""
    return encode_tlv(TagClass.CONTEXT, True, tag, encoded)


def implicit(tag: int, encoded: bytes) -> bytes:
    """Replace the identifier of an encoding with a context-specific tag."""
    element = decode(encoded)
    return encode_tlv(TagClass.CONTEXT, element.constructed, tag, element.content)