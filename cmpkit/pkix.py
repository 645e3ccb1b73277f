"""Basic X.509 structures shared by CMP requests and responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Sequence

from cryptography import x509

from .der import (
    DerError,
    Element,
    TagClass,
    decode_many,
    encode_bit_string,
    encode_boolean,
    encode_integer,
    encode_octet_string,
    encode_oid,
    encode_printable_string,
    encode_sequence,
    encode_set,
    encode_utf8_string,
    explicit,
)

_COMMON_NAME = (2, 5, 4, 3)
_UNIVERSAL_BOOLEAN = 1
_UNIVERSAL_BIT_STRING = 3
_UNIVERSAL_SEQUENCE = 16


def _sequence(element: Element, what: str) -> list[Element]:
    if not (
        element.tag_class is TagClass.UNIVERSAL
        and element.tag == _UNIVERSAL_SEQUENCE
        and element.constructed
    ):
        raise DerError(f"{what} must be a SEQUENCE")
    return element.children()


def _encode_text(text: str) -> bytes:
    """PrintableString when the characters allow it, UTF8String otherwise."""
    try:
        return encode_printable_string(text)
    except DerError:
        return encode_utf8_string(text)


@dataclass(frozen=True)
class AlgorithmIdentifier:
    oid: tuple[int, ...]
    parameters: bytes | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "oid", tuple(self.oid))

    def encode(self) -> bytes:
        items = [encode_oid(self.oid)]
        if self.parameters:
            items.append(self.parameters)
        return encode_sequence(items)

    @classmethod
    def from_element(cls, element: Element) -> AlgorithmIdentifier:
        parts = _sequence(element, "AlgorithmIdentifier")
        if not 1 <= len(parts) <= 2:
            raise DerError("AlgorithmIdentifier has the wrong number of fields")
        return cls(parts[0].to_oid(), parts[1].raw if len(parts) == 2 else None)


@dataclass(frozen=True)
class AttributeTypeAndValue:
    oid: tuple[int, ...]
    value: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "oid", tuple(self.oid))

    def encode(self) -> bytes:
        return encode_sequence([encode_oid(self.oid), _encode_text(self.value)])


@dataclass(frozen=True)
class Extension:
    oid: tuple[int, ...]
    value: bytes
    critical: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "oid", tuple(self.oid))

    def encode(self) -> bytes:
        items = [encode_oid(self.oid)]
        if self.critical:
            items.append(encode_boolean(True))
        items.append(encode_octet_string(self.value))
        return encode_sequence(items)

    @classmethod
    def from_element(cls, element: Element) -> Extension:
        parts = _sequence(element, "Extension")
        if len(parts) not in (2, 3):
            raise DerError("Extension has the wrong number of fields")
        critical = False
        if len(parts) == 3:
            flag = parts[1]
            if flag.tag_class is not TagClass.UNIVERSAL or flag.tag != _UNIVERSAL_BOOLEAN:
                raise DerError("Extension critical flag must be a BOOLEAN")
            if len(flag.content) != 1:
                raise DerError("invalid BOOLEAN")
            critical = flag.content != b"\x00"
        return cls(parts[0].to_oid(), parts[-1].to_bytes(), critical)


@dataclass(frozen=True)
class SubjectPublicKeyInfo:
    algorithm: AlgorithmIdentifier
    public_key: bytes
    unused_bits: int = 0

    def encode(self) -> bytes:
        return encode_sequence(
            [self.algorithm.encode(), encode_bit_string(self.public_key, self.unused_bits)]
        )

    @classmethod
    def from_der(cls, der: bytes) -> SubjectPublicKeyInfo:
        """Parse the first element of ``der``; anything after it is ignored."""
        elements = decode_many(der)
        if not elements:
            raise DerError("no SubjectPublicKeyInfo in data")
        parts = _sequence(elements[0], "SubjectPublicKeyInfo")
        if len(parts) != 2:
            raise DerError("SubjectPublicKeyInfo has the wrong number of fields")
        key, unused = parts[1].to_bit_string()
        return cls(AlgorithmIdentifier.from_element(parts[0]), key, unused)


class PKIStatus(IntEnum):
    ACCEPTED = 0
    GRANTED_WITH_MODS = 1
    REJECTION = 2
    WAITING = 3
    REVOCATION_WARNING = 4
    REVOCATION_NOTIFICATION = 5
    KEY_UPDATE_WARNING = 6


@dataclass(frozen=True)
class PKIStatusInfo:
    status: int
    status_string: tuple[str, ...] = ()
    fail_info: bytes = b""
    fail_info_unused_bits: int = 0
    raw: bytes = field(default=b"", compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "status_string", tuple(self.status_string))

    def encode(self) -> bytes:
        items = [encode_integer(int(self.status))]
        if self.status_string:
            items.append(encode_sequence(encode_utf8_string(s) for s in self.status_string))
        if self.fail_info:
            items.append(encode_bit_string(self.fail_info, self.fail_info_unused_bits))
        return encode_sequence(items)

    @classmethod
    def from_element(cls, element: Element) -> PKIStatusInfo:
        parts = _sequence(element, "PKIStatusInfo")
        if not parts:
            raise DerError("PKIStatusInfo has no status")
        status = parts[0].to_int()
        text: tuple[str, ...] = ()
        fail_info, unused = b"", 0
        for part in parts[1:]:
            if part.tag_class is not TagClass.UNIVERSAL:
                raise DerError("unexpected field in PKIStatusInfo")
            if part.tag == _UNIVERSAL_SEQUENCE:
                text = tuple(child.to_str() for child in part.children())
            elif part.tag == _UNIVERSAL_BIT_STRING:
                fail_info, unused = part.to_bit_string()
            else:
                raise DerError("unexpected field in PKIStatusInfo")
        return cls(status, text, fail_info, unused, element.raw)


def encode_name(rdns: Iterable[Iterable[AttributeTypeAndValue]]) -> bytes:
    """Encode an RDNSequence; each inner iterable becomes one SET."""
    return encode_sequence(encode_set(atv.encode() for atv in rdn) for rdn in rdns)


def encode_directory_name(common_name: str) -> bytes:
    """A GeneralName directoryName [4] holding only a common name."""
    return explicit(4, encode_name([[AttributeTypeAndValue(_COMMON_NAME, common_name)]]))


def load_certificate(der: bytes | Sequence[int]) -> x509.Certificate:
    try:
        return x509.load_der_x509_certificate(bytes(der))
    except ValueError as exc:
        raise DerError(f"invalid certificate: {exc}") from exc