"""CMP message headers, certificate templates and outgoing messages."""

from __future__ import annotations

import base64
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from .der import (
    DerError,
    Element,
    TagClass,
    decode_many,
    encode_bit_string,
    encode_generalized_time,
    encode_integer,
    encode_octet_string,
    encode_oid,
    encode_sequence,
    encode_tlv,
    encode_utf8_string,
    explicit,
    implicit,
)
from .pkix import (
    AlgorithmIdentifier,
    AttributeTypeAndValue,
    Extension,
    SubjectPublicKeyInfo,
    encode_directory_name,
    encode_name,
)
from .protection import ProtectionError, protected_part
from .protection import sign as _sign

PVNO = 2
_UNIVERSAL_SEQUENCE = 16

RDNSequence = Sequence[Sequence[AttributeTypeAndValue]]
InfoTypeAndValue = tuple[tuple[int, ...], Optional[bytes]]


def _children(element: Element, what: str) -> list[Element]:
    if not (
        element.tag_class is TagClass.UNIVERSAL
        and element.tag == _UNIVERSAL_SEQUENCE
        and element.constructed
    ):
        raise DerError(f"{what} must be a SEQUENCE")
    return element.children()


def _explicit_inner(element: Element) -> Element:
    if not element.constructed:
        raise DerError(f"explicit tag [{element.tag}] must be constructed")
    inner = element.children()
    if len(inner) != 1:
        raise DerError(f"explicit tag [{element.tag}] must hold exactly one value")
    return inner[0]


def _implicit_octets(element: Element) -> bytes:
    if element.constructed:
        raise DerError(f"implicit OCTET STRING [{element.tag}] must be primitive")
    return element.content


def _encode_info(item: InfoTypeAndValue) -> bytes:
    oid, value = item
    parts = [encode_oid(oid)]
    if value:
        parts.append(bytes(value))
    return encode_sequence(parts)


def _decode_info(element: Element) -> InfoTypeAndValue:
    parts = _children(element, "InfoTypeAndValue")
    if not 1 <= len(parts) <= 2:
        raise DerError("InfoTypeAndValue has the wrong number of fields")
    return parts[0].to_oid(), parts[1].raw if len(parts) == 2 else None


@dataclass
class PKIHeader:
    """The header of a PKIMessage; sender and recipient are GeneralName encodings."""

    sender: bytes
    recipient: bytes
    pvno: int = PVNO
    message_time: Optional[datetime] = None
    protection_alg: Optional[AlgorithmIdentifier] = None
    sender_kid: bytes = b""
    recip_kid: bytes = b""
    transaction_id: bytes = b""
    sender_nonce: bytes = b""
    recip_nonce: bytes = b""
    free_text: tuple[str, ...] = ()
    general_info: tuple[InfoTypeAndValue, ...] = ()
    raw: bytes = field(default=b"", compare=False, repr=False)

    def __post_init__(self) -> None:
        self.free_text = tuple(self.free_text)
        self.general_info = tuple(
            (tuple(oid), None if value is None else bytes(value))
            for oid, value in self.general_info
        )

    @classmethod
    def create(cls) -> PKIHeader:
        """A header from "RA" to "CA" with a fresh transaction ID and the current time."""
        return cls(
            sender=encode_directory_name("RA"),
            recipient=encode_directory_name("CA"),
            transaction_id=str(uuid.uuid4()).encode("ascii"),
            message_time=datetime.now(timezone.utc),
        )

    def encode(self) -> bytes:
        items = [encode_integer(self.pvno), bytes(self.sender), bytes(self.recipient)]
        if self.message_time is not None:
            items.append(explicit(0, encode_generalized_time(self.message_time)))
        if self.protection_alg is not None:
            items.append(explicit(1, self.protection_alg.encode()))
        if self.sender_kid:
            items.append(implicit(2, encode_octet_string(self.sender_kid)))
        if self.recip_kid:
            items.append(implicit(3, encode_octet_string(self.recip_kid)))
        if self.transaction_id:
            items.append(explicit(4, encode_octet_string(self.transaction_id)))
        if self.sender_nonce:
            items.append(implicit(5, encode_octet_string(self.sender_nonce)))
        if self.recip_nonce:
            items.append(implicit(6, encode_octet_string(self.recip_nonce)))
        if self.free_text:
            items.append(
                explicit(7, encode_sequence(encode_utf8_string(t) for t in self.free_text))
            )
        if self.general_info:
            items.append(
                implicit(8, encode_sequence(_encode_info(i) for i in self.general_info))
            )
        return encode_sequence(items)

    @classmethod
    def from_element(cls, element: Element) -> PKIHeader:
        parts = _children(element, "PKIHeader")
        if len(parts) < 3:
            raise DerError("PKIHeader needs pvno, sender and recipient")
        header = cls(
            sender=parts[1].raw,
            recipient=parts[2].raw,
            pvno=parts[0].to_int(),
            raw=element.raw,
        )
        for part in parts[3:]:
            if part.tag_class is not TagClass.CONTEXT:
                raise DerError("unexpected field in PKIHeader")
            tag = part.tag
            if tag == 0:
                header.message_time = _explicit_inner(part).to_datetime()
            elif tag == 1:
                header.protection_alg = AlgorithmIdentifier.from_element(
                    _explicit_inner(part)
                )
            elif tag == 2:
                header.sender_kid = _implicit_octets(part)
            elif tag == 3:
                header.recip_kid = _implicit_octets(part)
            elif tag == 4:
                header.transaction_id = _explicit_inner(part).to_bytes()
            elif tag == 5:
                header.sender_nonce = _implicit_octets(part)
            elif tag == 6:
                header.recip_nonce = _implicit_octets(part)
            elif tag == 7:
                text = _children(_explicit_inner(part), "PKIFreeText")
                header.free_text = tuple(item.to_str() for item in text)
            elif tag == 8:
                if not part.constructed:
                    raise DerError("generalInfo must be constructed")
                header.general_info = tuple(_decode_info(i) for i in part.children())
            else:
                raise DerError(f"unexpected tag [{tag}] in PKIHeader")
        return header


@dataclass(frozen=True)
class OptionalValidity:
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.not_before is None and self.not_after is None

    def encode(self) -> bytes:
        items = []
        if self.not_before is not None:
            items.append(explicit(0, encode_generalized_time(self.not_before)))
        if self.not_after is not None:
            items.append(explicit(1, encode_generalized_time(self.not_after)))
        return encode_sequence(items)


@dataclass
class CertTemplate:
    """The selected fields of a certificate to be issued.

    Fields left at their empty value are omitted from the encoding.
    """

    serial_number: Optional[int] = None
    version: int = 0
    issuer: RDNSequence = field(default_factory=list)
    validity: Optional[OptionalValidity] = None
    subject: RDNSequence = field(default_factory=list)
    public_key: Optional[SubjectPublicKeyInfo] = None
    issuer_uid: bytes = b""
    subject_uid: bytes = b""
    extensions: Optional[list[Extension]] = None

    def load_public_key(self, der: bytes) -> None:
        """Take the public key from a DER SubjectPublicKeyInfo."""
        self.public_key = SubjectPublicKeyInfo.from_der(der)

    def load_public_key_from_csr(self, der: bytes) -> None:
        """Take the public key from a DER PKCS #10 certification request."""
        elements = decode_many(der)
        if not elements:
            raise DerError("no certification request in data")
        request = _children(elements[0], "CertificationRequest")
        if not request:
            raise DerError("certification request has no content")
        info = _children(request[0], "CertificationRequestInfo")
        if len(info) < 3:
            raise DerError("CertificationRequestInfo has too few fields")
        self.load_public_key(info[2].raw)

    def encode(self) -> bytes:
        items = []
        if self.version:
            items.append(explicit(0, encode_integer(self.version)))
        if self.serial_number is not None:
            items.append(explicit(1, encode_integer(self.serial_number)))
        if self.issuer:
            items.append(explicit(3, encode_name(self.issuer)))
        if self.validity is not None and not self.validity.is_empty:
            items.append(explicit(4, self.validity.encode()))
        if self.subject:
            items.append(explicit(5, encode_name(self.subject)))
        if self.public_key is not None:
            items.append(explicit(6, self.public_key.encode()))
        if self.issuer_uid:
            items.append(implicit(7, encode_bit_string(self.issuer_uid)))
        if self.subject_uid:
            items.append(explicit(8, encode_bit_string(self.subject_uid)))
        if self.extensions is not None:
            items.append(explicit(9, encode_sequence(e.encode() for e in self.extensions)))
        return encode_sequence(items)


@dataclass
class PKIMessage:
    """An outgoing PKIMessage; ``body`` is the already tagged PKIBody encoding."""

    header: PKIHeader
    body: bytes = b""
    protection: Optional[bytes] = None
    extra_certs: list[bytes] = field(default_factory=list)

    def sign(self, private_key) -> None:
        """Protect header and body with the header's protection algorithm."""
        if self.header.protection_alg is None:
            raise ProtectionError("UnknownSignatureAlgorithm")
        data = protected_part(self.header.encode(), self.body)
        self.protection = _sign(self.header.protection_alg, data, private_key)

    def encode(self) -> bytes:
        if not self.body:
            raise DerError("message has no body")
        items = [self.header.encode(), bytes(self.body)]
        if self.protection is not None:
            items.append(explicit(0, encode_bit_string(self.protection)))
        if self.extra_certs:
            certs = b"".join(bytes(cert) for cert in self.extra_certs)
            items.append(encode_tlv(TagClass.CONTEXT, True, 1, certs))
        return encode_sequence(items)

    def to_base64(self) -> str:
        return base64.b64encode(self.encode()).decode("ascii")