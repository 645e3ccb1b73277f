"""Parsing of CMP responses: certification, key update, key recovery and revocation replies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, TypeVar

from cryptography import x509

from .der import DerError, Element, TagClass, decode_many
from .messages import PKIHeader
from .pkix import AlgorithmIdentifier, PKIStatusInfo, load_certificate
from .protection import ProtectionError, check_message_signature, verify_chain

CP_TAG = 3
KUP_TAG = 8
KRP_TAG = 10
RP_TAG = 12

_UNIVERSAL_INTEGER = 2
_UNIVERSAL_BIT_STRING = 3
_UNIVERSAL_OCTET_STRING = 4
_UNIVERSAL_SEQUENCE = 16

_T = TypeVar("_T")


def _is_universal(element: Element, tag: int) -> bool:
    return element.tag_class is TagClass.UNIVERSAL and element.tag == tag


def _sequence(element: Element, what: str) -> list[Element]:
    if not (_is_universal(element, _UNIVERSAL_SEQUENCE) and element.constructed):
        raise DerError(f"{what} must be a SEQUENCE")
    return element.children()


def _explicit_inner(element: Element) -> Element:
    if not element.constructed:
        raise DerError(f"explicit tag [{element.tag}] must be constructed")
    inner = element.children()
    if len(inner) != 1:
        raise DerError(f"explicit tag [{element.tag}] must hold exactly one value")
    return inner[0]


def _bit_string(element: Element, what: str) -> bytes:
    if not _is_universal(element, _UNIVERSAL_BIT_STRING):
        raise DerError(f"{what} must be a BIT STRING")
    return element.to_bit_string()[0]


@dataclass(frozen=True)
class EncryptedValue:
    """An encrypted value, usually a private key, as returned by the CA."""

    enc_value: bytes = b""
    intended_alg: Optional[AlgorithmIdentifier] = None
    symm_alg: Optional[AlgorithmIdentifier] = None
    enc_symm_key: bytes = b""
    key_alg: Optional[AlgorithmIdentifier] = None
    value_hint: bytes = b""
    raw: bytes = field(default=b"", compare=False, repr=False)

    @classmethod
    def from_element(cls, element: Element) -> EncryptedValue:
        parts = _sequence(element, "EncryptedValue")
        if not parts:
            raise DerError("EncryptedValue has no encValue")
        enc_value = _bit_string(parts[-1], "encValue")
        fields: dict[str, object] = {}
        for part in parts[:-1]:
            if part.tag_class is not TagClass.CONTEXT:
                raise DerError("unexpected field in EncryptedValue")
            inner = _explicit_inner(part)
            if part.tag == 0:
                fields["intended_alg"] = AlgorithmIdentifier.from_element(inner)
            elif part.tag == 1:
                fields["symm_alg"] = AlgorithmIdentifier.from_element(inner)
            elif part.tag == 2:
                fields["enc_symm_key"] = _bit_string(inner, "encSymmKey")
            elif part.tag == 3:
                fields["key_alg"] = AlgorithmIdentifier.from_element(inner)
            elif part.tag == 4:
                fields["value_hint"] = inner.to_bytes()
            else:
                raise DerError(f"unexpected tag [{part.tag}] in EncryptedValue")
        return cls(enc_value=enc_value, raw=element.raw, **fields)


@dataclass(frozen=True)
class PKIPublicationInfo:
    """Publication wishes: ``pub_infos`` holds (method, GeneralName DER or None) pairs."""

    action: int = 0
    pub_infos: tuple[tuple[int, Optional[bytes]], ...] = ()

    @classmethod
    def _from_element(cls, element: Element) -> PKIPublicationInfo:
        parts = _sequence(element, "PKIPublicationInfo")
        if not parts:
            raise DerError("PKIPublicationInfo has no action")
        infos = []
        if len(parts) > 1:
            for info in _sequence(parts[1], "pubInfos"):
                fields = _sequence(info, "SinglePubInfo")
                if not fields:
                    raise DerError("SinglePubInfo has no pubMethod")
                location = fields[1].raw if len(fields) > 1 else None
                infos.append((fields[0].to_int(), location))
        return cls(parts[0].to_int(), tuple(infos))


def _cert_or_enc_cert(element: Element) -> bytes:
    """The certificate DER from a CertOrEncCert; empty for an encrypted certificate."""
    if element.is_context(0):
        return _explicit_inner(element).raw
    if element.is_context(1):
        return b""
    children = _sequence(element, "CertOrEncCert")
    if len(children) != 1:
        raise DerError("CertOrEncCert must hold exactly one certificate")
    return children[0].raw


@dataclass(frozen=True)
class CertifiedKeyPair:
    """A certificate with, optionally, its encrypted private key."""

    cert: bytes = b""
    private_key: Optional[EncryptedValue] = None
    publication_info: Optional[PKIPublicationInfo] = None

    @classmethod
    def from_element(cls, element: Element) -> CertifiedKeyPair:
        parts = _sequence(element, "CertifiedKeyPair")
        if not parts:
            raise DerError("CertifiedKeyPair has no certOrEncCert")
        cert = _cert_or_enc_cert(parts[0])
        private_key = None
        publication_info = None
        for part in parts[1:]:
            if part.is_context(0):
                private_key = EncryptedValue.from_element(_explicit_inner(part))
            elif part.is_context(1):
                publication_info = PKIPublicationInfo._from_element(_explicit_inner(part))
            else:
                raise DerError("unexpected field in CertifiedKeyPair")
        return cls(cert, private_key, publication_info)

    def _to_cert_with_enc_value(self) -> CertWithEncValue:
        enc_priv = self.private_key if self.private_key and self.private_key.raw else None
        return CertWithEncValue(enc_priv, load_certificate(self.cert))


@dataclass(frozen=True)
class CertWithEncValue:
    enc_priv: Optional[EncryptedValue]
    cert: Optional[x509.Certificate]


@dataclass(frozen=True)
class CertResponse:
    cert_req_id: int
    status: PKIStatusInfo
    certified_key_pair: Optional[CertifiedKeyPair] = None
    resp_info: bytes = b""
    raw: bytes = field(default=b"", compare=False, repr=False)

    def ok(self) -> bool:
        return self.status.status == 0

    def cert_with_enc_value(self) -> CertWithEncValue:
        if self.certified_key_pair is None:
            raise DerError("response carries no certificate")
        return self.certified_key_pair._to_cert_with_enc_value()

    @classmethod
    def _from_element(cls, element: Element) -> CertResponse:
        parts = _sequence(element, "CertResponse")
        if len(parts) < 2:
            raise DerError("CertResponse needs certReqId and status")
        key_pair = None
        resp_info = b""
        for part in parts[2:]:
            if _is_universal(part, _UNIVERSAL_SEQUENCE):
                key_pair = CertifiedKeyPair.from_element(part)
            elif _is_universal(part, _UNIVERSAL_OCTET_STRING):
                resp_info = part.to_bytes()
            else:
                raise DerError("unexpected field in CertResponse")
        return cls(
            parts[0].to_int(),
            PKIStatusInfo.from_element(parts[1]),
            key_pair,
            resp_info,
            element.raw,
        )


@dataclass(frozen=True)
class CertRepMessage:
    """The responses of a certification or key update reply; caPubs are ignored."""

    responses: tuple[CertResponse, ...] = ()
    raw: bytes = field(default=b"", compare=False, repr=False)

    @classmethod
    def _from_element(cls, element: Element) -> CertRepMessage:
        responses: Optional[tuple[CertResponse, ...]] = None
        for part in _sequence(element, "CertRepMessage"):
            if part.is_context(1):
                continue
            if _is_universal(part, _UNIVERSAL_SEQUENCE):
                responses = tuple(CertResponse._from_element(r) for r in part.children())
            else:
                raise DerError("unexpected field in CertRepMessage")
        if responses is None:
            raise DerError("CertRepMessage has no responses")
        return cls(responses, element.raw)


@dataclass(frozen=True)
class KeyRecRepContent:
    status: PKIStatusInfo
    new_sig_cert: bytes = b""
    ca_certs: tuple[bytes, ...] = ()
    key_pair_hist: tuple[CertifiedKeyPair, ...] = ()
    raw: bytes = field(default=b"", compare=False, repr=False)

    @classmethod
    def _from_element(cls, element: Element) -> KeyRecRepContent:
        parts = _sequence(element, "KeyRecRepContent")
        if not parts:
            raise DerError("KeyRecRepContent has no status")
        status = PKIStatusInfo.from_element(parts[0])
        new_sig_cert = b""
        ca_certs: tuple[bytes, ...] = ()
        history: tuple[CertifiedKeyPair, ...] = ()
        for part in parts[1:]:
            if part.is_context(0):
                new_sig_cert = part.content
            elif part.is_context(1):
                ca_certs = tuple(cert.raw for cert in part.children())
            elif part.is_context(2):
                history = tuple(CertifiedKeyPair.from_element(p) for p in part.children())
            else:
                raise DerError("unexpected field in KeyRecRepContent")
        return cls(status, new_sig_cert, ca_certs, history, element.raw)


def _cert_id(element: Element) -> tuple[bytes, int]:
    kids = _sequence(element, "CertId")
    if not kids:
        raise DerError("CertId has no serial number")
    issuer = kids[0].raw if len(kids) > 1 else b""
    return issuer, kids[-1].to_int()


@dataclass(frozen=True)
class RevRepContent:
    """A revocation reply: the first status and the (issuer DER, serial) pairs revoked."""

    status: PKIStatusInfo = field(default_factory=lambda: PKIStatusInfo(-1))
    rev_certs: tuple[tuple[bytes, int], ...] = ()
    raw: bytes = field(default=b"", compare=False, repr=False)

    @classmethod
    def _from_element(cls, element: Element) -> RevRepContent:
        status = PKIStatusInfo(-1)
        rev_certs: tuple[tuple[bytes, int], ...] = ()
        for part in _sequence(element, "RevRepContent"):
            if part.is_context(0):
                inner = _explicit_inner(part)
                kids = _sequence(inner, "revCerts")
                if kids and _is_universal(kids[-1], _UNIVERSAL_INTEGER):
                    rev_certs = (_cert_id(inner),)
                else:
                    rev_certs = tuple(_cert_id(kid) for kid in kids)
            elif _is_universal(part, _UNIVERSAL_SEQUENCE):
                statuses = part.children()
                if not statuses:
                    raise DerError("RevRepContent has an empty status list")
                status = PKIStatusInfo.from_element(statuses[0])
            else:
                raise DerError("unexpected field in RevRepContent")
        return cls(status, rev_certs, element.raw)


@dataclass
class ResponseMessage:
    """The parts every verified response shares."""

    raw: bytes
    header: PKIHeader
    protection: bytes
    extra_certs: list[x509.Certificate]

    def verify_by_root(self, roots: Iterable[x509.Certificate]) -> None:
        """Check the extra certificates as a chain starting from ``roots``."""
        verify_chain(self.extra_certs, roots)


@dataclass
class CertRepResponse(ResponseMessage):
    body: CertRepMessage

    def cert_with_enc_values(self) -> list[CertWithEncValue]:
        return [response.cert_with_enc_value() for response in self.body.responses]


@dataclass
class KeyRecoveryResponse(ResponseMessage):
    body: KeyRecRepContent

    def status_ok(self) -> bool:
        return self.body.status.status == 0

    def fail_info(self) -> str:
        return self.body.status.fail_info.decode("latin-1")

    def cert_with_enc_values(self) -> list[CertWithEncValue]:
        """The new signing certificate first, then each recovered key pair."""
        if not self.body.new_sig_cert:
            raise DerError("sig cert raw blank")
        try:
            signing_cert = load_certificate(self.body.new_sig_cert)
        except DerError as exc:
            raise DerError(f"failed to read krp sig cert: {exc}") from exc
        result = [CertWithEncValue(None, signing_cert)]
        for pair in self.body.key_pair_hist:
            enc_priv = pair.private_key if pair.private_key and pair.private_key.raw else None
            cert = load_certificate(pair.cert) if pair.cert else None
            result.append(CertWithEncValue(enc_priv, cert))
        return result


@dataclass
class RevocationResponse(ResponseMessage):
    body: RevRepContent

    def status_ok(self) -> bool:
        return self.body.status.status == 0

    def fail_info(self) -> str:
        return self.body.status.fail_info.decode("latin-1")


@dataclass
class _Envelope:
    raw: bytes
    header: PKIHeader
    body: Optional[Element]
    protection: bytes
    certs: list[bytes]


def _parse_envelope(raw: bytes, body_tag: int, body_optional: bool) -> _Envelope:
    elements = decode_many(raw)
    if not elements:
        raise DerError("no PKIMessage in data")
    message = elements[0]
    parts = _sequence(message, "PKIMessage")
    if not parts:
        raise DerError("PKIMessage has no header")
    header = PKIHeader.from_element(parts[0])
    remaining = parts[1:]
    body = None
    if remaining and remaining[0].is_context(body_tag):
        body = _explicit_inner(remaining.pop(0))
    elif not body_optional:
        raise DerError(f"PKIMessage has no body [{body_tag}]")
    if not remaining or not remaining[0].is_context(0):
        raise DerError("PKIMessage has no protection")
    protection = _bit_string(_explicit_inner(remaining.pop(0)), "protection")
    if not remaining or not remaining[0].is_context(1) or not remaining[0].constructed:
        raise DerError("PKIMessage has no extraCerts")
    certs = [cert.raw for cert in remaining.pop(0).children()]
    return _Envelope(message.raw, header, body, protection, certs)


def _check_signature(envelope: _Envelope) -> None:
    if not envelope.certs:
        raise ProtectionError("no ca pub cert returned")
    header = envelope.header
    check_message_signature(
        envelope.certs[-1],
        header.raw,
        envelope.body.raw if envelope.body is not None else b"",
        envelope.protection,
        header.protection_alg or AlgorithmIdentifier(()),
    )


def _parse(
    raw: bytes,
    body_tag: int,
    body_parser: Callable[[Element], _T],
    body_optional: bool = False,
    default: Optional[Callable[[], _T]] = None,
) -> tuple[_Envelope, _T, list[x509.Certificate]]:
    envelope = _parse_envelope(raw, body_tag, body_optional)
    if envelope.body is not None:
        body = body_parser(envelope.body)
    elif default is not None:
        body = default()
    else:
        raise DerError(f"PKIMessage has no body [{body_tag}]")
    _check_signature(envelope)
    certs = [load_certificate(cert) for cert in envelope.certs]
    return envelope, body, certs


def _cert_rep(raw: bytes, tag: int) -> CertRepResponse:
    envelope, body, certs = _parse(raw, tag, CertRepMessage._from_element)
    return CertRepResponse(envelope.raw, envelope.header, envelope.protection, certs, body)


def parse_cp(raw: bytes) -> CertRepResponse:
    """Parse and verify a certification response, body tag [3]."""
    return _cert_rep(raw, CP_TAG)


def parse_kup(raw: bytes) -> CertRepResponse:
    """Parse and verify a key update response, body tag [8]."""
    return _cert_rep(raw, KUP_TAG)


def parse_krp(raw: bytes) -> KeyRecoveryResponse:
    """Parse and verify a key recovery response, body tag [10]."""
    try:
        envelope = _parse_envelope(raw, KRP_TAG, False)
        assert envelope.body is not None
        body = KeyRecRepContent._from_element(envelope.body)
    except DerError as exc:
        raise DerError(f"failed to unmarshal krp resp:{exc}") from exc
    _check_signature(envelope)
    certs = [load_certificate(cert) for cert in envelope.certs]
    return KeyRecoveryResponse(envelope.raw, envelope.header, envelope.protection, certs, body)


def parse_rp(raw: bytes) -> RevocationResponse:
    """Parse and verify a revocation response, body tag [12].

    Raises ValueError carrying the failure information unless the status is accepted.
    """
    envelope, body, certs = _parse(
        raw, RP_TAG, RevRepContent._from_element, body_optional=True, default=RevRepContent
    )
    status = body.status
    if status.status != 0:
        text = status.fail_info.decode("latin-1")
        raise ValueError(text or f"revocation failed with status {status.status}")
    return RevocationResponse(envelope.raw, envelope.header, envelope.protection, certs, body)