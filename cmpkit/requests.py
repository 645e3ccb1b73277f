"""PKIBody encodings for certification, key update, key recovery and revocation requests."""

from __future__ import annotations

from typing import Iterable

from .der import encode_bit_string, encode_integer, encode_sequence, explicit
from .messages import CertTemplate

CR_TAG = 2
KUR_TAG = 7
KRR_TAG = 9
RR_TAG = 11


def _cert_req_message(request_id: int, template: CertTemplate) -> bytes:
    cert_request = encode_sequence([encode_integer(request_id), template.encode()])
    return encode_sequence([cert_request])


def cert_request_messages(templates: Iterable[CertTemplate]) -> bytes:
    """CertReqMessages; each request's ID is its position in ``templates``."""
    return encode_sequence(
        _cert_req_message(index, template) for index, template in enumerate(templates)
    )


def _body(tag: int, content: bytes) -> bytes:
    # The content list sits inside one more SEQUENCE under the body tag.
    return explicit(tag, encode_sequence([content]))


def cr_body(templates: Iterable[CertTemplate]) -> bytes:
    """A certification request body, tag [2]."""
    return _body(CR_TAG, cert_request_messages(templates))


def kur_body(templates: Iterable[CertTemplate]) -> bytes:
    """A key update request body, tag [7]."""
    return _body(KUR_TAG, cert_request_messages(templates))


def krr_body(templates: Iterable[CertTemplate]) -> bytes:
    """A key recovery request body, tag [9]."""
    return _body(KRR_TAG, cert_request_messages(templates))


def rr_body(templates: Iterable[CertTemplate], reason: int) -> bytes:
    """A revocation request body, tag [11], with one reason octet per entry."""
    if not 0 <= reason <= 0xFF:
        raise ValueError(f"revocation reason must fit in one octet: {reason}")
    details = [
        encode_sequence([template.encode(), encode_bit_string(bytes([reason]))])
        for template in templates
    ]
    return _body(RR_TAG, encode_sequence(details))