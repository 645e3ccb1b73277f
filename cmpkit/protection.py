"""Signing and checking the protection of CMP messages."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from .der import encode_sequence
from .pkix import AlgorithmIdentifier, load_certificate


class ProtectionError(Exception):
    """Raised when a message cannot be signed or its protection does not verify."""


class SignatureAlgorithm(Enum):
    """Signature algorithms known by their AlgorithmIdentifier OID."""

    UNKNOWN = ()
    SHA1_WITH_RSA = (1, 2, 840, 113549, 1, 1, 5)
    SHA224_WITH_RSA = (1, 2, 840, 113549, 1, 1, 14)
    SHA256_WITH_RSA = (1, 2, 840, 113549, 1, 1, 11)
    SHA384_WITH_RSA = (1, 2, 840, 113549, 1, 1, 12)
    SHA512_WITH_RSA = (1, 2, 840, 113549, 1, 1, 13)
    ECDSA_WITH_SHA1 = (1, 2, 840, 10045, 4, 1)
    ECDSA_WITH_SHA224 = (1, 2, 840, 10045, 4, 3, 1)
    ECDSA_WITH_SHA256 = (1, 2, 840, 10045, 4, 3, 2)
    ECDSA_WITH_SHA384 = (1, 2, 840, 10045, 4, 3, 3)
    ECDSA_WITH_SHA512 = (1, 2, 840, 10045, 4, 3, 4)
    ED25519 = (1, 3, 101, 112)


_RSA_HASHES = {
    SignatureAlgorithm.SHA1_WITH_RSA: hashes.SHA1,
    SignatureAlgorithm.SHA224_WITH_RSA: hashes.SHA224,
    SignatureAlgorithm.SHA256_WITH_RSA: hashes.SHA256,
    SignatureAlgorithm.SHA384_WITH_RSA: hashes.SHA384,
    SignatureAlgorithm.SHA512_WITH_RSA: hashes.SHA512,
}

_ECDSA_HASHES = {
    SignatureAlgorithm.ECDSA_WITH_SHA1: hashes.SHA1,
    SignatureAlgorithm.ECDSA_WITH_SHA224: hashes.SHA224,
    SignatureAlgorithm.ECDSA_WITH_SHA256: hashes.SHA256,
    SignatureAlgorithm.ECDSA_WITH_SHA384: hashes.SHA384,
    SignatureAlgorithm.ECDSA_WITH_SHA512: hashes.SHA512,
}


def signature_algorithm(algorithm_identifier: AlgorithmIdentifier) -> SignatureAlgorithm:
    """The algorithm named by an identifier, or UNKNOWN."""
    oid = tuple(algorithm_identifier.oid)
    if not oid:
        return SignatureAlgorithm.UNKNOWN
    try:
        return SignatureAlgorithm(oid)
    except ValueError:
        return SignatureAlgorithm.UNKNOWN


def _known(algorithm_identifier: AlgorithmIdentifier) -> SignatureAlgorithm:
    algorithm = signature_algorithm(algorithm_identifier)
    if algorithm is SignatureAlgorithm.UNKNOWN:
        raise ProtectionError("UnknownSignatureAlgorithm")
    return algorithm


def sign(algorithm_identifier: AlgorithmIdentifier, data: bytes, private_key) -> bytes:
    """Sign ``data`` with ``private_key`` using the identified algorithm."""
    algorithm = _known(algorithm_identifier)
    data = bytes(data)
    if algorithm in _RSA_HASHES:
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise ProtectionError(f"{algorithm.name} needs an RSA private key")
        return private_key.sign(data, padding.PKCS1v15(), _RSA_HASHES[algorithm]())
    if algorithm in _ECDSA_HASHES:
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise ProtectionError(f"{algorithm.name} needs an EC private key")
        return private_key.sign(data, ec.ECDSA(_ECDSA_HASHES[algorithm]()))
    if not isinstance(private_key, ed25519.Ed25519PrivateKey):
        raise ProtectionError(f"{algorithm.name} needs an Ed25519 private key")
    return private_key.sign(data)


def verify(
    algorithm_identifier: AlgorithmIdentifier,
    data: bytes,
    signature: bytes,
    certificate: x509.Certificate,
) -> None:
    """Check ``signature`` over ``data`` against the certificate's public key."""
    algorithm = _known(algorithm_identifier)
    public_key = certificate.public_key()
    data, signature = bytes(data), bytes(signature)
    try:
        if algorithm in _RSA_HASHES:
            if not isinstance(public_key, rsa.RSAPublicKey):
                raise ProtectionError(f"{algorithm.name} needs an RSA public key")
            public_key.verify(signature, data, padding.PKCS1v15(), _RSA_HASHES[algorithm]())
        elif algorithm in _ECDSA_HASHES:
            if not isinstance(public_key, ec.EllipticCurvePublicKey):
                raise ProtectionError(f"{algorithm.name} needs an EC public key")
            public_key.verify(signature, data, ec.ECDSA(_ECDSA_HASHES[algorithm]()))
        else:
            if not isinstance(public_key, ed25519.Ed25519PublicKey):
                raise ProtectionError(f"{algorithm.name} needs an Ed25519 public key")
            public_key.verify(signature, data)
    except InvalidSignature:
        raise ProtectionError("signature verification failed") from None


def protected_part(header_der: bytes, body_der: bytes) -> bytes:
    """The DER that the protection covers: SEQUENCE { header, body }."""
    return encode_sequence([bytes(header_der), bytes(body_der)])


def check_message_signature(
    cert_der: bytes,
    header_der: bytes,
    body_der: bytes,
    signature: bytes,
    algorithm_identifier: AlgorithmIdentifier,
) -> None:
    """Verify a message's protection with the signer certificate given as DER."""
    certificate = load_certificate(cert_der)
    try:
        verify(
            algorithm_identifier,
            protected_part(header_der, body_der),
            signature,
            certificate,
        )
    except ProtectionError as exc:
        raise ProtectionError(f"failed to check cmp signature: {exc}") from exc


def _validity(certificate: x509.Certificate) -> tuple[datetime, datetime]:
    try:
        return certificate.not_valid_before_utc, certificate.not_valid_after_utc
    except AttributeError:
        return (
            certificate.not_valid_before.replace(tzinfo=timezone.utc),
            certificate.not_valid_after.replace(tzinfo=timezone.utc),
        )


def _check_time(certificate: x509.Certificate, now: datetime) -> None:
    not_before, not_after = _validity(certificate)
    if not not_before <= now <= not_after:
        raise ProtectionError(
            f"certificate {certificate.subject.rfc4514_string()} "
            "has expired or is not yet valid"
        )


def _verify_against(
    certificate: x509.Certificate, pool: list[x509.Certificate], now: datetime
) -> None:
    _check_time(certificate, now)
    if certificate in pool:
        return
    for issuer in pool:
        if issuer.subject != certificate.issuer:
            continue
        try:
            certificate.verify_directly_issued_by(issuer)
        except (ValueError, TypeError, InvalidSignature):
            continue
        _check_time(issuer, now)
        return
    raise ProtectionError("certificate signed by unknown authority")


def verify_chain(
    extra_certs: Iterable[x509.Certificate], roots: Iterable[x509.Certificate]
) -> None:
    """Verify each certificate against the one before it, the first against ``roots``."""
    certificates = list(extra_certs)
    if not certificates:
        raise ProtectionError("no ca cert in extra certs field")
    pool = list(roots)
    now = datetime.now(timezone.utc)
    for index, certificate in enumerate(certificates):
        try:
            _verify_against(certificate, pool, now)
        except ProtectionError as exc:
            raise ProtectionError(
                f"failed to verify cert chain by root ca: index:{index} {exc}"
            ) from exc
        pool = [certificate]