from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from cryptography.x509.oid import NameOID

from cmpkit.der import DerError, decode, encode_null
from cmpkit.pkix import (
    AlgorithmIdentifier,
    AttributeTypeAndValue,
    Extension,
    PKIStatus,
    PKIStatusInfo,
    SubjectPublicKeyInfo,
    encode_directory_name,
    encode_name,
    load_certificate,
)


@pytest.fixture(scope="module")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.mark.parametrize("params", [None, encode_null()])
def test_algorithm_identifier_round_trip(params):
    alg = AlgorithmIdentifier((1, 2, 840, 113549, 1, 1, 11), params)
    assert AlgorithmIdentifier.from_element(decode(alg.encode())) == alg


@pytest.mark.parametrize("critical", [True, False])
def test_extension_round_trip(critical):
    ext = Extension([2, 5, 29, 15], b"\x03\x02\x05\xa0", critical)
    assert Extension.from_element(decode(ext.encode())) == ext


def test_non_critical_extension_omits_flag():
    ext = Extension((2, 5, 29, 14), b"\x04\x00")
    assert len(decode(ext.encode()).children()) == 2


def test_extension_rejects_non_sequence():
    with pytest.raises(DerError):
        Extension.from_element(decode(encode_null()))


def test_spki_from_real_key(ec_key):
    der = ec_key.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    spki = SubjectPublicKeyInfo.from_der(der)
    assert spki.algorithm.oid == (1, 2, 840, 10045, 2, 1)
    assert spki.encode() == der


def test_spki_rejects_empty():
    with pytest.raises(DerError):
        SubjectPublicKeyInfo.from_der(b"")


def test_status_info_round_trip():
    info = PKIStatusInfo(PKIStatus.REJECTION, ["bad request", "again"], b"\x80", 7)
    parsed = PKIStatusInfo.from_element(decode(info.encode()))
    assert parsed == info
    assert parsed.raw == info.encode()


def test_status_info_minimal_encoding():
    info = PKIStatusInfo(PKIStatus.ACCEPTED)
    element = decode(info.encode())
    assert len(element.children()) == 1
    assert PKIStatusInfo.from_element(element).status == PKIStatus.ACCEPTED


def test_directory_name_structure():
    element = decode(encode_directory_name("RA"))
    assert element.is_context(4)
    rdn_sequence = element.children()[0]
    atv = rdn_sequence.children()[0].children()[0].children()
    assert atv[0].to_oid() == (2, 5, 4, 3)
    assert atv[1].to_str() == "RA"
    assert atv[1].tag == 19


@pytest.mark.parametrize("value", ["张三", "a*b"])
def test_name_falls_back_to_utf8(value):
    name = decode(encode_name([[AttributeTypeAndValue((2, 5, 4, 3), value)]]))
    string = name.children()[0].children()[0].children()[1]
    assert string.tag == 12
    assert string.to_str() == value


def test_name_matches_cryptography(ec_key):
    ours = encode_name(
        [
            [AttributeTypeAndValue((2, 5, 4, 6), "CN")],
            [AttributeTypeAndValue((2, 5, 4, 3), "test")],
        ]
    )
    theirs = x509.Name.from_rfc4514_string("CN=test,C=CN")
    assert x509.Name.from_rfc4514_string(theirs.rfc4514_string()).public_bytes() == ours


def test_load_certificate(ec_key):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "test")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(ec_key.public_key())
        .serial_number(1)
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=1))
        .sign(ec_key, hashes.SHA256())
    )
    loaded = load_certificate(cert.public_bytes(Encoding.DER))
    assert loaded.subject == name
    assert loaded == cert


def test_load_certificate_invalid():
    with pytest.raises(DerError):
        load_certificate(b"\x30\x00")