from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from cmpkit.der import (
    DerError,
    TagClass,
    decode,
    encode_bit_string,
    encode_integer,
    encode_octet_string,
    encode_oid,
    encode_sequence,
    encode_tlv,
    explicit,
)
from cmpkit.messages import PKIHeader
from cmpkit.pkix import AlgorithmIdentifier, PKIStatusInfo, encode_directory_name
from cmpkit.protection import ProtectionError, SignatureAlgorithm, protected_part, sign
from cmpkit.responses import (
    CertifiedKeyPair,
    EncryptedValue,
    PKIPublicationInfo,
    parse_cp,
    parse_krp,
    parse_kup,
    parse_rp,
)

ALG = AlgorithmIdentifier(SignatureAlgorithm.ECDSA_WITH_SHA256.value)
RSA_OID = (1, 2, 840, 113549, 1, 1, 1)


def _make_cert(cn, issuer_cn, public_key, signing_key, ca):
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)]))
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)]))
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
    )
    if ca:
        builder = builder.add_extension(
            x509.BasicConstraints(ca=True, path_length=None), critical=True
        )
    return builder.sign(signing_key, hashes.SHA256())


@pytest.fixture(scope="module")
def pki():
    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca = _make_cert("Test CA", "Test CA", ca_key.public_key(), ca_key, True)
    leaf_key = ec.generate_private_key(ec.SECP256R1())
    leaf = _make_cert("Leaf", "Test CA", leaf_key.public_key(), ca_key, False)
    other_key = ec.generate_private_key(ec.SECP256R1())
    other = _make_cert("Other CA", "Other CA", other_key.public_key(), other_key, True)
    return {
        "ca_key": ca_key,
        "ca": ca,
        "ca_der": ca.public_bytes(Encoding.DER),
        "leaf": leaf,
        "leaf_der": leaf.public_bytes(Encoding.DER),
        "other": other,
    }


def _message(tag, inner, key, certs, tamper=False):
    header = PKIHeader.create()
    header.protection_alg = ALG
    header_der = header.encode()
    signature = sign(ALG, protected_part(header_der, inner), key)
    if tamper:
        signature = bytes([signature[0] ^ 0xFF]) + signature[1:]
    parts = [header_der]
    if inner is not None and tag is not None:
        parts.append(explicit(tag, inner))
    parts.append(explicit(0, encode_bit_string(signature)))
    parts.append(encode_tlv(TagClass.CONTEXT, True, 1, b"".join(certs)))
    return encode_sequence(parts)


def _enc_value():
    return encode_sequence(
        [explicit(0, AlgorithmIdentifier(RSA_OID).encode()), encode_bit_string(b"\x01\x02")]
    )


def _key_pair(cert_der, enc=None):
    items = [explicit(0, cert_der)]
    if enc is not None:
        items.append(explicit(0, enc))
    return encode_sequence(items)


def _cert_response(req_id, status, key_pair=None):
    items = [encode_integer(req_id), PKIStatusInfo(status).encode()]
    if key_pair is not None:
        items.append(key_pair)
    return encode_sequence(items)


def _cert_rep(*responses):
    return encode_sequence([encode_sequence(list(responses))])


def test_parse_cp_returns_certificate_and_key(pki):
    body = _cert_rep(_cert_response(0, 0, _key_pair(pki["leaf_der"], _enc_value())))
    raw = _message(3, body, pki["ca_key"], [pki["ca_der"]])
    message = parse_cp(raw)
    assert message.raw == raw
    assert message.extra_certs == [pki["ca"]]
    response = message.body.responses[0]
    assert response.ok()
    assert response.cert_req_id == 0
    values = message.cert_with_enc_values()
    assert len(values) == 1
    assert values[0].cert == pki["leaf"]
    assert values[0].enc_priv.enc_value == b"\x01\x02"
    assert values[0].enc_priv.intended_alg == AlgorithmIdentifier(RSA_OID)


def test_parse_cp_accepts_sequence_wrapped_certificate(pki):
    key_pair = encode_sequence([encode_sequence([pki["leaf_der"]])])
    body = _cert_rep(_cert_response(0, 0, key_pair))
    message = parse_cp(_message(3, body, pki["ca_key"], [pki["ca_der"]]))
    value = message.cert_with_enc_values()[0]
    assert value.cert == pki["leaf"]
    assert value.enc_priv is None


def test_parse_cp_rejects_tampered_signature(pki):
    body = _cert_rep(_cert_response(0, 0, _key_pair(pki["leaf_der"])))
    raw = _message(3, body, pki["ca_key"], [pki["ca_der"]], tamper=True)
    with pytest.raises(ProtectionError, match="failed to check cmp signature"):
        parse_cp(raw)


def test_parse_cp_without_extra_certs(pki):
    body = _cert_rep(_cert_response(0, 0))
    with pytest.raises(ProtectionError, match="no ca pub cert returned"):
        parse_cp(_message(3, body, pki["ca_key"], []))


def test_rejected_response_has_no_certificate(pki):
    body = _cert_rep(_cert_response(5, 2))
    message = parse_cp(_message(3, body, pki["ca_key"], [pki["ca_der"]]))
    response = message.body.responses[0]
    assert not response.ok()
    assert response.cert_req_id == 5
    with pytest.raises(DerError):
        response.cert_with_enc_value()


def test_parse_kup_and_wrong_body_tag(pki):
    body = _cert_rep(_cert_response(0, 0, _key_pair(pki["leaf_der"])))
    raw = _message(8, body, pki["ca_key"], [pki["ca_der"]])
    message = parse_kup(raw)
    assert message.cert_with_enc_values()[0].cert == pki["leaf"]
    with pytest.raises(DerError):
        parse_cp(raw)


def test_verify_by_root(pki):
    body = _cert_rep(_cert_response(0, 0))
    message = parse_cp(_message(3, body, pki["ca_key"], [pki["ca_der"]]))
    message.verify_by_root([pki["ca"]])
    assert message.extra_certs == [pki["ca"]]
    with pytest.raises(ProtectionError, match="index:0"):
        message.verify_by_root([pki["other"]])


def _krp_body(pki, with_sig_cert=True):
    items = [PKIStatusInfo(0).encode()]
    if with_sig_cert:
        items.append(explicit(0, pki["leaf_der"]))
    items.append(encode_tlv(TagClass.CONTEXT, True, 1, pki["ca_der"]))
    items.append(
        encode_tlv(TagClass.CONTEXT, True, 2, _key_pair(pki["leaf_der"], _enc_value()))
    )
    return encode_sequence(items)


def test_parse_krp(pki):
    message = parse_krp(_message(10, _krp_body(pki), pki["ca_key"], [pki["ca_der"]]))
    assert message.status_ok()
    assert message.fail_info() == ""
    assert message.body.ca_certs == (pki["ca_der"],)
    values = message.cert_with_enc_values()
    assert len(values) == 2
    assert values[0].enc_priv is None
    assert values[0].cert == pki["leaf"]
    assert values[1].cert == pki["leaf"]
    assert values[1].enc_priv.enc_value == b"\x01\x02"


def test_krp_without_signing_cert(pki):
    body = _krp_body(pki, with_sig_cert=False)
    message = parse_krp(_message(10, body, pki["ca_key"], [pki["ca_der"]]))
    with pytest.raises(DerError, match="sig cert raw blank"):
        message.cert_with_enc_values()


def test_parse_krp_garbage():
    with pytest.raises(DerError, match="failed to unmarshal krp resp"):
        parse_krp(b"\x30\x03\x02\x01")


def _rp_body(status, fail_info=b"", rev_certs=True):
    items = [encode_sequence([PKIStatusInfo(status, fail_info=fail_info).encode()])]
    if rev_certs:
        cert_id = encode_sequence([encode_directory_name("CA"), encode_integer(42)])
        items.append(explicit(0, encode_sequence([cert_id])))
    return encode_sequence(items)


def test_parse_rp_accepted(pki):
    message = parse_rp(_message(12, _rp_body(0), pki["ca_key"], [pki["ca_der"]]))
    assert message.status_ok()
    assert message.body.rev_certs == ((encode_directory_name("CA"), 42),)


def test_parse_rp_rejected(pki):
    raw = _message(12, _rp_body(2, b"bad", rev_certs=False), pki["ca_key"], [pki["ca_der"]])
    with pytest.raises(ValueError, match="bad"):
        parse_rp(raw)


def test_parse_rp_without_body(pki):
    header = PKIHeader.create()
    header.protection_alg = ALG
    header_der = header.encode()
    signature = sign(ALG, protected_part(header_der, b""), pki["ca_key"])
    raw = encode_sequence(
        [
            header_der,
            explicit(0, encode_bit_string(signature)),
            encode_tlv(TagClass.CONTEXT, True, 1, pki["ca_der"]),
        ]
    )
    with pytest.raises(ValueError, match="status -1"):
        parse_rp(raw)


def test_encrypted_value_from_element():
    der = encode_sequence(
        [
            explicit(0, AlgorithmIdentifier(RSA_OID).encode()),
            explicit(2, encode_bit_string(b"\x0a\x0b")),
            explicit(4, encode_octet_string(b"hint")),
            encode_bit_string(b"\xff"),
        ]
    )
    value = EncryptedValue.from_element(decode(der))
    assert value.intended_alg == AlgorithmIdentifier(RSA_OID)
    assert value.symm_alg is None
    assert value.enc_symm_key == b"\x0a\x0b"
    assert value.value_hint == b"hint"
    assert value.enc_value == b"\xff"
    assert value.raw == der


def test_encrypted_value_requires_bit_string():
    with pytest.raises(DerError):
        EncryptedValue.from_element(decode(encode_sequence([encode_integer(1)])))


def test_certified_key_pair_publication_info(pki):
    location = encode_directory_name("CA")
    pub_info = encode_sequence(
        [encode_integer(1), encode_sequence([encode_sequence([encode_integer(3), location])])]
    )
    der = encode_sequence([explicit(0, pki["leaf_der"]), explicit(1, pub_info)])
    pair = CertifiedKeyPair.from_element(decode(der))
    assert pair.cert == pki["leaf_der"]
    assert pair.private_key is None
    assert pair.publication_info == PKIPublicationInfo(1, ((3, location),))


def test_certified_key_pair_encrypted_cert_has_no_cert():
    der = encode_sequence([explicit(1, _enc_value())])
    pair = CertifiedKeyPair.from_element(decode(der))
    assert pair.cert == b""
    with pytest.raises(DerError):
        CertifiedKeyPair.from_element(decode(encode_sequence([encode_oid((1, 2, 3))])))