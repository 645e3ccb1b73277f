# cmpkit

A small library for speaking CMP (RFC 4210 / RFC 4211) from the registration
authority side. It builds signed request messages for a certificate authority,
and it parses and checks the replies:

- request bodies: certification (`cr`, tag [2]), key update (`kur`, [7]),
  key recovery (`krr`, [9]) and revocation (`rr`, [11])
- reply parsers: certification (`cp`, [3]), key update (`kup`, [8]),
  key recovery (`krp`, [10]) and revocation (`rp`, [12])

DER encoding and decoding are built in (`cmpkit.der`). Signing, signature
checks and certificate loading use `cryptography`.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `cmpkit.der`: a DER encoder and decoder. `decode` and `decode_many` return
  `Element` objects; `encode_*`, `explicit` and `implicit` build encodings.
  Malformed data raises `DerError`, which is a `ValueError`.
- `cmpkit.pkix`: `AlgorithmIdentifier`, `AttributeTypeAndValue`, `Extension`,
  `SubjectPublicKeyInfo`, `PKIStatus`, `PKIStatusInfo`, `encode_name`,
  `encode_directory_name` and `load_certificate`.
- `cmpkit.extensions`: `DN`, `build_subject`, `build_extensions`,
  `marshal_sans` and `oid_in_extensions`, plus OID constants for common
  name attributes and extensions.
- `cmpkit.protection`: `sign`, `verify`, `protected_part`,
  `check_message_signature`, `verify_chain`, the `SignatureAlgorithm` enum
  and `ProtectionError`.
- `cmpkit.messages`: `PKIHeader`, `OptionalValidity`, `CertTemplate` and
  `PKIMessage`.
- `cmpkit.requests`: `cert_request_messages`, `cr_body`, `kur_body`,
  `krr_body` and `rr_body`.
- `cmpkit.responses`: `parse_cp`, `parse_kup`, `parse_krp`, `parse_rp` and
  the structures they return.

## Building a request

```python
from cmpkit.extensions import DN, OID_COMMON_NAME, build_extensions, build_subject
from cmpkit.messages import CertTemplate, PKIHeader, PKIMessage
from cmpkit.pkix import AlgorithmIdentifier
from cmpkit.requests import cr_body

template = CertTemplate(serial_number=1)
template.subject = build_subject([DN(oid=OID_COMMON_NAME, value=b"client.example.com")])
template.extensions = build_extensions(
    [DN(code="dNSName", value=b"client.example.com")], []
)
template.load_public_key_from_csr(csr_der)

header = PKIHeader.create()
header.protection_alg = AlgorithmIdentifier(oid=(1, 2, 840, 10045, 4, 3, 2))

message = PKIMessage(header=header, body=cr_body([template]))
message.sign(ra_private_key)
payload = message.to_base64()
```

`PKIHeader.create()` fills in protocol version 2, the directory names `RA`
and `CA` as sender and recipient, a fresh UUID as transaction id and the
current UTC time.

Fields of a `CertTemplate` that are left empty are left out of its encoding.
The public key can also be taken from a DER SubjectPublicKeyInfo with
`load_public_key`. Each request in a body gets its position in the template
list as its `certReqId`.

`build_extensions` turns entries without an OID whose `code` is `dNSName`,
`rfc822Name` or `iPAddress` into one subjectAltName extension, then appends
one extension per entry of the second list. An unknown name kind or a bad IP
address raises `ValueError`.

`kur_body`, `krr_body` and `rr_body(templates, reason)` build the other
request bodies the same way; `reason` is a single octet (0 to 255).

### Signature algorithms

`sign` and `verify` accept RSA PKCS #1 v1.5 with SHA-1, SHA-224, SHA-256,
SHA-384 or SHA-512, ECDSA with the same hashes, and Ed25519. Any other
algorithm, or a header without `protection_alg`, raises `ProtectionError`
with the message `UnknownSignatureAlgorithm`.

## Parsing a reply

```python
from cmpkit.responses import parse_cp

reply = parse_cp(reply_der)        # checks the CA's signature
reply.verify_by_root([root_cert])  # checks the chain in extraCerts
for item in reply.cert_with_enc_values():
    print(item.cert.subject, item.enc_priv is not None)
```

Every parser checks the protection against the last certificate in
extraCerts. It raises `DerError` if the message cannot be decoded and
`ProtectionError` if no CA certificate is present or the signature does not
verify.

- `parse_cp` and `parse_kup` return a `CertRepResponse`; caPubs in the body
  are skipped.
- `parse_krp` returns a `KeyRecoveryResponse` with `status_ok()`,
  `fail_info()` and `cert_with_enc_values()`, which lists the new signing
  certificate first and then each recovered key pair.
- `parse_rp` returns a `RevocationResponse` and raises `ValueError` carrying
  the failure information when the status is not *accepted*.

`verify_by_root` checks the first extra certificate against the given roots
and each following one against the certificate before it, including the
validity period of each.

## What it does not do

- It does not send or receive messages: there is no HTTP or TCP transport
  and no command-line tool. Callers pass DER bytes in and get DER or base64
  out.
- Password-based MAC protection is not supported; only signature
  protection is.
- Encrypted private keys in replies are returned as `EncryptedValue`
  structures; they are not decrypted.