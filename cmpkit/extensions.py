"""Building certificate subjects and extensions from flat name descriptions."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Iterable, Sequence, Union

from .der import TagClass, encode_sequence, encode_tlv
from .pkix import AttributeTypeAndValue, Extension

OID_EXTENSION_SUBJECT_KEY_ID = (2, 5, 29, 14)
OID_EXTENSION_KEY_USAGE = (2, 5, 29, 15)
OID_EXTENSION_EXTENDED_KEY_USAGE = (2, 5, 29, 37)
OID_EXTENSION_AUTHORITY_KEY_ID = (2, 5, 29, 35)
OID_EXTENSION_BASIC_CONSTRAINTS = (2, 5, 29, 19)
OID_EXTENSION_SUBJECT_ALT_NAME = (2, 5, 29, 17)
OID_EXTENSION_CERTIFICATE_POLICIES = (2, 5, 29, 32)
OID_EXTENSION_NAME_CONSTRAINTS = (2, 5, 29, 30)
OID_EXTENSION_CRL_DISTRIBUTION_POINTS = (2, 5, 29, 31)
OID_EXTENSION_AUTHORITY_INFO_ACCESS = (1, 3, 6, 1, 5, 5, 7, 1, 1)

OID_COUNTRY = (2, 5, 4, 6)
OID_ORGANIZATION = (2, 5, 4, 10)
OID_ORGANIZATIONAL_UNIT = (2, 5, 4, 11)
OID_COMMON_NAME = (2, 5, 4, 3)
OID_SERIAL_NUMBER = (2, 5, 4, 5)
OID_LOCALITY = (2, 5, 4, 7)
OID_PROVINCE = (2, 5, 4, 8)
OID_STREET_ADDRESS = (2, 5, 4, 9)
OID_POSTAL_CODE = (2, 5, 4, 17)

_SAN_RFC822 = 1
_SAN_DNS = 2
_SAN_IP = 7

IPLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class DN:
    """One subject attribute, subject alternative name or extension entry.

    An entry without an OID is a subject alternative name whose kind is
    given by ``code`` (``dNSName``, ``rfc822Name`` or ``iPAddress``).
    """

    oid: tuple[int, ...] = ()
    name: str = ""
    code: str = ""
    critical: bool = False
    value: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "oid", tuple(self.oid))
        value = self.value
        if isinstance(value, str):
            value = value.encode("utf-8")
        object.__setattr__(self, "value", bytes(value))

    @property
    def text(self) -> str:
        return self.value.decode("utf-8", errors="replace")


def oid_in_extensions(oid: Sequence[int], extensions: Iterable[Extension]) -> bool:
    """Whether an extension with the given OID is present."""
    wanted = tuple(oid)
    return any(extension.oid == wanted for extension in extensions)


def _ip_bytes(ip: IPLike) -> bytes:
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        address = ip
    else:
        address = ipaddress.ip_address(ip)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return address.packed


def marshal_sans(
    dns_names: Iterable[str],
    email_addresses: Iterable[str],
    ip_addresses: Iterable[IPLike],
) -> bytes:
    """Encode GeneralNames holding DNS names, e-mail addresses and IP addresses.

    IPv4 addresses, including IPv4-mapped IPv6 ones, take four bytes.
    """
    names = [
        encode_tlv(TagClass.CONTEXT, False, _SAN_DNS, name.encode("utf-8"))
        for name in dns_names
    ]
    names.extend(
        encode_tlv(TagClass.CONTEXT, False, _SAN_RFC822, email.encode("utf-8"))
        for email in email_addresses
    )
    names.extend(
        encode_tlv(TagClass.CONTEXT, False, _SAN_IP, _ip_bytes(ip)) for ip in ip_addresses
    )
    return encode_sequence(names)


def build_extensions(san_list: Iterable[DN], ext_list: Iterable[DN]) -> list[Extension]:
    """Build a subjectAltName extension followed by the given extensions.

    Entries of ``san_list`` that carry an OID are ignored. Raises ValueError
    for an unsupported name kind or a malformed IP address.
    """
    dns_names: list[str] = []
    emails: list[str] = []
    ips: list[ipaddress.IPv4Address | ipaddress.IPv6Address] = []
    for dn in san_list:
        if dn.oid:
            continue
        if dn.code == "dNSName":
            dns_names.append(dn.text)
        elif dn.code == "rfc822Name":
            emails.append(dn.text)
        elif dn.code == "iPAddress":
            try:
                ips.append(ipaddress.ip_address(dn.text))
            except ValueError:
                raise ValueError(f"ip address illegal: {dn.text}") from None
        else:
            raise ValueError(f"not supported san name: {dn.code}")

    result: list[Extension] = []
    if dns_names or emails or ips:
        result.append(
            Extension(OID_EXTENSION_SUBJECT_ALT_NAME, marshal_sans(dns_names, emails, ips))
        )
    result.extend(Extension(dn.oid, dn.value, dn.critical) for dn in ext_list)
    return result


def build_subject(dn_list: Iterable[DN]) -> list[list[AttributeTypeAndValue]]:
    """An RDN sequence with one single-valued RDN per entry, in order."""
    return [[AttributeTypeAndValue(dn.oid, dn.text)] for dn in dn_list]