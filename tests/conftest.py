"""Shared fixtures: on-the-fly certificate generation."""

import base64
import ipaddress
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


@pytest.fixture
def make_cert():
    """Return a factory creating certificates signed by a given issuer (or self-signed)."""

    def factory(subject_cn, issuer_cn=None, issuer_key=None, dns_names=(), ip_addresses=()):
        private_key = ec.generate_private_key(ec.SECP256R1())
        issuer_cn = issuer_cn or subject_cn
        signing_key = issuer_key or private_key
        now = datetime.now(timezone.utc)

        builder = (
            x509.CertificateBuilder()
            .subject_name(_name(subject_cn))
            .issuer_name(_name(issuer_cn))
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=365))
        )
        san_entries = [x509.DNSName(name) for name in dns_names]
        san_entries += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses]
        if san_entries:
            builder = builder.add_extension(x509.SubjectAlternativeName(san_entries), critical=False)

        cert = builder.sign(signing_key, hashes.SHA256())
        return cert, private_key

    return factory


@pytest.fixture
def pki(make_cert):
    """Root -> Intermediate -> Leaf, as certificate objects."""
    root, root_key = make_cert("Example Root CA")
    intermediate, intermediate_key = make_cert("Example Intermediate CA", "Example Root CA", root_key)
    leaf, _ = make_cert(
        "leaf.example.com",
        "Example Intermediate CA",
        intermediate_key,
        dns_names=["leaf.example.com", "www.example.com"],
        ip_addresses=["192.0.2.1"],
    )
    return {"root": root, "intermediate": intermediate, "leaf": leaf}


def to_pem(*certs) -> bytes:
    return b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in certs)


def to_der(cert) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


def with_unreadable_name(cert, marker: str) -> bytes:
    """DER of a certificate whose name bytes spelling `marker` are replaced by invalid UTF-8."""
    der = to_der(cert)
    encoded = marker.encode("ascii")
    assert encoded in der
    return der.replace(encoded, b"\xff" * len(encoded))


def der_to_pem(der: bytes) -> bytes:
    body = base64.b64encode(der)
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    return b"-----BEGIN CERTIFICATE-----\n" + b"\n".join(lines) + b"\n-----END CERTIFICATE-----\n"
