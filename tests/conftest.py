from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional, Sequence

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@dataclass
class Issued:
    cert: x509.Certificate
    key: ec.EllipticCurvePrivateKey

    @property
    def der(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.DER)

    @property
    def pem(self) -> str:
        return self.cert.public_bytes(serialization.Encoding.PEM).decode('ascii')


def make_name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def build_certificate(common_name: str, issuer: Optional[Issued] = None, *, ca: bool = False,
                      key: Optional[ec.EllipticCurvePrivateKey] = None,
                      issuer_name: Optional[str] = None,
                      issuer_key: Optional[ec.EllipticCurvePrivateKey] = None,
                      not_before: Optional[datetime] = None, not_after: Optional[datetime] = None,
                      dns_names: Sequence[str] = (), with_ski: bool = True, with_aki: bool = True) -> Issued:
    """Build a certificate signed by ``issuer`` (or self-signed).

    ``issuer_name``/``issuer_key`` sign with a name and key that need not
    belong to an existing certificate, for cross-signed and cyclic sets.
    """
    key = key or ec.generate_private_key(ec.SECP256R1())
    subject = make_name(common_name)

    if issuer is not None:
        signer_name, signer_key = issuer.cert.subject, issuer.key
    elif issuer_name is not None:
        signer_name, signer_key = make_name(issuer_name), issuer_key
    else:
        signer_name, signer_key = subject, key

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(signer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or NOW - timedelta(days=30))
        .not_valid_after(not_after or NOW + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    if with_ski:
        builder = builder.add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
    if with_aki:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(signer_key.public_key()), critical=False)
    if dns_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in dns_names]), critical=False)

    if ca:
        usage = x509.KeyUsage(digital_signature=False, content_commitment=False, key_encipherment=False,
                              data_encipherment=False, key_agreement=False, key_cert_sign=True,
                              crl_sign=True, encipher_only=False, decipher_only=False)
    else:
        usage = x509.KeyUsage(digital_signature=True, content_commitment=False, key_encipherment=False,
                              data_encipherment=False, key_agreement=False, key_cert_sign=False,
                              crl_sign=False, encipher_only=False, decipher_only=False)
        builder = builder.add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
    builder = builder.add_extension(usage, critical=True)

    return Issued(builder.sign(signer_key, hashes.SHA256()), key)


@pytest.fixture
def now():
    return NOW


@pytest.fixture(scope='session')
def make_cert():
    return build_certificate


@pytest.fixture(scope='session')
def pki():
    """Root, intermediate and leaf with SKI/AKI links"""
    root = build_certificate('Test Root CA', ca=True,
                             not_before=NOW - timedelta(days=3650), not_after=NOW + timedelta(days=3650))
    intermediate = build_certificate('Test Intermediate CA', root, ca=True,
                                     not_before=NOW - timedelta(days=365), not_after=NOW + timedelta(days=1825))
    leaf = build_certificate('leaf.example.com', intermediate,
                             dns_names=('leaf.example.com', 'www.example.com'))
    return SimpleNamespace(root=root, intermediate=intermediate, leaf=leaf)


@pytest.fixture(scope='session')
def unrelated():
    """Three self-signed certificates with nothing in common"""
    return [build_certificate(f'Standalone {n}', with_aki=False) for n in range(3)]


# 2.5.29.99 and 2.5.29.14 (subjectKeyIdentifier) encode to the same length
SPARE_OID_DER = b'\x06\x03\x55\x1d\x63'
SKI_OID_DER = b'\x06\x03\x55\x1d\x0e'


def duplicate_ski_extension(key) -> x509.UnrecognizedExtension:
    """SKI payload under a spare OID, to be renamed to SKI after signing"""
    digest = x509.SubjectKeyIdentifier.from_public_key(key.public_key()).digest
    return x509.UnrecognizedExtension(x509.ObjectIdentifier('2.5.29.99'), b'\x04\x14' + digest)


def rename_spare_oid(der: bytes) -> bytes:
    assert der.count(SPARE_OID_DER) == 1
    return der.replace(SPARE_OID_DER, SKI_OID_DER)


@pytest.fixture(scope='session')
def duplicate_ski():
    return SimpleNamespace(extension=duplicate_ski_extension, rename=rename_spare_oid)


@pytest.fixture(scope='session')
def duplicate_ski_der():
    """DER of a certificate carrying two SubjectKeyIdentifier extensions"""
    key = ec.generate_private_key(ec.SECP256R1())
    name = make_name('duplicate.example.com')
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(NOW - timedelta(days=30))
        .not_valid_after(NOW + timedelta(days=365))
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(duplicate_ski_extension(key), critical=False)
        .sign(key, hashes.SHA256())
    )
    return rename_spare_oid(cert.public_bytes(serialization.Encoding.DER))
