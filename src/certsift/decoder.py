"""
Turn armor blocks into DecodedCertificate values.

DER parsing is done by ``cryptography.x509``. Everything here is about feeding
it clean bytes and translating whatever it rejects into one of three failure
kinds, so a single bad block never takes the rest of the input down with it.
"""

import base64
import binascii
import logging
import re
from typing import Iterable, Iterator, Optional, Tuple, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa, x448, x25519
from cryptography.x509.oid import ExtendedKeyUsageOID

from .errors import DecodeError, MalformedBase64, TruncatedOrInvalidDer, UnsupportedCertificateVariant
from .models import (
    ArmorBlock,
    BasicConstraints,
    DecodedCertificate,
    DecodeFailure,
    ExtendedKeyUsageFlags,
    KeyUsageFlags,
    PublicKeyInfo,
    SubjectAltNames,
)

logger = logging.getLogger(__name__)

CERTIFICATE_LABELS = frozenset({'CERTIFICATE', 'X509 CERTIFICATE'})

# JSON escapes \/ as a plain slash, which is a base64 character
ESCAPED_SLASH = re.compile(rb'\\+/')
# whitespace, escaped newlines/tabs/quotes (any depth of escaping), \u000a style escapes
PAYLOAD_NOISE = re.compile(rb'(?:\\+(?:[nrt"\']|u000[aAdD9])|\s)+')
BASE64_BODY = re.compile(rb'[A-Za-z0-9+/]*={0,2}')

EKU_FLAGS = {
    ExtendedKeyUsageOID.SERVER_AUTH: 'server_auth',
    ExtendedKeyUsageOID.CLIENT_AUTH: 'client_auth',
    ExtendedKeyUsageOID.CODE_SIGNING: 'code_signing',
    ExtendedKeyUsageOID.EMAIL_PROTECTION: 'email_protection',
    ExtendedKeyUsageOID.TIME_STAMPING: 'time_stamping',
    ExtendedKeyUsageOID.OCSP_SIGNING: 'ocsp_signing',
}

# cryptography raises the last two outside the ValueError hierarchy
EXTENSION_ERRORS = (ValueError, TypeError, UnsupportedAlgorithm,
                    x509.DuplicateExtension, x509.UnsupportedGeneralNameType)


def clean_payload(payload: bytes) -> bytes:
    """Strip indentation, line breaks and string escaping from an armor payload"""
    payload = ESCAPED_SLASH.sub(b'/', payload)
    return PAYLOAD_NOISE.sub(b'', payload)


def payload_bytes(block: ArmorBlock) -> bytes:
    """Base64-decode the payload of ``block``.

    Raises MalformedBase64 if anything outside the base64 alphabet survives
    noise stripping, or if the padding is wrong.
    """
    cleaned = clean_payload(block.payload)
    if not cleaned:
        raise MalformedBase64("empty payload", span=block.span)

    if not BASE64_BODY.fullmatch(cleaned):
        bad = re.search(rb'[^A-Za-z0-9+/=]', cleaned)
        if bad is not None:
            char = bad.group(0).decode('latin-1')
            message = f"invalid base64 character {char!r} at payload offset {bad.start()}"
        else:
            message = "misplaced base64 padding"
        raise MalformedBase64(message, span=block.span)

    try:
        return base64.b64decode(cleaned, validate=True)
    except binascii.Error as e:
        raise MalformedBase64(f"incorrect base64 padding: {e}", span=block.span)


def decode_block(block: ArmorBlock) -> DecodedCertificate:
    """Decode one CERTIFICATE armor block"""
    if block.label not in CERTIFICATE_LABELS:
        raise UnsupportedCertificateVariant(f"not a certificate block: {block.label}", span=block.span)
    return decode_der(payload_bytes(block), span=block.span)


def decode_blocks(blocks: Iterable[ArmorBlock]) -> Iterator[Tuple[ArmorBlock, Union[DecodedCertificate, DecodeFailure]]]:
    """Decode every block, pairing each with its certificate or its failure"""
    for block in blocks:
        try:
            yield block, decode_block(block)
        except DecodeError as e:
            logger.warning("Skipping %s block at bytes %d-%d: %s", block.label, block.start, block.end, e.message)
            yield block, failure_for(block, e)


def failure_for(block: ArmorBlock, error: DecodeError) -> DecodeFailure:
    return DecodeFailure(
        start=block.start,
        end=block.end,
        kind=error.kind,
        message=error.message,
        label=block.label,
    )


def decode_der(der: bytes, span: Optional[Tuple[int, int]] = None) -> DecodedCertificate:
    """Parse DER bytes into a DecodedCertificate"""
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise TruncatedOrInvalidDer(f"DER rejected: {e}", span=span)

    try:
        version = cert.version
    except x509.InvalidVersion as e:
        raise UnsupportedCertificateVariant(f"invalid certificate version: {e}", span=span)
    if version is not x509.Version.v3:
        raise UnsupportedCertificateVariant(f"unsupported certificate version: {version.name}", span=span)

    try:
        return _build(cert, der, span)
    except EXTENSION_ERRORS as e:
        raise UnsupportedCertificateVariant(f"unreadable certificate field: {e}", span=span)


def _build(cert: x509.Certificate, der: bytes, span: Optional[Tuple[int, int]]) -> DecodedCertificate:
    extensions = cert.extensions

    ski_ext = _extension(extensions, x509.SubjectKeyIdentifier)
    aki_ext = _extension(extensions, x509.AuthorityKeyIdentifier)
    aki = None
    if aki_ext is not None and aki_ext.value.key_identifier is not None:
        aki = aki_ext.value.key_identifier.hex()

    return DecodedCertificate(
        der=der,
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial=format(cert.serial_number, 'x'),
        version=3,
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        public_key=public_key_info(cert.public_key(), span),
        signature_algorithm=oid_name(cert.signature_algorithm_oid),
        signature=cert.signature,
        ski=ski_ext.value.digest.hex() if ski_ext is not None else None,
        aki=aki,
        sans=subject_alt_names(extensions),
        key_usage=_key_usage(extensions),
        extended_key_usage=_extended_key_usage(extensions),
        basic_constraints=_basic_constraints(extensions),
        span=span,
    )


def _extension(extensions: x509.Extensions, ext_class) -> Optional[x509.Extension]:
    try:
        return extensions.get_extension_for_class(ext_class)
    except x509.ExtensionNotFound:
        return None


def oid_name(oid: x509.ObjectIdentifier) -> str:
    # cryptography keeps its short names on the private _name attribute
    name = getattr(oid, '_name', None)
    if not name or name == 'Unknown OID':
        return oid.dotted_string
    return name


def public_key_info(key, span: Optional[Tuple[int, int]] = None) -> PublicKeyInfo:
    """Summarize a public key object; unknown key types are unsupported"""
    if isinstance(key, rsa.RSAPublicKey):
        numbers = key.public_numbers()
        modulus = numbers.n.to_bytes((numbers.n.bit_length() + 7) // 8, 'big')
        return PublicKeyInfo('rsa', key.key_size, modulus, exponent=numbers.e)

    if isinstance(key, ec.EllipticCurvePublicKey):
        point = key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint)
        return PublicKeyInfo('ec', key.curve.key_size, point, curve=key.curve.name)

    if isinstance(key, dsa.DSAPublicKey):
        y = key.public_numbers().y
        return PublicKeyInfo('dsa', key.key_size, y.to_bytes((y.bit_length() + 7) // 8, 'big'))

    raw_types = (
        (ed25519.Ed25519PublicKey, 'ed25519', 256),
        (ed448.Ed448PublicKey, 'ed448', 456),
        (x25519.X25519PublicKey, 'x25519', 253),
        (x448.X448PublicKey, 'x448', 448),
    )
    for key_type, algorithm, bits in raw_types:
        if isinstance(key, key_type):
            raw = key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
            return PublicKeyInfo(algorithm, bits, raw)

    raise UnsupportedCertificateVariant(f"unsupported public key type: {type(key).__name__}", span=span)


def subject_alt_names(extensions: x509.Extensions) -> SubjectAltNames:
    ext = _extension(extensions, x509.SubjectAlternativeName)
    if ext is None:
        return SubjectAltNames()
    names = ext.value
    return SubjectAltNames(
        dns=tuple(names.get_values_for_type(x509.DNSName)),
        ip=tuple(str(ip) for ip in names.get_values_for_type(x509.IPAddress)),
        email=tuple(names.get_values_for_type(x509.RFC822Name)),
        uri=tuple(names.get_values_for_type(x509.UniformResourceIdentifier)),
    )


def _key_usage(extensions: x509.Extensions) -> Optional[KeyUsageFlags]:
    ext = _extension(extensions, x509.KeyUsage)
    if ext is None:
        return None
    usage = ext.value
    # encipher_only/decipher_only raise unless key_agreement is set
    return KeyUsageFlags(
        critical=ext.critical,
        digital_signature=usage.digital_signature,
        content_commitment=usage.content_commitment,
        key_encipherment=usage.key_encipherment,
        data_encipherment=usage.data_encipherment,
        key_agreement=usage.key_agreement,
        key_cert_sign=usage.key_cert_sign,
        crl_sign=usage.crl_sign,
        encipher_only=usage.encipher_only if usage.key_agreement else False,
        decipher_only=usage.decipher_only if usage.key_agreement else False,
    )


def _extended_key_usage(extensions: x509.Extensions) -> Optional[ExtendedKeyUsageFlags]:
    ext = _extension(extensions, x509.ExtendedKeyUsage)
    if ext is None:
        return None
    flags = {}
    other = []
    for oid in ext.value:
        if oid in EKU_FLAGS:
            flags[EKU_FLAGS[oid]] = True
        else:
            other.append(oid_name(oid))
    return ExtendedKeyUsageFlags(critical=ext.critical, other=tuple(other), **flags)


def _basic_constraints(extensions: x509.Extensions) -> Optional[BasicConstraints]:
    ext = _extension(extensions, x509.BasicConstraints)
    if ext is None:
        return None
    return BasicConstraints(ca=ext.value.ca, path_length=ext.value.path_length, critical=ext.critical)
