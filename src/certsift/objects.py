"""
Summaries of the non-certificate PEM objects found alongside certificates:
certificate signing requests, public keys and private keys.

Only public material is reported. For a private key that means its type, size
and public half; private numbers never leave this module.
"""

from typing import Any, Dict

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from .decoder import oid_name, payload_bytes, public_key_info, subject_alt_names
from .errors import TruncatedOrInvalidDer, UnsupportedCertificateVariant
from .models import ArmorBlock, PemObject

CSR_LABELS = frozenset({'CERTIFICATE REQUEST', 'NEW CERTIFICATE REQUEST'})
PUBLIC_KEY_LABELS = frozenset({'PUBLIC KEY', 'RSA PUBLIC KEY'})
PRIVATE_KEY_LABELS = frozenset({'PRIVATE KEY', 'RSA PRIVATE KEY', 'EC PRIVATE KEY'})
OBJECT_LABELS = CSR_LABELS | PUBLIC_KEY_LABELS | PRIVATE_KEY_LABELS


def summarize_block(block: ArmorBlock) -> PemObject:
    """Decode a CSR or key block into a PemObject.

    Raises UnsupportedCertificateVariant for unknown labels and encrypted
    keys, and the usual decode errors for bad payloads.
    """
    if block.label == 'ENCRYPTED PRIVATE KEY' or b'Proc-Type:' in block.payload:
        raise UnsupportedCertificateVariant("encrypted private key", span=block.span)
    if block.label not in OBJECT_LABELS:
        raise UnsupportedCertificateVariant(f"unsupported block label: {block.label}", span=block.span)

    der = payload_bytes(block)
    try:
        if block.label in CSR_LABELS:
            kind, details = 'csr', _csr_details(block, der)
        elif block.label in PUBLIC_KEY_LABELS:
            kind = 'public_key'
            details = {'public_key': public_key_info(serialization.load_der_public_key(der), block.span).to_dict()}
        else:
            kind = 'private_key'
            key = serialization.load_der_private_key(der, password=None)
            details = {'public_key': public_key_info(key.public_key(), block.span).to_dict()}
    except ValueError as e:
        raise TruncatedOrInvalidDer(f"{block.label} rejected: {e}", span=block.span)
    except (TypeError, UnsupportedAlgorithm, x509.DuplicateExtension, x509.UnsupportedGeneralNameType) as e:
        raise UnsupportedCertificateVariant(f"unsupported {block.label}: {e}", span=block.span)

    return PemObject(start=block.start, end=block.end, label=block.label, kind=kind, details=details)


def _csr_details(block: ArmorBlock, der: bytes) -> Dict[str, Any]:
    csr = x509.load_der_x509_csr(der)
    details: Dict[str, Any] = {
        'subject': csr.subject.rfc4514_string(),
        'signature_algorithm': oid_name(csr.signature_algorithm_oid),
        'signature_valid': csr.is_signature_valid,
        'public_key': public_key_info(csr.public_key(), block.span).to_dict(),
    }
    sans = subject_alt_names(csr.extensions)
    if sans:
        details['sans'] = sans.to_dict()
    return details
