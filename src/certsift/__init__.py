"""
certsift - locate, decode and chain X.509 certificates.

Usage:
    from certsift import extract
    result = extract(open('bundle.yaml', 'rb').read())
    for chain in result.chains:
        print([record.subject for record in chain])
"""

from .chain import assemble_chains
from .errors import (
    CertsiftError,
    ConfigError,
    ConnectFailed,
    DecodeError,
    HandshakeAborted,
    HandshakeTimeout,
    MalformedBase64,
    NoMutualGroup,
    ProbeError,
    ScanIncomplete,
    TruncatedOrInvalidDer,
    UnsupportedCertificateVariant,
)
from .models import (
    ArmorBlock,
    CertificateRecord,
    Chain,
    DecodedCertificate,
    DecodeFailure,
    ExtractionResult,
    HandshakeResult,
    PemObject,
    ProbeReport,
)
from .pipeline import extract, probe_chain, probe_chains
from .probe import DEFAULT_PQC_GROUPS, HandshakeProbe, ProbeConfig, parse_target, probe_many
from .scanner import ArmorScanner, scan_armor

__version__ = '0.1.0'

__all__ = [
    'ArmorBlock',
    'ArmorScanner',
    'CertificateRecord',
    'CertsiftError',
    'Chain',
    'ConfigError',
    'ConnectFailed',
    'DEFAULT_PQC_GROUPS',
    'DecodeError',
    'DecodeFailure',
    'DecodedCertificate',
    'ExtractionResult',
    'HandshakeAborted',
    'HandshakeProbe',
    'HandshakeResult',
    'HandshakeTimeout',
    'MalformedBase64',
    'NoMutualGroup',
    'PemObject',
    'ProbeConfig',
    'ProbeError',
    'ProbeReport',
    'ScanIncomplete',
    'TruncatedOrInvalidDer',
    'UnsupportedCertificateVariant',
    'assemble_chains',
    'extract',
    'parse_target',
    'probe_chain',
    'probe_chains',
    'probe_many',
    'scan_armor',
]
