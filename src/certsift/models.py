"""
Value types passed between pipeline stages.

Every type here is a frozen dataclass: a stage builds it once and hands it on,
nothing mutates it afterwards. The ``to_dict`` methods are the field layout the
renderer serializes; fields for extensions a certificate does not carry are
left out instead of being emitted as null.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class ArmorBlock:
    """A begin/end delimited payload found in the input stream"""
    start: int
    end: int
    label: str
    payload: bytes

    @property
    def span(self) -> Tuple[int, int]:
        return (self.start, self.end)


@dataclass(frozen=True)
class PublicKeyInfo:
    algorithm: str
    bits: int
    key: bytes
    curve: Optional[str] = None
    exponent: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'type': self.algorithm, 'bits': self.bits}
        if self.curve:
            data['curve'] = self.curve
        if self.exponent is not None:
            data['exponent'] = self.exponent
        data['key'] = self.key.hex()
        return data


@dataclass(frozen=True)
class SubjectAltNames:
    dns: Tuple[str, ...] = ()
    ip: Tuple[str, ...] = ()
    email: Tuple[str, ...] = ()
    uri: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.dns or self.ip or self.email or self.uri)

    def to_dict(self) -> Dict[str, List[str]]:
        data = {}
        for name in ('dns', 'ip', 'email', 'uri'):
            values = getattr(self, name)
            if values:
                data[name] = list(values)
        return data


@dataclass(frozen=True)
class KeyUsageFlags:
    critical: bool = False
    digital_signature: bool = False
    content_commitment: bool = False
    key_encipherment: bool = False
    data_encipherment: bool = False
    key_agreement: bool = False
    key_cert_sign: bool = False
    crl_sign: bool = False
    encipher_only: bool = False
    decipher_only: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class ExtendedKeyUsageFlags:
    critical: bool = False
    server_auth: bool = False
    client_auth: bool = False
    code_signing: bool = False
    email_protection: bool = False
    time_stamping: bool = False
    ocsp_signing: bool = False
    other: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.__dict__)
        data['other'] = list(self.other)
        return data


@dataclass(frozen=True)
class BasicConstraints:
    ca: bool
    path_length: Optional[int] = None
    critical: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'ca': self.ca, 'path_length': self.path_length, 'critical': self.critical}


@dataclass(frozen=True)
class DecodedCertificate:
    """Structural content of one DER certificate"""
    der: bytes
    subject: str
    issuer: str
    serial: str
    version: int
    not_before: datetime
    not_after: datetime
    public_key: PublicKeyInfo
    signature_algorithm: str
    signature: bytes
    ski: Optional[str] = None
    aki: Optional[str] = None
    sans: SubjectAltNames = field(default_factory=SubjectAltNames)
    key_usage: Optional[KeyUsageFlags] = None
    extended_key_usage: Optional[ExtendedKeyUsageFlags] = None
    basic_constraints: Optional[BasicConstraints] = None
    span: Optional[Tuple[int, int]] = None

    @property
    def is_self_issued(self) -> bool:
        return self.subject == self.issuer


@dataclass(frozen=True)
class Fingerprints:
    sha256: str
    sha1: str
    md5: str

    def to_dict(self) -> Dict[str, str]:
        return {'sha256': self.sha256, 'sha1': self.sha1, 'md5': self.md5}


@dataclass(frozen=True)
class CertificateRecord:
    """A decoded certificate plus the fields derived from it for one run"""
    certificate: DecodedCertificate
    fingerprints: Fingerprints
    pem: str
    expires_in: int
    valid_in: int
    valid: Optional[bool] = None
    verify_result: Optional[str] = None

    @property
    def subject(self) -> str:
        return self.certificate.subject

    @property
    def issuer(self) -> str:
        return self.certificate.issuer

    @property
    def ski(self) -> Optional[str]:
        return self.certificate.ski

    @property
    def aki(self) -> Optional[str]:
        return self.certificate.aki

    @property
    def not_before(self) -> datetime:
        return self.certificate.not_before

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_after

    @property
    def span(self) -> Optional[Tuple[int, int]]:
        return self.certificate.span

    @property
    def is_self_issued(self) -> bool:
        return self.certificate.is_self_issued

    def to_dict(self) -> Dict[str, Any]:
        cert = self.certificate
        subject: Dict[str, Any] = {'name': cert.subject}
        if cert.sans:
            subject['sans'] = cert.sans.to_dict()

        data: Dict[str, Any] = {
            'subject': subject,
            'issuer': {'name': cert.issuer},
            'serial': cert.serial,
            'version': cert.version,
            'not_before': cert.not_before.isoformat(),
            'not_after': cert.not_after.isoformat(),
            'expires_in': self.expires_in,
            'valid_in': self.valid_in,
            'valid': self.valid,
        }
        if self.verify_result is not None:
            data['verify_result'] = self.verify_result
        if cert.ski:
            data['ski'] = cert.ski
        if cert.aki:
            data['aki'] = cert.aki
        data['public_key'] = cert.public_key.to_dict()
        if cert.key_usage is not None:
            data['key_usage'] = cert.key_usage.to_dict()
        if cert.extended_key_usage is not None:
            data['extended_key_usage'] = cert.extended_key_usage.to_dict()
        if cert.basic_constraints is not None:
            data['basic_constraints'] = cert.basic_constraints.to_dict()
        data['signature'] = {
            'algorithm': cert.signature_algorithm,
            'value': cert.signature.hex(),
        }
        data['fingerprints'] = self.fingerprints.to_dict()
        data['pem'] = self.pem
        return data


@dataclass(frozen=True)
class Chain:
    """Certificates ordered from leaf (index 0) towards the root"""
    records: Tuple[CertificateRecord, ...]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[CertificateRecord]:
        return iter(self.records)

    def __getitem__(self, index):
        return self.records[index]

    @property
    def leaf(self) -> CertificateRecord:
        return self.records[0]

    @property
    def root(self) -> CertificateRecord:
        return self.records[-1]

    @property
    def is_complete(self) -> bool:
        """True when the chain ends in a self-issued certificate"""
        return bool(self.records) and self.records[-1].is_self_issued

    def to_list(self) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self.records]


@dataclass(frozen=True)
class DecodeFailure:
    """A block that was found but could not be decoded"""
    start: int
    end: int
    kind: str
    message: str
    label: Optional[str] = None

    @property
    def span(self) -> Tuple[int, int]:
        return (self.start, self.end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start,
            'end': self.end,
            'kind': self.kind,
            'message': self.message,
            'label': self.label,
        }


@dataclass(frozen=True)
class PemObject:
    """Summary of a non-certificate armor block (CSR or key)"""
    start: int
    end: int
    label: str
    kind: str
    details: Dict[str, Any] = field(default_factory=dict, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        data = {'label': self.label, 'kind': self.kind, 'start': self.start, 'end': self.end}
        data.update(self.details)
        return data


@dataclass(frozen=True)
class ExtractionResult:
    records: Tuple[CertificateRecord, ...]
    chains: Tuple[Chain, ...]
    failures: Tuple[DecodeFailure, ...] = ()
    objects: Tuple[PemObject, ...] = ()
    evaluation_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'evaluation_time': self.evaluation_time.isoformat() if self.evaluation_time else None,
            'chains': [chain.to_list() for chain in self.chains],
            'objects': [obj.to_dict() for obj in self.objects],
            'failures': [failure.to_dict() for failure in self.failures],
        }


@dataclass(frozen=True)
class HandshakeResult:
    """What one completed handshake told us about the peer"""
    target: str
    host: str
    port: int
    protocol: Optional[str]
    cipher: Optional[str]
    group: Optional[str]
    is_pqc: bool
    offered_groups: Tuple[str, ...]
    certificates: Tuple[DecodedCertificate, ...]
    failures: Tuple[DecodeFailure, ...] = ()
    verify_code: Optional[int] = None
    verify_message: Optional[str] = None
    client_cert_requested: bool = False
    elapsed: float = 0.0

    def connection_dict(self) -> Dict[str, Any]:
        return {
            'target': self.target,
            'host': self.host,
            'port': self.port,
            'protocol': self.protocol,
            'cipher': self.cipher,
            'group': self.group,
            'is_pqc': self.is_pqc,
            'offered_groups': list(self.offered_groups),
            'verify_code': self.verify_code,
            'verify_message': self.verify_message,
            'client_cert_requested': self.client_cert_requested,
            'elapsed_ms': round(self.elapsed * 1000, 2),
        }


@dataclass(frozen=True)
class ProbeReport:
    """A handshake result carried through projection and chain assembly"""
    handshake: HandshakeResult
    records: Tuple[CertificateRecord, ...]
    chains: Tuple[Chain, ...]
    evaluation_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'connection': self.handshake.connection_dict(),
            'evaluation_time': self.evaluation_time.isoformat() if self.evaluation_time else None,
            'chains': [chain.to_list() for chain in self.chains],
            'failures': [failure.to_dict() for failure in self.handshake.failures],
        }
