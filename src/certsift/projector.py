"""
Map decoded certificates onto CertificateRecord.

Projection is pure: the same certificate and evaluation time always give the
same record. The evaluation time is passed in, captured once per run by the
caller, so every record of a run is measured against the same instant.
"""

import base64
import dataclasses
import hashlib
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .models import CertificateRecord, DecodedCertificate, Fingerprints

PEM_LINE_LENGTH = 64


def der_to_pem(der: bytes, label: str = 'CERTIFICATE') -> str:
    """Convert DER bytes to PEM armor"""
    b64 = base64.b64encode(der).decode('ascii')
    lines = [b64[i:i + PEM_LINE_LENGTH] for i in range(0, len(b64), PEM_LINE_LENGTH)]
    return f"-----BEGIN {label}-----\n" + "\n".join(lines) + f"\n-----END {label}-----\n"


def fingerprints(der: bytes) -> Fingerprints:
    return Fingerprints(
        sha256=hashlib.sha256(der).hexdigest(),
        sha1=hashlib.sha1(der).hexdigest(),
        md5=hashlib.md5(der).hexdigest(),
    )


def evaluation_instant(evaluation_time: Optional[datetime] = None) -> datetime:
    """Normalize an evaluation time to an aware UTC datetime at second precision.

    ``None`` means now. Naive datetimes are taken to be UTC. Sub-second parts
    are dropped because certificate validity times carry none.
    """
    if evaluation_time is None:
        evaluation_time = datetime.now(timezone.utc)
    elif evaluation_time.tzinfo is None:
        evaluation_time = evaluation_time.replace(tzinfo=timezone.utc)
    return evaluation_time.astimezone(timezone.utc).replace(microsecond=0)


def project(certificate: DecodedCertificate, evaluation_time: datetime) -> CertificateRecord:
    now = evaluation_instant(evaluation_time)
    return CertificateRecord(
        certificate=certificate,
        fingerprints=fingerprints(certificate.der),
        pem=der_to_pem(certificate.der),
        expires_in=int((certificate.not_after - now).total_seconds()),
        valid_in=int((now - certificate.not_before).total_seconds()),
    )


def project_all(certificates: Iterable[DecodedCertificate],
                evaluation_time: Optional[datetime] = None) -> List[CertificateRecord]:
    """Project a batch against a single evaluation time"""
    now = evaluation_instant(evaluation_time)
    return [project(certificate, now) for certificate in certificates]


def with_verdict(record: CertificateRecord, valid: bool, verify_result: Optional[str] = None) -> CertificateRecord:
    """Copy of ``record`` carrying the outcome of an explicit verification step"""
    return dataclasses.replace(record, valid=valid, verify_result=verify_result)
