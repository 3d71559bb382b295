"""
Entry points tying the stages together: extraction from bytes already in hand,
and retrieval of a live chain through a handshake.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from .chain import assemble_chains
from .decoder import CERTIFICATE_LABELS, decode_block, decode_der, failure_for
from .errors import DecodeError, ProbeError
from .models import (
    DecodedCertificate,
    DecodeFailure,
    ExtractionResult,
    HandshakeResult,
    PemObject,
    ProbeReport,
)
from .objects import summarize_block
from .probe import HandshakeProbe, ProbeConfig, probe_many
from .projector import evaluation_instant, project_all, with_verdict
from .scanner import ArmorScanner

logger = logging.getLogger(__name__)

# tag byte of an ASN.1 SEQUENCE, which every DER certificate starts with
DER_SEQUENCE = 0x30


def extract(data: Union[bytes, bytearray, str], evaluation_time: Optional[datetime] = None) -> ExtractionResult:
    """Find, decode and chain every certificate in ``data``.

    Blocks that fail to decode are reported in ``failures`` and never stop
    the run. Input with no armor at all is tried as one DER certificate.
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    data = bytes(data)
    now = evaluation_instant(evaluation_time)

    certificates: List[DecodedCertificate] = []
    failures: List[DecodeFailure] = []
    objects: List[PemObject] = []
    blocks = 0

    for block in ArmorScanner(data):
        blocks += 1
        try:
            if block.label in CERTIFICATE_LABELS:
                certificates.append(decode_block(block))
            else:
                objects.append(summarize_block(block))
        except DecodeError as e:
            logger.warning("Skipping %s block at bytes %d-%d: %s", block.label, block.start, block.end, e.message)
            failures.append(failure_for(block, e))

    if not blocks and data and data[0] == DER_SEQUENCE:
        logger.debug("No armor found, trying input as DER")
        try:
            certificates.append(decode_der(data, span=(0, len(data))))
        except DecodeError as e:
            logger.warning("Input is not a DER certificate: %s", e.message)
            failures.append(DecodeFailure(start=0, end=len(data), kind=e.kind, message=e.message))

    records = project_all(certificates, now)
    chains = assemble_chains(records)
    logger.info("Extracted %d certificate(s) in %d chain(s), %d failure(s)",
                len(records), len(chains), len(failures))

    return ExtractionResult(
        records=tuple(records),
        chains=tuple(chains),
        failures=tuple(failures),
        objects=tuple(objects),
        evaluation_time=now,
    )


def report_for(handshake: HandshakeResult, evaluation_time: Optional[datetime] = None) -> ProbeReport:
    """Project and chain the certificates of a completed handshake.

    When the probe ran verification, its verdict is attached to the leaf.
    """
    now = evaluation_instant(evaluation_time)
    records = project_all(handshake.certificates, now)
    if records and handshake.verify_code is not None:
        records[0] = with_verdict(records[0], handshake.verify_code == 0, handshake.verify_message)

    return ProbeReport(
        handshake=handshake,
        records=tuple(records),
        chains=tuple(assemble_chains(records)),
        evaluation_time=now,
    )


def probe_chain(target: str, config: Optional[ProbeConfig] = None,
                evaluation_time: Optional[datetime] = None) -> ProbeReport:
    """Handshake with ``target`` and return its chain. ProbeError propagates."""
    handshake = HandshakeProbe(config).probe(target)
    return report_for(handshake, evaluation_time)


def probe_chains(targets: Iterable[str], config: Optional[ProbeConfig] = None,
                 evaluation_time: Optional[datetime] = None,
                 max_workers: int = 8) -> Dict[str, Union[ProbeReport, ProbeError, ValueError]]:
    """Concurrent ``probe_chain`` over several targets, all measured at one instant"""
    now = evaluation_instant(evaluation_time)
    reports: Dict[str, Union[ProbeReport, ProbeError, ValueError]] = {}
    for target, outcome in probe_many(targets, config, max_workers).items():
        if isinstance(outcome, HandshakeResult):
            reports[target] = report_for(outcome, now)
        else:
            reports[target] = outcome
    return reports
