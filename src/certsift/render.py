"""
Output formatting for extraction results and probe reports.

The format and whether to colour are explicit arguments; nothing here looks at
the terminal.
"""

import json
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union

from colorama import Fore, Style

from .errors import ProbeError
from .models import CertificateRecord, Chain, DecodeFailure, ExtractionResult, HandshakeResult, PemObject, ProbeReport

FORMATS = ('text', 'json', 'pem')


def paint(text: str, colour: str, enabled: bool = True) -> str:
    if not enabled:
        return text
    return f"{colour}{text}{Style.RESET_ALL}"


def format_duration(seconds: int) -> str:
    """Rough human form of a second count: 45s, 12m, 5h, 30d"""
    seconds = abs(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def _validity_line(record: CertificateRecord, color: bool) -> str:
    if record.valid_in < 0:
        status = paint(f"not yet valid (starts in {format_duration(record.valid_in)})", Fore.YELLOW, color)
    elif record.expires_in < 0:
        status = paint(f"expired {format_duration(record.expires_in)} ago", Fore.RED, color)
    else:
        status = paint(f"expires in {format_duration(record.expires_in)}", Fore.GREEN, color)
    return f"   Validity: {record.not_before.isoformat()} to {record.not_after.isoformat()} ({status})"


def _record_lines(position: int, record: CertificateRecord, color: bool) -> List[str]:
    cert = record.certificate
    key = cert.public_key
    key_text = f"{key.algorithm.upper()} {key.bits} bits" + (f" ({key.curve})" if key.curve else '')

    lines = [
        paint(f"[{position}] {record.subject}", Fore.CYAN, color),
        f"   Issuer: {record.issuer}",
        f"   Serial: {cert.serial}",
        _validity_line(record, color),
        f"   Key: {key_text}",
        f"   Signature: {cert.signature_algorithm}",
    ]
    if cert.sans:
        names = [name for values in cert.sans.to_dict().values() for name in values]
        lines.append(f"   SANs: {', '.join(names)}")
    if cert.basic_constraints is not None and cert.basic_constraints.ca:
        path = cert.basic_constraints.path_length
        lines.append("   CA: yes" + (f" (path length {path})" if path is not None else ''))
    if record.valid is not None:
        verdict = paint('valid', Fore.GREEN, color) if record.valid else paint('invalid', Fore.RED, color)
        detail = f" ({record.verify_result})" if record.verify_result else ''
        lines.append(f"   Verification: {verdict}{detail}")
    lines.append(f"   SHA-256: {record.fingerprints.sha256}")
    return lines


def _chain_lines(chains: Sequence[Chain], color: bool) -> List[str]:
    lines = []
    for number, chain in enumerate(chains, 1):
        state = 'complete' if chain.is_complete else 'incomplete'
        lines.append(paint(f"--- Chain {number} ({len(chain)} certificates, {state}) ---", Fore.YELLOW, color))
        for position, record in enumerate(chain):
            lines.extend(_record_lines(position, record, color))
        lines.append('')
    return lines


def _failure_lines(failures: Sequence[DecodeFailure], color: bool) -> List[str]:
    if not failures:
        return []
    lines = [paint(f"--- Failures ({len(failures)}) ---", Fore.RED, color)]
    for failure in failures:
        label = failure.label or 'DER'
        lines.append(paint(f"[!] {label} at bytes {failure.start}-{failure.end}: {failure.kind}: {failure.message}",
                           Fore.RED, color))
    lines.append('')
    return lines


def _object_lines(objects: Sequence[PemObject], color: bool) -> List[str]:
    if not objects:
        return []
    lines = [paint(f"--- Other objects ({len(objects)}) ---", Fore.YELLOW, color)]
    for obj in objects:
        lines.append(paint(f"[*] {obj.label} at bytes {obj.start}-{obj.end}", Fore.CYAN, color))
        if 'subject' in obj.details:
            lines.append(f"   Subject: {obj.details['subject']}")
        key = obj.details.get('public_key')
        if key:
            curve = f" ({key['curve']})" if key.get('curve') else ''
            lines.append(f"   Key: {key['type'].upper()} {key['bits']} bits{curve}")
    lines.append('')
    return lines


def _connection_lines(handshake: HandshakeResult, color: bool) -> List[str]:
    group = handshake.group or 'unknown'
    if handshake.is_pqc:
        group = paint(f"{group} (post-quantum hybrid)", Fore.GREEN, color)
    lines = [
        paint("=== TLS Handshake ===", Fore.CYAN, color),
        f"Target: {handshake.host}:{handshake.port}",
        f"Protocol: {handshake.protocol or 'unknown'}",
        f"Cipher: {handshake.cipher or 'unknown'}",
        f"Group: {group}",
        f"Elapsed: {handshake.elapsed * 1000:.0f} ms",
    ]
    if handshake.verify_code is not None:
        lines.append(f"Verify: {handshake.verify_code} ({handshake.verify_message})")
    if handshake.client_cert_requested:
        lines.append(paint("Server requested a client certificate", Fore.YELLOW, color))
    lines.append('')
    return lines


def render_pem(chains: Iterable[Chain]) -> str:
    """All certificates as PEM, chain order, each certificate once"""
    seen = set()
    blocks = []
    for chain in chains:
        for record in chain:
            if record.fingerprints.sha256 in seen:
                continue
            seen.add(record.fingerprints.sha256)
            blocks.append(record.pem)
    return ''.join(blocks)


def render_json(data) -> str:
    return json.dumps(data, indent=2)


def render_extraction(result: ExtractionResult, fmt: str = 'text', color: bool = True) -> str:
    if fmt == 'json':
        return render_json(result.to_dict())
    if fmt == 'pem':
        return render_pem(result.chains)
    lines = _chain_lines(result.chains, color)
    lines += _object_lines(result.objects, color)
    lines += _failure_lines(result.failures, color)
    if not result.records and not result.objects:
        lines.append(paint("[!] No certificates found", Fore.RED, color))
    return '\n'.join(lines).rstrip('\n') + '\n'


def _report_chains(report: ProbeReport, chain: bool) -> Sequence[Chain]:
    if chain:
        return report.chains
    return (Chain((report.records[0],)),) if report.records else ()


def _report_dict(report: ProbeReport, chain: bool) -> Dict[str, Any]:
    data = report.to_dict()
    data['chains'] = [c.to_list() for c in _report_chains(report, chain)]
    return data


def _error_dict(target: str, error: Exception) -> Dict[str, Any]:
    if isinstance(error, ProbeError):
        return error.to_dict()
    return {'kind': 'InvalidTarget', 'target': target, 'detail': str(error)}


def render_report(report: ProbeReport, fmt: str = 'text', color: bool = True,
                  chain: bool = True) -> str:
    """Render one probe report; with ``chain`` False only the leaf is shown"""
    if fmt == 'json':
        return render_json(_report_dict(report, chain))
    chains = _report_chains(report, chain)
    if fmt == 'pem':
        return render_pem(chains)
    lines = _connection_lines(report.handshake, color)
    lines += _chain_lines(chains, color)
    lines += _failure_lines(report.handshake.failures, color)
    return '\n'.join(lines).rstrip('\n') + '\n'


def render_probe_error(target: str, error: Exception, fmt: str = 'text', color: bool = True) -> str:
    if fmt == 'json':
        return render_json({'error': _error_dict(target, error)})
    return paint(f"[!] {error}", Fore.RED, color) + '\n'


def render_outcomes(outcomes: Mapping[str, Union[ProbeReport, Exception]], fmt: str = 'text',
                    color: bool = True, chain: bool = True) -> str:
    """Render the results of probing several targets.

    JSON output is one object keyed by target. PEM output leaves failed
    targets out, they are only logged.
    """
    if fmt == 'json':
        data = {}
        for target, outcome in outcomes.items():
            if isinstance(outcome, ProbeReport):
                data[target] = _report_dict(outcome, chain)
            else:
                data[target] = {'error': _error_dict(target, outcome)}
        return render_json(data)

    parts = []
    for target, outcome in outcomes.items():
        if isinstance(outcome, ProbeReport):
            parts.append(render_report(outcome, fmt, color, chain))
        elif fmt == 'text':
            parts.append(render_probe_error(target, outcome, fmt, color))
    return ('\n' if fmt == 'text' else '').join(parts)
