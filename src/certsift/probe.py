"""
Retrieve a peer's certificate chain with a single TLS handshake.

The handshake is driven through ``openssl s_client``: the ``ssl`` module has no
way to choose the offered key-exchange groups, and hybrid post-quantum groups
such as X25519MLKEM768 are only reachable through OpenSSL's ``-groups`` list.
The transcript is parsed for connection metadata and the certificates it
prints go through the same scanner and decoder as any other input.
"""

import concurrent.futures
import dataclasses
import ipaddress
import logging
import re
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, Union
from urllib.parse import urlsplit

import certifi

from .decoder import decode_blocks
from .errors import ConnectFailed, HandshakeAborted, HandshakeTimeout, NoMutualGroup, ProbeError
from .models import DecodeFailure, HandshakeResult
from .scanner import ArmorScanner

logger = logging.getLogger(__name__)

DEFAULT_PORT = 443
MAX_HOSTNAME_LENGTH = 253

DEFAULT_PQC_GROUPS = ('X25519MLKEM768', 'X25519Kyber768Draft00')

PQC_GROUPS = frozenset({
    'X25519MLKEM768',
    'SecP256r1MLKEM768',
    'SecP384r1MLKEM1024',
    'MLKEM512',
    'MLKEM768',
    'MLKEM1024',
    'X25519Kyber768Draft00',
    'X25519Kyber512Draft00',
    'P256Kyber768Draft00',
})

PROTOCOL_LINE = re.compile(r'^\s*Protocol\s*:\s*(\S+)', re.M)
NEW_SESSION_LINE = re.compile(r'^New, (\S+), Cipher is (\S+)', re.M)
CIPHER_LINE = re.compile(r'^\s*Cipher\s*:\s*(\S+)', re.M)
GROUP_LINE = re.compile(r'^Negotiated TLS1\.3 group:\s*(\S+)', re.M)
TEMP_KEY_LINE = re.compile(r'^(?:Server|Peer) Temp Key:\s*([^,\n]+)(?:,\s*([^,\n]+))?', re.M)
VERIFY_LINE = re.compile(r'^\s*Verify return code:\s*(\d+)\s*\(([^)]*)\)', re.M)

CLIENT_CERT_REQUEST_MARKERS = (
    'Acceptable client certificate CA names',
    'Client Certificate Types',
    'No client certificate CA names sent',
)

# openssl rejected the group list itself, before connecting
UNKNOWN_GROUP_MARKERS = ('SSL_CONF_cmd', 'Error with command', 'Error setting group')
CONNECT_ERROR_MARKERS = (
    'Connection refused',
    'connect:errno',
    'BIO_connect',
    'BIO_lookup',
    'getaddrinfo',
    'Name or service not known',
    'nodename nor servname',
    'No route to host',
    'Network is unreachable',
)
TIMEOUT_MARKERS = ('timed out', 'Connection timed out')
NO_MUTUAL_GROUP_MARKERS = (
    'alert handshake failure',
    'no suitable key share',
    'no shared cipher',
    'no shared group',
    'no shared signature algorithms',
    'sslv3 alert handshake failure',
)


class ProbeState:
    """Handshake lifecycle states, as recorded on probe errors"""
    CONNECTING = 'Connecting'
    HANDSHAKING = 'Handshaking'
    CHAIN_RECEIVED = 'ChainReceived'
    CLOSED = 'Closed'
    CONNECT_FAILED = 'ConnectFailed'
    HANDSHAKE_FAILED = 'HandshakeFailed'


def is_pqc_group(name: Optional[str]) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return name in PQC_GROUPS or 'mlkem' in lowered or 'kyber' in lowered


def parse_target(target: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """Split a target into host and port.

    Accepts ``host``, ``host:port``, ``[v6addr]:port``, a bare IPv6 address and
    URLs such as ``https://host:8443/path``. Raises ValueError for an empty
    host, a hostname longer than 253 characters or a port outside 1..65535.
    """
    text = target.strip()
    port: Optional[int] = None

    if '://' in text:
        parsed = urlsplit(text)
        host = parsed.hostname or ''
        try:
            port = parsed.port
        except ValueError:
            raise ValueError(f"invalid port in {target!r}")
    elif text.startswith('['):
        close = text.find(']')
        if close == -1:
            raise ValueError(f"unterminated IPv6 literal in {target!r}")
        host = text[1:close]
        rest = text[close + 1:]
        if rest:
            if not rest.startswith(':'):
                raise ValueError(f"unexpected text after IPv6 literal in {target!r}")
            port = _parse_port(rest[1:], target)
    elif text.count(':') == 1:
        host, port_text = text.split(':')
        port = _parse_port(port_text, target)
    else:
        host = text

    if port is None:
        port = default_port
    if not host:
        raise ValueError(f"empty host in {target!r}")
    if len(host) > MAX_HOSTNAME_LENGTH:
        raise ValueError(f"hostname longer than {MAX_HOSTNAME_LENGTH} characters")
    if not 1 <= port <= 65535:
        raise ValueError(f"port out of range: {port}")
    return host, port


def _parse_port(text: str, target: str) -> int:
    if not text.isdigit():
        raise ValueError(f"invalid port in {target!r}")
    return int(text)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class ProbeConfig:
    """Settings for one handshake. Groups are offered in the order given."""
    groups: Tuple[str, ...] = ()
    pqc_only: bool = False
    timeout: float = 10.0
    servername: Optional[str] = None
    client_cert: Optional[str] = None
    client_key: Optional[str] = None
    verify: bool = True
    ca_file: Optional[str] = None
    openssl: str = 'openssl'

    def __post_init__(self):
        object.__setattr__(self, 'groups', tuple(self.groups))
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.pqc_only:
            classical = [group for group in self.groups if not is_pqc_group(group)]
            if classical:
                raise ValueError(f"pqc_only excludes classical groups: {', '.join(classical)}")
        if self.client_key and not self.client_cert:
            raise ValueError("client key given without a client certificate")

    @property
    def offered_groups(self) -> Tuple[str, ...]:
        if self.groups:
            return self.groups
        if self.pqc_only:
            return DEFAULT_PQC_GROUPS
        return ()

    @property
    def ca_path(self) -> str:
        return self.ca_file or certifi.where()

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'ProbeConfig':
        """Build a config from a dict, ignoring unknown keys and None values"""
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs = {key: value for key, value in values.items() if key in known and value is not None}
        groups = kwargs.get('groups')
        if isinstance(groups, str):
            kwargs['groups'] = split_groups(groups)
        return cls(**kwargs)


def split_groups(text: str) -> Tuple[str, ...]:
    """Split an openssl style ``a:b`` (or comma separated) group list"""
    return tuple(part.strip() for part in re.split(r'[:,]', text) if part.strip())


def parse_group(output: str) -> Optional[str]:
    match = GROUP_LINE.search(output)
    if match:
        return match.group(1)
    match = TEMP_KEY_LINE.search(output)
    if match:
        first = match.group(1).strip()
        second = (match.group(2) or '').strip()
        # "ECDH, prime256v1, 256 bits" names the curve second
        if first == 'ECDH' and second:
            return second
        return first
    return None


def parse_protocol(output: str) -> Tuple[Optional[str], Optional[str]]:
    """Negotiated protocol version and cipher suite"""
    protocol = cipher = None
    match = NEW_SESSION_LINE.search(output)
    if match:
        protocol, cipher = match.group(1), match.group(2)
    # "New, (NONE), Cipher is (NONE)" when the session line carries nothing
    if protocol == '(NONE)':
        protocol = None
    if cipher == '(NONE)':
        cipher = None
    if protocol is None:
        match = PROTOCOL_LINE.search(output)
        if match:
            protocol = match.group(1)
    if cipher is None:
        match = CIPHER_LINE.search(output)
        cipher = match.group(1) if match else None
    return protocol, cipher


def parse_verify(output: str) -> Tuple[Optional[int], Optional[str]]:
    match = VERIFY_LINE.search(output)
    if not match:
        return None, None
    return int(match.group(1)), match.group(2)


def classify_failure(text: str) -> Type[ProbeError]:
    """Map openssl diagnostics to a probe error type"""
    if any(marker in text for marker in UNKNOWN_GROUP_MARKERS) and 'group' in text.lower():
        return NoMutualGroup
    if any(marker in text for marker in CONNECT_ERROR_MARKERS):
        return ConnectFailed
    if any(marker in text for marker in TIMEOUT_MARKERS):
        return HandshakeTimeout
    if any(marker in text for marker in NO_MUTUAL_GROUP_MARKERS):
        return NoMutualGroup
    return HandshakeAborted


def _first_diagnostic(*texts: str) -> str:
    for text in texts:
        for line in text.splitlines():
            line = line.strip()
            if line and not line.startswith(('CONNECTED(', '---', 'depth=', 'verify ')):
                return line
    return "peer sent no certificate"


class HandshakeProbe:
    """Performs one TLS handshake per call to ``probe``"""

    def __init__(self, config: Optional[ProbeConfig] = None):
        self.config = config or ProbeConfig()

    def command(self, host: str, port: int) -> List[str]:
        config = self.config
        connect = f"[{host}]:{port}" if ':' in host else f"{host}:{port}"
        cmd = [config.openssl, 's_client', '-connect', connect, '-showcerts']

        servername = config.servername or (None if _is_ip_literal(host) else host)
        if servername:
            cmd += ['-servername', servername]
        else:
            cmd.append('-noservername')

        groups = config.offered_groups
        if groups:
            cmd += ['-groups', ':'.join(groups)]
        if config.pqc_only:
            # hybrid groups only exist in TLS 1.3
            cmd.append('-tls1_3')

        if config.client_cert:
            cmd += ['-cert', config.client_cert]
            if config.client_key:
                cmd += ['-key', config.client_key]

        if config.verify:
            cmd += ['-CAfile', config.ca_path]
            if servername:
                cmd += ['-verify_hostname', servername]
        return cmd

    def probe(self, target: str) -> HandshakeResult:
        """Connect to ``target``, collect the peer chain and close.

        Raises a ProbeError subclass on failure. There is no retry.
        """
        host, port = parse_target(target)
        config = self.config
        groups = config.offered_groups
        cmd = self.command(host, port)

        logger.info("Connecting to %s:%d (groups: %s)", host, port, ':'.join(groups) or 'openssl default')
        logger.debug("Running %s", ' '.join(cmd))

        started = time.monotonic()
        try:
            process = subprocess.run(
                cmd,
                input='',
                capture_output=True,
                text=True,
                errors='replace',
                timeout=config.timeout,
            )
        except subprocess.TimeoutExpired as e:
            partial = e.stdout or ''
            if isinstance(partial, bytes):
                partial = partial.decode('utf-8', 'replace')
            state = ProbeState.HANDSHAKING if 'CONNECTED(' in partial else ProbeState.CONNECTING
            raise HandshakeTimeout(target, f"no handshake within {config.timeout:g}s", groups,
                                   negotiated_group=parse_group(partial), state=state)
        except FileNotFoundError:
            raise ConnectFailed(target, f"openssl executable not found: {config.openssl}", groups,
                                state=ProbeState.CONNECT_FAILED)
        except OSError as e:
            raise ConnectFailed(target, f"could not run openssl: {e}", groups,
                                state=ProbeState.CONNECT_FAILED)
        elapsed = time.monotonic() - started

        return self._result(target, host, port, process.stdout or '', process.stderr or '', elapsed)

    def _result(self, target: str, host: str, port: int, output: str, errors: str,
                elapsed: float) -> HandshakeResult:
        config = self.config
        groups = config.offered_groups
        group = parse_group(output)
        connected = 'CONNECTED(' in output

        certificates = []
        failures: List[DecodeFailure] = []
        for _, decoded in decode_blocks(ArmorScanner(output)):
            if isinstance(decoded, DecodeFailure):
                failures.append(decoded)
            else:
                certificates.append(decoded)

        if not certificates:
            error_class = classify_failure(errors + '\n' + output)
            if error_class is HandshakeAborted and not connected:
                error_class = ConnectFailed
            state = ProbeState.HANDSHAKE_FAILED if connected else ProbeState.CONNECT_FAILED
            detail = _first_diagnostic(errors, output)
            logger.debug("Handshake with %s failed after %.2fs: %s", target, elapsed, detail)
            raise error_class(target, detail, groups, negotiated_group=group, state=state)

        if config.pqc_only and not is_pqc_group(group):
            raise NoMutualGroup(target, f"peer negotiated classical group {group or 'unknown'}",
                                groups, negotiated_group=group, state=ProbeState.CHAIN_RECEIVED)

        protocol, cipher = parse_protocol(output)
        verify_code, verify_message = parse_verify(output) if config.verify else (None, None)

        logger.info("Received %d certificate(s) from %s:%d over %s, group %s",
                    len(certificates), host, port, protocol or 'unknown protocol', group or 'unknown')

        return HandshakeResult(
            target=target,
            host=host,
            port=port,
            protocol=protocol,
            cipher=cipher,
            group=group,
            is_pqc=is_pqc_group(group),
            offered_groups=groups,
            certificates=tuple(certificates),
            failures=tuple(failures),
            verify_code=verify_code,
            verify_message=verify_message,
            client_cert_requested=any(marker in output for marker in CLIENT_CERT_REQUEST_MARKERS),
            elapsed=elapsed,
        )


def probe_many(targets: Iterable[str], config: Optional[ProbeConfig] = None,
               max_workers: int = 8) -> Dict[str, Union[HandshakeResult, ProbeError, ValueError]]:
    """Probe several targets concurrently.

    Returns a dict keyed by target in input order, holding either the
    handshake result or the error that ended that probe.
    """
    targets = list(dict.fromkeys(targets))
    probe = HandshakeProbe(config)
    results: Dict[str, Union[HandshakeResult, ProbeError, ValueError]] = {}

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_target = {
            executor.submit(probe.probe, target): target
            for target in targets
        }

        for future in concurrent.futures.as_completed(future_to_target):
            target = future_to_target[future]
            try:
                results[target] = future.result()
            except (ProbeError, ValueError) as e:
                logger.warning("Probe of %s failed: %s", target, e)
                results[target] = e

    return {target: results[target] for target in targets}
