"""
Exception types raised by the extraction pipeline and the handshake probe.

Decode errors are caught per block and turned into DecodeFailure values, so
they never abort a run. Probe errors abort only the probe that raised them.
"""

from typing import Optional, Sequence, Tuple


class CertsiftError(Exception):
    """Base class for all certsift errors"""


class ConfigError(CertsiftError):
    """Invalid configuration file or value"""


class DecodeError(CertsiftError):
    """A candidate armor block could not be turned into a certificate"""

    kind = 'DecodeError'

    def __init__(self, message: str, span: Optional[Tuple[int, int]] = None):
        super().__init__(message)
        self.message = message
        self.span = span


class ScanIncomplete(DecodeError):
    """Begin marker without a matching end marker"""

    kind = 'ScanIncomplete'


class MalformedBase64(DecodeError):
    kind = 'MalformedBase64'


class TruncatedOrInvalidDer(DecodeError):
    kind = 'TruncatedOrInvalidDer'


class UnsupportedCertificateVariant(DecodeError):
    kind = 'UnsupportedCertificateVariant'


class ProbeError(CertsiftError):
    """A handshake probe failed before a peer chain was received"""

    kind = 'ProbeError'

    def __init__(self, target: str, detail: str, groups: Sequence[str] = (),
                 negotiated_group: Optional[str] = None, state: Optional[str] = None):
        self.target = target
        self.detail = detail
        self.groups = tuple(groups)
        self.negotiated_group = negotiated_group
        self.state = state
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [f"{self.kind}: {self.target}: {self.detail}"]
        if self.groups:
            parts.append(f"requested groups: {':'.join(self.groups)}")
        if self.negotiated_group:
            parts.append(f"negotiated group: {self.negotiated_group}")
        return '; '.join(parts)

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'target': self.target,
            'detail': self.detail,
            'requested_groups': list(self.groups),
            'negotiated_group': self.negotiated_group,
            'state': self.state,
        }


class ConnectFailed(ProbeError):
    """Timeout, refusal or name resolution failure while connecting"""

    kind = 'ConnectFailed'


class HandshakeTimeout(ProbeError):
    """The connect-and-handshake deadline expired"""

    kind = 'Timeout'


class NoMutualGroup(ProbeError):
    """Peer and client share no key-exchange group or cipher"""

    kind = 'NoMutualGroup'


class HandshakeAborted(ProbeError):
    """Protocol alert, peer abort, or a handshake without a certificate"""

    kind = 'HandshakeAborted'
