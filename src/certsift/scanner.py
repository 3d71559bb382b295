"""
Find PEM-style armor blocks in arbitrary input.

The input may be a plain PEM file, an openssl s_client transcript, or a YAML or
JSON document with certificates embedded in block scalars or escaped strings.
The scanner only locates blocks; stripping indentation and escape sequences out
of the payload is the decoder's job.
"""

import logging
import re
from typing import Dict, Iterator, Union

from .errors import ScanIncomplete
from .models import ArmorBlock

logger = logging.getLogger(__name__)

BEGIN_MARKER = re.compile(rb'-----BEGIN ([A-Z0-9][A-Z0-9 ]{0,63}?)-----')
END_TEMPLATE = b'-----END %s-----'


class ArmorScanner:
    """Lazy, restartable iterable over the armor blocks of one input.

    Every call to ``iter()`` rescans from the start of the input, so the same
    scanner can be walked more than once. Offsets are byte offsets; ``str``
    input is encoded as UTF-8 first.
    """

    def __init__(self, data: Union[bytes, bytearray, str]):
        if isinstance(data, str):
            data = data.encode('utf-8')
        self.data = bytes(data)

    def __iter__(self) -> Iterator[ArmorBlock]:
        return self._iter_blocks()

    def _next_end(self, marker: bytes, pos: int, ends: Dict[bytes, int]) -> int:
        """Offset of the first ``marker`` at or after ``pos``, -1 if none.

        ``ends`` remembers the last hit per marker for one pass, so the rest of
        the input is searched at most once per marker.
        """
        known = ends.get(marker)
        if known is not None and (known == -1 or known >= pos):
            return known
        found = self.data.find(marker, pos)
        ends[marker] = found
        return found

    def _locate_end(self, begin: re.Match, ends: Dict[bytes, int]) -> int:
        """Offset of the end marker matching ``begin``.

        Raises ScanIncomplete when there is none, or when another begin marker
        shows up first: the block was truncated and the next one must be
        scanned on its own. The exception span ends where scanning resumes.
        """
        label = begin.group(1).decode('ascii')
        end = self._next_end(END_TEMPLATE % begin.group(1), begin.end(), ends)
        limit = len(self.data) if end == -1 else end
        interloper = BEGIN_MARKER.search(self.data, begin.end(), limit)

        if interloper is not None:
            raise ScanIncomplete(f"{label} block interrupted by another begin marker",
                                 span=(begin.start(), interloper.start()))
        if end == -1:
            raise ScanIncomplete(f"no end marker for {label} block", span=(begin.start(), len(self.data)))
        return end

    def _iter_blocks(self) -> Iterator[ArmorBlock]:
        data = self.data
        pos = 0
        ends: Dict[bytes, int] = {}
        while True:
            begin = BEGIN_MARKER.search(data, pos)
            if begin is None:
                return

            try:
                end = self._locate_end(begin, ends)
            except ScanIncomplete as e:
                logger.debug("Dropping block at offset %d: %s", begin.start(), e.message)
                pos = e.span[1]
                continue

            label = begin.group(1).decode('ascii')
            stop = end + len(END_TEMPLATE % begin.group(1))
            yield ArmorBlock(
                start=begin.start(),
                end=stop,
                label=label,
                payload=data[begin.end():end],
            )
            pos = stop


def scan_armor(data: Union[bytes, bytearray, str]) -> Iterator[ArmorBlock]:
    """Yield the armor blocks of ``data`` in order of appearance"""
    return iter(ArmorScanner(data))


def has_armor(data: Union[bytes, bytearray, str]) -> bool:
    if isinstance(data, str):
        data = data.encode('utf-8')
    return BEGIN_MARKER.search(bytes(data)) is not None
