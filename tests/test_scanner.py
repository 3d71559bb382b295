import json
import textwrap
import time

from certsift.scanner import ArmorScanner, has_armor, scan_armor


def test_single_pem_block_offsets(pki):
    data = pki.leaf.pem.encode()
    blocks = list(scan_armor(data))

    assert len(blocks) == 1
    block = blocks[0]
    assert block.label == 'CERTIFICATE'
    assert block.start == 0
    assert data[block.start:block.end] == data.rstrip(b'\n')
    assert block.span == (block.start, block.end)


def test_blocks_found_in_yaml_with_indentation(pki):
    certs = [pki.leaf, pki.intermediate, pki.root]
    lines = ["chain:"]
    for n, issued in enumerate(certs):
        lines.append(f"  - name: cert{n}")
        lines.append("    pem: |")
        lines.append(textwrap.indent(issued.pem, '      ').rstrip('\n'))
        lines.append("    note: '-----not a marker-----'")
    document = '\n'.join(lines) + '\n'

    blocks = list(scan_armor(document))

    assert len(blocks) == 3
    starts = [block.start for block in blocks]
    assert starts == sorted(starts)


def test_blocks_found_in_escaped_json(pki):
    document = json.dumps({
        'certificates': [pki.leaf.pem, pki.intermediate.pem],
        'trailer': 'done',
    }).replace('/', '\\/')

    blocks = list(scan_armor(document))

    assert len(blocks) == 2
    for block in blocks:
        text = document.encode()[block.start:block.end]
        assert text.startswith(b'-----BEGIN CERTIFICATE-----')
        assert text.endswith(b'-----END CERTIFICATE-----')


def test_trailing_punctuation_not_in_block(pki):
    document = '{"pem": "' + pki.leaf.pem.replace('\n', '\\n') + '"},'
    block = next(scan_armor(document))
    assert document.encode()[block.end:] == b'\\n"},'


def test_missing_end_marker_is_dropped_and_scan_continues(pki):
    truncated = pki.root.pem.split('-----END')[0]
    data = (truncated + '\nsome text\n' + pki.leaf.pem).encode()

    blocks = list(scan_armor(data))

    assert len(blocks) == 1
    assert blocks[0].start == data.index(pki.leaf.pem.encode())


def test_block_interrupted_by_begin_marker(pki):
    head = pki.intermediate.pem.splitlines()[:3]
    data = ('\n'.join(head) + '\n' + pki.leaf.pem + pki.root.pem).encode()

    blocks = list(scan_armor(data))

    assert len(blocks) == 2
    assert blocks[0].start == data.index(pki.leaf.pem.encode())
    assert blocks[1].start == data.index(pki.root.pem.encode())


def test_end_marker_only_is_ignored():
    assert list(scan_armor(b'-----END CERTIFICATE-----\n')) == []


def test_other_labels_are_reported():
    data = b'-----BEGIN PUBLIC KEY-----\nAAAA\n-----END PUBLIC KEY-----\n'
    blocks = list(scan_armor(data))
    assert [block.label for block in blocks] == ['PUBLIC KEY']
    assert blocks[0].payload == b'\nAAAA\n'


def test_scanner_is_restartable(pki):
    scanner = ArmorScanner(pki.leaf.pem + pki.root.pem)
    first = list(scanner)
    second = list(scanner)
    assert len(first) == 2
    assert first == second


def test_str_offsets_are_utf8_byte_offsets(pki):
    prefix = 'héllo wörld\n'
    block = next(scan_armor(prefix + pki.leaf.pem))
    assert block.start == len(prefix.encode('utf-8'))


def test_has_armor(pki):
    assert has_armor(pki.leaf.pem)
    assert not has_armor(b'\x30\x82\x01\x00')


def test_unterminated_begin_markers_scan_in_linear_time(pki):
    noise = b'-----BEGIN CERTIFICATE-----\n' * 40000
    data = noise + pki.leaf.pem.encode()

    started = time.monotonic()
    blocks = list(scan_armor(data))
    elapsed = time.monotonic() - started

    assert [block.start for block in blocks] == [len(noise)]
    assert elapsed < 2.0


def test_missing_end_marker_for_one_label_only(pki):
    data = (b'-----BEGIN PUBLIC KEY-----\nAAAA\n' + pki.leaf.pem.encode()
            + b'-----BEGIN PUBLIC KEY-----\nAAAA\n' + pki.root.pem.encode())

    blocks = list(scan_armor(data))

    assert [block.label for block in blocks] == ['CERTIFICATE', 'CERTIFICATE']
    assert blocks[1].start == data.index(pki.root.pem.encode())
