import itertools
from datetime import timedelta

from cryptography.hazmat.primitives.asymmetric import ec

from certsift.chain import assemble_chains, issued_by
from certsift.decoder import decode_der
from certsift.projector import project_all


def records_for(issued_list, now):
    return project_all([decode_der(issued.der) for issued in issued_list], now)


def subjects(chain):
    return [record.subject for record in chain]


def test_shuffled_chain_is_reordered_leaf_first(pki, now):
    canonical = ['CN=leaf.example.com', 'CN=Test Intermediate CA', 'CN=Test Root CA']
    for order in itertools.permutations([pki.leaf, pki.intermediate, pki.root]):
        chains = assemble_chains(records_for(order, now))
        assert len(chains) == 1
        assert subjects(chains[0]) == canonical
        assert chains[0].is_complete


def test_unrelated_certificates_give_single_chains(unrelated, now):
    records = records_for(unrelated, now)
    chains = assemble_chains(records)

    assert len(chains) == len(unrelated)
    assert [chain.leaf for chain in chains] == records
    assert all(len(chain) == 1 for chain in chains)


def test_partial_chain_is_incomplete(pki, now):
    chains = assemble_chains(records_for([pki.intermediate, pki.leaf], now))
    assert len(chains) == 1
    assert subjects(chains[0]) == ['CN=leaf.example.com', 'CN=Test Intermediate CA']
    assert not chains[0].is_complete


def test_two_leaves_share_ancestors(pki, make_cert, now):
    other_leaf = make_cert('other.example.com', pki.intermediate)
    records = records_for([pki.root, pki.leaf, pki.intermediate, other_leaf], now)

    chains = assemble_chains(records)

    assert [chain.leaf.subject for chain in chains] == ['CN=leaf.example.com', 'CN=other.example.com']
    for chain in chains:
        assert chain.root.subject == 'CN=Test Root CA'
        assert len(chain) == 3


def test_key_identifier_mismatch_blocks_name_match(pki, make_cert, now):
    # same name as the intermediate, different key
    impostor = make_cert('Test Intermediate CA', pki.root, ca=True)
    records = records_for([impostor, pki.leaf], now)

    assert not issued_by(records[1], records[0])
    chains = assemble_chains(records)
    assert [len(chain) for chain in chains] == [1, 1]


def test_name_match_used_when_key_identifiers_absent(make_cert, now):
    root = make_cert('Plain Root', ca=True, with_aki=False, with_ski=False)
    leaf = make_cert('plain.example.com', root, with_aki=False)

    chains = assemble_chains(records_for([root, leaf], now))

    assert len(chains) == 1
    assert subjects(chains[0]) == ['CN=plain.example.com', 'CN=Plain Root']


def test_fan_out_prefers_containing_validity_window(pki, make_cert, now):
    # two certificates for the same CA key, the earlier one expiring too soon
    ca_key = ec.generate_private_key(ec.SECP256R1())
    short = make_cert('Renewed CA', pki.root, ca=True, key=ca_key,
                      not_before=now - timedelta(days=10), not_after=now + timedelta(days=20))
    long = make_cert('Renewed CA', pki.root, ca=True, key=ca_key,
                     not_before=now - timedelta(days=100), not_after=now + timedelta(days=1000))
    leaf = make_cert('renewed.example.com', short,
                     not_before=now - timedelta(days=5), not_after=now + timedelta(days=90))

    records = records_for([leaf, short, long], now)
    chains = assemble_chains(records)

    leaf_chain = next(chain for chain in chains if chain.leaf.subject == 'CN=renewed.example.com')
    assert leaf_chain[1] is records[2]


def test_fan_out_falls_back_to_scan_order(pki, make_cert, now):
    ca_key = ec.generate_private_key(ec.SECP256R1())
    first = make_cert('Twin CA', pki.root, ca=True, key=ca_key)
    second = make_cert('Twin CA', pki.root, ca=True, key=ca_key)
    leaf = make_cert('twin.example.com', first)

    records = records_for([leaf, second, first], now)
    chains = assemble_chains(records)

    assert chains[0].leaf is records[0]
    assert chains[0][1] is records[1]
    assert len(chains) == 2


def test_issuer_cycle_is_broken(now, make_cert):
    key_a = ec.generate_private_key(ec.SECP256R1())
    key_b = ec.generate_private_key(ec.SECP256R1())
    a = make_cert('Cycle A', ca=True, key=key_a, issuer_name='Cycle B', issuer_key=key_b)
    b = make_cert('Cycle B', ca=True, key=key_b, issuer_name='Cycle A', issuer_key=key_a)

    records = records_for([a, b], now)
    chains = assemble_chains(records)

    # the link back to the first-scanned record is dropped
    assert len(chains) == 1
    assert subjects(chains[0]) == ['CN=Cycle A', 'CN=Cycle B']


def test_empty_input():
    assert assemble_chains([]) == []
