"""Tests for chain reconstruction and tree rendering."""

import pytest

from ssl_chain.chain import (
    ChainGraphBuilder,
    IssuerIndex,
    RecordSet,
    build_chain_report,
    calculate_overall_severity,
)
from ssl_chain.models import CertificateRecord, Severity, is_sha1_algorithm
from ssl_chain.trust_store import RootStore

SHA256 = "sha256WithRSAEncryption"
SHA1 = "sha1WithRSAEncryption"


def _codes(findings):
    return [f.code for f in findings]


@pytest.fixture
def simple_chain():
    """Leaf, Intermediate and a self-signed Root, in leaf-first order."""
    return RecordSet.from_fields([
        ("CN=Leaf", "CN=Intermediate", SHA256, ["DNS:leaf.example.com"]),
        ("CN=Intermediate", "CN=Root", SHA256, []),
        ("CN=Root", "CN=Root", SHA256, []),
    ])


@pytest.fixture
def root_store():
    return RootStore(["CN=Root", "CN=Other Root"])


def test_find_issuer_excludes_self(simple_chain):
    """Self-signed records are never their own issuer."""
    index = IssuerIndex(simple_chain)

    assert index.find_issuer(simple_chain.get(1)) is simple_chain.get(2)
    assert index.find_issuer(simple_chain.get(2)) is simple_chain.get(3)
    assert index.find_issuer(simple_chain.get(3)) is None


def test_find_issuer_prefers_lowest_index():
    """Renewed issuers with the same subject resolve to the first one in the bundle."""
    records = RecordSet.from_fields([
        ("CN=Leaf", "CN=CA", SHA256, []),
        ("CN=CA", "CN=Root", SHA256, []),
        ("CN=CA", "CN=Root", SHA256, []),
    ])
    index = IssuerIndex(records)

    assert index.find_issuer(records.get(1)).index == 2
    # Both CA certificates show the leaf as a child
    assert [r.index for r in index.find_issued(records.get(2))] == [1]
    assert [r.index for r in index.find_issued(records.get(3))] == [1]


def test_find_issued_fan_out_ascending():
    """Forked issuance returns every child in index order."""
    records = RecordSet.from_fields([
        ("CN=B", "CN=X", SHA256, []),
        ("CN=X", "CN=X", SHA256, []),
        ("CN=A", "CN=X", SHA256, []),
    ])
    index = IssuerIndex(records)

    assert [r.index for r in index.find_issued(records.get(2))] == [1, 3]


def test_chain_top_iff_no_issuer(root_store):
    """A record is a chain top exactly when find_issuer returns None."""
    records = RecordSet.from_fields([
        ("CN=Leaf", "CN=Intermediate", SHA256, []),
        ("CN=Intermediate", "CN=Missing", SHA256, []),
        ("CN=Solo", "CN=Solo", SHA256, []),
        ("CN=Other Leaf", "CN=Solo", SHA256, []),
        ("CN=Orphan", "CN=Nowhere", SHA256, []),
    ])
    builder = ChainGraphBuilder(records, root_store)
    tops = {r.index for r in builder.chain_tops()}

    for record in records:
        assert (record.index in tops) == (builder.index.find_issuer(record) is None)
    assert tops == {2, 3, 5}
    assert len(tops) <= len(records)


def test_end_to_end_trusted_root(simple_chain, root_store):
    """Leaf -> Intermediate -> trusted self-signed Root renders without warnings."""
    report = build_chain_report(simple_chain, root_store, source="test")

    assert len(report.chains) == 1
    chain = report.chains[0]
    assert chain.record.index == 3
    assert chain.self_signed is True
    assert chain.in_root_store is True
    assert chain.external_issuer is None
    assert _codes(chain.findings) == ["TRUST_ANCHOR_FOUND"]

    assert [(e.record.subject, e.depth) for e in chain.tree] == [
        ("CN=Intermediate", 0),
        ("CN=Leaf", 1),
    ]
    assert all(not e.findings for e in chain.tree)
    assert report.overall_severity == Severity.OK


def test_end_to_end_sha1_root_not_in_store(root_store):
    """A SHA-1 self-signed root missing from the store gets both warnings in its block."""
    records = RecordSet.from_fields([
        ("CN=Leaf", "CN=Intermediate", SHA256, []),
        ("CN=Intermediate", "CN=Root", SHA256, []),
        ("CN=Root", "CN=Root", SHA1, []),
    ])
    report = build_chain_report(records, RootStore(["CN=Other Root"]))

    chain = report.chains[0]
    assert chain.record.index == 3
    assert chain.in_root_store is False
    assert _codes(chain.findings) == ["SIGNATURE_SHA1", "TRUST_ANCHOR_NOT_FOUND"]
    assert all(f.severity == Severity.WARN for f in chain.findings)
    assert [e.record.subject for e in chain.tree] == ["CN=Intermediate", "CN=Leaf"]
    assert report.overall_severity == Severity.WARN


def test_sha1_root_in_store_is_acceptable(root_store):
    """SHA-1 on a self-signed root that is in the store is informational only."""
    records = RecordSet.from_fields([("CN=Root", "CN=Root", SHA1, [])])
    report = build_chain_report(records, root_store)

    chain = report.chains[0]
    assert _codes(chain.findings) == ["SIGNATURE_SHA1_TRUSTED_ROOT", "TRUST_ANCHOR_FOUND"]
    assert all(f.severity == Severity.OK for f in chain.findings)
    assert report.overall_severity == Severity.OK


def test_self_signed_single_node_chain(root_store):
    """A self-signed record without children is a chain of one."""
    records = RecordSet.from_fields([("CN=Lonely", "CN=Lonely", SHA256, [])])
    report = build_chain_report(records, root_store)

    assert len(report.chains) == 1
    assert report.chains[0].tree == []
    assert _codes(report.chains[0].findings) == ["TRUST_ANCHOR_NOT_FOUND"]


def test_external_issuer_lookup(root_store):
    """A chain top that is not self-signed is checked via its issuer."""
    records = RecordSet.from_fields([
        ("CN=Leaf", "CN=Intermediate", SHA256, []),
        ("CN=Intermediate", "CN=Root", SHA1, []),
    ])
    report = build_chain_report(records, root_store)

    chain = report.chains[0]
    assert chain.record.index == 2
    assert chain.external_issuer == "CN=Root"
    assert chain.trust_anchor_subject == "CN=Root"
    assert chain.in_root_store is True
    assert _codes(chain.findings) == ["SIGNATURE_SHA1", "TRUST_ANCHOR_FOUND"]


def test_forked_issuance_renders_both_children(root_store):
    """Two certificates issued by X both appear under X in index order."""
    records = RecordSet.from_fields([
        ("CN=X", "CN=Root", SHA256, []),
        ("CN=A", "CN=X", SHA256, []),
        ("CN=B", "CN=X", SHA256, []),
    ])
    report = build_chain_report(records, root_store)

    chain = report.chains[0]
    assert [(e.record.index, e.depth) for e in chain.tree] == [(2, 0), (3, 0)]


def test_two_record_cycle_terminates():
    """Mutually issuing records produce a loop diagnostic instead of hanging."""
    records = RecordSet.from_fields([
        ("CN=One", "CN=Two", SHA256, []),
        ("CN=Two", "CN=One", SHA256, []),
    ])
    builder = ChainGraphBuilder(records, RootStore())

    assert builder.chain_tops() == []
    report = builder.build()

    assert len(report.chains) == 1
    chain = report.chains[0]
    assert chain.cycle_entry is True
    assert chain.record.index == 1
    assert "ISSUER_IN_CYCLE" in _codes(chain.findings)

    loops = [f for e in chain.tree for f in e.findings if f.code == "CHAIN_LOOP"]
    assert len(loops) == 1
    assert "depth 3" in loops[0].message
    assert "(2)" in loops[0].message
    assert len(chain.tree) <= len(records) + 1
    assert report.overall_severity == Severity.FAIL


def test_cycle_below_chain_top_keeps_siblings(root_store):
    """A loop in one branch truncates that branch only."""
    records = RecordSet.from_fields([
        ("CN=T", "CN=T", SHA256, []),
        ("CN=A", "CN=T", SHA256, []),
        ("CN=B", "CN=A", SHA256, []),
        ("CN=A", "CN=B", SHA256, []),
        ("CN=L", "CN=T", SHA256, []),
    ])
    report = build_chain_report(records, root_store)

    assert len(report.chains) == 1
    chain = report.chains[0]
    assert chain.record.index == 1

    loop_entries = [e for e in chain.tree if any(f.code == "CHAIN_LOOP" for f in e.findings)]
    assert len(loop_entries) == 1
    assert loop_entries[0].depth == len(records)

    # The sibling after the looping branch is still rendered at the top level
    assert chain.tree[-1].record.index == 5
    assert chain.tree[-1].depth == 0


def test_duplicate_self_signed_roots_terminate(root_store):
    """Two self-signed roots with the same subject issue each other; rendering still ends."""
    records = RecordSet.from_fields([
        ("CN=Root", "CN=Root", SHA256, []),
        ("CN=Root", "CN=Root", SHA256, []),
        ("CN=Leaf", "CN=Root", SHA256, []),
    ])
    report = build_chain_report(records, root_store)

    assert report.chains
    assert all(chain.cycle_entry for chain in report.chains)
    assert report.chains[0].self_signed is True
    assert report.chains[0].in_root_store is True
    assert report.overall_severity == Severity.FAIL


def test_sha1_annotation_anywhere_in_tree(root_store):
    """Every SHA-1 signed certificate carries a warning next to its own entry."""
    records = RecordSet.from_fields([
        ("CN=Leaf", "CN=Intermediate", SHA1, []),
        ("CN=Intermediate", "CN=Root", "ecdsa-with-SHA1", []),
        ("CN=Root", "CN=Root", SHA256, []),
    ])
    report = build_chain_report(records, root_store)

    tree = report.chains[0].tree
    assert [_codes(e.findings) for e in tree] == [["SIGNATURE_SHA1"], ["SIGNATURE_SHA1"]]
    assert tree[0].findings[0].record_index == 2


def test_render_budget_truncates(root_store):
    """The entry budget stops rendering and reports the truncation."""
    records = RecordSet.from_fields([
        ("CN=C3", "CN=C2", SHA256, []),
        ("CN=C2", "CN=C1", SHA256, []),
        ("CN=C1", "CN=C0", SHA256, []),
        ("CN=C0", "CN=Root", SHA256, []),
    ])
    report = build_chain_report(records, root_store, max_entries=2)

    chain = report.chains[0]
    assert len(chain.tree) == 2
    assert _codes(chain.diagnostics) == ["RENDER_BUDGET_EXHAUSTED"]
    assert report.overall_severity == Severity.FAIL


def test_budget_spent_exactly_reports_unrendered_records(root_store):
    """Records left out because the budget ran out at a chain boundary are still named."""
    records = RecordSet.from_fields([
        ("CN=Root", "CN=Root", SHA256, []),
        ("CN=Leaf", "CN=Root", SHA256, []),
        ("CN=One", "CN=Two", SHA256, []),
        ("CN=Two", "CN=One", SHA256, []),
    ])
    report = build_chain_report(records, root_store, max_entries=1)

    assert [c.record.index for c in report.chains] == [1]
    assert report.chains[0].diagnostics == []
    assert _codes(report.diagnostics) == ["RENDER_BUDGET_EXHAUSTED"]
    assert "2 certificate(s) not rendered: #3, #4" in report.diagnostics[0].message
    assert report.overall_severity == Severity.FAIL


def test_long_chain_does_not_hit_recursion_limit(root_store):
    """Deep chains are walked without Python recursion."""
    count = 3000
    entries = [(f"CN=C{i}", f"CN=C{i + 1}", SHA256, []) for i in range(count)]
    records = RecordSet.from_fields(entries)

    report = build_chain_report(records, root_store)

    chain = report.chains[0]
    assert chain.record.index == count
    assert len(chain.tree) == count - 1
    assert chain.tree[-1].depth == count - 2


def test_every_record_is_reported(root_store):
    """Chain tops and cycle entries together cover all records."""
    records = RecordSet.from_fields([
        ("CN=One", "CN=Two", SHA256, []),
        ("CN=Two", "CN=One", SHA256, []),
        ("CN=Leaf", "CN=Root", SHA256, []),
        ("CN=Root", "CN=Root", SHA256, []),
    ])
    report = build_chain_report(records, root_store)

    seen = set()
    for chain in report.chains:
        seen.add(chain.record.index)
        seen.update(e.record.index for e in chain.tree)
    assert seen == {1, 2, 3, 4}
    assert [c.cycle_entry for c in report.chains] == [False, True]


def test_record_set_rejects_unordered_indices():
    """Indices must be unique and follow input order."""
    records = [
        CertificateRecord(index=2, subject="CN=A", issuer="CN=A", signature_algorithm=SHA256),
        CertificateRecord(index=1, subject="CN=B", issuer="CN=B", signature_algorithm=SHA256),
    ]
    with pytest.raises(ValueError):
        RecordSet(records)


def test_calculate_overall_severity_empty():
    report = build_chain_report(RecordSet([]), RootStore())
    assert report.chains == []
    assert calculate_overall_severity(report) == Severity.OK


@pytest.mark.parametrize(
    "algorithm,expected",
    [
        ("sha1WithRSAEncryption", True),
        ("ecdsa-with-SHA1", True),
        ("dsa-with-sha1", True),
        ("SHA-1", True),
        ("sha256WithRSAEncryption", False),
        ("ecdsa-with-SHA384", False),
        ("ed25519", False),
    ],
)
def test_is_sha1_algorithm(algorithm, expected):
    assert is_sha1_algorithm(algorithm) is expected
