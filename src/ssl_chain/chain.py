"""Certificate chain reconstruction and tree rendering."""

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from ssl_chain.models import (
    CertificateRecord,
    ChainFinding,
    ChainReport,
    ChainTop,
    Severity,
    TreeEntry,
)
from ssl_chain.trust_store import RootStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10000

_SEVERITY_ORDER = {Severity.OK: 0, Severity.WARN: 1, Severity.FAIL: 2}


class RecordSet:
    """Ordered, read-only collection of certificate records addressed by 1-based index."""

    def __init__(self, records: Iterable[CertificateRecord]):
        self._records: Tuple[CertificateRecord, ...] = tuple(records)
        previous = 0
        for record in self._records:
            if record.index <= previous:
                raise ValueError(
                    f"Record indices must be unique and ascending (got {record.index} after {previous})"
                )
            previous = record.index
        self._by_index: Dict[int, CertificateRecord] = {r.index: r for r in self._records}

    @classmethod
    def from_fields(cls, entries: Iterable[Tuple[str, str, str, Iterable[str]]]) -> "RecordSet":
        """Build a record set from (subject, issuer, signature_algorithm, sans) tuples."""
        return cls(
            CertificateRecord(
                index=position,
                subject=subject,
                issuer=issuer,
                signature_algorithm=algorithm,
                san_list=tuple(sans),
            )
            for position, (subject, issuer, algorithm, sans) in enumerate(entries, 1)
        )

    def get(self, index: int) -> CertificateRecord:
        return self._by_index[index]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[CertificateRecord]:
        return iter(self._records)


class IssuerIndex:
    """Subject and issuer lookup maps over an immutable record set."""

    def __init__(self, records: RecordSet):
        self._by_subject: Dict[str, List[CertificateRecord]] = {}
        self._by_issuer: Dict[str, List[CertificateRecord]] = {}
        # Records arrive in ascending index order, so every bucket is sorted
        for record in records:
            self._by_subject.setdefault(record.subject, []).append(record)
            self._by_issuer.setdefault(record.issuer, []).append(record)

    def find_issuer(self, record: CertificateRecord) -> Optional[CertificateRecord]:
        """
        Return the lowest-indexed other record whose subject equals this record's issuer.

        The record itself is never its own issuer, so self-signed certificates
        only get an issuer when another record carries the same subject.
        """
        candidates = self._by_subject.get(record.issuer, [])
        for candidate in candidates:
            if candidate.index != record.index:
                if len(candidates) > 1:
                    logger.debug(
                        f"Multiple certificates with subject '{record.issuer}'; "
                        f"using #{candidate.index} as issuer of #{record.index}"
                    )
                return candidate
        return None

    def find_issued(self, record: CertificateRecord) -> List[CertificateRecord]:
        """Return all other records issued by this record's subject, in ascending index order."""
        return [r for r in self._by_issuer.get(record.subject, []) if r.index != record.index]


class _RenderBudget:
    """Counts tree entries across one report."""

    def __init__(self, max_entries: int):
        self.max_entries = max_entries
        self.used = 0

    @property
    def exhausted(self) -> bool:
        return self.used >= self.max_entries


def _signature_findings(record: CertificateRecord) -> List[ChainFinding]:
    if not record.is_sha1_signed:
        return []
    return [
        ChainFinding(
            code="SIGNATURE_SHA1",
            severity=Severity.WARN,
            message=f"Signed with SHA-1 ({record.signature_algorithm})",
            record_index=record.index,
        )
    ]


class ChainGraphBuilder:
    """
    Reconstructs the issuance forest of a record set and annotates it.

    Chain tops are records without an issuer inside the set. Each one is
    reported with its trust status, followed by its descendants in
    depth-first pre-order. A branch is abandoned as soon as its depth exceeds
    the number of records, which bounds traversal even when subjects and
    issuers form cycles.
    """

    def __init__(
        self,
        records: RecordSet,
        root_store: RootStore,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.records = records
        self.root_store = root_store
        self.index = IssuerIndex(records)
        self.max_entries = max_entries

    def chain_tops(self) -> List[CertificateRecord]:
        """Records for which no issuer exists in the set, in ascending index order."""
        return [record for record in self.records if self.index.find_issuer(record) is None]

    def build(self, source: str = "") -> ChainReport:
        """Render every chain top, then any records only reachable through a cycle."""
        visited: Set[int] = set()
        budget = _RenderBudget(self.max_entries)
        report = ChainReport(
            source=source,
            record_count=len(self.records),
            root_store_size=len(self.root_store),
        )

        for top in self.chain_tops():
            report.chains.append(self._build_chain(top, visited, budget, cycle_entry=False))

        for record in self.records:
            if record.index in visited:
                continue
            if budget.exhausted:
                break
            logger.warning(
                f"Certificate #{record.index} '{record.subject}' is not reachable from any chain top; "
                f"rendering it as a cycle entry"
            )
            report.chains.append(self._build_chain(record, visited, budget, cycle_entry=True))

        skipped = [record.index for record in self.records if record.index not in visited]
        if skipped:
            logger.warning(f"Render budget exhausted; {len(skipped)} certificate(s) not rendered")
            report.diagnostics.append(
                ChainFinding(
                    code="RENDER_BUDGET_EXHAUSTED",
                    severity=Severity.FAIL,
                    message=(
                        f"Render budget of {budget.max_entries} tree entries exhausted; "
                        f"{len(skipped)} certificate(s) not rendered: "
                        + ", ".join(f"#{index}" for index in skipped)
                    ),
                )
            )

        report.overall_severity = calculate_overall_severity(report)
        logger.debug(
            f"Built {len(report.chains)} chain(s) from {report.record_count} certificate(s), "
            f"severity {report.overall_severity.value}"
        )
        return report

    def _build_chain(
        self,
        top: CertificateRecord,
        visited: Set[int],
        budget: _RenderBudget,
        cycle_entry: bool,
    ) -> ChainTop:
        visited.add(top.index)
        chain = self._describe_top(top, cycle_entry)
        self._render_tree(chain, visited, budget)
        return chain

    def _describe_top(self, top: CertificateRecord, cycle_entry: bool) -> ChainTop:
        """Trust status and signature findings for a chain top."""
        if cycle_entry:
            issuer = self.index.find_issuer(top)
            cycle_finding = ChainFinding(
                code="ISSUER_IN_CYCLE",
                severity=Severity.WARN,
                message=(
                    f"Issuer '{top.issuer}' is certificate #{issuer.index if issuer else '?'} "
                    f"of this set, but no chain top leads here"
                ),
                record_index=top.index,
            )
            if not top.is_self_signed:
                chain = ChainTop(
                    record=top,
                    self_signed=False,
                    trust_anchor_subject=top.issuer,
                    in_root_store=False,
                    cycle_entry=True,
                    findings=[cycle_finding],
                )
                chain.findings.extend(_signature_findings(top))
                return chain

        lookup_subject = top.subject if top.is_self_signed else top.issuer
        found = self.root_store.is_trust_anchor(lookup_subject)
        chain = ChainTop(
            record=top,
            self_signed=top.is_self_signed,
            trust_anchor_subject=lookup_subject,
            in_root_store=found,
            cycle_entry=cycle_entry,
        )
        if cycle_entry:
            chain.findings.append(cycle_finding)

        if top.is_self_signed:
            if found and top.is_sha1_signed:
                # Root bundles still ship SHA-1 self-signed roots
                chain.findings.append(
                    ChainFinding(
                        code="SIGNATURE_SHA1_TRUSTED_ROOT",
                        severity=Severity.OK,
                        message=f"Self-signed with SHA-1 ({top.signature_algorithm}), acceptable for a root in the root store",
                        record_index=top.index,
                    )
                )
            elif top.is_sha1_signed:
                chain.findings.extend(_signature_findings(top))
            label = "Self-signed certificate"
        else:
            chain.findings.extend(_signature_findings(top))
            label = f"Issuer '{lookup_subject}'"

        if found:
            chain.findings.append(
                ChainFinding(
                    code="TRUST_ANCHOR_FOUND",
                    severity=Severity.OK,
                    message=f"{label} found in root store",
                    record_index=top.index,
                )
            )
        else:
            chain.findings.append(
                ChainFinding(
                    code="TRUST_ANCHOR_NOT_FOUND",
                    severity=Severity.WARN,
                    message=f"{label} not found in root store",
                    record_index=top.index,
                )
            )
        return chain

    def _render_tree(self, chain: ChainTop, visited: Set[int], budget: _RenderBudget) -> None:
        """
        Depth-first pre-order walk below a chain top.

        Each stack frame holds the remaining children of one record and the
        depth at which those children are drawn. The walk uses an explicit
        stack so that long chains cannot exhaust the interpreter's recursion
        limit.
        """
        total = len(self.records)
        stack: List[Tuple[Iterator[CertificateRecord], int]] = []

        def descend(record: CertificateRecord, depth: int, findings: List[ChainFinding]) -> None:
            if depth > total:
                logger.warning(
                    f"Loop detected below certificate #{record.index}: depth {depth} exceeds "
                    f"{total} certificate(s); truncating branch"
                )
                findings.append(
                    ChainFinding(
                        code="CHAIN_LOOP",
                        severity=Severity.FAIL,
                        message=(
                            f"Loop detected: depth {depth} exceeds the number of certificates ({total}), "
                            f"branch truncated"
                        ),
                        record_index=record.index,
                    )
                )
                return
            stack.append((iter(self.index.find_issued(record)), depth))

        descend(chain.record, 0, chain.findings)
        while stack:
            children, depth = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                continue
            if budget.exhausted:
                logger.warning(f"Render budget of {budget.max_entries} tree entries exhausted")
                chain.diagnostics.append(
                    ChainFinding(
                        code="RENDER_BUDGET_EXHAUSTED",
                        severity=Severity.FAIL,
                        message=f"Output truncated after {budget.max_entries} tree entries",
                        record_index=chain.record.index,
                    )
                )
                return

            entry = TreeEntry(record=child, depth=depth, findings=_signature_findings(child))
            chain.tree.append(entry)
            visited.add(child.index)
            budget.used += 1
            descend(child, depth + 1, entry.findings)


def calculate_overall_severity(report: ChainReport) -> Severity:
    """Worst severity across all chain, tree and diagnostic findings."""
    worst = Severity.OK
    findings = list(report.diagnostics)
    for chain in report.chains:
        findings.extend(chain.findings)
        findings.extend(chain.diagnostics)
        for entry in chain.tree:
            findings.extend(entry.findings)
    for finding in findings:
        if _SEVERITY_ORDER[finding.severity] > _SEVERITY_ORDER[worst]:
            worst = finding.severity
    return worst


def build_chain_report(
    records: RecordSet,
    root_store: RootStore,
    source: str = "",
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> ChainReport:
    """Convenience wrapper: build the issuance forest for a record set."""
    return ChainGraphBuilder(records, root_store, max_entries=max_entries).build(source=source)
