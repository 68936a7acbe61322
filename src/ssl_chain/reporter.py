"""Report generation (text and JSON)."""

import json
import logging
from dataclasses import asdict
from typing import Any, List

from ssl_chain.models import ChainFinding, ChainReport, ChainTop, Severity

logger = logging.getLogger(__name__)

# Global flag for colored output
_use_color = True

BRANCH = "├── "
LAST_BRANCH = "└── "
PIPE = "│   "
SPACE = "    "

TRUST_ANCHOR_CODES = ("TRUST_ANCHOR_FOUND", "TRUST_ANCHOR_NOT_FOUND")


def set_color_output(enabled: bool) -> None:
    """Enable or disable colored output."""
    global _use_color
    _use_color = enabled


def generate_text_report(report: ChainReport) -> str:
    """
    Generate human-readable text report.

    Every chain top gets an issuer / root store block followed by the tree of
    certificates it issued. Warnings are printed directly below the
    certificate they concern.

    Args:
        report: ChainReport to render

    Returns:
        Formatted text report
    """
    lines: List[str] = []
    lines.append("=" * 70)
    lines.append("Certificate Chain Report")
    lines.append("=" * 70)
    if report.source:
        lines.append(f"Source: {report.source}")
    lines.append(f"Certificates: {report.record_count}")
    lines.append(f"Chains: {len(report.chains)}")
    lines.append(f"Root Store: {report.root_store_size} certificate(s)")
    lines.append("")

    for number, chain in enumerate(report.chains, 1):
        lines.extend(_format_chain(number, chain))
        lines.append("")

    for diagnostic in report.diagnostics:
        lines.append(_format_finding(diagnostic))
    if report.diagnostics:
        lines.append("")

    warnings_count, failures_count = _count_findings(report)
    lines.append(
        f"Overall: {_format_severity(report.overall_severity)} "
        f"({warnings_count} warning(s), {failures_count} failure(s))"
    )
    lines.append("=" * 70)

    return "\n".join(lines)


def _format_chain(number: int, chain: ChainTop) -> List[str]:
    record = chain.record
    lines = [f"Chain {number}: top certificate #{record.index}"]

    findings = list(chain.findings)
    if chain.self_signed:
        lines.append(f"  Self-signed: {record.subject}")
    elif chain.cycle_entry:
        lines.append(f"  Issuer (in set): {record.issuer}")
        lines.append(f"  Subject: {record.subject}")
    else:
        # Trust status of the external issuer goes right below it
        lines.append(f"  Issuer: {record.issuer}")
        for finding in findings:
            if finding.code in TRUST_ANCHOR_CODES:
                lines.append(f"  {_format_finding(finding)}")
        findings = [f for f in findings if f.code not in TRUST_ANCHOR_CODES]
        lines.append(f"  Subject: {record.subject}")
    lines.append(f"  Signature Algorithm: {record.signature_algorithm}")
    for finding in findings:
        lines.append(f"  {_format_finding(finding)}")
    for san in record.san_list:
        lines.append(f"  SAN: {san}")

    if chain.tree:
        lines.append(f"  #{record.index} {record.subject}")
        lines.extend(_format_tree(chain))
    for diagnostic in chain.diagnostics:
        lines.append(f"  {_format_finding(diagnostic)}")
    return lines


def _last_sibling_flags(chain: ChainTop) -> List[bool]:
    """For each pre-order tree entry, whether it is the last child of its parent."""
    flags = [False] * len(chain.tree)
    later_sibling: List[bool] = []
    for position in range(len(chain.tree) - 1, -1, -1):
        depth = chain.tree[position].depth
        while len(later_sibling) <= depth:
            later_sibling.append(False)
        flags[position] = not later_sibling[depth]
        later_sibling[depth] = True
        del later_sibling[depth + 1:]
    return flags


def _format_tree(chain: ChainTop) -> List[str]:
    lines: List[str] = []
    continuation: List[str] = []
    for entry, is_last in zip(chain.tree, _last_sibling_flags(chain)):
        del continuation[entry.depth:]
        prefix = "  " + "".join(continuation)
        lines.append(f"{prefix}{LAST_BRANCH if is_last else BRANCH}#{entry.record.index} {entry.record.subject}")
        continuation.append(SPACE if is_last else PIPE)

        detail_prefix = "  " + "".join(continuation) + "  "
        for finding in entry.findings:
            lines.append(f"{detail_prefix}{_format_finding(finding)}")
        for san in entry.record.san_list:
            lines.append(f"{detail_prefix}SAN: {san}")
    return lines


def _format_finding(finding: ChainFinding) -> str:
    return f"{_format_severity(finding.severity)} {finding.message}"


def _count_findings(report: ChainReport) -> tuple[int, int]:
    warnings_count = 0
    failures_count = 0
    findings = list(report.diagnostics)
    for chain in report.chains:
        findings.extend(chain.findings)
        findings.extend(chain.diagnostics)
        for entry in chain.tree:
            findings.extend(entry.findings)
    for finding in findings:
        if finding.severity == Severity.WARN:
            warnings_count += 1
        elif finding.severity == Severity.FAIL:
            failures_count += 1
    return warnings_count, failures_count


def _format_severity(severity: Severity) -> str:
    """Format severity with visual indicator."""
    if _use_color:
        from rich.console import Console
        from io import StringIO
        output = StringIO()
        console = Console(file=output, force_terminal=True, width=1000)
        if severity == Severity.OK:
            console.print(f"[green]{severity.value} ✓[/green]", end="")
        elif severity == Severity.WARN:
            console.print(f"[yellow]{severity.value} ⚠[/yellow]", end="")
        else:
            console.print(f"[red]{severity.value} ✗[/red]", end="")
        return output.getvalue().strip()

    if severity == Severity.OK:
        return f"{severity.value} ✓"
    elif severity == Severity.WARN:
        return f"{severity.value} ⚠"
    else:
        return f"{severity.value} ✗"


def generate_json_report(report: ChainReport) -> str:
    """
    Generate JSON report.

    Args:
        report: ChainReport to serialize

    Returns:
        JSON string
    """
    def serialize(obj: Any) -> str:
        if isinstance(obj, Severity):
            return obj.value
        raise TypeError(f"Type {type(obj)} not serializable")

    data = asdict(report)
    for chain_data, chain in zip(data["chains"], report.chains):
        chain_data["external_issuer"] = chain.external_issuer
    return json.dumps(data, indent=2, default=serialize)
