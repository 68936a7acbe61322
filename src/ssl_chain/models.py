"""Data models for certificate records and chain reports."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Tuple


class Severity(str, Enum):
    """Severity levels for report findings."""

    OK = "OK"
    WARN = "WARN"
    FAIL = "FAIL"


def is_sha1_algorithm(signature_algorithm: str) -> bool:
    """Return True if a signature algorithm name denotes SHA-1."""
    normalized = signature_algorithm.lower().replace("-", "").replace("_", "")
    return "sha1" in normalized


@dataclass(frozen=True)
class CertificateRecord:
    """A decoded certificate as seen by the chain builder."""

    index: int  # 1-based position in the input bundle
    subject: str
    issuer: str
    signature_algorithm: str
    san_list: Tuple[str, ...] = ()
    raw_text: str = ""

    @property
    def is_self_signed(self) -> bool:
        return self.subject == self.issuer

    @property
    def is_sha1_signed(self) -> bool:
        return is_sha1_algorithm(self.signature_algorithm)


@dataclass
class ChainFinding:
    """Diagnostic attached to a chain block or tree entry."""

    code: str  # e.g., "SIGNATURE_SHA1", "CHAIN_LOOP"
    severity: Severity
    message: str
    record_index: Optional[int] = None


@dataclass
class TreeEntry:
    """One rendered descendant in a chain tree."""

    record: CertificateRecord
    depth: int  # 0 for direct children of the chain top
    findings: List[ChainFinding] = field(default_factory=list)


@dataclass
class ChainTop:
    """A chain top together with its issuer/trust status and rendered tree."""

    record: CertificateRecord
    self_signed: bool
    trust_anchor_subject: str  # Subject looked up in the root store
    in_root_store: bool
    cycle_entry: bool = False  # True if the record has an issuer inside the set (unreached cycle)
    findings: List[ChainFinding] = field(default_factory=list)
    tree: List[TreeEntry] = field(default_factory=list)
    diagnostics: List[ChainFinding] = field(default_factory=list)  # Loop and truncation diagnostics

    @property
    def external_issuer(self) -> Optional[str]:
        if self.self_signed or self.cycle_entry:
            return None
        return self.record.issuer


@dataclass
class ChainReport:
    """Result of rendering a whole record set."""

    source: str
    record_count: int
    chains: List[ChainTop] = field(default_factory=list)
    overall_severity: Severity = Severity.OK
    root_store_size: int = 0
    diagnostics: List[ChainFinding] = field(default_factory=list)  # Certificates left out of the report
