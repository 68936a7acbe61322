"""Root store loading and trust-anchor lookup."""

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, List

import certifi

from ssl_chain.exceptions import TrustStoreError

logger = logging.getLogger(__name__)

SYSTEM_CA_BUNDLE = Path("/etc/ssl/certs/ca-certificates.crt")


class RootStore:
    """
    Immutable set of trusted subject names.

    Lookups compare the full RFC 4514 subject string for equality; a name that
    merely occurs inside another root's subject is not a match.
    """

    def __init__(self, subjects: Iterable[str] = ()):
        self._subjects = frozenset(subjects)

    def is_trust_anchor(self, subject: str) -> bool:
        """Return True if the subject names a certificate in the root store."""
        return subject in self._subjects

    def __contains__(self, subject: object) -> bool:
        return subject in self._subjects

    def __len__(self) -> int:
        return len(self._subjects)

    def __repr__(self) -> str:
        return f"RootStore({len(self._subjects)} subjects)"

    @classmethod
    def from_pem_bundle(cls, data: bytes) -> "RootStore":
        """Build a root store from the subjects of every certificate in a PEM bundle."""
        return cls(_subjects_from_pem(data))


def _subjects_from_pem(data: bytes) -> List[str]:
    from ssl_chain.certificate import load_certificate, split_pem_certificates

    subjects: List[str] = []
    for cert_pem in split_pem_certificates(data):
        try:
            cert = load_certificate(cert_pem, pem=True)
            subject = cert.subject.rfc4514_string()
        except ValueError as e:
            logger.debug(f"Error parsing root bundle certificate: {e}")
            continue
        subjects.append(subject)
    return subjects


def load_root_store(ca_bundle: Optional[Path] = None, include_system: bool = True) -> RootStore:
    """
    Load the trusted root store.

    Args:
        ca_bundle: Custom CA bundle (PEM). When given, only this bundle is used.
        include_system: Also read the system bundle when no custom bundle is given

    Returns:
        RootStore with the subjects of all bundle certificates

    Raises:
        TrustStoreError: If the custom bundle cannot be read
    """
    subjects: List[str] = []

    if ca_bundle:
        try:
            data = Path(ca_bundle).read_bytes()
        except OSError as e:
            raise TrustStoreError(f"Cannot read CA bundle {ca_bundle}: {e}", path=str(ca_bundle))
        subjects.extend(_subjects_from_pem(data))
        logger.debug(f"Loaded {len(subjects)} certificate(s) from custom CA bundle {ca_bundle}")
    else:
        certifi_path = certifi.where()
        if os.path.exists(certifi_path):
            with open(certifi_path, "rb") as f:
                subjects.extend(_subjects_from_pem(f.read()))
            logger.debug(f"Loaded {len(subjects)} certificate(s) from certifi bundle")

        if include_system and os.name == "posix" and SYSTEM_CA_BUNDLE.exists():
            try:
                system_subjects = _subjects_from_pem(SYSTEM_CA_BUNDLE.read_bytes())
                subjects.extend(system_subjects)
                logger.debug(f"Loaded {len(system_subjects)} certificate(s) from {SYSTEM_CA_BUNDLE}")
            except OSError as e:
                logger.debug(f"Error loading system certificates: {e}")

    store = RootStore(subjects)
    if not len(store):
        logger.warning("Root store is empty; every chain top will be reported as untrusted")
    return store
