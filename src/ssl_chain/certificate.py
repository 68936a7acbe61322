"""Decoding of PEM/DER certificate bundles into certificate records."""

import logging
import re
import warnings
from pathlib import Path
from typing import List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from ssl_chain.chain import RecordSet
from ssl_chain.exceptions import CertificateDecodeError
from ssl_chain.models import CertificateRecord

logger = logging.getLogger(__name__)

PEM_CERT_PATTERN = rb"-----BEGIN CERTIFICATE-----(.*?)-----END CERTIFICATE-----"


def split_pem_certificates(data: bytes) -> List[bytes]:
    """Split PEM data into individual certificate blocks."""
    matches = re.findall(PEM_CERT_PATTERN, data, re.DOTALL)
    return [
        b"-----BEGIN CERTIFICATE-----" + match + b"-----END CERTIFICATE-----\n"
        for match in matches
    ]


def load_certificate(cert_data: bytes, pem: bool = False) -> x509.Certificate:
    """
    Load a certificate while suppressing CryptographyDeprecationWarning about serial numbers.

    Args:
        cert_data: Certificate data (DER or PEM bytes)
        pem: If True, treat as PEM format; otherwise DER

    Returns:
        Loaded certificate
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        if pem:
            return x509.load_pem_x509_certificate(cert_data)
        return x509.load_der_x509_certificate(cert_data)


def signature_algorithm_name(cert: x509.Certificate) -> str:
    """Name of the certificate's signature algorithm, e.g. sha256WithRSAEncryption."""
    oid = cert.signature_algorithm_oid
    name = getattr(oid, "_name", None)
    if not name or name == "Unknown OID":
        return oid.dotted_string
    return name


def _format_general_name(name: x509.GeneralName) -> Optional[str]:
    if isinstance(name, x509.DNSName):
        return f"DNS:{name.value}"
    if isinstance(name, x509.IPAddress):
        return f"IP Address:{name.value}"
    if isinstance(name, x509.RFC822Name):
        return f"email:{name.value}"
    if isinstance(name, x509.UniformResourceIdentifier):
        return f"URI:{name.value}"
    if isinstance(name, x509.DirectoryName):
        return f"DirName:{name.value.rfc4514_string()}"
    logger.debug(f"Skipping unsupported SAN entry type: {type(name).__name__}")
    return None


def extract_san_list(cert: x509.Certificate) -> List[str]:
    """Subject alternative names in certificate order."""
    try:
        san_ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    except ValueError as e:
        # Malformed extensions are reported but do not prevent decoding
        logger.warning(f"Could not parse SAN extension: {e}")
        return []

    san_list: List[str] = []
    for name in san_ext.value:
        formatted = _format_general_name(name)
        if formatted:
            san_list.append(formatted)
    return san_list


def to_record(cert: x509.Certificate, index: int) -> CertificateRecord:
    """Convert a parsed certificate into a CertificateRecord."""
    raw_text = cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
    return CertificateRecord(
        index=index,
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        signature_algorithm=signature_algorithm_name(cert),
        san_list=tuple(extract_san_list(cert)),
        raw_text=raw_text,
    )


def decode_certificates(data: bytes, source: Optional[str] = None) -> RecordSet:
    """
    Decode a certificate bundle into an ordered record set.

    PEM bundles may contain any number of certificates; input that carries no
    PEM markers is treated as a single DER certificate. Blocks that fail to
    decode are skipped with a warning.

    Args:
        data: PEM bundle or DER certificate
        source: Description of the input for log and error messages

    Returns:
        RecordSet with 1-based indices in bundle order

    Raises:
        CertificateDecodeError: If no certificate could be decoded
    """
    pem_blocks = split_pem_certificates(data)
    records: List[CertificateRecord] = []

    if pem_blocks:
        for position, block in enumerate(pem_blocks, 1):
            # Names are parsed lazily, so a malformed DN only surfaces in to_record
            try:
                records.append(to_record(load_certificate(block, pem=True), len(records) + 1))
            except ValueError as e:
                logger.warning(f"Skipping undecodable certificate block {position}: {e}")
    elif data.strip():
        try:
            records.append(to_record(load_certificate(data, pem=False), 1))
        except ValueError as e:
            logger.warning(f"Input is neither a PEM bundle nor a valid DER certificate: {e}")

    if not records:
        raise CertificateDecodeError(
            f"No certificates could be decoded from {source or 'input'}", source=source
        )

    logger.debug(f"Decoded {len(records)} certificate(s) from {source or 'input'}")
    return RecordSet(records)


def decode_der_certificates(certs_der: List[bytes], source: Optional[str] = None) -> RecordSet:
    """Decode a list of DER certificates (as presented by a server) into a record set."""
    records: List[CertificateRecord] = []
    for position, cert_der in enumerate(certs_der, 1):
        try:
            records.append(to_record(load_certificate(cert_der, pem=False), len(records) + 1))
        except ValueError as e:
            logger.warning(f"Skipping undecodable certificate {position}: {e}")

    if not records:
        raise CertificateDecodeError(
            f"No certificates could be decoded from {source or 'input'}", source=source
        )
    return RecordSet(records)


def load_certificates_from_file(path: Union[str, Path]) -> RecordSet:
    """Read and decode a PEM or DER certificate file."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise CertificateDecodeError(f"Cannot read certificate file {path}: {e}", source=str(path))
    return decode_certificates(data, source=str(path))
