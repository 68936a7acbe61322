"""Network operations for retrieving a server's certificate chain."""

import socket
import ssl
import sys
import logging
import subprocess
from typing import List, Optional

from ssl_chain.exceptions import (
    ConnectionTimeoutError,
    DNSResolutionError,
    NetworkError,
    TLSHandshakeError,
)

logger = logging.getLogger(__name__)

PEM_CERT_START = b"-----BEGIN CERTIFICATE-----"
PEM_CERT_END = b"-----END CERTIFICATE-----"


def _extract_chain_via_openssl(host: str, port: int, timeout: float, server_name: Optional[str] = None) -> List[bytes]:
    """
    Extract the presented certificate chain using the OpenSSL command line tool.
    This is the fallback when the ssl module cannot expose the unverified chain.

    Args:
        host: Target hostname
        port: Target port
        timeout: Connection timeout
        server_name: SNI hostname (None to disable SNI)

    Returns:
        List of DER-encoded certificates, leaf first
    """
    from ssl_chain.certificate import load_certificate
    from cryptography.hazmat.primitives import serialization

    certs_der: List[bytes] = []

    openssl_cmd = [
        "openssl", "s_client",
        "-connect", f"{host}:{port}",
        "-showcerts",
    ]
    if server_name is not None:
        openssl_cmd.extend(["-servername", server_name])
        logger.debug(f"Using SNI with hostname: {server_name} (OpenSSL fallback)")
    else:
        openssl_cmd.append("-noservername")
        logger.debug("SNI disabled for OpenSSL fallback")

    try:
        result = subprocess.run(
            openssl_cmd,
            input=b"Q\n",  # Send quit command
            capture_output=True,
            timeout=timeout + 2,
            check=False,  # Don't raise on non-zero exit
        )
    except subprocess.TimeoutExpired:
        logger.debug("OpenSSL command timed out")
        return []
    except FileNotFoundError:
        logger.debug("OpenSSL command not found")
        return []

    output = result.stdout
    if not output:
        return []

    start_idx = 0
    while True:
        start_pos = output.find(PEM_CERT_START, start_idx)
        if start_pos == -1:
            break
        end_pos = output.find(PEM_CERT_END, start_pos)
        if end_pos == -1:
            break

        pem_cert = output[start_pos:end_pos + len(PEM_CERT_END)]
        try:
            cert = load_certificate(pem_cert, pem=True)
            certs_der.append(cert.public_bytes(serialization.Encoding.DER))
        except ValueError as e:
            logger.debug(f"Error parsing certificate from OpenSSL output: {e}")

        start_idx = end_pos + len(PEM_CERT_END)

    logger.debug(f"Extracted {len(certs_der)} certificate(s) via OpenSSL")
    return certs_der


def _create_context() -> ssl.SSLContext:
    """Client context that accepts any chain; the chain is inspected, not trusted."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def _handshake(
    host: str,
    port: int,
    timeout: float,
    server_name: Optional[str],
    ipv6: bool,
) -> List[bytes]:
    """Perform one TLS handshake and return the presented certificates (DER, leaf first)."""
    family = socket.AF_INET6 if ipv6 else socket.AF_INET
    try:
        addr_info = socket.getaddrinfo(host, port, family, socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise DNSResolutionError(f"DNS resolution failed for {host}: {e}", hostname=host, port=port)
    if not addr_info:
        raise DNSResolutionError(f"Could not resolve {host}:{port}", hostname=host, port=port)
    addr = addr_info[0][4]

    sock = socket.socket(addr_info[0][0], socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect(addr)
        logger.debug(f"TCP connection established to {addr}")

        context = _create_context()
        ssl_sock = context.wrap_socket(sock, server_hostname=server_name)
        ssl_sock.do_handshake()
        logger.debug(f"TLS handshake completed (SNI: {server_name or 'disabled'})")

        leaf_cert_der = ssl_sock.getpeercert(binary_form=True)
        if not leaf_cert_der:
            raise TLSHandshakeError("No certificate received from server", hostname=host, port=port)

        certs_der: List[bytes] = []
        # get_unverified_chain() exists from Python 3.13 on
        if hasattr(ssl_sock, "get_unverified_chain"):
            chain = ssl_sock.get_unverified_chain() or []
            certs_der = [cert for cert in chain if isinstance(cert, bytes) and cert]
            logger.debug(f"Received {len(certs_der)} certificate(s) in chain")
        else:
            python_version = f"{sys.version_info.major}.{sys.version_info.minor}"
            logger.debug(
                f"get_unverified_chain() not available (Python {python_version}, {ssl.OPENSSL_VERSION}); "
                f"using OpenSSL fallback"
            )

        try:
            ssl_sock.close()
        except OSError:
            pass

        if not certs_der:
            logger.info("Extracting certificate chain via OpenSSL...")
            certs_der = _extract_chain_via_openssl(host, port, timeout, server_name)
        if not certs_der:
            logger.warning("Could not extract certificate chain; reporting the leaf certificate only")
            certs_der = [leaf_cert_der]
        return certs_der

    except socket.timeout:
        raise ConnectionTimeoutError(f"Connection timeout after {timeout}s", hostname=host, port=port)
    except ssl.SSLError as e:
        raise TLSHandshakeError(f"TLS handshake failed: {e}", hostname=host, port=port)
    except OSError as e:
        raise NetworkError(f"Connection error: {e}", hostname=host, port=port)
    finally:
        try:
            sock.close()
        except OSError:
            pass


def fetch_certificate_chain(
    host: str,
    port: int,
    timeout: float = 10.0,
    server_name: Optional[str] = None,
    ipv6: bool = False,
) -> List[bytes]:
    """
    Connect to a TLS server and return the certificates it presents.

    The handshake is first attempted with SNI (server_name, or host when not
    given). Servers that reject the SNI value are retried once without SNI.

    Args:
        host: Target hostname (for DNS resolution and connection)
        port: Target port
        timeout: Connection timeout in seconds
        server_name: SNI hostname (defaults to host)
        ipv6: Prefer IPv6

    Returns:
        List of DER-encoded certificates in the order the server sent them

    Raises:
        NetworkError: If the connection or handshake fails
    """
    logger.debug(f"Connecting to {host}:{port} (timeout={timeout}s)")
    sni = server_name or host
    try:
        return _handshake(host, port, timeout, sni, ipv6)
    except TLSHandshakeError as e:
        logger.warning(f"Handshake with SNI '{sni}' failed ({e}); retrying without SNI")
        return _handshake(host, port, timeout, None, ipv6)
