"""Exception taxonomy for certificate chain inspection."""

from typing import Optional


class SSLChainError(Exception):
    """Base exception for all ssl-chain errors."""

    pass


class CertificateDecodeError(SSLChainError):
    """No certificate could be decoded from the input."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class NetworkError(SSLChainError):
    """Network-related errors (connection, timeout, DNS, etc.)."""

    def __init__(self, message: str, hostname: Optional[str] = None, port: Optional[int] = None):
        super().__init__(message)
        self.hostname = hostname
        self.port = port


class DNSResolutionError(NetworkError):
    """DNS resolution failed."""

    pass


class ConnectionTimeoutError(NetworkError):
    """Connection timeout."""

    pass


class TLSHandshakeError(NetworkError):
    """TLS handshake failed."""

    pass


class TrustStoreError(SSLChainError):
    """The configured root bundle could not be loaded."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path
