"""CLI entry point using Typer."""

import logging
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import typer

from ssl_chain.network import fetch_certificate_chain
from ssl_chain.certificate import decode_der_certificates, load_certificates_from_file
from ssl_chain.chain import DEFAULT_MAX_ENTRIES, RecordSet, build_chain_report
from ssl_chain.exceptions import SSLChainError
from ssl_chain.models import ChainReport, Severity
from ssl_chain.reporter import generate_json_report, generate_text_report, set_color_output
from ssl_chain.trust_store import load_root_store

app = typer.Typer(help="Certificate chain viewer: issuance tree, trust anchors and weak signatures")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)

logger = logging.getLogger(__name__)

CA_BUNDLE_ENVVAR = "SSL_CHAIN_CA_BUNDLE"


def parse_target(target: str, port: int) -> tuple[str, int]:
    """Split 'host', 'host:port' or an https:// URL into hostname and port."""
    if target.startswith("http://") or target.startswith("https://"):
        parsed = urlparse(target)
        return parsed.hostname or target, parsed.port or port
    if target.startswith("[") and "]" in target:
        # [IPv6]:port
        host, _, rest = target[1:].partition("]")
        if rest.startswith(":") and rest[1:].isdigit():
            return host, int(rest[1:])
        return host, port
    if target.count(":") == 1:
        host, _, port_str = target.partition(":")
        if port_str.isdigit():
            return host, int(port_str)
    return target, port


def _configure(verbose: bool, color: bool) -> None:
    set_color_output(color)
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("ssl_chain").setLevel(logging.DEBUG)


def _emit(records: RecordSet, source: str, ca_bundle: Optional[Path], json_output: bool, max_entries: int) -> None:
    """Build, print and exit with the report's severity."""
    root_store = load_root_store(ca_bundle)
    report = build_chain_report(records, root_store, source=source, max_entries=max_entries)

    if json_output:
        print(generate_json_report(report))
    else:
        print(generate_text_report(report))

    sys.exit(exit_code(report))


def exit_code(report: ChainReport) -> int:
    if report.overall_severity == Severity.FAIL:
        return 2
    elif report.overall_severity == Severity.WARN:
        return 1
    return 0


@app.command("host")
def show_host(
    target: str = typer.Argument(..., help="Hostname, host:port or URL (e.g., example.com or https://example.com)"),
    port: int = typer.Option(443, "--port", "-p", help="Port (default: 443)"),
    server_name: Optional[str] = typer.Option(None, "--servername", help="SNI hostname (default: target hostname)"),
    timeout: float = typer.Option(10.0, "--timeout", "-t", help="Timeout in seconds"),
    ipv6: bool = typer.Option(False, "--ipv6", help="Prefer IPv6"),
    ca_bundle: Optional[Path] = typer.Option(None, "--ca-bundle", envvar=CA_BUNDLE_ENVVAR, help="Root store bundle (PEM)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="JSON output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
    max_entries: int = typer.Option(DEFAULT_MAX_ENTRIES, "--max-entries", min=1, help="Maximum number of tree entries to render"),
):
    """
    Fetch the certificate chain a TLS server presents and show its issuance tree.
    """
    _configure(verbose, color)
    hostname, port = parse_target(target, port)

    try:
        certs_der = fetch_certificate_chain(hostname, port, timeout=timeout, server_name=server_name, ipv6=ipv6)
        records = decode_der_certificates(certs_der, source=f"{hostname}:{port}")
    except SSLChainError as e:
        logger.error(f"Could not retrieve certificates from {hostname}:{port}: {e}")
        sys.exit(2)
        return

    try:
        _emit(records, f"{hostname}:{port}", ca_bundle, json_output, max_entries)
    except SSLChainError as e:
        logger.error(str(e))
        sys.exit(2)


@app.command("file")
def show_file(
    path: Path = typer.Argument(..., help="PEM bundle or DER certificate file"),
    ca_bundle: Optional[Path] = typer.Option(None, "--ca-bundle", envvar=CA_BUNDLE_ENVVAR, help="Root store bundle (PEM)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="JSON output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
    max_entries: int = typer.Option(DEFAULT_MAX_ENTRIES, "--max-entries", min=1, help="Maximum number of tree entries to render"),
):
    """
    Show the issuance tree of the certificates in a file.
    """
    _configure(verbose, color)

    try:
        records = load_certificates_from_file(path)
    except SSLChainError as e:
        logger.error(str(e))
        sys.exit(2)
        return

    try:
        _emit(records, str(path), ca_bundle, json_output, max_entries)
    except SSLChainError as e:
        logger.error(str(e))
        sys.exit(2)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
