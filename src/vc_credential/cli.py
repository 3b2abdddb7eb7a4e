"""
Command-line interface for vc-credential.

Usage:
    vc-credential keygen --out issuer-key.json
    vc-credential issue --key issuer-key.json --issuer did:web:example.com \\
        --type IdentityCredential --subject '{"holder": {"id": "did:example:alice"}}'
    vc-credential verify credential.json --key issuer-key.json
    vc-credential verify https://example.com/credentials/123 --resolve
    cat credential.json | vc-credential inspect -
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from vc_credential.credential import (
    CredentialEngine,
    IssueOptions,
    VerificationResult,
    VerifyOptions,
)
from vc_credential.did_resolver import DIDResolutionError, DIDResolver
from vc_credential.keys import SUPPORTED_KEY_TYPES, Key, generate_key
from vc_credential.proof import ProofFormatError, parse_proof
from vc_credential.result import Result

console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Send library logs to stderr through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def format_result(credential: dict[str, Any], result: Result[VerificationResult]) -> None:
    """Format and print verification result."""
    if result.success:
        status_icon = "[bold green]VERIFIED[/]"
        panel_style = "green"
    else:
        status_icon = "[bold red]REJECTED[/]"
        panel_style = "red"

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Status", status_icon)

    if credential.get("id"):
        table.add_row("Credential ID", str(credential["id"]))

    if result.success and result.data is not None:
        vr = result.data
        table.add_row("Issuer", str(vr.issuer))
        table.add_row("Subject", str(vr.subject))
        table.add_row("Issued", str(vr.issuance_date))
        table.add_row("Expires", str(vr.expiration_date or "never"))
    else:
        table.add_row("Reason", result.kind.value if result.kind else "unknown")
        table.add_row("Error", f"[red]{result.error}[/]")

    console.print(Panel(table, title="Verification Result", border_style=panel_style))


def load_credential(source: str, timeout: float = 30.0, verify_ssl: bool = True) -> Any:
    """Load credential from file, URL, or stdin.

    Args:
        source: File path, URL, or "-" for stdin.
        timeout: HTTP request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates.

    Returns:
        Parsed credential JSON.
    """
    if source == "-":
        return json.loads(sys.stdin.read())

    if source.startswith("http://") or source.startswith("https://"):
        with httpx.Client(timeout=timeout, verify=verify_ssl) as client:
            response = client.get(
                source,
                headers={"Accept": "application/vc+ld+json, application/json"},
            )
            response.raise_for_status()
            return response.json()

    path = Path(source)
    if not path.exists():
        raise click.ClickException(f"File not found: {source}")

    with path.open() as f:
        return json.load(f)


def load_key_file(path: str) -> Key:
    """Load a key written by ``keygen``.

    Files with ``privateKeyHex`` give a signing key, others a public-only key.
    """
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise click.ClickException(f"Key file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON in key file {path}: {e}") from e

    if not isinstance(data, dict) or not data.get("publicKeyHex"):
        raise click.ClickException(f"Key file {path} has no publicKeyHex")

    common = {
        "id": data.get("id"),
        "public_key_hex": data["publicKeyHex"],
        "type": data.get("type", "Ed25519"),
        "meta": data.get("meta"),
    }
    if data.get("privateKeyHex"):
        return Key.create(private_key_hex=data["privateKeyHex"], **common)
    return Key.create_public(**common)


def _load_subject(value: str) -> dict[str, Any]:
    path = Path(value)
    try:
        if path.is_file():
            subject = json.loads(path.read_text())
        else:
            subject = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Subject is not valid JSON: {e}", param_hint="--subject") from e
    if not isinstance(subject, dict):
        raise click.BadParameter("Subject must be a JSON object", param_hint="--subject")
    return subject


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    envvar="VC_CREDENTIAL_LOG_LEVEL",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level for library messages (stderr)",
)
@click.version_option(package_name="vc-credential")
def main(log_level: str) -> None:
    """Issue and verify W3C Verifiable Credentials with JWT proofs."""
    configure_logging(log_level)


@main.command()
@click.option(
    "--type",
    "key_type",
    type=click.Choice(SUPPORTED_KEY_TYPES, case_sensitive=False),
    default="Ed25519",
    show_default=True,
    help="Key type to generate",
)
@click.option("--id", "key_id", default=None, help="Key identifier (generated if omitted)")
@click.option("--out", "out_path", type=click.Path(dir_okay=False), default=None, help="Write the key to a file")
def keygen(key_type: str, key_id: str | None, out_path: str | None) -> None:
    """Generate a signing key."""
    key = generate_key(key_type, id=key_id)
    data = {
        "id": key.id,
        "type": key.type,
        "publicKeyHex": key.public_key_hex,
        "privateKeyHex": key.private_key_hex,
    }
    if out_path:
        Path(out_path).write_text(json.dumps(data, indent=2))
        err_console.print(f"[green]Key {key.id} written to {out_path}[/]")
    else:
        click.echo(json.dumps(data, indent=2))


@main.command()
@click.option("--key", "key_path", required=True, help="Signing key file (from keygen)")
@click.option("--issuer", "issuer_id", required=True, help="Issuer identifier, e.g. a DID")
@click.option("--type", "credential_types", multiple=True, required=True, help="Credential type (repeatable)")
@click.option("--subject", required=True, help="Subject JSON, inline or a file path")
@click.option("--id", "vc_id", default=None, help="Credential id (generated if omitted)")
@click.option("--context", "contexts", multiple=True, help="Extra @context URI (repeatable)")
@click.option("--expires", default=None, help="Expiration date (ISO-8601)")
@click.option("--out", "out_path", type=click.Path(dir_okay=False), default=None, help="Write the credential to a file")
def issue(
    key_path: str,
    issuer_id: str,
    credential_types: tuple[str, ...],
    subject: str,
    vc_id: str | None,
    contexts: tuple[str, ...],
    expires: str | None,
    out_path: str | None,
) -> None:
    """Issue a signed credential."""
    engine = CredentialEngine(key=load_key_file(key_path))
    options = IssueOptions(
        vc_id=vc_id,
        context=list(contexts) or None,
        expiration_date=expires,
    )
    result = engine.issue(_load_subject(subject), list(credential_types), issuer_id, options)
    if not result.success:
        err_console.print(f"[red]Error:[/] {result.error}")
        sys.exit(1)

    output = json.dumps(result.data, indent=2)
    if out_path:
        Path(out_path).write_text(output)
        err_console.print(f"[green]Credential {result.data['id']} written to {out_path}[/]")
    else:
        click.echo(output)


@main.command()
@click.argument("source", required=True)
@click.option("--key", "key_path", default=None, help="Key file to verify with")
@click.option("--public-key", "public_key_hex", default=None, help="Hex public key to verify with")
@click.option(
    "--key-type",
    type=click.Choice(SUPPORTED_KEY_TYPES, case_sensitive=False),
    default="Ed25519",
    show_default=True,
    help="Type of --public-key",
)
@click.option("--resolve", is_flag=True, help="Resolve the verification key from the issuer's did:web document")
@click.option("--expected-issuer", default=None, help="Reject credentials from any other issuer")
@click.option("--no-expiration", is_flag=True, help="Skip the expiration check")
@click.option("--no-ssl-verify", is_flag=True, help="Disable SSL certificate verification")
@click.option("--json-output", is_flag=True, help="Output result as JSON")
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    envvar="VC_CREDENTIAL_TIMEOUT",
    help="HTTP request timeout in seconds",
)
def verify(
    source: str,
    key_path: str | None,
    public_key_hex: str | None,
    key_type: str,
    resolve: bool,
    expected_issuer: str | None,
    no_expiration: bool,
    no_ssl_verify: bool,
    json_output: bool,
    timeout: float,
) -> None:
    """Verify a credential.

    SOURCE can be:
    - A file path (e.g., credential.json)
    - A URL (e.g., https://example.com/credentials/123)
    - "-" to read from stdin

    Exit code is 0 when verified, 1 when rejected, 2 on errors.
    """
    try:
        credential = load_credential(source, timeout=timeout, verify_ssl=not no_ssl_verify)
        if not isinstance(credential, dict):
            raise click.ClickException("Credential must be a JSON object")

        if key_path:
            key = load_key_file(key_path).to_public_key()
        elif public_key_hex:
            key = Key.create_public(public_key_hex=public_key_hex, type=key_type)
        elif resolve:
            resolver = DIDResolver(timeout=timeout, verify_ssl=not no_ssl_verify)
            proof = credential.get("proof")
            method = (proof if isinstance(proof, dict) else {}).get("verificationMethod") or credential.get("issuer")
            if not isinstance(method, str):
                raise click.ClickException("Credential names no issuer to resolve")
            key = resolver.resolve_public_key(method)
        else:
            raise click.UsageError("Provide --key, --public-key or --resolve")

        engine = CredentialEngine(key=key)
        result = engine.verify(
            credential,
            options=VerifyOptions(
                check_expiration=not no_expiration,
                expected_issuer=expected_issuer,
            ),
        )

        if json_output:
            output = {
                "verified": result.success,
                "credential_id": credential.get("id"),
                "result": result.data.to_dict() if result.success and result.data else None,
                "error": result.error,
                "reason": result.kind.value if result.kind else None,
            }
            click.echo(json.dumps(output, indent=2))
        else:
            format_result(credential, result)

        sys.exit(0 if result.success else 1)

    except click.ClickException:
        raise

    except json.JSONDecodeError as e:
        _report_error(f"Invalid JSON: {e}", json_output)

    except httpx.HTTPError as e:
        _report_error(f"HTTP error: {e}", json_output)

    except DIDResolutionError as e:
        _report_error(f"DID resolution failed: {e}", json_output)


def _report_error(message: str, json_output: bool) -> NoReturn:
    if json_output:
        click.echo(json.dumps({"error": message}))
    else:
        err_console.print(f"[red]Error:[/] {message}")
    sys.exit(2)


@main.command()
@click.argument("source", required=True)
@click.option("--no-ssl-verify", is_flag=True, help="Disable SSL certificate verification")
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    envvar="VC_CREDENTIAL_TIMEOUT",
    help="HTTP request timeout in seconds",
)
def inspect(source: str, no_ssl_verify: bool, timeout: float) -> None:
    """Decode and print a credential's JWT header and payload.

    Exit code is 2 when the credential cannot be loaded.
    """
    try:
        credential = load_credential(source, timeout=timeout, verify_ssl=not no_ssl_verify)
    except json.JSONDecodeError as e:
        _report_error(f"Invalid JSON: {e}", json_output=False)
    except httpx.HTTPError as e:
        _report_error(f"HTTP error: {e}", json_output=False)

    proof = credential.get("proof") if isinstance(credential, dict) else None
    if not isinstance(proof, dict):
        raise click.ClickException("Credential has no proof")

    try:
        parsed = parse_proof(proof.get("jwt"))
    except ProofFormatError as e:
        raise click.ClickException(f"Malformed proof: {e}") from e

    click.echo(json.dumps({"header": parsed.header, "payload": parsed.payload}, indent=2))


if __name__ == "__main__":
    main()
