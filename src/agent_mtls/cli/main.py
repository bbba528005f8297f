"""CLI entry point for agent-mtls.

Invoked as::

    agent-mtls [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m agent_mtls.cli.main

Commands
--------
ca init         Create the certificate authority (or load the existing one)
ca show         Print the CA certificate
cert issue      Issue a certificate for an agent
cert validate   Validate a certificate presented by an agent
cert revoke     Revoke an agent's certificate
cert status     Show the status of an agent's certificate
cert list       List all issued certificates
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from agent_mtls.config import MTLSConfig
from agent_mtls.errors import MTLSError
from agent_mtls.provider import MutualTLSProvider

console = Console()

_STATUS_STYLES = {
    "valid": "green",
    "expiring_soon": "yellow",
    "expired": "red",
}


# ------------------------------------------------------------------
# Root group
# ------------------------------------------------------------------


@click.group()
@click.version_option(package_name="agent-mtls")
@click.option(
    "--cert-path",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Certificate storage directory (defaults to MTLS_CERT_PATH or ./certs).",
)
@click.option(
    "--validity-days",
    type=click.IntRange(min=1),
    default=None,
    help="Validity period of newly issued agent certificates.",
)
@click.pass_context
def cli(ctx: click.Context, cert_path: Optional[Path], validity_days: Optional[int]) -> None:
    """Mutual-TLS certificate authority for agent-to-agent authentication"""
    ctx.ensure_object(dict)
    ctx.obj["cert_path"] = cert_path
    ctx.obj["validity_days"] = validity_days


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from agent_mtls import __version__

    console.print(f"[bold]agent-mtls[/bold] v{__version__}")


# ------------------------------------------------------------------
# ca command group
# ------------------------------------------------------------------


@cli.group(name="ca")
def ca_group() -> None:
    """Manage the certificate authority."""


@ca_group.command(name="init")
@click.pass_context
def ca_init_command(ctx: click.Context) -> None:
    """Create the certificate authority, or load it if it already exists."""
    from agent_mtls.certificates import codec

    with _open_provider(ctx) as provider:
        ca = provider.ca
        console.print(f"[green]Certificate authority ready[/green] in {_cert_dir(ctx)}")
        console.print(f"  Subject:     {ca.certificate.subject.rfc4514_string()}")
        console.print(f"  Fingerprint: {codec.fingerprint(ca.certificate)}")
        console.print(f"  Expires:     {ca.certificate.not_valid_after_utc.isoformat()}")
        console.print(f"  Next serial: {ca.next_serial}")


@ca_group.command(name="show")
@click.pass_context
def ca_show_command(ctx: click.Context) -> None:
    """Print the PEM-encoded CA certificate."""
    with _open_provider(ctx) as provider:
        click.echo(provider.ca_certificate_pem().decode("ascii"), nl=False)


# ------------------------------------------------------------------
# cert command group
# ------------------------------------------------------------------


@cli.group(name="cert")
def cert_group() -> None:
    """Issue, validate and revoke agent certificates."""


@cert_group.command(name="issue")
@click.argument("agent_id")
@click.option("--name", "-n", default="", help="Human-readable name for the agent.")
@click.option("--organization", "-o", default=None, help="Organization placed in the subject.")
@click.option("--email", "-e", default=None, help="Email address placed in the subject.")
@click.pass_context
def issue_command(
    ctx: click.Context,
    agent_id: str,
    name: str,
    organization: Optional[str],
    email: Optional[str],
) -> None:
    """Issue (or reuse) a certificate for AGENT_ID."""
    from agent_mtls.certificates.agent_cert import AgentInfo

    info = AgentInfo(name=name, organization=organization, email=email)
    with _open_provider(ctx) as provider:
        try:
            cert = provider.issue(agent_id, info)
        except MTLSError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            sys.exit(1)
        agent_dir = _cert_dir(ctx) / agent_id

    console.print(f"[green]Certificate ready[/green] for agent [bold]{agent_id}[/bold]")
    console.print(f"  Serial:   {cert.serial_number}")
    console.print(f"  Issued:   {cert.issued_at.isoformat()}")
    console.print(f"  Expires:  {cert.expires_at.isoformat()}")
    console.print(f"  Files:    {agent_dir}")


@cert_group.command(name="validate")
@click.argument("agent_id")
@click.argument("cert_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def validate_command(ctx: click.Context, agent_id: str, cert_file: Path) -> None:
    """Validate CERT_FILE as a certificate for AGENT_ID."""
    with _open_provider(ctx) as provider:
        valid = provider.validate(cert_file.read_bytes(), agent_id)

    if valid:
        console.print(f"  [green]PASS[/green]  Certificate is valid for {agent_id!r}.")
    else:
        console.print(f"  [red]FAIL[/red]  Certificate is not valid for {agent_id!r}.")
        sys.exit(1)


@cert_group.command(name="revoke")
@click.argument("agent_id")
@click.pass_context
def revoke_command(ctx: click.Context, agent_id: str) -> None:
    """Revoke the certificate held by AGENT_ID."""
    with _open_provider(ctx) as provider:
        try:
            revoked = provider.revoke(agent_id)
        except MTLSError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            sys.exit(1)

    if revoked:
        console.print(f"[yellow]Revoked[/yellow] certificate for agent [bold]{agent_id}[/bold]")
    else:
        console.print(f"No certificate found for agent {agent_id!r}.")


@cert_group.command(name="status")
@click.argument("agent_id")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a table.")
@click.pass_context
def status_command(ctx: click.Context, agent_id: str, as_json: bool) -> None:
    """Show the certificate status of AGENT_ID."""
    with _open_provider(ctx) as provider:
        status = provider.status(agent_id)

    if status is None:
        console.print(f"[red]Error:[/red] No certificate found for agent {agent_id!r}.")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(status.to_dict(), indent=2))
        return

    style = _STATUS_STYLES.get(status.status.value, "white")
    console.print(f"[bold]Agent:[/bold]   {status.agent_id}")
    console.print(f"[bold]Status:[/bold]  [{style}]{status.status.value}[/{style}]")
    console.print(f"[bold]Serial:[/bold]  {status.serial_number}")
    console.print(f"[bold]Issued:[/bold]  {status.issued_at.isoformat()}")
    console.print(f"[bold]Expires:[/bold] {status.expires_at.isoformat()}")


@cert_group.command(name="list")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a table.")
@click.pass_context
def list_command(ctx: click.Context, as_json: bool) -> None:
    """List all issued agent certificates."""
    with _open_provider(ctx) as provider:
        statuses = provider.list_statuses()

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in statuses], indent=2))
        return

    if not statuses:
        console.print("No certificates issued.")
        return

    table = Table(title="Agent Certificates", show_header=True)
    table.add_column("Agent ID", style="bold")
    table.add_column("Serial", justify="right")
    table.add_column("Expires")
    table.add_column("Status")

    for status in statuses:
        style = _STATUS_STYLES.get(status.status.value, "white")
        table.add_row(
            status.agent_id,
            str(status.serial_number),
            status.expires_at.isoformat(),
            f"[{style}]{status.status.value}[/{style}]",
        )

    console.print(table)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _build_config(ctx: click.Context) -> MTLSConfig:
    overrides: dict[str, object] = {}
    if ctx.obj.get("cert_path") is not None:
        overrides["cert_path"] = ctx.obj["cert_path"]
    if ctx.obj.get("validity_days") is not None:
        overrides["certificate_validity_days"] = ctx.obj["validity_days"]
    return MTLSConfig(**overrides)


def _cert_dir(ctx: click.Context) -> Path:
    """Return the certificate directory the current invocation uses."""
    return Path(ctx.obj["config"].cert_path)


def _open_provider(ctx: click.Context) -> MutualTLSProvider:
    """Construct the provider, exiting with status 1 on startup failure."""
    config = _build_config(ctx)
    ctx.obj["config"] = config
    try:
        return MutualTLSProvider(config)
    except MTLSError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
