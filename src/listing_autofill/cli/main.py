"""
Typer application exposing the listing auto-fill workflow.

Commands:

- ``providers list`` shows every registered provider binding.
- ``providers resolve CAPABILITY`` reports which provider currently serves a capability.
- ``lookup IDENTIFIER --type plate|vin`` runs one auto-fill request and prints
  the certified fields and per-source outcomes.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from ..config import load_settings
from ..core import Capability, ConfigurationLoadError, ConfigurationSnapshot, configure_logging
from ..core.resolver import CapabilityResolver, ConfigurationError
from ..services import AutofillService, ValidationError, load_provider_config

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Vehicle listing auto-fill CLI.\n\n"
        "Command groups:\n"
        "- providers: inspect provider bindings and capability resolution.\n"
        "- lookup: fetch certified vehicle facts for a plate or VIN."
    ),
)
providers_app = typer.Typer(help="Inspect provider registrations and which implementation serves each capability.")
app.add_typer(providers_app, name="providers")

_CAPABILITY_CHOICES = ", ".join(item.value for item in Capability)


def _parse_capability(value: str) -> Capability:
    try:
        return Capability(value.strip().lower())
    except ValueError:
        raise typer.BadParameter(f"Unknown capability '{value}'. Expected one of: {_CAPABILITY_CHOICES}.") from None


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    providers_file: Optional[Path] = typer.Option(
        None,
        "--providers",
        "-p",
        help="Override provider configuration YAML file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (defaults to AUTOFILL_LOG_LEVEL or INFO)."),
) -> None:
    """
    Load the provider configuration and store it in Typer's state so child
    commands can retrieve it via :class:`typer.Context`.
    """

    configure_logging(log_level, force=log_level is not None)
    try:
        snapshot = load_provider_config(providers_file)
    except ConfigurationLoadError as exc:
        typer.echo(f"Failed to load provider configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    state = ctx.ensure_object(dict)
    state["snapshot"] = snapshot


def _require_snapshot(ctx: typer.Context) -> ConfigurationSnapshot:
    state = ctx.ensure_object(dict)
    snapshot = state.get("snapshot")
    if not isinstance(snapshot, ConfigurationSnapshot):
        raise typer.Exit(code=2)
    return snapshot


def _require_service(ctx: typer.Context) -> AutofillService:
    state = ctx.ensure_object(dict)
    service = state.get("service")
    if isinstance(service, AutofillService):
        return service
    service = AutofillService.build_default(snapshot=_require_snapshot(ctx), settings=load_settings(strict=False))
    state["service"] = service
    return service


@providers_app.command("list")
def providers_list(
    ctx: typer.Context,
    capability: Optional[str] = typer.Option(None, "--capability", "-c", help="Only show providers for this capability."),
    output_json: bool = typer.Option(False, "--json", help="Emit registrations in JSON format."),
) -> None:
    """List registered providers and their activation status."""

    snapshot = _require_snapshot(ctx)
    selected = _parse_capability(capability) if capability else None
    entries = sorted(snapshot.registrations(selected), key=lambda item: (item.capability.value, item.key))

    if output_json:
        typer.echo(json.dumps([item.to_dict() for item in entries], ensure_ascii=False, indent=2))
        return

    if not entries:
        typer.echo("No providers match the requested filters.")
        raise typer.Exit(code=0)

    header = f"{'Capability':<16} {'Key':<22} {'Status':<9} {'Cost':>6}  Name"
    typer.echo(header)
    typer.echo("-" * len(header))
    for entry in entries:
        typer.echo(f"{entry.capability.value:<16} {entry.key:<22} {entry.status.value:<9} {entry.cost_per_call:>6.2f}  {entry.name or ''}")


@providers_app.command("resolve")
def providers_resolve(
    ctx: typer.Context,
    capability: str = typer.Argument(..., help=f"Capability to resolve ({_CAPABILITY_CHOICES})."),
    output_json: bool = typer.Option(False, "--json", help="Emit the resolution in JSON format."),
) -> None:
    """Show which provider key serves a capability and whether it is a fallback."""

    target = _parse_capability(capability)
    resolver = CapabilityResolver(_require_snapshot(ctx), settings=load_settings(strict=False))
    try:
        resolution = resolver.describe(target)
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    payload = {
        "capability": resolution.capability.value,
        "provider_key": resolution.provider_key,
        "fallback": resolution.fallback,
        "reason": resolution.reason,
    }
    if output_json:
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    typer.echo(f"Capability: {payload['capability']}")
    typer.echo(f"Provider: {payload['provider_key']}")
    if resolution.fallback:
        typer.echo(f"Fallback: yes ({resolution.reason})")


@app.command("lookup")
def lookup(
    ctx: typer.Context,
    identifier: str = typer.Argument(..., help="License plate (AB-123-CD) or 17-character VIN."),
    identifier_type: str = typer.Option("plate", "--type", "-t", help="Identifier type: 'plate' or 'vin'."),
    user_id: Optional[str] = typer.Option(None, "--user", help="User id recorded in the audit trail."),
    output_json: bool = typer.Option(False, "--json", help="Emit the raw {fields, sources} document."),
) -> None:
    """Auto-fill listing facts for a vehicle."""

    service = _require_service(ctx)
    try:
        result = service.autofill(identifier, identifier_type, user_id=user_id)
    except ValidationError as exc:
        typer.echo(f"Invalid request: {exc}", err=True)
        raise typer.Exit(code=2) from exc

    if output_json:
        typer.echo(result.to_json())
        return

    typer.echo(f"Listing draft: {result.listing_id}")
    typer.echo("")
    typer.echo(f"{'Source':<16} {'Provider':<18} {'Status':<8} Detail")
    for source in result.sources:
        detail = source.error_message or (f"{source.response_time_ms} ms" if source.response_time_ms is not None else "")
        typer.echo(f"{source.capability:<16} {source.provider_key or '-':<18} {source.status.value:<8} {detail}")

    typer.echo("")
    if not result.fields:
        typer.echo("No certified fields were extracted.")
        return
    for item in result.fields:
        typer.echo(f"{item.field_name:<18} {item.field_value:<28} [{item.source}]")


if __name__ == "__main__":  # pragma: no cover
    app()
