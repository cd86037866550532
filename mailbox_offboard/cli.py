"""Command line interface for the mailbox offboarding toolkit."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from .auth import AuthenticationError
from .config import AppConfig, ConfigurationError, load_config
from .models import OffboardingRequest, OofTemplate, RequestValidationError, add_months, utc_now
from .templates import render_auto_reply
from .workflow import build_workflow

app = typer.Typer(help="Offboard departing employees' Exchange Online mailboxes.")


def _load_configuration(config_path: Optional[Path]) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("offboard")
def offboard(
    ticket_ref: str = typer.Option(..., "--ticket-ref", help="Change ticket authorising the offboarding."),
    source_user: str = typer.Option(..., "--source-user", help="Mailbox being offboarded."),
    target_user: str = typer.Option(..., "--target-user", help="Primary delegate and forwarding recipient."),
    audit_store_name: str = typer.Option(
        ..., "--audit-store", help="Storage account holding the audit table."
    ),
    notification_email: str = typer.Option(
        ..., "--notify", help="Recipient of the execution report."
    ),
    proof_link: Optional[str] = typer.Option(None, "--proof-link", help="URL of the approval evidence."),
    additional_delegates: str = typer.Option(
        "", "--delegates", help="Comma-separated extra permission recipients."
    ),
    convert_to_shared: bool = typer.Option(
        True, "--convert-to-shared/--no-convert-to-shared", help="Convert to a shared mailbox."
    ),
    keep_copy_on_forward: bool = typer.Option(
        False, "--keep-copy/--no-keep-copy", help="Keep a copy of forwarded mail in the mailbox."
    ),
    grant_full_access: bool = typer.Option(
        True, "--full-access/--no-full-access", help="Grant Full Access to every delegate."
    ),
    grant_send_as: bool = typer.Option(
        False, "--send-as/--no-send-as", help="Grant Send As to every delegate."
    ),
    oof_template: OofTemplate = typer.Option(
        OofTemplate.LEFT_COMPANY, "--oof-template", help="Auto-reply template.", case_sensitive=False
    ),
    oof_end_date: Optional[datetime] = typer.Option(
        None, "--oof-end-date", help="Auto-reply end and forwarding expiry (UTC). Defaults to three months."
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Convert, delegate, forward and audit a departing user's mailbox."""

    _configure_logging(verbose)
    config = _load_configuration(config_path)

    try:
        request = OffboardingRequest.from_dict(
            {
                "ticket_ref": ticket_ref,
                "proof_link": proof_link,
                "source_user": source_user,
                "target_user": target_user,
                "additional_delegates": additional_delegates,
                "convert_to_shared": convert_to_shared,
                "keep_copy_on_forward": keep_copy_on_forward,
                "grant_full_access": grant_full_access,
                "grant_send_as": grant_send_as,
                "oof_template": oof_template,
                "oof_end_date": oof_end_date,
                "audit_store_name": audit_store_name,
                "notification_email": notification_email,
            }
        )
    except RequestValidationError as exc:
        typer.echo(f"Invalid request: {exc}", err=True)
        raise typer.Exit(code=1)

    workflow = build_workflow(config)
    try:
        outcome = workflow.run(request)
    except AuthenticationError as exc:
        typer.echo(f"Authentication failed, nothing was changed: {exc}", err=True)
        raise typer.Exit(code=1)

    for line in outcome.log.lines():
        typer.echo(line)

    if not outcome.report_sent:
        typer.echo(
            f"Warning: the execution report could not be sent to {request.notification_email}: "
            f"{outcome.report_error}",
            err=True,
        )


@app.command("preview-reply")
def preview_reply(
    target_user: str = typer.Argument(..., help="Address quoted in the auto-reply."),
    template: OofTemplate = typer.Option(
        OofTemplate.LEFT_COMPANY, "--template", help="Auto-reply template.", case_sensitive=False
    ),
    end_date: Optional[datetime] = typer.Option(
        None, "--end-date", help="Absence end date. Defaults to three months from now."
    ),
) -> None:
    """Print the auto-reply body a template would produce."""

    effective_end = end_date or add_months(utc_now(), 3)
    body = render_auto_reply(template, target_user, effective_end)
    if body is None:
        typer.echo("Template 'None' does not configure an auto-reply.")
        raise typer.Exit(code=0)
    typer.echo(body)


def run():
    app()


if __name__ == "__main__":
    run()
