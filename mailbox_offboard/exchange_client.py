"""Exchange Online mailbox operations run through PowerShell."""
from __future__ import annotations

import logging
import os
import subprocess
from datetime import datetime, timezone
from typing import Callable, Optional

from .auth import EXCHANGE_RESOURCE, AuthenticationError, TokenProvider
from .config import ExchangeConfig


TOKEN_ENV_VAR = "EXO_ACCESS_TOKEN"
SUCCESS_MARKER = "SUCCESS"

logger = logging.getLogger(__name__)

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class ExchangeClientError(RuntimeError):
    """Base exception for Exchange Online operations."""


class ExchangeCommandError(ExchangeClientError):
    """Raised when an Exchange cmdlet fails."""


# PowerShell accepts the typographic single quotes as literal delimiters too.
PS_SINGLE_QUOTES = ("'", "‘", "’", "‚", "‛")


def ps_quote(value: str) -> str:
    """Render ``value`` as a single-quoted PowerShell string literal."""

    escaped = str(value)
    for quote_char in PS_SINGLE_QUOTES:
        escaped = escaped.replace(quote_char, quote_char * 2)
    return "'" + escaped + "'"


def _ps_bool(value: bool) -> str:
    return "$true" if value else "$false"


def _ps_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    stamp = value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"([datetime]::Parse({ps_quote(stamp)}).ToUniversalTime())"


class ExchangeClient:
    """Run mailbox cmdlets against Exchange Online with an app-only access token.

    Every operation starts a fresh PowerShell process which connects, runs a
    single cmdlet and disconnects. The token is handed over through the child
    environment so it never appears on a command line.
    """

    def __init__(
        self,
        config: ExchangeConfig,
        tokens: TokenProvider,
        runner: Optional[Runner] = None,
    ) -> None:
        self._config = config
        self._tokens = tokens
        self._runner = runner or subprocess.run
        self._access_token: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._access_token is not None

    def connect(self) -> None:
        """Acquire the Exchange Online token; raises :class:`AuthenticationError`."""

        self._access_token = self._tokens.acquire(EXCHANGE_RESOURCE)
        logger.info("Authenticated to Exchange Online for %s", self._config.organization)

    # ------------------------------------------------------------------ #
    # Mailbox operations                                                 #
    # ------------------------------------------------------------------ #
    def set_mailbox_type_shared(self, mailbox: str) -> None:
        self._invoke(f"Set-Mailbox -Identity {ps_quote(mailbox)} -Type Shared")

    def grant_full_access(self, mailbox: str, trustee: str) -> None:
        self._invoke(
            f"Add-MailboxPermission -Identity {ps_quote(mailbox)} -User {ps_quote(trustee)} "
            "-AccessRights FullAccess -InheritanceType All -AutoMapping $false -Confirm:$false"
        )

    def grant_send_as(self, mailbox: str, trustee: str) -> None:
        self._invoke(
            f"Add-RecipientPermission -Identity {ps_quote(mailbox)} -Trustee {ps_quote(trustee)} "
            "-AccessRights SendAs -Confirm:$false"
        )

    def set_forwarding(self, mailbox: str, target: str, keep_copy: bool) -> None:
        self._invoke(
            f"Set-Mailbox -Identity {ps_quote(mailbox)} -ForwardingAddress {ps_quote(target)} "
            f"-DeliverToMailboxAndForward {_ps_bool(keep_copy)}"
        )

    def set_auto_reply(self, mailbox: str, start: datetime, end: datetime, message: str) -> None:
        """Schedule the same auto-reply for internal and external senders."""

        quoted = ps_quote(message)
        self._invoke(
            f"Set-MailboxAutoReplyConfiguration -Identity {ps_quote(mailbox)} "
            f"-AutoReplyState Scheduled -StartTime {_ps_datetime(start)} -EndTime {_ps_datetime(end)} "
            f"-InternalMessage {quoted} -ExternalMessage {quoted} -ExternalAudience All"
        )

    # ------------------------------------------------------------------ #
    # PowerShell helpers                                                 #
    # ------------------------------------------------------------------ #
    def build_script(self, command: str) -> str:
        organization = ps_quote(self._config.organization)
        return f"""Import-Module ExchangeOnlineManagement -ErrorAction Stop
$ErrorActionPreference = 'Stop'
$WarningPreference = 'SilentlyContinue'
try {{
    Connect-ExchangeOnline -AccessToken $env:{TOKEN_ENV_VAR} -Organization {organization} -ShowBanner:$false -ErrorAction Stop

    {command} -ErrorAction Stop | Out-Null

    Write-Output '{SUCCESS_MARKER}'
}} catch {{
    Write-Error $_.Exception.Message
    exit 1
}} finally {{
    try {{ Disconnect-ExchangeOnline -Confirm:$false -ErrorAction SilentlyContinue }} catch {{}}
}}"""

    def _invoke(self, command: str) -> str:
        if self._access_token is None:
            raise ExchangeClientError("Exchange Online session is not connected.")

        env = os.environ.copy()
        env[TOKEN_ENV_VAR] = self._access_token
        cmdlet = command.split(" ", 1)[0]
        logger.debug("Running %s", cmdlet)

        try:
            result = self._runner(
                [self._config.powershell_path, "-NoProfile", "-NonInteractive", "-Command", self.build_script(command)],
                capture_output=True,
                text=True,
                timeout=self._config.command_timeout,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ExchangeCommandError(f"PowerShell not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExchangeCommandError(f"{cmdlet} timed out after {exc.timeout}s.") from exc

        if result.returncode != 0 or SUCCESS_MARKER not in (result.stdout or ""):
            error_msg = (result.stderr or "").strip() or (result.stdout or "").strip() or "Unknown error"
            raise ExchangeCommandError(f"{cmdlet} failed: {error_msg}")
        return result.stdout


__all__ = [
    "AuthenticationError",
    "ExchangeClient",
    "ExchangeClientError",
    "ExchangeCommandError",
    "ps_quote",
]
