"""Offboarding workflow: convert, delegate, forward, auto-reply, audit and report."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .audit_store import AuditStore
from .auth import AuthenticationError, TokenProvider
from .config import AppConfig
from .exchange_client import ExchangeClient
from .m365_client import M365Client
from .models import (
    AuditRecord,
    ExecutionLog,
    LogEntry,
    OffboardingRequest,
    OofTemplate,
    Severity,
    format_date,
    utc_now,
)
from .templates import ExecutionReport, render_auto_reply


logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.CRITICAL_ERROR: logging.CRITICAL,
}


@dataclass(frozen=True)
class OffboardingOutcome:
    """Result of a run that got past authentication."""

    log: ExecutionLog
    report_sent: bool
    report_error: Optional[str] = None


class OffboardingWorkflow:
    """Run every offboarding stage once, in order, isolating failures per stage.

    Only authentication failures propagate (as :class:`AuthenticationError`).
    Every other failure becomes a log entry and the run carries on, so the
    requester always receives a report describing what did and did not apply.
    """

    def __init__(
        self,
        mailbox: ExchangeClient,
        audit_store: AuditStore,
        mailer: M365Client,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._mailbox = mailbox
        self._audit_store = audit_store
        self._mailer = mailer
        self._clock = clock or utc_now

    def run(self, request: OffboardingRequest) -> OffboardingOutcome:
        try:
            self._mailbox.connect()
        except AuthenticationError:
            logger.error(
                "Authentication failed; no changes were made to %s (ticket %s).",
                request.source_user,
                request.ticket_ref,
            )
            raise

        log = ExecutionLog()
        self._record(
            log,
            Severity.INFO,
            f"Offboarding {request.source_user} under ticket {request.ticket_ref}.",
        )

        if request.convert_to_shared:
            self._attempt(
                log,
                lambda: self._mailbox.set_mailbox_type_shared(request.source_user),
                f"Mailbox {request.source_user} converted to shared.",
                Severity.ERROR,
                "Conversion to shared mailbox failed",
            )

        self._delegate(log, request)

        self._attempt(
            log,
            lambda: self._mailbox.set_forwarding(
                request.source_user, request.target_user, request.keep_copy_on_forward
            ),
            f"Forwarding to {request.target_user} enabled "
            f"(keep a copy: {'yes' if request.keep_copy_on_forward else 'no'}).",
            Severity.CRITICAL_ERROR,
            f"Forwarding to {request.target_user} was NOT applied",
        )

        if request.oof_template is not OofTemplate.NONE:
            self._auto_reply(log, request)

        self._write_audit(log, request)

        return self._send_report(log, request)

    # ------------------------------------------------------------------ #
    # Stages                                                             #
    # ------------------------------------------------------------------ #
    def _delegate(self, log: ExecutionLog, request: OffboardingRequest) -> None:
        mailbox = request.source_user
        for recipient in request.delegates:
            if request.grant_full_access:
                self._attempt(
                    log,
                    lambda: self._mailbox.grant_full_access(mailbox, recipient),
                    f"Full Access granted to {recipient} (automapping off).",
                    Severity.ERROR,
                    f"Full Access grant to {recipient} failed",
                )
            if request.grant_send_as:
                self._attempt(
                    log,
                    lambda: self._mailbox.grant_send_as(mailbox, recipient),
                    f"Send As granted to {recipient}.",
                    Severity.ERROR,
                    f"Send As grant to {recipient} failed",
                )

    def _auto_reply(self, log: ExecutionLog, request: OffboardingRequest) -> None:
        start = self._clock()

        def apply() -> None:
            message = render_auto_reply(request.oof_template, request.target_user, request.oof_end_date)
            self._mailbox.set_auto_reply(request.source_user, start, request.oof_end_date, message)

        self._attempt(
            log,
            apply,
            f"Auto-reply '{request.oof_template.value}' scheduled until "
            f"{format_date(request.oof_end_date)}.",
            Severity.ERROR,
            "Auto-reply configuration failed",
        )

    def _write_audit(self, log: ExecutionLog, request: OffboardingRequest) -> None:
        record = AuditRecord.from_request(request)
        account = request.audit_store_name

        def write() -> None:
            self._audit_store.ensure_table(account)
            self._audit_store.upsert_record(account, record)

        self._attempt(
            log,
            write,
            f"Audit record {record.partition_key}/{record.row_key} saved "
            f"(action {record.action}, expiry {format_date(record.expiry_date)}).",
            Severity.WARNING,
            "Audit record could not be saved; automated cleanup will not find this "
            "mailbox at expiry and forwarding must be removed manually",
        )

    def _send_report(self, log: ExecutionLog, request: OffboardingRequest) -> OffboardingOutcome:
        report = ExecutionReport.build(request, log)
        try:
            self._mailer.send_mail([request.notification_email], report.subject, report.render_html())
        except Exception as exc:
            logger.error(
                "Execution report for %s could not be sent to %s: %s",
                request.source_user,
                request.notification_email,
                exc,
            )
            return OffboardingOutcome(log=log, report_sent=False, report_error=str(exc))

        logger.info("Execution report sent to %s", request.notification_email)
        return OffboardingOutcome(log=log, report_sent=True)

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #
    def _attempt(
        self,
        log: ExecutionLog,
        action: Callable[[], None],
        success_message: str,
        failure_severity: Severity,
        failure_message: str,
    ) -> None:
        try:
            action()
        except Exception as exc:
            self._record(log, failure_severity, f"{failure_message}: {exc}")
        else:
            self._record(log, Severity.SUCCESS, success_message)

    def _record(self, log: ExecutionLog, severity: Severity, message: str) -> LogEntry:
        entry = log.append(LogEntry(timestamp=self._clock(), severity=severity, message=message))
        logger.log(_LOG_LEVELS[severity], "[%s] %s", severity.value, message)
        return entry


def build_workflow(config: AppConfig) -> OffboardingWorkflow:
    """Wire the workflow to live Exchange, Table storage and Graph clients."""

    tokens = TokenProvider(config.identity)
    return OffboardingWorkflow(
        mailbox=ExchangeClient(config.exchange, tokens),
        audit_store=AuditStore(config.audit, tokens),
        mailer=M365Client(config.mail, tokens),
    )


__all__ = ["OffboardingOutcome", "OffboardingWorkflow", "build_workflow"]
