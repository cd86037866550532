"""Shared fixtures: in-memory collaborators that record every call."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from mailbox_offboard.auth import AuthenticationError
from mailbox_offboard.models import OffboardingRequest
from mailbox_offboard.workflow import OffboardingWorkflow


NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


class FakeMailbox:
    def __init__(self, calls: List[Tuple[Any, ...]], fail: Optional[Set[str]] = None) -> None:
        self.calls = calls
        self.fail = fail or set()
        self.auth_error: Optional[AuthenticationError] = None

    def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.fail or (name, *args) in self.fail:
            raise RuntimeError(f"{name} rejected")

    def connect(self) -> None:
        self.calls.append(("connect",))
        if self.auth_error:
            raise self.auth_error

    def set_mailbox_type_shared(self, mailbox: str) -> None:
        self._call("convert", mailbox)

    def grant_full_access(self, mailbox: str, trustee: str) -> None:
        self._call("full_access", mailbox, trustee)

    def grant_send_as(self, mailbox: str, trustee: str) -> None:
        self._call("send_as", mailbox, trustee)

    def set_forwarding(self, mailbox: str, target: str, keep_copy: bool) -> None:
        self._call("forward", mailbox, target, keep_copy)

    def set_auto_reply(self, mailbox: str, start: datetime, end: datetime, message: str) -> None:
        self._call("auto_reply", mailbox, start, end, message)


class FakeAuditStore:
    def __init__(self, calls: List[Tuple[Any, ...]], fail: bool = False) -> None:
        self.calls = calls
        self.fail = fail
        self.tables: Dict[str, Dict[Tuple[str, str], Any]] = {}

    def ensure_table(self, account: str) -> bool:
        self.calls.append(("ensure_table", account))
        created = account not in self.tables
        self.tables.setdefault(account, {})
        return created

    def upsert_record(self, account: str, record: Any) -> None:
        self.calls.append(("upsert", account, record))
        if self.fail:
            raise RuntimeError("403: AuthorizationPermissionMismatch")
        self.tables[account][(record.partition_key, record.row_key)] = record


class FakeMailer:
    def __init__(self, calls: List[Tuple[Any, ...]], fail: bool = False) -> None:
        self.calls = calls
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    def send_mail(self, recipients, subject: str, html_body: str) -> None:
        self.calls.append(("send_mail", list(recipients)))
        if self.fail:
            raise RuntimeError("403: ErrorAccessDenied")
        self.sent.append({"recipients": list(recipients), "subject": subject, "body": html_body})


class Harness:
    def __init__(self) -> None:
        self.calls: List[Tuple[Any, ...]] = []
        self.mailbox = FakeMailbox(self.calls)
        self.audit_store = FakeAuditStore(self.calls)
        self.mailer = FakeMailer(self.calls)
        self.workflow = OffboardingWorkflow(
            mailbox=self.mailbox,
            audit_store=self.audit_store,
            mailer=self.mailer,
            clock=lambda: NOW,
        )

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def make_request():
    def _make(**overrides: Any) -> OffboardingRequest:
        data: Dict[str, Any] = {
            "ticket_ref": "CHG0012345",
            "proof_link": "https://tickets.acme.com/CHG0012345",
            "source_user": "jdoe@acme.com",
            "target_user": "mgr@acme.com",
            "additional_delegates": "",
            "convert_to_shared": True,
            "keep_copy_on_forward": False,
            "grant_full_access": True,
            "grant_send_as": False,
            "oof_template": "LeftCompany",
            "oof_end_date": NOW + timedelta(days=90),
            "audit_store_name": "acmeauditstore",
            "notification_email": "hr-requests@acme.com",
        }
        data.update(overrides)
        return OffboardingRequest.from_dict(data, now=NOW)

    return _make
