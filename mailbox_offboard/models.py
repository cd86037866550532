"""Data models for offboarding requests, execution logs and audit records."""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import urlparse


DEFAULT_OOF_MONTHS = 3
AUDIT_ACTION = "DisableForwarding"
AUDIT_STATUS = "Active"

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# Whitespace, quotes and backticks never belong in a mailbox identity.
_UNSAFE_ADDRESS_CHARS = re.compile("[\\s'\"`‘’‚‛“”„]")


class RequestValidationError(ValueError):
    """Raised when an offboarding request fails validation."""


class OofTemplate(str, Enum):
    """Auto-reply template applied to the departing mailbox."""

    LEFT_COMPANY = "LeftCompany"
    LONG_LEAVE = "LongLeave"
    NONE = "None"

    @classmethod
    def parse(cls, raw: Any) -> "OofTemplate":
        if isinstance(raw, cls):
            return raw
        cleaned = str(raw or "").strip().lower()
        for member in cls:
            if member.value.lower() == cleaned:
                return member
        choices = ", ".join(member.value for member in cls)
        raise RequestValidationError(f"Unknown auto-reply template '{raw}'. Expected one of: {choices}.")


class Severity(str, Enum):
    INFO = "Info"
    SUCCESS = "Success"
    ERROR = "Error"
    CRITICAL_ERROR = "CriticalError"
    WARNING = "Warning"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by calendar months, clamping to the last day of the month."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def format_date(value: datetime) -> str:
    return value.strftime("%d/%m/%Y")


def parse_delegates(raw: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    """Split a comma-separated delegate list, trimming entries and dropping blanks."""

    if raw is None:
        return ()
    values = raw.split(",") if isinstance(raw, str) else list(raw)
    return tuple(cleaned for cleaned in (str(value or "").strip() for value in values) if cleaned)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_end_date(raw: Any, now: datetime) -> datetime:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return add_months(now, DEFAULT_OOF_MONTHS)
    if isinstance(raw, datetime):
        value = raw
    else:
        try:
            value = datetime.fromisoformat(str(raw).strip())
        except ValueError as exc:
            raise RequestValidationError(f"Invalid auto-reply end date '{raw}'.") from exc
    value = _as_utc(value)
    if value <= now:
        raise RequestValidationError(
            f"Auto-reply end date {value.isoformat()} must be in the future."
        )
    return value


def _require_text(data: Dict[str, Any], key: str) -> str:
    value = str(data.get(key) or "").strip()
    if not value:
        raise RequestValidationError(f"'{key}' is required.")
    return value


def _check_address(value: str, key: str) -> str:
    local, _, domain = value.rpartition("@")
    if not local or not domain or _UNSAFE_ADDRESS_CHARS.search(value):
        raise RequestValidationError(f"'{key}' must be an e-mail address, got '{value}'.")
    return value


def _require_address(data: Dict[str, Any], key: str) -> str:
    return _check_address(_require_text(data, key), key)


def _require_flag(data: Dict[str, Any], key: str) -> Any:
    if data.get(key) is None:
        raise RequestValidationError(f"'{key}' is required.")
    return data[key]


def _optional_url(raw: Any) -> Optional[str]:
    cleaned = str(raw or "").strip()
    if not cleaned:
        return None
    parsed = urlparse(cleaned)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise RequestValidationError(f"'proof_link' must be an http(s) URL, got '{cleaned}'.")
    return cleaned


@dataclass(frozen=True)
class OffboardingRequest:
    """A validated, read-only description of one mailbox offboarding."""

    ticket_ref: str
    source_user: str
    target_user: str
    oof_end_date: datetime
    audit_store_name: str
    notification_email: str
    proof_link: Optional[str] = None
    additional_delegates: Tuple[str, ...] = ()
    convert_to_shared: bool = True
    keep_copy_on_forward: bool = False
    grant_full_access: bool = True
    grant_send_as: bool = False
    oof_template: OofTemplate = OofTemplate.LEFT_COMPANY

    @classmethod
    def from_dict(cls, data: Dict[str, Any], now: Optional[datetime] = None) -> "OffboardingRequest":
        """Validate raw inputs and build a request.

        ``now`` anchors the default auto-reply end date and the future-date check.
        """

        current = _as_utc(now) if now else utc_now()
        notification_email = _require_text(data, "notification_email")
        if not _EMAIL_PATTERN.match(notification_email):
            raise RequestValidationError(
                f"'notification_email' must be a valid e-mail address, got '{notification_email}'."
            )

        return cls(
            ticket_ref=_require_text(data, "ticket_ref"),
            proof_link=_optional_url(data.get("proof_link")),
            source_user=_require_address(data, "source_user"),
            target_user=_require_address(data, "target_user"),
            additional_delegates=tuple(
                _check_address(delegate, "additional_delegates")
                for delegate in parse_delegates(data.get("additional_delegates"))
            ),
            convert_to_shared=_to_bool(_require_flag(data, "convert_to_shared")),
            keep_copy_on_forward=_to_bool(_require_flag(data, "keep_copy_on_forward")),
            grant_full_access=_to_bool(_require_flag(data, "grant_full_access")),
            grant_send_as=_to_bool(_require_flag(data, "grant_send_as")),
            oof_template=OofTemplate.parse(_require_flag(data, "oof_template")),
            oof_end_date=_parse_end_date(data.get("oof_end_date"), current),
            audit_store_name=_require_text(data, "audit_store_name"),
            notification_email=notification_email,
        )

    @property
    def delegates(self) -> Tuple[str, ...]:
        """Permission recipients: the target user first, then extra delegates in order."""

        return (self.target_user, *self.additional_delegates)

    @property
    def source_domain(self) -> str:
        return self.source_user.rsplit("@", 1)[1]


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    severity: Severity
    message: str

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] [{self.severity.value}] {self.message}"


@dataclass
class ExecutionLog:
    """Append-only, chronologically ordered record of one workflow run."""

    _entries: List[LogEntry] = field(default_factory=list)

    def append(self, entry: LogEntry) -> LogEntry:
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    def with_severity(self, severity: Severity) -> List[LogEntry]:
        return [entry for entry in self._entries if entry.severity is severity]

    def lines(self) -> List[str]:
        return [entry.format() for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self.entries)


@dataclass(frozen=True)
class AuditRecord:
    """Row tracking the pending forwarding cleanup for an offboarded mailbox."""

    partition_key: str
    row_key: str
    user_email: str
    expiry_date: datetime
    ticket_ref: str
    proof_link: str = ""
    action: str = AUDIT_ACTION
    status: str = AUDIT_STATUS

    @classmethod
    def from_request(cls, request: OffboardingRequest) -> "AuditRecord":
        return cls(
            partition_key=request.source_domain,
            row_key=request.source_user.replace("@", "_"),
            user_email=request.source_user,
            expiry_date=request.oof_end_date,
            ticket_ref=request.ticket_ref,
            proof_link=request.proof_link or "",
        )

    def to_entity(self) -> Dict[str, Any]:
        expiry = _as_utc(self.expiry_date).strftime("%Y-%m-%dT%H:%M:%SZ")
        return {
            "PartitionKey": self.partition_key,
            "RowKey": self.row_key,
            "userEmail": self.user_email,
            "action": self.action,
            "expiryDate": expiry,
            "expiryDate@odata.type": "Edm.DateTime",
            "status": self.status,
            "ticketRef": self.ticket_ref,
            "proofLink": self.proof_link,
        }


__all__ = [
    "AuditRecord",
    "ExecutionLog",
    "LogEntry",
    "OffboardingRequest",
    "OofTemplate",
    "RequestValidationError",
    "Severity",
    "add_months",
    "format_date",
    "parse_delegates",
    "utc_now",
]
