"""Auto-reply bodies and the execution report e-mail."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from jinja2 import Environment, StrictUndefined

from .models import ExecutionLog, LogEntry, OffboardingRequest, OofTemplate, Severity, format_date


_env = Environment(autoescape=True, undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True)
_env.filters["ddmmyyyy"] = format_date


AUTO_REPLY_TEMPLATES = {
    OofTemplate.LEFT_COMPANY: _env.from_string(
        "<p>Bonjour,</p>"
        "<p>Je ne fais plus partie de l'entreprise. "
        "Pour toute demande, merci de contacter {{ target_user }}.</p>"
        "<p>Hello,</p>"
        "<p>I have left the company. "
        "For any inquiries, please contact {{ target_user }}.</p>"
    ),
    OofTemplate.LONG_LEAVE: _env.from_string(
        "<p>Bonjour,</p>"
        "<p>Je suis absent(e) jusqu'au {{ end_date | ddmmyyyy }}. "
        "Pour toute demande urgente, merci de contacter {{ target_user }}.</p>"
        "<p>Hello,</p>"
        "<p>I am away until {{ end_date | ddmmyyyy }}. "
        "For urgent matters, please contact {{ target_user }}.</p>"
    ),
}


REPORT_TEMPLATE = _env.from_string(
    """<html>
<body style="font-family: Segoe UI, Arial, sans-serif; font-size: 13px; color: #1f2937;">
<h3>Mailbox offboarding: {{ report.source_user }}</h3>
<p>
<strong>Ticket reference:</strong> {{ report.ticket_ref }}<br>
{% if report.proof_link %}
<strong>Approval evidence:</strong> <a href="{{ report.proof_link }}">{{ report.proof_link }}</a><br>
{% endif %}
<strong>Forwarding expiry:</strong> {{ report.expiry_date | ddmmyyyy }}
</p>
<hr>
<p style="font-family: Consolas, monospace;">
{% for entry in report.entries %}
{% set style = severity_styles.get(entry.severity.value) %}{% if style %}<span style="{{ style }}">{{ entry.format() }}</span>{% else %}{{ entry.format() }}{% endif %}<br>
{% endfor %}
</p>
</body>
</html>
"""
)

SEVERITY_STYLES = {
    Severity.CRITICAL_ERROR.value: (
        "background-color: #b91c1c; color: #ffffff; font-weight: bold; padding: 1px 4px;"
    ),
    Severity.ERROR.value: "color: #b91c1c;",
    Severity.WARNING.value: "color: #b45309;",
}


def render_auto_reply(template: OofTemplate, target_user: str, end_date: datetime) -> Optional[str]:
    """Render the auto-reply body, or ``None`` for :attr:`OofTemplate.NONE`."""

    compiled = AUTO_REPLY_TEMPLATES.get(template)
    if compiled is None:
        return None
    return compiled.render(target_user=target_user, end_date=end_date)


@dataclass(frozen=True)
class ExecutionReport:
    source_user: str
    ticket_ref: str
    proof_link: Optional[str]
    expiry_date: datetime
    entries: Tuple[LogEntry, ...]

    @classmethod
    def build(cls, request: OffboardingRequest, log: ExecutionLog) -> "ExecutionReport":
        return cls(
            source_user=request.source_user,
            ticket_ref=request.ticket_ref,
            proof_link=request.proof_link,
            expiry_date=request.oof_end_date,
            entries=log.entries,
        )

    @property
    def subject(self) -> str:
        return f"Mailbox offboarding: {self.source_user} [{self.ticket_ref}]"

    def render_html(self) -> str:
        return REPORT_TEMPLATE.render(report=self, severity_styles=SEVERITY_STYLES)


__all__ = ["AUTO_REPLY_TEMPLATES", "SEVERITY_STYLES", "ExecutionReport", "render_auto_reply"]
