"""Microsoft Graph helper used to deliver the execution report."""
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote

import requests

from .auth import GRAPH_RESOURCE, TokenProvider
from .config import MailConfig


GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
REQUEST_TIMEOUT = 30


class M365ClientError(RuntimeError):
    """Base exception for Microsoft 365 client operations."""


class M365GraphError(M365ClientError):
    """Raised when the Microsoft Graph API returns an error."""

    def __init__(self, status_code: int, error: str, description: str) -> None:
        super().__init__(f"{status_code}: {error} - {description}")
        self.status_code = status_code
        self.error = error
        self.description = description


class M365Client:
    """Lightweight Microsoft Graph client for sending mail as a service mailbox."""

    def __init__(
        self,
        config: MailConfig,
        tokens: TokenProvider,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config
        self._tokens = tokens
        self._session = session or requests.Session()

    @property
    def sender_address(self) -> str:
        return self._config.sender_address

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = GRAPH_BASE_URL + path
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Authorization", f"Bearer {self._tokens.acquire(GRAPH_RESOURCE)}")
        headers.setdefault("Accept", "application/json")
        if "json" in kwargs:
            headers.setdefault("Content-Type", "application/json")

        response = self._session.request(
            method,
            url,
            timeout=REQUEST_TIMEOUT,
            headers=headers,
            **kwargs,
        )
        if response.status_code in (202, 204):
            return {}

        if response.status_code >= 400:
            try:
                payload = response.json()
                error = payload.get("error", {})
                code = error.get("code", "GraphError")
                message = error.get("message", response.text)
            except ValueError:
                code = "GraphError"
                message = response.text or "Unknown Graph error."
            raise M365GraphError(response.status_code, code, message)

        return response.json()

    def send_mail(self, recipients: Iterable[str], subject: str, html_body: str) -> None:
        """Send an HTML message from the configured sender mailbox."""

        to_recipients = [
            {"emailAddress": {"address": address}} for address in recipients if address
        ]
        if not to_recipients:
            raise M365ClientError("At least one recipient is required.")

        payload = {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": html_body},
                "toRecipients": to_recipients,
            },
            "saveToSentItems": self._config.save_to_sent_items,
        }
        sender = quote(self.sender_address, safe="@")
        self._request("POST", f"/users/{sender}/sendMail", json=payload)


__all__ = ["M365Client", "M365ClientError", "M365GraphError"]
