"""Azure Table storage client for the offboarding audit trail."""
from __future__ import annotations

import logging
from email.utils import formatdate
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from .auth import STORAGE_RESOURCE, TokenProvider
from .config import AuditConfig
from .models import AuditRecord


TABLE_API_VERSION = "2019-02-02"

logger = logging.getLogger(__name__)


class AuditStoreError(RuntimeError):
    """Raised when the Table service rejects a request."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(f"{status_code}: {code} - {message}")
        self.status_code = status_code
        self.code = code
        self.message = message


def _key_literal(value: str) -> str:
    return quote("'" + value.replace("'", "''") + "'", safe="'")


class AuditStore:
    """Upsert audit rows into a table of the given storage account."""

    def __init__(
        self,
        config: AuditConfig,
        tokens: TokenProvider,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config
        self._tokens = tokens
        self._session = session or requests.Session()

    @property
    def table_name(self) -> str:
        return self._config.table_name

    def endpoint(self, account: str) -> str:
        return f"https://{account}.table.{self._config.endpoint_suffix}"

    def ensure_table(self, account: str) -> bool:
        """Create the audit table; returns ``False`` when it already existed."""

        try:
            self._request("POST", account, "/Tables", json={"TableName": self.table_name})
        except AuditStoreError as exc:
            if exc.status_code == 409 and exc.code == "TableAlreadyExists":
                return False
            raise
        logger.info("Created audit table %s in %s", self.table_name, account)
        return True

    def upsert_record(self, account: str, record: AuditRecord) -> None:
        """Insert or replace the row identified by the record's keys."""

        path = (
            f"/{self.table_name}(PartitionKey={_key_literal(record.partition_key)},"
            f"RowKey={_key_literal(record.row_key)})"
        )
        self._request("PUT", account, path, json=record.to_entity())
        logger.info(
            "Upserted audit row %s/%s in %s", record.partition_key, record.row_key, self.table_name
        )

    def _request(self, method: str, account: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = self.endpoint(account) + path
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Authorization", f"Bearer {self._tokens.acquire(STORAGE_RESOURCE)}")
        headers.setdefault("x-ms-version", TABLE_API_VERSION)
        headers.setdefault("x-ms-date", formatdate(usegmt=True))
        headers.setdefault("Accept", "application/json;odata=nometadata")
        headers.setdefault("DataServiceVersion", "3.0")
        if "json" in kwargs:
            headers.setdefault("Content-Type", "application/json")
            headers.setdefault("Prefer", "return-no-content")

        response = self._session.request(
            method,
            url,
            timeout=self._config.request_timeout,
            headers=headers,
            **kwargs,
        )
        if response.status_code == 204:
            return {}

        if response.status_code >= 400:
            try:
                payload = response.json()
                error = payload.get("odata.error", {})
                code = error.get("code", "TableError")
                message = error.get("message", {})
                if isinstance(message, dict):
                    message = message.get("value", response.text)
            except ValueError:
                code = "TableError"
                message = response.text or "Unknown Table service error."
            raise AuditStoreError(response.status_code, code, str(message))

        if not response.content:
            return {}
        return response.json()


__all__ = ["AuditStore", "AuditStoreError", "TABLE_API_VERSION"]
