"""Token acquisition for the process's own identity."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import msal
import requests

from .config import IdentityConfig


EXCHANGE_RESOURCE = "https://outlook.office365.com"
GRAPH_RESOURCE = "https://graph.microsoft.com"
STORAGE_RESOURCE = "https://storage.azure.com"

logger = logging.getLogger(__name__)


class AuthenticationError(RuntimeError):
    """Raised when an access token cannot be acquired."""

    def __init__(self, resource: str, error: str, description: str) -> None:
        super().__init__(f"Unable to acquire token for {resource}: {error} - {description}")
        self.resource = resource
        self.error = error
        self.description = description


class TokenProvider:
    """Acquire access tokens via managed identity, or app credentials when configured.

    Managed identity is the default. Setting ``tenant_id``, ``client_id`` and
    ``client_secret`` switches to the client-credentials flow, which is how the
    toolkit is run from a workstation outside Azure.
    """

    def __init__(self, config: IdentityConfig, http_client: Optional[requests.Session] = None) -> None:
        self._config = config
        self._http_client = http_client or requests.Session()
        self._managed_identity: Optional[msal.ManagedIdentityClient] = None
        self._app: Optional[msal.ConfidentialClientApplication] = None

        if config.has_credentials:
            self._app = msal.ConfidentialClientApplication(
                client_id=config.client_id,
                client_credential=config.client_secret,
                authority=f"https://login.microsoftonline.com/{config.tenant_id}",
            )
        else:
            if config.managed_identity_client_id:
                identity = msal.UserAssignedManagedIdentity(
                    client_id=config.managed_identity_client_id
                )
            else:
                identity = msal.SystemAssignedManagedIdentity()
            self._managed_identity = msal.ManagedIdentityClient(
                identity,
                http_client=self._http_client,
            )

    @property
    def uses_managed_identity(self) -> bool:
        return self._managed_identity is not None

    def acquire(self, resource: str) -> str:
        """Return a bearer token for ``resource`` (msal serves cached tokens)."""

        result = self._acquire_raw(resource)
        if not result or "access_token" not in result:
            result = result or {}
            raise AuthenticationError(
                resource,
                result.get("error", "token_error"),
                result.get("error_description", "No access token returned."),
            )
        logger.debug("Acquired token for %s", resource)
        return str(result["access_token"])

    def _acquire_raw(self, resource: str) -> Dict[str, Any]:
        try:
            if self._managed_identity is not None:
                return self._managed_identity.acquire_token_for_client(resource=resource)
            assert self._app is not None
            scopes = [f"{resource}/.default"]
            result = self._app.acquire_token_silent(scopes, account=None)
            if not result:
                result = self._app.acquire_token_for_client(scopes=scopes)
            return result
        except (msal.ManagedIdentityError, requests.RequestException, ValueError) as exc:
            raise AuthenticationError(resource, type(exc).__name__, str(exc)) from exc


__all__ = [
    "AuthenticationError",
    "EXCHANGE_RESOURCE",
    "GRAPH_RESOURCE",
    "STORAGE_RESOURCE",
    "TokenProvider",
]
