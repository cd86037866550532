from unittest.mock import MagicMock, patch

import pytest

from mailbox_offboard.auth import GRAPH_RESOURCE, AuthenticationError, TokenProvider
from mailbox_offboard.config import IdentityConfig


@patch("mailbox_offboard.auth.msal")
def test_system_assigned_identity_by_default(msal_mock):
    client = msal_mock.ManagedIdentityClient.return_value
    client.acquire_token_for_client.return_value = {"access_token": "abc"}

    provider = TokenProvider(IdentityConfig(), http_client=MagicMock())

    assert provider.uses_managed_identity
    assert provider.acquire(GRAPH_RESOURCE) == "abc"
    msal_mock.SystemAssignedManagedIdentity.assert_called_once_with()
    client.acquire_token_for_client.assert_called_once_with(resource=GRAPH_RESOURCE)


@patch("mailbox_offboard.auth.msal")
def test_user_assigned_identity_when_client_id_set(msal_mock):
    TokenProvider(IdentityConfig(managed_identity_client_id="1111"), http_client=MagicMock())

    msal_mock.UserAssignedManagedIdentity.assert_called_once_with(client_id="1111")
    msal_mock.SystemAssignedManagedIdentity.assert_not_called()


@patch("mailbox_offboard.auth.msal")
def test_app_credentials_use_default_scope(msal_mock):
    app = msal_mock.ConfidentialClientApplication.return_value
    app.acquire_token_silent.return_value = None
    app.acquire_token_for_client.return_value = {"access_token": "xyz"}
    config = IdentityConfig(tenant_id="tenant", client_id="client", client_secret="secret")

    provider = TokenProvider(config, http_client=MagicMock())

    assert not provider.uses_managed_identity
    assert provider.acquire(GRAPH_RESOURCE) == "xyz"
    app.acquire_token_for_client.assert_called_once_with(scopes=["https://graph.microsoft.com/.default"])
    msal_mock.ManagedIdentityClient.assert_not_called()


@patch("mailbox_offboard.auth.msal")
def test_error_response_raises(msal_mock):
    client = msal_mock.ManagedIdentityClient.return_value
    client.acquire_token_for_client.return_value = {
        "error": "invalid_request",
        "error_description": "Identity not found",
    }
    provider = TokenProvider(IdentityConfig(), http_client=MagicMock())

    with pytest.raises(AuthenticationError) as excinfo:
        provider.acquire(GRAPH_RESOURCE)
    assert excinfo.value.error == "invalid_request"
    assert "Identity not found" in str(excinfo.value)
