"""Configuration loading utilities for the mailbox offboarding toolkit."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
DEFAULT_TEMPLATE_PATH = Path("config/settings.example.yaml")
ENV_CONFIG_PATH = "OFFBOARD_CONFIG"
ENV_PREFIX = "OFFBOARD_"


@dataclass
class IdentityConfig:
    """Settings for acquiring tokens as the process's own identity."""

    managed_identity_client_id: Optional[str] = None
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


@dataclass
class ExchangeConfig:
    """Settings for the Exchange Online PowerShell session."""

    organization: str
    powershell_path: str = "pwsh"
    command_timeout: int = 120


@dataclass
class AuditConfig:
    """Settings for the Azure Table storage audit trail."""

    table_name: str = "MailboxOffboarding"
    endpoint_suffix: str = "core.windows.net"
    request_timeout: int = 30


@dataclass
class MailConfig:
    """Settings for the execution report e-mail."""

    sender_address: str
    save_to_sent_items: bool = True


@dataclass
class AppConfig:
    """Aggregate configuration for the application."""

    exchange: ExchangeConfig
    mail: MailConfig
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)


class ConfigurationError(RuntimeError):
    """Raised when the configuration file or environment variables are invalid."""


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file '{path}' does not exist. "
            "Create it from 'config/settings.example.yaml' or set environment variables."
        )
    with path.open("r", encoding="utf-8") as file:
        return yaml.safe_load(file) or {}


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Override configuration values with environment variables."""

    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == ENV_CONFIG_PATH:
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)
    return config_dict


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            result[key] = _deep_merge(base[key], value)
        else:
            result[key] = value
    return result


def _resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def ensure_default_config(
    path: Optional[Path] = None, template_path: Optional[Path] = None
) -> Path:
    """Ensure a configuration file exists, copying from the example if needed."""

    target_path = _resolve_config_path(path)
    if target_path.exists():
        return target_path

    template = Path(template_path) if template_path is not None else DEFAULT_TEMPLATE_PATH
    if not template.exists():
        raise ConfigurationError(
            "Default configuration template not found. "
            "Ensure 'config/settings.example.yaml' is present or specify a template."
        )

    target_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(template, target_path)
    return target_path


def _load_config_dict(path: Optional[Path] = None) -> Dict[str, Any]:
    resolved_path = _resolve_config_path(path)
    if resolved_path == DEFAULT_CONFIG_PATH:
        ensure_default_config(resolved_path)

    config_dict = _load_from_file(resolved_path)
    return _apply_environment_overrides(config_dict)


def _get_required(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    try:
        section = config_dict[key]
    except KeyError as exc:
        raise ConfigurationError(f"Missing required configuration section: '{key}'.") from exc
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping.")
    return section


def _get_optional(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = config_dict.get(key)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping.")
    return section


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value.strip())
    return int(value)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def _required_str(section: Dict[str, Any], key: str, section_name: str) -> str:
    value = _optional_str(section.get(key))
    if not value:
        raise ConfigurationError(f"Missing {section_name} configuration key: '{key}'.")
    return value


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from disk and environment variables."""

    config_dict = _load_config_dict(path)
    exchange_section = _get_required(config_dict, "exchange")
    mail_section = _get_required(config_dict, "mail")

    default_exchange = ExchangeConfig(organization="")
    try:
        exchange_config = ExchangeConfig(
            organization=_required_str(exchange_section, "organization", "exchange"),
            powershell_path=_optional_str(exchange_section.get("powershell_path"))
            or default_exchange.powershell_path,
            command_timeout=_to_int(
                exchange_section.get("command_timeout", default_exchange.command_timeout)
            ),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid exchange configuration: {exc}.") from exc

    mail_config = MailConfig(
        sender_address=_required_str(mail_section, "sender_address", "mail"),
        save_to_sent_items=_to_bool(mail_section.get("save_to_sent_items", True)),
    )

    identity_section = _get_optional(config_dict, "identity")
    identity_config = IdentityConfig(
        managed_identity_client_id=_optional_str(
            identity_section.get("managed_identity_client_id")
        ),
        tenant_id=_optional_str(identity_section.get("tenant_id")),
        client_id=_optional_str(identity_section.get("client_id")),
        client_secret=_optional_str(identity_section.get("client_secret")),
    )

    audit_section = _get_optional(config_dict, "audit")
    default_audit = AuditConfig()
    try:
        request_timeout = _to_int(audit_section.get("request_timeout", default_audit.request_timeout))
    except ValueError:
        request_timeout = default_audit.request_timeout
    audit_config = AuditConfig(
        table_name=_optional_str(audit_section.get("table_name")) or default_audit.table_name,
        endpoint_suffix=_optional_str(audit_section.get("endpoint_suffix"))
        or default_audit.endpoint_suffix,
        request_timeout=request_timeout,
    )

    return AppConfig(
        exchange=exchange_config,
        mail=mail_config,
        identity=identity_config,
        audit=audit_config,
    )


__all__ = [
    "AppConfig",
    "AuditConfig",
    "ConfigurationError",
    "ExchangeConfig",
    "IdentityConfig",
    "MailConfig",
    "ensure_default_config",
    "load_config",
]
