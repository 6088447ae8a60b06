"""
Provisioning configuration using Pydantic models.

Validates the whole option set up front (fail-fast): a config either
satisfies every rule or is rejected before any call reaches the controller.

Usage:
    from aap_provisioner.config.settings import load_config, ClientSettings

    config = load_config({
        "tower_host": "https://aap.example.com",
        "access_token": "abc123",
        "job_template_id": 42,
        "inventory_id": 7,
    })
    client_settings = ClientSettings.from_config(config)

Durations accept a timedelta, a number of seconds, or a Go-style duration
string ("15m", "10s", "1h30m", "200ms").
"""

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError, field_validator, model_validator

from aap_provisioner.core.errors import ConfigurationInvalidError

DEFAULT_TIMEOUT = timedelta(minutes=15)
DEFAULT_POLL_INTERVAL = timedelta(seconds=10)
DEFAULT_REQUEST_TIMEOUT = timedelta(seconds=30)
DEFAULT_CLEANUP_GRACE_PERIOD = timedelta(seconds=30)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> Optional[timedelta]:
    """
    Parse a duration option.

    Examples:
        >>> parse_duration("1h30m")
        datetime.timedelta(seconds=5400)
        >>> parse_duration(10)
        datetime.timedelta(seconds=10)
    """
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError("duration must not be a boolean")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if re.fullmatch(r"\d+(?:\.\d+)?", text):
            return timedelta(seconds=float(text))
        parts = _DURATION_PART.findall(text)
        if not parts or "".join(n + u for n, u in parts) != text:
            raise ValueError(f"invalid duration '{value}'")
        seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)
        return timedelta(seconds=seconds)
    raise ValueError(f"invalid duration '{value}'")


class ProvisioningConfig(BaseModel):
    """Validated, defaulted provisioner options. Immutable once built."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tower_host: str
    username: str = ""
    password: SecretStr = SecretStr("")
    access_token: SecretStr = SecretStr("")

    job_template_id: int = 0
    workflow_template_id: int = 0

    inventory_id: int = 0
    dynamic_inventory: bool = False
    organization_id: int = 0

    extra_vars: Dict[str, Any] = {}

    timeout: timedelta = DEFAULT_TIMEOUT
    poll_interval: timedelta = DEFAULT_POLL_INTERVAL
    request_timeout: timedelta = DEFAULT_REQUEST_TIMEOUT
    cleanup_grace_period: timedelta = DEFAULT_CLEANUP_GRACE_PERIOD

    keep_temp_inventory: bool = False
    keep_temp_credential: bool = False
    create_credential: bool = True
    insecure_skip_verify: bool = False

    @field_validator("tower_host")
    @classmethod
    def validate_tower_host(cls, v: str) -> str:
        """Require an explicit http/https scheme."""
        v = (v or "").strip()
        if not v:
            raise ValueError("tower_host must be set")
        if not v.startswith(("http://", "https://")):
            raise ValueError("tower_host must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("username", mode="before")
    @classmethod
    def validate_username(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("password", "access_token", mode="before")
    @classmethod
    def validate_secret(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator(
        "job_template_id",
        "workflow_template_id",
        "inventory_id",
        "organization_id",
        mode="before",
    )
    @classmethod
    def validate_identifier(cls, v: Any) -> Any:
        if v is None:
            return 0
        return v

    @field_validator(
        "job_template_id",
        "workflow_template_id",
        "inventory_id",
        "organization_id",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("identifiers must not be negative")
        return v

    @field_validator("extra_vars", mode="before")
    @classmethod
    def validate_extra_vars(cls, v: Any) -> Any:
        """None becomes an empty mapping."""
        return {} if v is None else v

    @field_validator("timeout", mode="before")
    @classmethod
    def default_timeout(cls, v: Any) -> timedelta:
        return _positive_or_default(v, DEFAULT_TIMEOUT)

    @field_validator("poll_interval", mode="before")
    @classmethod
    def default_poll_interval(cls, v: Any) -> timedelta:
        return _positive_or_default(v, DEFAULT_POLL_INTERVAL)

    @field_validator("request_timeout", mode="before")
    @classmethod
    def default_request_timeout(cls, v: Any) -> timedelta:
        return _positive_or_default(v, DEFAULT_REQUEST_TIMEOUT)

    @field_validator("cleanup_grace_period", mode="before")
    @classmethod
    def default_cleanup_grace_period(cls, v: Any) -> timedelta:
        return _positive_or_default(v, DEFAULT_CLEANUP_GRACE_PERIOD)

    @model_validator(mode="after")
    def validate_selectors(self):
        """
        Cross-field rules: auth mode, job selector, inventory selector.

        A token takes precedence over username/password. With neither
        inventory_id nor dynamic_inventory the template's own inventory is
        used; dynamic_inventory takes precedence over inventory_id.
        """
        if not self.access_token.get_secret_value():
            if not self.username:
                raise ValueError("username must be set when access_token is not provided")
            if not self.password.get_secret_value():
                raise ValueError("password must be set when access_token is not provided")

        if self.job_template_id == 0 and self.workflow_template_id == 0:
            raise ValueError("either job_template_id or workflow_template_id must be set")
        if self.job_template_id and self.workflow_template_id:
            raise ValueError("job_template_id and workflow_template_id are mutually exclusive")

        if self.dynamic_inventory and self.organization_id == 0:
            raise ValueError("organization_id must be set when dynamic_inventory is true")

        return self

    @property
    def uses_token(self) -> bool:
        return bool(self.access_token.get_secret_value())

    @property
    def is_workflow(self) -> bool:
        return self.workflow_template_id != 0


def _positive_or_default(value: Any, default: timedelta) -> timedelta:
    parsed = parse_duration(value)
    if parsed is None or parsed <= timedelta(0):
        return default
    return parsed


def load_config(raw: Mapping[str, Any]) -> ProvisioningConfig:
    """
    Validate raw options into a ProvisioningConfig.

    Raises:
        ConfigurationInvalidError: any rule is violated
    """
    if isinstance(raw, ProvisioningConfig):
        raw = raw.model_dump()
    try:
        return ProvisioningConfig.model_validate(dict(raw))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationInvalidError(f"invalid configuration: {problems}") from e


@dataclass(frozen=True)
class ClientSettings:
    """
    Transport settings for one AAPClient, captured once per run.

    Exactly one auth mode is active: bearer when access_token is set,
    HTTP basic otherwise.
    """

    base_url: str
    username: str = ""
    password: str = ""
    access_token: str = ""
    verify_tls: bool = True
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT.total_seconds()

    @classmethod
    def from_config(cls, config: ProvisioningConfig) -> "ClientSettings":
        token = config.access_token.get_secret_value()
        return cls(
            base_url=config.tower_host,
            username="" if token else config.username,
            password="" if token else config.password.get_secret_value(),
            access_token=token,
            verify_tls=not config.insecure_skip_verify,
            request_timeout=config.request_timeout.total_seconds(),
        )

    @property
    def uses_token(self) -> bool:
        return bool(self.access_token)

    def __repr__(self) -> str:
        auth = "bearer" if self.uses_token else f"basic:{self.username}"
        return (
            f"ClientSettings(base_url={self.base_url!r}, auth={auth!r}, "
            f"verify_tls={self.verify_tls}, request_timeout={self.request_timeout})"
        )
