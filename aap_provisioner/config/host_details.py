"""
Connection details for the machine being built.

The build tool exports the communicator parameters of the instance it is
building as environment variables; this module reads them (and a local
.env file, if present) into an immutable HostConnectionDetails.

Environment Variables:
    PACKER_SSH_HOST: address of the instance
    PACKER_SSH_PORT: communicator port (5985/5986 mean WinRM)
    PACKER_SSH_USERNAME: login user
    PACKER_SSH_KEY_FILE: private key path (SSH key auth)
    PACKER_SSH_PASSWORD: password (SSH password auth or WinRM)
    PACKER_CONNECTION_TYPE: optional "ssh" or "winrm" hint
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings

from aap_provisioner.core.errors import ConfigurationMissingError

logger = logging.getLogger(__name__)

WINRM_PORTS = (5985, 5986)


class ConnectionKind(str, Enum):
    """How the controller reaches the host."""

    SSH = "ssh"
    WINRM = "winrm"


class CredentialKind(str, Enum):
    """Flavour of machine credential created for the host."""

    KEY = "key"
    PASSWORD = "password"
    WINRM = "winrm"


@dataclass(frozen=True)
class HostConnectionDetails:
    """
    Connection parameters of the instance under provisioning.

    Attributes:
        host: Address the controller connects to
        port: Communicator port
        username: Login user
        password: Password, if password auth is used
        key_file: Path of the private key, if key auth is used
        private_key_data: Contents of key_file, read at discovery time
        kind: SSH or WinRM, decided once at construction
    """

    host: str
    port: int
    username: str
    password: Optional[str] = None
    key_file: Optional[str] = None
    private_key_data: Optional[str] = None
    kind: ConnectionKind = ConnectionKind.SSH

    @classmethod
    def build(
        cls,
        host: str,
        port: int,
        username: str,
        password: Optional[str] = None,
        key_file: Optional[str] = None,
        private_key_data: Optional[str] = None,
        connection_hint: Optional[str] = None,
    ) -> "HostConnectionDetails":
        """Construct details, deciding the connection kind from port and hint."""
        hint = (connection_hint or "").strip().lower()
        if port in WINRM_PORTS or hint.startswith("winrm"):
            kind = ConnectionKind.WINRM
        else:
            kind = ConnectionKind.SSH
        return cls(
            host=host,
            port=port,
            username=username,
            password=password or None,
            key_file=key_file or None,
            private_key_data=private_key_data or None,
            kind=kind,
        )

    @property
    def is_windows(self) -> bool:
        return self.kind is ConnectionKind.WINRM

    @property
    def credential_kind(self) -> CredentialKind:
        if self.kind is ConnectionKind.WINRM:
            return CredentialKind.WINRM
        if self.private_key_data:
            return CredentialKind.KEY
        return CredentialKind.PASSWORD

    @property
    def credential_secret(self) -> Optional[str]:
        """Secret material matching credential_kind."""
        if self.credential_kind is CredentialKind.KEY:
            return self.private_key_data
        return self.password

    def __repr__(self) -> str:
        return (
            f"HostConnectionDetails(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, kind={self.kind.value!r}, "
            f"key_file={self.key_file!r}, password={'***' if self.password else None})"
        )


class PackerConnectionSettings(BaseSettings):
    """Communicator parameters exported by the build tool."""

    model_config = {
        "env_prefix": "PACKER_",
        "extra": "ignore",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    ssh_host: str = ""
    ssh_port: str = ""
    ssh_username: str = ""
    ssh_key_file: str = ""
    ssh_password: SecretStr = SecretStr("")
    connection_type: str = ""


def discover_host_details(correlation_id: str = "") -> HostConnectionDetails:
    """
    Read host connection details from the environment.

    Raises:
        ConfigurationMissingError: host, port or username is absent, the
            port is not an integer, neither key file nor password is set,
            the key file cannot be read, or a WinRM host has no password
    """
    log_prefix = f"[{correlation_id}] " if correlation_id else ""
    env = PackerConnectionSettings()

    if not env.ssh_host:
        raise ConfigurationMissingError("PACKER_SSH_HOST environment variable is missing")
    if not env.ssh_port:
        raise ConfigurationMissingError("PACKER_SSH_PORT environment variable is missing")
    try:
        port = int(env.ssh_port)
    except ValueError:
        raise ConfigurationMissingError(f"invalid PACKER_SSH_PORT: {env.ssh_port!r}")
    if not env.ssh_username:
        raise ConfigurationMissingError("PACKER_SSH_USERNAME environment variable is missing")

    password = env.ssh_password.get_secret_value()
    if not env.ssh_key_file and not password:
        raise ConfigurationMissingError(
            "either PACKER_SSH_KEY_FILE or PACKER_SSH_PASSWORD must be set"
        )

    key_data = None
    if env.ssh_key_file:
        try:
            key_data = Path(env.ssh_key_file).expanduser().read_text()
        except OSError as e:
            raise ConfigurationMissingError(
                f"cannot read PACKER_SSH_KEY_FILE {env.ssh_key_file}: {e}"
            )

    details = HostConnectionDetails.build(
        host=env.ssh_host,
        port=port,
        username=env.ssh_username,
        password=password,
        key_file=env.ssh_key_file,
        private_key_data=key_data,
        connection_hint=env.connection_type,
    )
    if details.is_windows and not details.password:
        raise ConfigurationMissingError("PACKER_SSH_PASSWORD must be set for WinRM hosts")

    logger.debug(f"{log_prefix}Discovered host connection details: {details!r}")
    return details
