"""
Ansible Automation Platform controller REST client.

Typed create/delete operations for inventories, hosts and machine
credentials, plus job launch, status and stdout retrieval. Every call is
independent: no retries and no orchestration logic.

Usage:
    from aap_provisioner.config.settings import ClientSettings
    from aap_provisioner.core.aap_client import AAPClient

    with AAPClient(ClientSettings(base_url="https://aap.example.com", access_token="...")) as client:
        inventory_id = client.create_inventory(organization_id=1)
        job_id = client.launch_job(inventory_id, job_template_id=42)
        status = client.get_job_status(job_id)
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

from aap_provisioner.config.host_details import ConnectionKind, CredentialKind, HostConnectionDetails
from aap_provisioner.config.settings import ClientSettings
from aap_provisioner.core.cancellation import CancellationToken
from aap_provisioner.core.errors import (
    AAPConnectionError,
    ConfigurationInvalidError,
    NotFoundError,
    RemoteRejectedError,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/controller/v2"
CREDENTIAL_TYPES_PAGE_SIZE = 200
MACHINE_CREDENTIAL_TYPE = "Machine"

SUCCESS_STATES = frozenset({"successful"})
FAILED_STATES = frozenset({"failed", "error", "canceled"})

_CREDENTIAL_LABELS = {
    CredentialKind.KEY: ("ssh", "SSH credential for Packer builds"),
    CredentialKind.PASSWORD: ("password", "SSH password credential for Packer builds"),
    CredentialKind.WINRM: ("winrm", "WinRM credential for Packer builds"),
}


@dataclass(frozen=True)
class JobStatus:
    """Latest status snapshot of a job or workflow job."""

    job_id: int
    status: str
    failed: bool = False
    result_stdout: Optional[str] = None

    @classmethod
    def from_payload(cls, job_id: int, payload: Dict[str, Any]) -> "JobStatus":
        stdout = payload.get("result_stdout") or payload.get("stdout")
        return cls(
            job_id=job_id,
            status=str(payload.get("status") or ""),
            failed=bool(payload.get("failed", False)),
            result_stdout=stdout if isinstance(stdout, str) and stdout else None,
        )

    @property
    def is_successful(self) -> bool:
        return self.status in SUCCESS_STATES

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_STATES or self.failed

    @property
    def is_finished(self) -> bool:
        return self.is_successful or self.is_failed


def build_host_variables(details: HostConnectionDetails) -> Dict[str, Any]:
    """
    Ansible connection variables for a host record.

    WinRM hosts get certificate validation disabled and runas privilege
    escalation; the scheme follows the well-known WinRM ports.
    """
    host_vars: Dict[str, Any] = {
        "ansible_host": details.host,
        "ansible_port": details.port,
        "ansible_user": details.username,
    }

    if details.kind is ConnectionKind.WINRM:
        host_vars["ansible_connection"] = "winrm"
        host_vars["ansible_winrm_server_cert_validation"] = "ignore"
        host_vars["ansible_winrm_transport"] = "basic"
        host_vars["ansible_become_method"] = "runas"
        host_vars["ansible_become"] = "yes"
        host_vars["ansible_become_user"] = "Administrator"
        if details.port == 5985:
            host_vars["ansible_winrm_scheme"] = "http"
        elif details.port == 5986:
            host_vars["ansible_winrm_scheme"] = "https"
    else:
        # Authentication comes from the machine credential, not a key path
        host_vars["ansible_connection"] = "ssh"

    return host_vars


class AAPClient:
    """
    AAP controller REST client.

    One instance per provisioning run; the session is configured once from
    an immutable ClientSettings and never mutated afterwards.
    """

    def __init__(self, settings: ClientSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self.session = session or requests.Session()

        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        if settings.uses_token:
            self.session.headers["Authorization"] = f"Bearer {settings.access_token}"
        else:
            self.session.auth = (settings.username, settings.password)

        self.session.verify = settings.verify_tls
        if not settings.verify_tls:
            import urllib3
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            logger.warning(
                f"TLS certificate verification disabled for {self.base_url} "
                "(insecure_skip_verify=true)"
            )

    # =========================================================================
    # Transport
    # =========================================================================

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("/api/"):
            return f"{self.base_url}{endpoint}"
        return f"{self.base_url}{API_PREFIX}{endpoint}"

    def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        what: str = "",
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        correlation_id: str = "",
    ) -> requests.Response:
        """
        Send one request and check its status.

        Args:
            method: HTTP method
            endpoint: Path below /api/controller/v2, or a full /api/... path
            data: JSON body
            what: Operation name used in error messages
            token: Cancellation token, checked before sending
            timeout: Per-call timeout in seconds (default: settings)
            headers: Extra headers for this call
            correlation_id: For log tracing

        Returns:
            The response, guaranteed 2xx

        Raises:
            ProvisioningCancelledError: token already cancelled
            AAPConnectionError: Cannot connect or timed out
            RemoteRejectedError: Non-2xx status
        """
        if token is not None:
            token.raise_if_cancelled()

        url = self._url(endpoint)
        log_prefix = f"[{correlation_id}] " if correlation_id else ""
        what = what or f"{method} {endpoint}"
        timeout = timeout if timeout is not None else self.settings.request_timeout

        logger.debug(f"{log_prefix}AAP {method} {endpoint}")
        try:
            response = self.session.request(
                method=method,
                url=url,
                json=data,
                timeout=timeout,
                headers=headers,
            )
        except ConnectionError as e:
            raise AAPConnectionError(
                f"{log_prefix}failed to {what}: cannot connect to {self.base_url}: {e}"
            )
        except Timeout:
            raise AAPConnectionError(
                f"{log_prefix}failed to {what}: request timed out after {timeout}s"
            )
        except RequestException as e:
            raise AAPConnectionError(f"{log_prefix}failed to {what}: {e}")

        if response.status_code >= 400:
            raise RemoteRejectedError(
                f"{log_prefix}failed to {what}: {response.text} (status: {response.status_code})",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    def _json(self, response: requests.Response, what: str) -> Dict[str, Any]:
        try:
            result = response.json()
        except ValueError as e:
            raise RemoteRejectedError(
                f"failed to parse {what} response: {e}",
                status_code=response.status_code,
                body=response.text,
            )
        if not isinstance(result, dict):
            raise RemoteRejectedError(
                f"failed to parse {what} response: expected an object",
                status_code=response.status_code,
                body=response.text,
            )
        return result

    def _created_id(self, response: requests.Response, what: str, key: str = "id") -> int:
        result = self._json(response, what)
        value = result.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise RemoteRejectedError(
                f"failed to {what}. Response: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return value

    # =========================================================================
    # Inventories and Hosts
    # =========================================================================

    def create_inventory(
        self,
        organization_id: int,
        token: Optional[CancellationToken] = None,
        correlation_id: str = "",
    ) -> int:
        """
        Create a temporary inventory.

        Returns:
            New inventory ID

        Raises:
            RemoteRejectedError: Error status or no usable ID in the response
        """
        log_prefix = f"[{correlation_id}] " if correlation_id else ""
        body = {
            "name": f"packer-inv-{int(time.time())}",
            "description": "Temporary inventory for packer provisioning",
            "organization": organization_id,
        }
        response = self._request(
            "POST", "/inventories/", data=body, what="create inventory",
            token=token, correlation_id=correlation_id,
        )
        inventory_id = self._created_id(response, "create inventory")
        logger.info(f"{log_prefix}Created inventory {inventory_id} ({body['name']})")
        return inventory_id

    def create_host(
        self,
        inventory_id: int,
        details: HostConnectionDetails,
        token: Optional[CancellationToken] = None,
        correlation_id: str = "",
    ) -> int:
        """
        Register the build instance as a host in an inventory.

        Returns:
            New host ID
        """
        log_prefix = f"[{correlation_id}] " if correlation_id else ""
        body = {
            "name": details.host,
            "inventory": inventory_id,
            "variables": json.dumps(build_host_variables(details)),
        }
        response = self._request(
            "POST", "/hosts/", data=body, what="create host",
            token=token, correlation_id=correlation_id,
        )
        host_id = self._created_id(response, "create host")
        logger.info(
            f"{log_prefix}Created host {host_id} ({details.host}, {details.kind.value}) "
            f"in inventory {inventory_id}"
        )
        return host_id

    def delete_host(
        self,
        host_id: int,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        correlation_id: str = "",
    ) -> None:
        """Delete a host. A 404 is raised like any other error status."""
        self._request(
            "DELETE", f"/hosts/{host_id}/", what="delete host",
            token=token, timeout=timeout, correlation_id=correlation_id,
        )

    def delete_inventory(
        self,
        inventory_id: int,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        correlation_id: str = "",
    ) -> None:
        """Delete an inventory."""
        self._request(
            "DELETE", f"/inventories/{inventory_id}/", what="delete inventory",
            token=token, timeout=timeout, correlation_id=correlation_id,
        )

    # =========================================================================
    # Credentials
    # =========================================================================

    def iter_credential_types(
        self,
        token: Optional[CancellationToken] = None,
        correlation_id: str = "",
    ) -> Iterator[Tuple[int, str]]:
        """
        Yield (id, name) for every credential type, page by page.

        Follows the ``next`` cursor until it is empty. Each call starts again
        from the first page.

        Raises:
            RemoteRejectedError: A cursor points back at a fetched page, or an
                item has no usable ID
        """
        endpoint: Optional[str] = f"/credential_types/?page_size={CREDENTIAL_TYPES_PAGE_SIZE}"
        visited = set()
        while endpoint:
            url = self._url(endpoint)
            if url in visited:
                raise RemoteRejectedError(
                    f"failed to fetch credential types: pagination loops back to {endpoint}"
                )
            visited.add(url)

            response = self._request(
                "GET", endpoint, what="fetch credential types",
                token=token, correlation_id=correlation_id,
            )
            page = self._json(response, "credential types")
            for item in page.get("results") or []:
                type_id = item.get("id") if isinstance(item, dict) else None
                if isinstance(type_id, bool) or not isinstance(type_id, int):
                    raise RemoteRejectedError(
                        f"failed to parse credential types response: invalid item {item!r}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                yield type_id, str(item.get("name", ""))
            endpoint = self._next_endpoint(page.get("next"))

    @staticmethod
    def _next_endpoint(next_url: Optional[str]) -> Optional[str]:
        """Reduce a pagination cursor to a path the session can request."""
        if not next_url:
            return None
        parts = urlsplit(next_url)
        path = parts.path or ""
        if "/api/" in path:
            path = path[path.index("/api/"):]
        elif not path.startswith("/"):
            return None
        return f"{path}?{parts.query}" if parts.query else path

    def resolve_credential_type_id(
        self,
        name: str,
        token: Optional[CancellationToken] = None,
        correlation_id: str = "",
    ) -> int:
        """
        Find a credential type ID by exact (case-sensitive) name.

        Raises:
            NotFoundError: No type with that name; lists the available ones
        """
        seen: List[Tuple[int, str]] = []
        for type_id, type_name in self.iter_credential_types(token, correlation_id):
            if type_name == name:
                return type_id
            seen.append((type_id, type_name))

        available = ", ".join(f"{n} (ID: {i})" for i, n in seen)
        raise NotFoundError(f"credential type '{name}' not found. Available types: {available}")

    def create_credential(
        self,
        kind: CredentialKind,
        organization_id: int,
        username: str,
        secret: str,
        token: Optional[CancellationToken] = None,
        correlation_id: str = "",
    ) -> int:
        """
        Create a Machine credential.

        Args:
            kind: KEY sends ``secret`` as ssh_key_data, PASSWORD and WINRM as password
            organization_id: Owning organization
            username: Login user
            secret: Private key text or password

        Returns:
            New credential ID

        Raises:
            RemoteRejectedError: Type lookup or creation failed
        """
        log_prefix = f"[{correlation_id}] " if correlation_id else ""
        try:
            type_id = self.resolve_credential_type_id(
                MACHINE_CREDENTIAL_TYPE, token=token, correlation_id=correlation_id,
            )
        except NotFoundError as e:
            raise RemoteRejectedError(
                f"failed to get {MACHINE_CREDENTIAL_TYPE} credential type ID: {e}"
            )

        label, description = _CREDENTIAL_LABELS[kind]
        inputs = {"username": username}
        if kind is CredentialKind.KEY:
            inputs["ssh_key_data"] = secret
        else:
            inputs["password"] = secret

        body = {
            "name": f"packer-{label}-cred-{int(time.time())}",
            "description": description,
            "credential_type": type_id,
            "organization": organization_id,
            "inputs": inputs,
        }
        what = f"create {kind.value} credential"
        response = self._request(
            "POST", "/credentials/", data=body, what=what,
            token=token, correlation_id=correlation_id,
        )
        credential_id = self._created_id(response, what)
        logger.info(f"{log_prefix}Created {kind.value} credential {credential_id} ({body['name']})")
        return credential_id

    def delete_credential(
        self,
        credential_id: int,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        correlation_id: str = "",
    ) -> None:
        """Delete a credential."""
        self._request(
            "DELETE", f"/credentials/{credential_id}/", what="delete credential",
            token=token, timeout=timeout, correlation_id=correlation_id,
        )

    # =========================================================================
    # Jobs
    # =========================================================================

    def launch_job(
        self,
        inventory_id: int,
        job_template_id: int = 0,
        workflow_template_id: int = 0,
        credential_id: int = 0,
        extra_vars: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
        correlation_id: str = "",
    ) -> int:
        """
        Launch a job template or workflow template.

        Exactly one of job_template_id / workflow_template_id must be set.
        The inventory and credential are attached only when non-zero; without
        an inventory the template's own inventory is used.

        Returns:
            ID of the launched job (or workflow job)
        """
        if bool(job_template_id) == bool(workflow_template_id):
            raise ConfigurationInvalidError(
                "exactly one of job_template_id or workflow_template_id must be set"
            )

        log_prefix = f"[{correlation_id}] " if correlation_id else ""
        launch: Dict[str, Any] = {"extra_vars": extra_vars or {}}
        if inventory_id:
            launch["inventory"] = inventory_id
        if credential_id:
            launch["credentials"] = [credential_id]

        if workflow_template_id:
            launch["workflow_template"] = workflow_template_id
            endpoint = f"/workflow_job_templates/{workflow_template_id}/launch/"
        else:
            launch["job_template"] = job_template_id
            endpoint = f"/job_templates/{job_template_id}/launch/"

        response = self._request(
            "POST", endpoint, data=launch, what="launch job",
            token=token, correlation_id=correlation_id,
        )
        result = self._json(response, "job launch")
        for key in ("job", "workflow_job", "id"):
            value = result.get(key)
            if isinstance(value, int) and not isinstance(value, bool) and value > 0:
                logger.info(f"{log_prefix}Launched job {value} via {endpoint}")
                return value

        raise RemoteRejectedError(
            f"failed to launch job: no job ID in response: {response.text}",
            status_code=response.status_code,
            body=response.text,
        )

    def get_job_status(
        self,
        job_id: int,
        workflow: bool = False,
        token: Optional[CancellationToken] = None,
        correlation_id: str = "",
    ) -> JobStatus:
        """Fetch the current status of a job once."""
        kind = "workflow_jobs" if workflow else "jobs"
        response = self._request(
            "GET", f"/{kind}/{job_id}/", what=f"poll job {job_id}",
            token=token, correlation_id=correlation_id,
        )
        return JobStatus.from_payload(job_id, self._json(response, "job status"))

    def fetch_job_output(
        self,
        job_id: int,
        token: Optional[CancellationToken] = None,
        correlation_id: str = "",
    ) -> str:
        """Fetch the plain-text stdout of a job."""
        response = self._request(
            "GET", f"/jobs/{job_id}/stdout/?format=txt", what="fetch job stdout",
            token=token, headers={"Accept": "text/plain"}, correlation_id=correlation_id,
        )
        return response.text

    def poll_job(
        self,
        job_id: int,
        timeout: float,
        poll_interval: float,
        workflow: bool = False,
        token: Optional[CancellationToken] = None,
        correlation_id: str = "",
    ):
        """
        Wait for a job to reach a terminal state.

        See aap_provisioner.core.provisioning.job_wait.wait_for_job.
        """
        from aap_provisioner.core.provisioning.job_wait import wait_for_job

        return wait_for_job(
            self,
            job_id,
            timeout=timeout,
            poll_interval=poll_interval,
            workflow=workflow,
            token=token,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

