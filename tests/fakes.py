"""Fake controller helpers shared by the test modules."""
from urllib.parse import urlsplit

import responses

AAP_HOST = "https://aap.example.com"
API = f"{AAP_HOST}/api/controller/v2"


def add_machine_credential_type(rsps, type_id=1):
    """Register a single-page credential type listing containing Machine."""
    rsps.add(
        responses.GET,
        f"{API}/credential_types/?page_size=200",
        json={"results": [{"id": type_id, "name": "Machine"}], "next": None},
        status=200,
    )


def request_log(rsps):
    """(method, path) of every call the fake controller received, in order."""
    return [(c.request.method, urlsplit(c.request.url).path) for c in rsps.calls]


class FakeStatusClient:
    """Stands in for AAPClient in wait-loop tests: replays a status script."""

    def __init__(self, statuses, output="", output_error=None):
        self.statuses = list(statuses)
        self.output = output
        self.output_error = output_error
        self.status_calls = 0
        self.output_calls = 0

    def get_job_status(self, job_id, workflow=False, token=None, correlation_id=""):
        from aap_provisioner.core.aap_client import JobStatus

        if token is not None:
            token.raise_if_cancelled()
        self.status_calls += 1
        item = self.statuses[min(self.status_calls, len(self.statuses)) - 1]
        if isinstance(item, Exception):
            raise item
        return JobStatus.from_payload(job_id, item)

    def fetch_job_output(self, job_id, token=None, correlation_id=""):
        self.output_calls += 1
        if self.output_error is not None:
            raise self.output_error
        return self.output
