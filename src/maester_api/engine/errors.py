# src/maester_api/engine/errors.py


class JobConflictError(Exception):
    """The tenant already has the maximum number of running scans."""

    def __init__(self, tenant_id, running_job_id=None):
        self.tenant_id = tenant_id
        self.running_job_id = running_job_id
        super().__init__(f"A scan is already running for this tenant (job {running_job_id})")


class CredentialError(Exception):
    """No token could be obtained for a required service."""


class EngineError(Exception):
    """The external test-execution engine failed or produced no usable output."""
