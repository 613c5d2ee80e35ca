# src/maester_api/engine/credentials.py
"""
CredentialOrchestrator: obtain tokens for every service a scan can touch.

The directory service is required; the job fails without it. Mail, compliance,
collaboration and cloud-resource connections are each optional: a failure is
recorded as a ServiceConnection with a reason and the scan carries on.
Tokens only ever live in the worker process's memory.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from maester_api.api.schemas import ConnectionDiagnostics
from maester_api.engine.errors import CredentialError
from maester_api.tools.token_client import tenant_from_token
from maester_api.utils.errors import sanitize_error

logger = logging.getLogger(__name__)

GRAPH = "graph"
EXCHANGE = "exchange"
COMPLIANCE = "securityCompliance"
TEAMS = "teams"
AZURE = "azure"

GRAPH_RESOURCE = "https://graph.microsoft.com"
EXCHANGE_RESOURCE = "https://outlook.office365.com"
COMPLIANCE_RESOURCE = "https://ps.compliance.protection.outlook.com"
TEAMS_RESOURCE = "48ac35b8-9aa8-4d74-927d-1f4a14a0b239"
AZURE_RESOURCE = "https://management.azure.com"


@dataclass
class CredentialBundle:
    """What the caller handed us. Never persisted, never logged."""
    bearer_token: Optional[str] = field(default=None, repr=False)
    client_id: Optional[str] = None
    client_secret: Optional[str] = field(default=None, repr=False)
    tenant_id: str = ""

    @property
    def has_app_credentials(self):
        return bool(self.client_id and self.client_secret)


@dataclass
class ServiceConnection:
    service: str
    connected: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls, service, reason=None):
        return cls(service, True, reason)

    @classmethod
    def failed(cls, service, reason):
        return cls(service, False, reason)


@dataclass
class ServiceCredentials:
    tenant_id: str = ""
    client_id: Optional[str] = None
    domain: Optional[str] = None
    graph_token: Optional[str] = field(default=None, repr=False)
    graph_token_kind: Optional[str] = None  # "application" | "delegated"
    exchange_token: Optional[str] = field(default=None, repr=False)
    compliance_token: Optional[str] = field(default=None, repr=False)
    teams_graph_token: Optional[str] = field(default=None, repr=False)
    teams_token: Optional[str] = field(default=None, repr=False)
    azure_token: Optional[str] = field(default=None, repr=False)
    connections: List[ServiceConnection] = field(default_factory=list)

    def diagnostics(self) -> ConnectionDiagnostics:
        values = {c.service: c.connected for c in self.connections}
        errors = {c.service: c.reason for c in self.connections if c.reason}
        return ConnectionDiagnostics.model_validate({**values, "errors": errors})

    def engine_env(self) -> Dict[str, str]:
        """Environment for the engine subprocess; only what was obtained."""
        env = {
            "MAESTER_TENANT_ID": self.tenant_id,
            "MAESTER_CLIENT_ID": self.client_id,
            "MAESTER_DOMAIN": self.domain,
            "MAESTER_GRAPH_TOKEN": self.graph_token,
            "MAESTER_EXCHANGE_TOKEN": self.exchange_token,
            "MAESTER_COMPLIANCE_TOKEN": self.compliance_token,
            "MAESTER_TEAMS_GRAPH_TOKEN": self.teams_graph_token,
            "MAESTER_TEAMS_TOKEN": self.teams_token,
            "MAESTER_AZURE_TOKEN": self.azure_token,
        }
        return {k: v for k, v in env.items() if v}

    def discard(self):
        self.graph_token = self.exchange_token = self.compliance_token = None
        self.teams_graph_token = self.teams_token = self.azure_token = None


class CredentialOrchestrator:
    def __init__(self, token_client):
        self.tokens = token_client

    def acquire(self, bundle: CredentialBundle, job_id=None) -> ServiceCredentials:
        tenant = bundle.tenant_id or tenant_from_token(bundle.bearer_token) or ""
        creds = ServiceCredentials(tenant_id=tenant, client_id=bundle.client_id)

        creds.graph_token, creds.graph_token_kind, app_error = self._directory_token(bundle, tenant, job_id)
        # a failed app grant is still reported when the caller token stood in
        creds.connections.append(ServiceConnection.ok(GRAPH, sanitize_error(app_error) if app_error else None))

        for service, strategy in (
            (EXCHANGE, self._connect_exchange),
            (COMPLIANCE, self._connect_compliance),
            (TEAMS, self._connect_teams),
            (AZURE, self._connect_azure),
        ):
            creds.connections.append(self._attempt(service, strategy, bundle, creds, job_id))
        return creds

    def _attempt(self, service, strategy, bundle, creds, job_id):
        try:
            strategy(bundle, creds)
        except Exception as e:
            reason = sanitize_error(e)
            logger.warning(f"[job_id={job_id}] {service} not connected: {reason}")
            return ServiceConnection.failed(service, reason)
        logger.info(f"[job_id={job_id}] {service} connected.")
        return ServiceConnection.ok(service)

    def _directory_token(self, bundle, tenant, job_id):
        app_error = None
        if bundle.has_app_credentials:
            try:
                token = self.tokens.client_credentials(tenant, bundle.client_id, bundle.client_secret, GRAPH_RESOURCE)
                return token, "application", None
            except CredentialError as e:
                app_error = e
                logger.warning(f"[job_id={job_id}] Application token for {GRAPH} failed, trying caller token.")
        if bundle.bearer_token:
            return bundle.bearer_token, "delegated", app_error
        if app_error is not None:
            raise CredentialError(f"No directory token: {app_error}") from app_error
        raise CredentialError("No directory token: neither application credentials nor a bearer token were provided")

    def _ensure_domain(self, creds):
        if not creds.domain:
            creds.domain = self.tokens.primary_domain(creds.graph_token)
        return creds.domain

    def _connect_exchange(self, bundle, creds):
        token = self.tokens.client_credentials(
            creds.tenant_id, bundle.client_id, bundle.client_secret, EXCHANGE_RESOURCE
        )
        # the engine connects with -Organization <domain>
        self._ensure_domain(creds)
        creds.exchange_token = token

    def _connect_compliance(self, bundle, creds):
        if not (creds.exchange_token or bundle.has_app_credentials):
            raise CredentialError("Application credentials were not provided")
        # the compliance endpoint rejects tenant GUIDs, so the domain comes first
        self._ensure_domain(creds)
        creds.compliance_token = creds.exchange_token or self.tokens.client_credentials(
            creds.tenant_id, bundle.client_id, bundle.client_secret, COMPLIANCE_RESOURCE
        )

    def _connect_teams(self, bundle, creds):
        # delegated + application tokens cannot be mixed; always take a fresh pair
        graph_token = self.tokens.client_credentials(
            creds.tenant_id, bundle.client_id, bundle.client_secret, GRAPH_RESOURCE
        )
        teams_token = self.tokens.client_credentials(
            creds.tenant_id, bundle.client_id, bundle.client_secret, TEAMS_RESOURCE
        )
        creds.teams_graph_token, creds.teams_token = graph_token, teams_token

    def _connect_azure(self, bundle, creds):
        creds.azure_token = self.tokens.client_credentials(
            creds.tenant_id, bundle.client_id, bundle.client_secret, AZURE_RESOURCE
        )
