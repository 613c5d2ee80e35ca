# src/maester_api/tools/token_client.py
"""
TokenClient: client-credentials grants against the directory's token endpoint,
plus the one directory lookup the credential flow needs (primary domain).
"""
import base64
import json
import logging

import httpx

from maester_api.engine.errors import CredentialError

logger = logging.getLogger(__name__)


def tenant_from_token(token):
    """Read the ``tid`` claim of a JWT without verifying it. Used only for routing."""
    try:
        payload = token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        return json.loads(base64.urlsafe_b64decode(payload)).get("tid")
    except (IndexError, ValueError, AttributeError):
        return None


class TokenClient:
    def __init__(self, authority="https://login.microsoftonline.com", graph_url="https://graph.microsoft.com",
                 timeout=30.0, transport=None):
        self.authority = authority.rstrip("/")
        self.graph_url = graph_url.rstrip("/")
        self.http = httpx.Client(timeout=timeout, transport=transport)

    def close(self):
        self.http.close()

    def client_credentials(self, tenant_id, client_id, client_secret, resource) -> str:
        if not tenant_id:
            raise CredentialError("No tenant id available for the client-credentials grant")
        if not (client_id and client_secret):
            raise CredentialError("Application credentials were not provided")
        try:
            resp = self.http.post(
                f"{self.authority}/{tenant_id}/oauth2/v2.0/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "scope": f"{resource.rstrip('/')}/.default",
                },
            )
        except httpx.HTTPError as e:
            raise CredentialError(f"Token endpoint unreachable: {type(e).__name__}") from e
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code != 200 or not body.get("access_token"):
            code = body.get("error") or f"HTTP {resp.status_code}"
            description = (body.get("error_description") or "").splitlines()
            detail = f": {description[0]}" if description else ""
            raise CredentialError(f"Token request for {resource} failed ({code}){detail}")
        return body["access_token"]

    def primary_domain(self, graph_token) -> str:
        """Default verified domain of the tenant, falling back to the initial one."""
        try:
            resp = self.http.get(
                f"{self.graph_url}/v1.0/organization",
                params={"$select": "verifiedDomains"},
                headers={"Authorization": f"Bearer {graph_token}"},
            )
            resp.raise_for_status()
            orgs = resp.json().get("value") or []
        except (httpx.HTTPError, ValueError) as e:
            raise CredentialError(f"Could not resolve the tenant's primary domain: {type(e).__name__}") from e
        domains = [d for org in orgs for d in (org.get("verifiedDomains") or [])]
        for flag in ("isDefault", "isInitial"):
            for domain in domains:
                if domain.get(flag) and domain.get("name"):
                    return domain["name"]
        raise CredentialError("Tenant has no verified domain")
