import json
import logging
import os
import shutil
import subprocess
import tempfile

from .base import ComplianceEngineAdapter
from maester_api.engine.errors import EngineError

logger = logging.getLogger(__name__)

# Connects every service we hold a token for, then runs Maester and writes the
# result document to $env:MAESTER_OUTPUT. Tokens arrive through the environment.
BOOTSTRAP_SCRIPT = r"""
$ErrorActionPreference = 'Stop'
$selection = Get-Content -Raw -Path $env:MAESTER_SELECTION | ConvertFrom-Json
Import-Module Maester
Connect-MgGraph -AccessToken (ConvertTo-SecureString $env:MAESTER_GRAPH_TOKEN -AsPlainText -Force) -NoWelcome
if ($env:MAESTER_EXCHANGE_TOKEN) {
    try { Connect-ExchangeOnline -AccessToken $env:MAESTER_EXCHANGE_TOKEN -Organization $env:MAESTER_DOMAIN -ShowBanner:$false }
    catch { Write-Warning "exchange: $($_.Exception.Message)" }
}
if ($env:MAESTER_COMPLIANCE_TOKEN) {
    try { Connect-IPPSSession -AccessToken $env:MAESTER_COMPLIANCE_TOKEN -Organization $env:MAESTER_DOMAIN -ShowBanner:$false }
    catch { Write-Warning "securityCompliance: $($_.Exception.Message)" }
}
if ($env:MAESTER_TEAMS_TOKEN) {
    try { Connect-MicrosoftTeams -AccessTokens @($env:MAESTER_TEAMS_GRAPH_TOKEN, $env:MAESTER_TEAMS_TOKEN) | Out-Null }
    catch { Write-Warning "teams: $($_.Exception.Message)" }
}
if ($env:MAESTER_AZURE_TOKEN) {
    try { Connect-AzAccount -AccessToken $env:MAESTER_AZURE_TOKEN -AccountId $env:MAESTER_CLIENT_ID -TenantId $env:MAESTER_TENANT_ID | Out-Null }
    catch { Write-Warning "azure: $($_.Exception.Message)" }
}
$params = @{
    Path = $selection.path
    OutputJsonFile = $env:MAESTER_OUTPUT
    NonInteractive = $true
    SkipGraphConnect = $true
    DisableTelemetry = $true
    SkipVersionCheck = $true
    IncludeLongRunning = [bool]$selection.includeLongRunning
    IncludePreview = [bool]$selection.includePreview
}
if ($selection.tags) { $params.Tag = @($selection.tags) }
try { Invoke-Maester @params | Out-Null }
finally { Disconnect-MgGraph -ErrorAction SilentlyContinue | Out-Null }
"""


class MaesterAdapter(ComplianceEngineAdapter):
    def __init__(self, command, tests_path, timeout=3600):
        self.command = list(command)
        self.tests_path = tests_path
        self.timeout = timeout

    def build_selection(self, suites=None, tags=None, severity=None,
                        include_long_running=False, include_preview=False) -> dict:
        suites = [s for s in (suites or []) if s]
        tags = list(tags or [])
        if len(suites) == 1:
            path = os.path.join(self.tests_path, suites[0])
        else:
            path = self.tests_path
            tags = suites + tags
        return {
            "path": path,
            "tags": tags,
            "severity": list(severity or []),
            "includeLongRunning": bool(include_long_running),
            "includePreview": bool(include_preview),
        }

    def run_scan(self, selection, env) -> dict:
        work_dir = tempfile.mkdtemp(prefix="maester_")
        try:
            selection_path = os.path.join(work_dir, "selection.json")
            output_path = os.path.join(work_dir, "results.json")
            with open(selection_path, "w") as f:
                json.dump(selection, f)
            child_env = dict(os.environ)
            child_env.update(env)
            child_env["MAESTER_SELECTION"] = selection_path
            child_env["MAESTER_OUTPUT"] = output_path
            cmd = self.command + [BOOTSTRAP_SCRIPT]
            logger.info(f"Running compliance engine on {selection['path']} tags={selection['tags']}")
            try:
                proc = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    env=child_env,
                    timeout=self.timeout,
                    check=False
                )
            except subprocess.TimeoutExpired:
                raise EngineError(f"Compliance engine timed out after {self.timeout} seconds")
            except OSError as e:
                raise EngineError(f"Compliance engine could not be started: {e.strerror or e}")
            if proc.returncode != 0:
                lines = [l for l in (proc.stderr or "").splitlines() if l.strip()]
                reason = lines[-1] if lines else f"exit code {proc.returncode}"
                raise EngineError(f"Compliance engine failed: {reason}")
            if not os.path.exists(output_path):
                raise EngineError("Compliance engine produced no result document")
            try:
                with open(output_path, "r", encoding="utf-8-sig") as f:
                    return json.load(f)
            except json.JSONDecodeError:
                raise EngineError("Failed to parse compliance engine output as JSON.")
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
