"""
Cloudflare Pages Client

Deployments are Pages projects: deployment_id is the Pages project name.

API: https://api.cloudflare.com/client/v4/accounts/{account_id}/pages/projects
Responses are wrapped in {"success": bool, "errors": [...], "result": ...}.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from app.errors import ConfigurationError, ProviderError
from app.models.deployment import Deployment, DeploymentStatusSnapshot, LogEntry, utcnow
from app.models.project import DeploymentProvider, ProjectStatus
from app.services.provider_client import (
    ProviderClient,
    extract_error_message,
    normalize_log_entries,
    parse_repo_full_name,
    parse_timestamp,
)
from app.services.status_normalizer import normalize_cloudflare_status

logger = logging.getLogger(__name__)

PAGES_DOMAIN = "pages.dev"
FINAL_STAGE = "deploy"


def _pages_url(subdomain: Optional[str], fallback_name: str) -> str:
    host = subdomain or fallback_name
    if not host.endswith(f".{PAGES_DOMAIN}"):
        host = f"{host}.{PAGES_DOMAIN}"
    return f"https://{host}"


def _raw_stage_status(latest: Dict[str, Any]) -> Any:
    """
    Pick the raw status string of the latest deployment.

    Pages runs queued -> initialize -> clone_repo -> build -> deploy; a
    successful stage other than the final one means the deployment is still
    in progress, so the stage name is reported instead.
    """
    stage = latest.get("latest_stage") or latest.get("stage") or {}
    name = stage.get("name") if isinstance(stage, dict) else None
    status = stage.get("status") if isinstance(stage, dict) else None

    if (
        isinstance(status, str)
        and isinstance(name, str)
        and name.lower() != FINAL_STAGE
        and normalize_cloudflare_status(status) == ProjectStatus.DEPLOYED
    ):
        return name

    return status or name or latest.get("status") or latest.get("state")


class CloudflareClient(ProviderClient):
    """Cloudflare Pages implementation of ProviderClient."""

    provider = DeploymentProvider.CLOUDFLARE
    display_name = "Cloudflare"

    def __init__(
        self,
        api_token: str,
        account_id: str,
        base_url: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_token, base_url, timeout, transport)
        self.account_id = account_id

    def _ensure_configured(self) -> None:
        if not self.api_token or not self.account_id:
            raise ConfigurationError("Cloudflare API token/account ID not configured")

    def _unwrap(self, payload: Any) -> Any:
        if isinstance(payload, dict) and "success" in payload:
            if not payload["success"]:
                message = extract_error_message(payload, "Cloudflare API request failed")
                logger.error(f"Cloudflare API reported failure: {message}")
                raise ProviderError(message, provider=self.provider.value)
            return payload.get("result")
        return payload

    def _project_path(self, deployment_id: str = "") -> str:
        path = f"/accounts/{self.account_id}/pages/projects"
        if deployment_id:
            path += f"/{quote(deployment_id, safe='')}"
        return path

    async def create_deployment(
        self,
        name: str,
        repo_full_name: str,
        credential: str,
        branch: str = "main",
    ) -> Deployment:
        # Pages authenticates to GitHub through its own app installation;
        # the user credential is not forwarded.
        owner, repo = parse_repo_full_name(repo_full_name)

        result = await self._request("POST", self._project_path(), json_body={
            "name": name,
            "production_branch": branch,
            "source": {
                "type": "github",
                "config": {
                    "owner": owner,
                    "repo_name": repo,
                    "production_branch": branch,
                    "deployments_enabled": True,
                    "pr_comments_enabled": False,
                },
            },
        })
        result = result if isinstance(result, dict) else {}

        deployment_id = result.get("name") or name
        logger.info(f"Created Cloudflare Pages project {deployment_id} for {repo_full_name}")

        return Deployment(
            deployment_id=deployment_id,
            url=_pages_url(result.get("subdomain"), deployment_id),
            created_at=parse_timestamp(result.get("created_on")) or utcnow(),
        )

    async def get_deployment_status(self, deployment_id: str) -> DeploymentStatusSnapshot:
        result = await self._request("GET", self._project_path(deployment_id))
        result = result if isinstance(result, dict) else {}

        url = _pages_url(result.get("subdomain"), deployment_id)
        latest = result.get("latest_deployment")
        latest = latest if isinstance(latest, dict) else {}

        return DeploymentStatusSnapshot(
            status=normalize_cloudflare_status(_raw_stage_status(latest)),
            url=url,
            last_deployed=parse_timestamp(latest.get("created_on")) or parse_timestamp(result.get("created_on")),
            deployment_url=latest.get("url") or url,
        )

    async def trigger_redeploy(self, deployment_id: str) -> None:
        await self._request("POST", f"{self._project_path(deployment_id)}/deployments", json_body={})
        logger.info(f"Triggered Cloudflare Pages deployment for {deployment_id}")

    async def delete_deployment(self, deployment_id: str) -> None:
        await self._request("DELETE", self._project_path(deployment_id))
        logger.info(f"Deleted Cloudflare Pages project {deployment_id}")

    async def get_deployment_logs(self, deployment_id: str) -> List[LogEntry]:
        project = await self._request("GET", self._project_path(deployment_id))
        latest = project.get("latest_deployment") if isinstance(project, dict) else None
        latest_id = latest.get("id") if isinstance(latest, dict) else None

        if not latest_id:
            return []

        payload = await self._request(
            "GET",
            f"{self._project_path(deployment_id)}/deployments/{quote(latest_id, safe='')}/history/logs",
        )
        return normalize_log_entries(payload)
