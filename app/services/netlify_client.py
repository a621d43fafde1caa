"""
Netlify Client

Deployments are Netlify sites: deployment_id is the site id.

API: https://api.netlify.com/api/v1/sites
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from app.errors import ProviderError
from app.models.deployment import Deployment, DeploymentStatusSnapshot, LogEntry, utcnow
from app.models.project import DeploymentProvider
from app.services.provider_client import (
    ProviderClient,
    normalize_log_entries,
    parse_repo_full_name,
    parse_timestamp,
)
from app.services.status_normalizer import normalize_netlify_status

logger = logging.getLogger(__name__)


def _site_url(site: Dict[str, Any]) -> str:
    if site.get("ssl_url") or site.get("url"):
        return site.get("ssl_url") or site.get("url")
    if site.get("name"):
        return f"https://{site['name']}.netlify.app"
    return ""


class NetlifyClient(ProviderClient):
    """Netlify implementation of ProviderClient."""

    provider = DeploymentProvider.NETLIFY
    display_name = "Netlify"

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.netlify.com/api/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_token, base_url, timeout, transport)

    @staticmethod
    def _site_path(site_id: str) -> str:
        return f"/sites/{quote(site_id, safe='')}"

    async def _get_site(self, site_id: str) -> Dict[str, Any]:
        site = await self._request("GET", self._site_path(site_id))
        return site if isinstance(site, dict) else {}

    async def create_deployment(
        self,
        name: str,
        repo_full_name: str,
        credential: str,
        branch: str = "main",
    ) -> Deployment:
        parse_repo_full_name(repo_full_name)

        result = await self._request("POST", "/sites", json_body={
            "name": name,
            "repo": {
                "provider": "github",
                "repo": repo_full_name,
                "branch": branch,
            },
            "github_token": credential,
        })
        result = result if isinstance(result, dict) else {}

        site_id = result.get("id")
        if not site_id:
            raise ProviderError("Netlify did not return a site id", provider=self.provider.value)

        logger.info(f"Created Netlify site {site_id} for {repo_full_name}")

        return Deployment(
            deployment_id=site_id,
            url=_site_url(result),
            created_at=parse_timestamp(result.get("created_at")) or utcnow(),
        )

    async def get_deployment_status(self, deployment_id: str) -> DeploymentStatusSnapshot:
        site = await self._get_site(deployment_id)

        url = _site_url(site)
        published = site.get("published_deploy")
        published = published if isinstance(published, dict) else {}

        return DeploymentStatusSnapshot(
            status=normalize_netlify_status(published.get("state") or site.get("state")),
            url=url,
            last_deployed=parse_timestamp(published.get("published_at")) or parse_timestamp(site.get("updated_at")),
            deployment_url=published.get("deploy_ssl_url") or published.get("url") or url,
        )

    async def trigger_redeploy(self, deployment_id: str) -> None:
        await self._request("POST", f"{self._site_path(deployment_id)}/builds", json_body={})
        logger.info(f"Triggered Netlify build for site {deployment_id}")

    async def delete_deployment(self, deployment_id: str) -> None:
        await self._request("DELETE", self._site_path(deployment_id))
        logger.info(f"Deleted Netlify site {deployment_id}")

    async def get_deployment_logs(self, deployment_id: str) -> List[LogEntry]:
        site = await self._get_site(deployment_id)
        published = site.get("published_deploy")
        deploy_id = published.get("id") if isinstance(published, dict) else None

        if not deploy_id:
            return []

        payload = await self._request(
            "GET",
            f"/deploys/{quote(deploy_id, safe='')}/log",
            accept="text/plain",
        )
        return normalize_log_entries(payload)
