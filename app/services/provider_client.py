"""
Deployment Provider Client Interface

One capability interface over each static-hosting provider's API:

    create_deployment   -> Deployment
    get_deployment_status -> DeploymentStatusSnapshot
    trigger_redeploy    -> None (fire-and-forget)
    delete_deployment   -> None
    get_deployment_logs -> List[LogEntry]

Implementations: CloudflareClient, NetlifyClient. Call sites are written once
against ProviderClient; ProviderRegistry picks the implementation from the
project's stored deployment_provider.

Error mapping:
- non-2xx response      -> ProviderError(upstream_status, provider message)
- timeout / transport   -> ProviderError(upstream_status=None)
- missing configuration -> ConfigurationError
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from app.config import Settings
from app.errors import ConfigurationError, ProviderError, ValidationError
from app.models.deployment import Deployment, DeploymentStatusSnapshot, LogEntry, utcnow
from app.models.project import DeploymentProvider, GITHUB_REPO_PATTERN
from app.services.status_normalizer import classify_log_level

logger = logging.getLogger(__name__)

_REPO_RE = re.compile(GITHUB_REPO_PATTERN)

MAX_ERROR_MESSAGE_LENGTH = 300


def parse_repo_full_name(repo_full_name: str) -> Tuple[str, str]:
    """
    Split "owner/repo".

    Raises:
        ValidationError: If the value is not a well-formed owner/repo pair
    """
    if not isinstance(repo_full_name, str) or not _REPO_RE.match(repo_full_name):
        raise ValidationError("Invalid GitHub repository format", code="INVALID_GITHUB_REPO")

    owner, repo = repo_full_name.split("/", 1)
    return owner, repo


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 provider timestamp; None if absent or unparsable."""
    if not isinstance(value, str) or not value:
        return None

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _first_message(items: Any) -> Optional[str]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        message = items[0].get("message")
        if isinstance(message, str) and message:
            return message
    return None


def extract_error_message(payload: Any, fallback: str) -> str:
    """
    Best-effort human message from a provider error envelope.

    Tries errors[0].message, messages[0].message, error, message; a plain text
    body is used as-is. Unknown shapes fall back to `fallback`.
    """
    if isinstance(payload, str):
        text = payload.strip()
        return text[:MAX_ERROR_MESSAGE_LENGTH] if text else fallback

    if not isinstance(payload, dict):
        return fallback

    candidates = (
        _first_message(payload.get("errors")),
        _first_message(payload.get("messages")),
        payload.get("error"),
        payload.get("message"),
    )
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate[:MAX_ERROR_MESSAGE_LENGTH]

    return fallback


def normalize_log_entries(payload: Any) -> List[LogEntry]:
    """
    Normalize a provider log payload into LogEntry values.

    Accepts a JSON array, newline-delimited text, or an object carrying the
    lines under `logs` or `data`.
    """
    if isinstance(payload, list):
        items: Iterable[Any] = payload
    elif isinstance(payload, str):
        items = [line.strip() for line in payload.splitlines() if line.strip()]
    elif isinstance(payload, dict):
        items = payload.get("logs") or payload.get("data") or []
    else:
        items = []

    entries = []
    for item in items:
        if isinstance(item, dict):
            message = item.get("message") or item.get("line") or json.dumps(item, sort_keys=True)
            raw_level = item.get("level")
            timestamp = parse_timestamp(item.get("timestamp") or item.get("ts"))
        else:
            message = str(item)
            raw_level = None
            timestamp = None

        entries.append(LogEntry(
            timestamp=timestamp or utcnow(),
            message=message,
            level=classify_log_level(message, raw_level),
        ))

    return entries


class ProviderClient(ABC):
    """
    Base class for provider API clients.

    Holds no per-request state; one instance per provider is shared by the
    whole process. Every call carries a bounded timeout.
    """

    provider: DeploymentProvider
    display_name: str = "Provider"

    def __init__(
        self,
        api_token: str,
        base_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def __repr__(self):
        # Never include the token
        return f"<{type(self).__name__} base_url={self.base_url}>"

    def _ensure_configured(self) -> None:
        if not self.api_token:
            raise ConfigurationError(f"{self.display_name} API token not configured")

    def _unwrap(self, payload: Any) -> Any:
        """Hook for provider response envelopes. Default: payload as-is."""
        return payload

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        accept: Optional[str] = None,
    ) -> Any:
        """
        Issue an authenticated request and return the parsed body.

        JSON bodies are decoded; anything else is returned as text.

        Raises:
            ConfigurationError: If credentials are missing
            ProviderError: On non-2xx, timeout or transport failure
        """
        self._ensure_configured()

        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }
        if accept:
            headers["Accept"] = accept

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers=headers,
                    json=json_body,
                )
        except httpx.TimeoutException as e:
            logger.error(f"{self.display_name} {method} {path} timed out after {self.timeout}s")
            raise ProviderError(
                f"{self.display_name} API request timed out",
                provider=self.provider.value,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"{self.display_name} {method} {path} transport error: {type(e).__name__}")
            raise ProviderError(
                f"{self.display_name} API request failed",
                provider=self.provider.value,
            ) from e

        text = response.text
        try:
            payload = json.loads(text) if text else None
        except ValueError:
            payload = text

        if not response.is_success:
            message = extract_error_message(payload, f"{self.display_name} API request failed")
            logger.error(f"{self.display_name} API error: {response.status_code} - {message}")
            raise ProviderError(
                message,
                provider=self.provider.value,
                upstream_status=response.status_code,
            )

        return self._unwrap(payload)

    # --- Capability interface ---

    @abstractmethod
    async def create_deployment(
        self,
        name: str,
        repo_full_name: str,
        credential: str,
        branch: str = "main",
    ) -> Deployment:
        """Create the provider-side project/site linked to a GitHub repo."""

    @abstractmethod
    async def get_deployment_status(self, deployment_id: str) -> DeploymentStatusSnapshot:
        """Fetch and normalize the latest deployment status."""

    @abstractmethod
    async def trigger_redeploy(self, deployment_id: str) -> None:
        """Request a new build. Does not wait for it."""

    @abstractmethod
    async def delete_deployment(self, deployment_id: str) -> None:
        """Delete the provider-side project/site."""

    @abstractmethod
    async def get_deployment_logs(self, deployment_id: str) -> List[LogEntry]:
        """Logs of the latest deployment; [] when there is none."""


class ProviderRegistry:
    """
    Maps DeploymentProvider -> ProviderClient.

    Built once at process start and injected into the state machine.
    """

    def __init__(self, clients: Dict[DeploymentProvider, ProviderClient]):
        self._clients = dict(clients)

    def get(self, provider: DeploymentProvider) -> ProviderClient:
        client = self._clients.get(DeploymentProvider(provider))
        if client is None:
            raise ConfigurationError(f"No client registered for provider '{provider}'")
        return client

    def __contains__(self, provider) -> bool:
        return DeploymentProvider(provider) in self._clients


def build_provider_registry(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderRegistry:
    """Construct one client per provider from settings."""
    from app.services.cloudflare_client import CloudflareClient
    from app.services.netlify_client import NetlifyClient

    return ProviderRegistry({
        DeploymentProvider.CLOUDFLARE: CloudflareClient(
            api_token=settings.CLOUDFLARE_API_TOKEN,
            account_id=settings.CLOUDFLARE_ACCOUNT_ID,
            base_url=settings.CLOUDFLARE_API_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            transport=transport,
        ),
        DeploymentProvider.NETLIFY: NetlifyClient(
            api_token=settings.NETLIFY_API_TOKEN,
            base_url=settings.NETLIFY_API_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            transport=transport,
        ),
    })
