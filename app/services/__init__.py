"""Deployment Control Plane Services"""

from .webhook_verifier import verify_signature, sign_payload
from .credential_vault import CredentialVault
from .provider_client import ProviderClient, ProviderRegistry, build_provider_registry
from .cloudflare_client import CloudflareClient
from .netlify_client import NetlifyClient
from .project_store import ProjectStore, PostgresProjectStore, PostgresCredentialSource
from .project_state_machine import ProjectStateMachine
from .webhook_dispatcher import WebhookDispatcher, WebhookResult
from .rate_limiter import WebhookRateLimiter
from .scheduler import DeploymentScheduler

__all__ = [
    "verify_signature",
    "sign_payload",
    "CredentialVault",
    "ProviderClient",
    "ProviderRegistry",
    "build_provider_registry",
    "CloudflareClient",
    "NetlifyClient",
    "ProjectStore",
    "PostgresProjectStore",
    "PostgresCredentialSource",
    "ProjectStateMachine",
    "WebhookDispatcher",
    "WebhookResult",
    "DeploymentScheduler",
    "WebhookRateLimiter",
]
