"""
Shared test fixtures.

Persistence is an in-memory ProjectStore, provider clients are fakes that
record calls, and routes are exercised through httpx's ASGITransport. No
database, Redis or provider network access is needed.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")
os.environ.setdefault("RUN_MIGRATIONS", "false")

from app.errors import Conflict, NotFound  # noqa: E402
from app.main import app  # noqa: E402
from app.models.deployment import Deployment, DeploymentStatusSnapshot, LogEntry, Project  # noqa: E402
from app.models.project import DeploymentProvider, ProjectStatus  # noqa: E402
from app.services.project_state_machine import ProjectStateMachine  # noqa: E402
from app.services.provider_client import ProviderClient, ProviderRegistry  # noqa: E402
from app.services.rate_limiter import WebhookRateLimiter  # noqa: E402
from app.services.webhook_dispatcher import WebhookDispatcher  # noqa: E402

FIXED_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
EARLIER = datetime(2026, 10, 1, 9, 30, tzinfo=timezone.utc)

OWNER_ID = "11111111-1111-4111-8111-111111111111"
OTHER_OWNER_ID = "22222222-2222-4222-8222-222222222222"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class InMemoryProjectStore:
    """ProjectStore fake. Stores copies so callers can't mutate stored state."""

    def __init__(self):
        self.projects: Dict[str, Project] = {}
        self.save_count = 0

    @staticmethod
    def _matches(project: Project, filters: Dict[str, Any]) -> bool:
        for field, value in filters.items():
            if getattr(project, field) != value:
                return False
        return True

    async def find_by_id(self, project_id: str) -> Optional[Project]:
        project = self.projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def find_one(self, **filters: Any) -> Optional[Project]:
        found = await self.find_many(limit=1, **filters)
        return found[0] if found else None

    async def find_many(self, limit: Optional[int] = None, **filters: Any) -> List[Project]:
        found = [
            project.model_copy(deep=True)
            for project in self.projects.values()
            if self._matches(project, filters)
        ]
        return found[:limit] if limit is not None else found

    def _check_name(self, project: Project) -> None:
        for other in self.projects.values():
            if other.id != project.id and other.owner_id == project.owner_id and other.name == project.name:
                raise Conflict()

    async def insert(self, project: Project) -> Project:
        self._check_name(project)
        self.projects[project.id] = project.model_copy(deep=True)
        return project.model_copy(deep=True)

    async def save(self, project: Project) -> Project:
        if project.id not in self.projects:
            raise NotFound("Project not found", code="PROJECT_NOT_FOUND")
        self._check_name(project)
        self.save_count += 1
        self.projects[project.id] = project.model_copy(deep=True)
        return project.model_copy(deep=True)

    async def delete_one(self, project_id: str) -> bool:
        return self.projects.pop(project_id, None) is not None


class FakeCredentialSource:
    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens = tokens if tokens is not None else {OWNER_ID: "gho_owner", OTHER_OWNER_ID: "gho_other"}

    async def get_github_token(self, user_id: str) -> str:
        return self.tokens.get(user_id, "")


class FakeProviderClient(ProviderClient):
    """Records every call; `errors[method]` makes that method raise."""

    def __init__(self, provider: DeploymentProvider):
        super().__init__(api_token="test-token", base_url="https://provider.test")
        self.provider = provider
        self.display_name = provider.value
        self.calls: List[tuple] = []
        self.errors: Dict[str, Exception] = {}
        self.snapshot = DeploymentStatusSnapshot(
            status=ProjectStatus.DEPLOYED,
            url=f"https://site.{provider.value}.test",
            last_deployed=FIXED_NOW,
            deployment_url=f"https://preview.site.{provider.value}.test",
        )
        self.logs: List[LogEntry] = []

    def calls_for(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]

    def _record(self, method: str, *args):
        self.calls.append((method, *args))
        if method in self.errors:
            raise self.errors[method]

    async def create_deployment(self, name, repo_full_name, credential, branch="main"):
        self._record("create_deployment", name, repo_full_name, credential, branch)
        return Deployment(
            deployment_id=f"{self.provider.value}-{name}",
            url=f"https://{name}.{self.provider.value}.test",
            created_at=FIXED_NOW,
        )

    async def get_deployment_status(self, deployment_id):
        self._record("get_deployment_status", deployment_id)
        return self.snapshot

    async def trigger_redeploy(self, deployment_id):
        self._record("trigger_redeploy", deployment_id)

    async def delete_deployment(self, deployment_id):
        self._record("delete_deployment", deployment_id)

    async def get_deployment_logs(self, deployment_id):
        self._record("get_deployment_logs", deployment_id)
        return list(self.logs)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store():
    return InMemoryProjectStore()


@pytest.fixture
def credentials():
    return FakeCredentialSource()


@pytest.fixture
def cloudflare():
    return FakeProviderClient(DeploymentProvider.CLOUDFLARE)


@pytest.fixture
def netlify():
    return FakeProviderClient(DeploymentProvider.NETLIFY)


@pytest.fixture
def providers(cloudflare, netlify):
    return ProviderRegistry({
        DeploymentProvider.CLOUDFLARE: cloudflare,
        DeploymentProvider.NETLIFY: netlify,
    })


@pytest.fixture
def state_machine(store, providers, credentials):
    return ProjectStateMachine(
        store,
        providers,
        credentials,
        clock=lambda: FIXED_NOW,
        secret_factory=lambda: "generated-secret",
    )


@pytest.fixture
def dispatcher(store, state_machine):
    return WebhookDispatcher(store, state_machine)


@pytest.fixture
def make_project(store):
    """Insert a project directly into the store."""

    async def _make(**overrides) -> Project:
        data = {
            "id": str(uuid4()),
            "owner_id": OWNER_ID,
            "name": "acme-site",
            "github_repo": "acme/site",
            "deployment_provider": DeploymentProvider.CLOUDFLARE,
            "deployment_id": "acme-site",
            "deployment_url": "https://acme-site.pages.dev",
            "status": ProjectStatus.DEPLOYED,
            "webhook_secret": "s3cr3t",
            "default_branch": "main",
            "last_deployment_time": EARLIER,
            "created_at": EARLIER,
            "updated_at": EARLIER,
        }
        data.update(overrides)
        project = Project(**data)
        store.projects[project.id] = project
        return project

    return _make


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------

def make_token(user_id: str) -> str:
    return jwt.encode({"sub": user_id}, os.environ["JWT_SECRET"], algorithm="HS256")


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token(OWNER_ID)}"}


@pytest.fixture
def other_auth_headers():
    return {"Authorization": f"Bearer {make_token(OTHER_OWNER_ID)}"}


@pytest_asyncio.fixture
async def test_client(store, state_machine, dispatcher):
    app.state.project_store = store
    app.state.state_machine = state_machine
    app.state.webhook_dispatcher = dispatcher
    app.state.rate_limiter = WebhookRateLimiter("", capacity=50, window_seconds=60)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
