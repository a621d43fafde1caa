"""
Project State Machine

Owns a project's deployment lifecycle:

    create   -> deploying
    refresh  -> deploying | deployed | failed   (from the provider snapshot)
    redeploy -> deploying                       (fire-and-forget trigger)
    delete   -> remote first, then local

There is no terminal state: deployed and failed are re-entered by any later
redeploy. Local status is a cache of provider state; the provider's build
queue is the source of truth, so concurrent writers resolve last-write-wins.

No locks are held while waiting on a provider. Every local write is a
whole-record save through the ProjectStore.
"""

import asyncio
import logging
import secrets
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from app.errors import AppError, Conflict, CredentialUnavailable, NotFound, ProviderError
from app.models.deployment import DeploymentStatusSnapshot, LogEntry, Project, utcnow
from app.models.project import DeploymentProvider, ProjectStatus
from app.services.project_store import CredentialSource, ProjectStore
from app.services.provider_client import ProviderClient, ProviderRegistry, parse_repo_full_name

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_BYTES = 32  # 256 bits


def generate_webhook_secret() -> str:
    return secrets.token_hex(WEBHOOK_SECRET_BYTES)


def _apply(project: Project, **updates: Any) -> Project:
    """Return a validated copy of project with updates applied."""
    data = project.model_dump()
    data.update(updates)
    return Project.model_validate(data)


class ProjectStateMachine:
    """Lifecycle transitions for projects, persisted through a ProjectStore."""

    def __init__(
        self,
        store: ProjectStore,
        providers: ProviderRegistry,
        credentials: CredentialSource,
        clock: Callable = utcnow,
        secret_factory: Callable[[], str] = generate_webhook_secret,
    ):
        self.store = store
        self.providers = providers
        self.credentials = credentials
        self.clock = clock
        self.secret_factory = secret_factory

    def client_for(self, project: Project) -> ProviderClient:
        return self.providers.get(project.deployment_provider)

    async def _reload(self, project: Project) -> Project:
        current = await self.store.find_by_id(project.id)
        if current is None:
            raise NotFound("Project not found", code="PROJECT_NOT_FOUND")
        return current

    # --- Transitions ---

    async def create(
        self,
        owner_id: str,
        name: str,
        github_repo: str,
        provider: DeploymentProvider,
        description: Optional[str] = None,
        default_branch: str = "main",
    ) -> Project:
        """
        Create the provider deployment, then persist the project as deploying.

        Nothing is persisted if the provider call fails. If the local save
        loses a name race, the just-created remote deployment is removed.

        Raises:
            ValidationError: Malformed owner/repo (before any network call)
            Conflict: Owner already has a project with this name
            CredentialUnavailable: Owner has no usable GitHub credential
            ProviderError / ConfigurationError: Provider call failed
        """
        parse_repo_full_name(github_repo)
        provider = DeploymentProvider(provider)

        if await self.store.find_one(owner_id=owner_id, name=name):
            raise Conflict()

        credential = await self.credentials.get_github_token(owner_id)
        if not credential:
            raise CredentialUnavailable()

        client = self.providers.get(provider)
        deployment = await client.create_deployment(name, github_repo, credential, branch=default_branch)

        now = self.clock()
        project = Project(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=name,
            description=description,
            github_repo=github_repo,
            deployment_provider=provider,
            deployment_id=deployment.deployment_id,
            deployment_url=deployment.url,
            status=ProjectStatus.DEPLOYING,
            webhook_secret=self.secret_factory(),
            default_branch=default_branch,
            last_deployment_time=now,
            created_at=now,
            updated_at=now,
        )

        try:
            saved = await self.store.insert(project)
        except Conflict:
            logger.warning(f"Name conflict after creating {provider.value} deployment {deployment.deployment_id}; rolling back")
            try:
                await client.delete_deployment(deployment.deployment_id)
            except AppError as e:
                logger.error(f"Rollback of {provider.value} deployment {deployment.deployment_id} failed: {e.message}")
            raise

        logger.info(f"Project {saved.id} created on {provider.value} (deployment={saved.deployment_id})")
        return saved

    async def refresh(self, project: Project) -> Tuple[Project, DeploymentStatusSnapshot]:
        """
        Poll the provider and store the normalized snapshot.

        The record is re-read after the provider call so concurrent owner
        edits are not overwritten with stale values. last_deployment_time
        never moves backwards.
        """
        snapshot = await self.client_for(project).get_deployment_status(project.deployment_id)

        current = await self._reload(project)
        last_time = current.last_deployment_time
        if snapshot.last_deployed and (last_time is None or snapshot.last_deployed > last_time):
            last_time = snapshot.last_deployed

        updated = _apply(
            current,
            status=snapshot.status,
            deployment_url=snapshot.url or current.deployment_url,
            last_deployment_time=last_time,
            updated_at=self.clock(),
        )
        saved = await self.store.save(updated)

        if saved.status != project.status:
            logger.info(f"Project {saved.id} status {project.status.value} -> {saved.status.value}")

        return saved, snapshot

    async def refresh_many(self, projects: Sequence[Project]) -> List[Project]:
        """
        Refresh several projects concurrently, best-effort.

        A project whose refresh fails is returned with its stored values.
        """
        results = await asyncio.gather(
            *(self.refresh(project) for project in projects),
            return_exceptions=True,
        )

        refreshed = []
        for project, result in zip(projects, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"Status refresh failed for project {project.id}: {result}")
                refreshed.append(project)
            else:
                refreshed.append(result[0])

        return refreshed

    async def redeploy(self, project: Project, trigger: str = "manual") -> Project:
        """
        Ask the provider for a new build and mark the project deploying.

        Does not wait for the build. On provider failure the local record is
        left untouched and the error propagates; no automatic retry.
        """
        try:
            await self.client_for(project).trigger_redeploy(project.deployment_id)
        except ProviderError:
            logger.error(f"Redeploy of project {project.id} ({trigger}) failed at provider")
            raise

        now = self.clock()
        current = await self._reload(project)
        updated = _apply(
            current,
            status=ProjectStatus.DEPLOYING,
            last_deployment_time=now,
            updated_at=now,
        )
        saved = await self.store.save(updated)

        logger.info(f"REDEPLOY: project={saved.id} branch={saved.default_branch} trigger={trigger} status=triggered")
        return saved

    async def delete(self, project: Project) -> None:
        """
        Delete the remote deployment, then the local record.

        If the provider call fails the local record stays as-is so the
        operation can be retried. A provider 404 means the remote side is
        already gone and counts as success.
        """
        try:
            await self.client_for(project).delete_deployment(project.deployment_id)
        except ProviderError as e:
            if e.upstream_status != 404:
                raise
            logger.info(f"Remote deployment for project {project.id} already deleted")

        await self.store.delete_one(project.id)
        logger.info(f"Project {project.id} deleted")

    async def update_settings(
        self,
        project: Project,
        name: Optional[str] = None,
        description: Optional[str] = None,
        default_branch: Optional[str] = None,
    ) -> Project:
        """Owner edits. deployment_provider and github_repo are not editable."""
        updates: Dict[str, Any] = {}

        if name is not None and name != project.name:
            existing = await self.store.find_one(owner_id=project.owner_id, name=name)
            if existing and existing.id != project.id:
                raise Conflict()
            updates["name"] = name
        if description is not None:
            updates["description"] = description
        if default_branch is not None:
            updates["default_branch"] = default_branch

        if not updates:
            return project

        current = await self._reload(project)
        return await self.store.save(_apply(current, updated_at=self.clock(), **updates))

    async def get_logs(self, project: Project) -> List[LogEntry]:
        return await self.client_for(project).get_deployment_logs(project.deployment_id)
