"""
Projects API

Owner-facing API for deployable projects.

All endpoints require a session token (Authorization: Bearer <jwt>) and only
act on projects the caller owns. The webhook secret is only ever returned by
GET /projects/{project_id}/webhook-secret.
"""

import json
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, ConfigDict, Field

from app.api.auth import get_current_user_id
from app.api.dependencies import get_project_store, get_state_machine, get_webhook_dispatcher
from app.config import get_settings
from app.errors import NotFound, PermissionDenied
from app.models.deployment import DeploymentStatusSnapshot, LogEntry, Project
from app.models.project import DeploymentProvider, ProjectStatus, GITHUB_REPO_PATTERN
from app.services.project_state_machine import ProjectStateMachine
from app.services.project_store import ProjectStore
from app.services.webhook_dispatcher import WebhookDispatcher
from app.services.webhook_verifier import sign_payload

router = APIRouter(prefix="/projects", tags=["projects"])


# --- Pydantic Models ---

class ProjectCreate(BaseModel):
    """Request model for creating a project. Accepts camelCase or snake_case keys."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=3, max_length=50, description="Project name, unique per owner")
    github_repo: str = Field(
        ..., alias="githubRepo", pattern=GITHUB_REPO_PATTERN, description="GitHub repository (owner/repo)"
    )
    deployment_provider: DeploymentProvider = Field(
        ..., alias="deploymentProvider", description="cloudflare or netlify"
    )
    description: Optional[str] = Field(None, max_length=500)
    default_branch: str = Field(
        "main", alias="defaultBranch", min_length=1, max_length=50, description="Branch that triggers redeploys"
    )


class ProjectUpdate(BaseModel):
    """Request model for updating a project. Provider and repo are immutable."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, min_length=3, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    default_branch: Optional[str] = Field(None, alias="defaultBranch", min_length=1, max_length=50)


class ProjectResponse(BaseModel):
    """Response model for project data (never includes the webhook secret)."""
    id: str
    owner_id: str
    name: str
    description: Optional[str]
    github_repo: str
    deployment_provider: DeploymentProvider
    deployment_id: str
    deployment_url: Optional[str]
    status: ProjectStatus
    default_branch: str
    last_deployment_time: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(**project.model_dump(exclude={"webhook_secret"}))


class ProjectStatusResponse(BaseModel):
    project: ProjectResponse
    deployment: DeploymentStatusSnapshot


class ProjectLogsResponse(BaseModel):
    project_id: str
    logs: List[LogEntry]


class WebhookSecretResponse(BaseModel):
    webhook_secret: str = Field(..., serialization_alias="webhookSecret")
    webhook_url: str = Field(..., serialization_alias="webhookUrl")


class WebhookConfigRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    default_branch: str = Field(..., min_length=1, max_length=50, alias="defaultBranch")


class WebhookTestResponse(BaseModel):
    success: bool
    status_code: int = Field(..., serialization_alias="statusCode")
    message: Optional[str] = None


# --- Ownership ---

async def get_owned_project(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ProjectStore = Depends(get_project_store),
) -> Project:
    """
    Load a project and check the caller owns it.

    Raises:
        NotFound: Unknown project id
        PermissionDenied: Project belongs to someone else
    """
    project = await store.find_by_id(project_id)

    if project is None:
        raise NotFound("Project not found", code="PROJECT_NOT_FOUND")

    if project.owner_id != user_id:
        raise PermissionDenied()

    return project


# --- Project CRUD Endpoints ---

@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(
    body: ProjectCreate,
    user_id: str = Depends(get_current_user_id),
    state_machine: ProjectStateMachine = Depends(get_state_machine),
):
    """
    Link a GitHub repository and create its deployment on the chosen provider.

    Example:
        POST /projects
        Authorization: Bearer <token>
        {
            "name": "marketing-site",
            "github_repo": "acme/site",
            "deployment_provider": "cloudflare",
            "default_branch": "main"
        }
    """
    project = await state_machine.create(
        owner_id=user_id,
        name=body.name,
        github_repo=body.github_repo,
        provider=body.deployment_provider,
        description=body.description,
        default_branch=body.default_branch,
    )
    return ProjectResponse.from_project(project)


@router.get("", response_model=List[ProjectResponse])
async def list_projects(
    user_id: str = Depends(get_current_user_id),
    store: ProjectStore = Depends(get_project_store),
    state_machine: ProjectStateMachine = Depends(get_state_machine),
):
    """
    List the caller's projects with freshly polled statuses.

    Refresh is best-effort: a project whose provider call fails is returned
    with its stored status.
    """
    projects = await store.find_many(owner_id=user_id)
    refreshed = await state_machine.refresh_many(projects)
    return [ProjectResponse.from_project(project) for project in refreshed]


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project: Project = Depends(get_owned_project)):
    return ProjectResponse.from_project(project)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    updates: ProjectUpdate,
    project: Project = Depends(get_owned_project),
    state_machine: ProjectStateMachine = Depends(get_state_machine),
):
    """Only provided fields will be updated."""
    updated = await state_machine.update_settings(
        project,
        name=updates.name,
        description=updates.description,
        default_branch=updates.default_branch,
    )
    return ProjectResponse.from_project(updated)


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project: Project = Depends(get_owned_project),
    state_machine: ProjectStateMachine = Depends(get_state_machine),
):
    """
    Delete the provider deployment, then the project.

    If the provider refuses, the project is kept and the call can be retried.
    """
    await state_machine.delete(project)
    return Response(status_code=204)


# --- Deployment Endpoints ---

@router.post("/{project_id}/redeploy", response_model=ProjectResponse, status_code=202)
async def redeploy_project(
    project: Project = Depends(get_owned_project),
    state_machine: ProjectStateMachine = Depends(get_state_machine),
):
    """Trigger a new build. Poll /status to observe completion."""
    updated = await state_machine.redeploy(project, trigger="manual")
    return ProjectResponse.from_project(updated)


@router.get("/{project_id}/status", response_model=ProjectStatusResponse)
async def get_project_status(
    project: Project = Depends(get_owned_project),
    state_machine: ProjectStateMachine = Depends(get_state_machine),
):
    refreshed, snapshot = await state_machine.refresh(project)
    return ProjectStatusResponse(
        project=ProjectResponse.from_project(refreshed),
        deployment=snapshot,
    )


@router.get("/{project_id}/logs", response_model=ProjectLogsResponse)
async def get_project_logs(
    project: Project = Depends(get_owned_project),
    state_machine: ProjectStateMachine = Depends(get_state_machine),
):
    """Logs of the latest provider deployment (empty if there is none yet)."""
    logs = await state_machine.get_logs(project)
    return ProjectLogsResponse(project_id=project.id, logs=logs)


# --- Webhook Endpoints ---

@router.get("/{project_id}/webhook-secret", response_model=WebhookSecretResponse)
async def get_webhook_secret(project: Project = Depends(get_owned_project)):
    """Secret and URL to paste into the GitHub repository's webhook settings."""
    settings = get_settings()
    return WebhookSecretResponse(
        webhook_secret=project.webhook_secret,
        webhook_url=f"{settings.PUBLIC_BASE_URL.rstrip('/')}/webhook/github",
    )


@router.post("/{project_id}/webhook-config", response_model=ProjectResponse)
async def configure_webhook(
    body: WebhookConfigRequest,
    project: Project = Depends(get_owned_project),
    state_machine: ProjectStateMachine = Depends(get_state_machine),
):
    """Change the branch whose pushes trigger redeploys."""
    updated = await state_machine.update_settings(project, default_branch=body.default_branch)
    return ProjectResponse.from_project(updated)


@router.post("/{project_id}/webhook/test", response_model=WebhookTestResponse)
async def test_webhook(
    project: Project = Depends(get_owned_project),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    """
    Simulate a signed push to the default branch.

    The delivery goes through the same dispatcher as real GitHub deliveries,
    so a successful test triggers a real redeploy.
    """
    payload = {
        "ref": f"refs/heads/{project.default_branch}",
        "repository": {
            "full_name": project.github_repo,
            "name": project.github_repo.split("/", 1)[1],
        },
        "pusher": {"name": "webhook-test"},
        "commits": [
            {"id": "test-commit-id", "message": "Test webhook push"},
        ],
    }
    raw_body = json.dumps(payload).encode("utf-8")
    signature = sign_payload(raw_body, project.webhook_secret)

    result = await dispatcher.dispatch("push", signature, raw_body)

    return WebhookTestResponse(
        success=result.status_code == 200,
        status_code=result.status_code,
        message=result.body.get("message"),
    )
