"""
Deployment Value Types

Plain pydantic values passed between the provider clients, the project state
machine and the persistence port. None of these talk to a database.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

from app.models.project import DeploymentProvider, ProjectStatus, GITHUB_REPO_PATTERN


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(BaseModel):
    """A project as the deployment core sees it (one row of `projects`)."""
    id: str
    owner_id: str
    name: str = Field(..., min_length=3, max_length=50)
    description: Optional[str] = None
    github_repo: str = Field(..., pattern=GITHUB_REPO_PATTERN)
    deployment_provider: DeploymentProvider
    deployment_id: str
    deployment_url: Optional[str] = None
    status: ProjectStatus = ProjectStatus.DEPLOYING
    webhook_secret: str = Field(..., repr=False)
    default_branch: str = "main"
    last_deployment_time: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Deployment(BaseModel):
    """Result of creating a deployment on a provider."""
    deployment_id: str
    status: ProjectStatus = ProjectStatus.DEPLOYING
    url: str
    created_at: datetime


class DeploymentStatusSnapshot(BaseModel):
    """
    Latest provider view of a deployment.

    `url` is the canonical public URL of the site; `deployment_url` is what
    the provider reports for the latest deployment, which may be a preview
    URL. `last_deployed` is None when the provider reports no timestamp.
    """
    status: ProjectStatus
    url: str
    last_deployed: Optional[datetime] = None
    deployment_url: str


LogLevel = Literal["info", "warn", "error"]


class LogEntry(BaseModel):
    timestamp: datetime
    message: str
    level: LogLevel = "info"
