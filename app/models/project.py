"""
Project Model

One deployable static site, owned by exactly one user and hosted on exactly
one provider (Cloudflare Pages or Netlify).
"""

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Enum as SQLEnum, func
from sqlalchemy.dialects.postgresql import UUID

import enum
import uuid

from app.models.user import Base


class DeploymentProvider(str, enum.Enum):
    """Static hosting providers."""
    CLOUDFLARE = "cloudflare"
    NETLIFY = "netlify"


class ProjectStatus(str, enum.Enum):
    """Normalized deployment status. deployed/failed are re-enterable."""
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


GITHUB_REPO_PATTERN = r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$"


class ProjectRecord(Base):
    """
    Projects table.

    (owner_id, name) is unique. github_repo is NOT globally unique: several
    users may deploy forks or copies of the same repository.
    """
    __tablename__ = "projects"
    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_projects_owner_name"),
        CheckConstraint(f"github_repo ~ '{GITHUB_REPO_PATTERN}'", name="ck_projects_github_repo"),
        CheckConstraint("char_length(name) >= 3", name="ck_projects_name_length"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    github_repo = Column(String(201), nullable=False, index=True)  # owner/repo

    # Immutable after creation
    deployment_provider = Column(SQLEnum(DeploymentProvider, name="deployment_provider", values_callable=lambda e: [m.value for m in e]), nullable=False)
    deployment_id = Column(String(128), nullable=False)
    deployment_url = Column(String(512), nullable=True)
    status = Column(
        SQLEnum(ProjectStatus, name="project_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        server_default=ProjectStatus.DEPLOYING.value,
        index=True
    )

    # Webhook
    webhook_secret = Column(String(128), nullable=False)  # never serialized to non-owners
    default_branch = Column(String(50), nullable=False, server_default="main")

    # Audit
    last_deployment_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<ProjectRecord {self.name} ({self.deployment_provider})>"
