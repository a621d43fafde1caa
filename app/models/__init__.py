"""Deployment Control Plane Models"""

from .user import Base, UserRecord
from .project import ProjectRecord, DeploymentProvider, ProjectStatus, GITHUB_REPO_PATTERN
from .deployment import (
    Project,
    Deployment,
    DeploymentStatusSnapshot,
    LogEntry,
    LogLevel,
    utcnow,
)

__all__ = [
    "Base",
    "UserRecord",
    "ProjectRecord",
    "DeploymentProvider",
    "ProjectStatus",
    "GITHUB_REPO_PATTERN",
    "Project",
    "Deployment",
    "DeploymentStatusSnapshot",
    "LogEntry",
    "LogLevel",
    "utcnow",
]
