"""
Project Persistence Port

The deployment core reads and writes projects only through ProjectStore:

    find_by_id(id) / find_one(**filter) / find_many(**filter)
    insert(project)    - new record
    save(project)      - whole-record update of an existing row (atomic)
    delete_one(id)

PostgresProjectStore implements it on the `projects` table with asyncpg.

CredentialSource hands out the owner's GitHub token, already decrypted by
the CredentialVault. The plaintext only lives in memory for the duration of
a provider call.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Protocol

import asyncpg

from app.errors import Conflict, NotFound
from app.models.deployment import Project
from app.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)

# Columns a caller may filter on
FILTERABLE_FIELDS = (
    "id",
    "owner_id",
    "name",
    "github_repo",
    "deployment_provider",
    "deployment_id",
    "status",
)

UUID_FIELDS = ("id", "owner_id")

PROJECT_COLUMNS = (
    "id",
    "owner_id",
    "name",
    "description",
    "github_repo",
    "deployment_provider",
    "deployment_id",
    "deployment_url",
    "status",
    "webhook_secret",
    "default_branch",
    "last_deployment_time",
    "created_at",
    "updated_at",
)


class ProjectStore(Protocol):
    async def find_by_id(self, project_id: str) -> Optional[Project]: ...

    async def find_one(self, **filters: Any) -> Optional[Project]: ...

    async def find_many(self, limit: Optional[int] = None, **filters: Any) -> List[Project]: ...

    async def insert(self, project: Project) -> Project: ...

    async def save(self, project: Project) -> Project: ...

    async def delete_one(self, project_id: str) -> bool: ...


class CredentialSource(Protocol):
    async def get_github_token(self, user_id: str) -> str: ...


def _is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except ValueError:
        return False


def _row_to_project(row: asyncpg.Record) -> Project:
    data = dict(row)
    data["id"] = str(data["id"])
    data["owner_id"] = str(data["owner_id"])
    return Project(**data)


def _build_where(filters: Dict[str, Any]) -> tuple:
    """
    Build a parameterized WHERE clause.

    Returns (clause, args), or (None, None) when a filter can never match.
    """
    clauses = []
    args = []

    for field, value in filters.items():
        if field not in FILTERABLE_FIELDS:
            raise ValueError(f"Unsupported project filter: {field}")
        if field in UUID_FIELDS and not _is_uuid(value):
            return None, None
        args.append(getattr(value, "value", value))
        clauses.append(f"{field} = ${len(args)}")

    clause = " AND ".join(clauses) if clauses else "TRUE"
    return clause, args


class PostgresProjectStore:
    """ProjectStore backed by the `projects` table."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def find_by_id(self, project_id: str) -> Optional[Project]:
        return await self.find_one(id=project_id)

    async def find_one(self, **filters: Any) -> Optional[Project]:
        projects = await self.find_many(limit=1, **filters)
        return projects[0] if projects else None

    async def find_many(self, limit: Optional[int] = None, **filters: Any) -> List[Project]:
        clause, args = _build_where(filters)
        if clause is None:
            return []

        query = f"""
            SELECT {", ".join(PROJECT_COLUMNS)}
            FROM projects
            WHERE {clause}
            ORDER BY created_at ASC
        """
        if limit is not None:
            args.append(limit)
            query += f" LIMIT ${len(args)}"

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *args)

        return [_row_to_project(row) for row in rows]

    async def insert(self, project: Project) -> Project:
        """
        Write a brand new project row.

        Raises:
            Conflict: If (owner_id, name) is already taken by another project
        """
        values = [
            uuid.UUID(project.id),
            uuid.UUID(project.owner_id),
            project.name,
            project.description,
            project.github_repo,
            project.deployment_provider.value,
            project.deployment_id,
            project.deployment_url,
            project.status.value,
            project.webhook_secret,
            project.default_branch,
            project.last_deployment_time,
            project.created_at,
        ]

        try:
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow(f"""
                    INSERT INTO projects ({", ".join(PROJECT_COLUMNS[:-1])}, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, NOW())
                    RETURNING {", ".join(PROJECT_COLUMNS)}
                """, *values)
        except asyncpg.UniqueViolationError as e:
            logger.info(f"Project name conflict for owner {project.owner_id}")
            raise Conflict() from e

        return _row_to_project(row)

    async def save(self, project: Project) -> Project:
        """
        Write every mutable column of an existing project in one statement.

        Concurrent saves of the same project never leave a torn record; the
        last writer wins. A project deleted since it was read stays deleted.

        Raises:
            NotFound: If the row no longer exists
            Conflict: If (owner_id, name) is already taken by another project
        """
        if not _is_uuid(project.id):
            raise NotFound("Project not found", code="PROJECT_NOT_FOUND")

        values = [
            uuid.UUID(project.id),
            project.name,
            project.description,
            project.deployment_id,
            project.deployment_url,
            project.status.value,
            project.default_branch,
            project.last_deployment_time,
        ]

        try:
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow(f"""
                    UPDATE projects SET
                        name = $2,
                        description = $3,
                        deployment_id = $4,
                        deployment_url = $5,
                        status = $6,
                        default_branch = $7,
                        last_deployment_time = $8,
                        updated_at = NOW()
                    WHERE id = $1
                    RETURNING {", ".join(PROJECT_COLUMNS)}
                """, *values)
        except asyncpg.UniqueViolationError as e:
            logger.info(f"Project name conflict for owner {project.owner_id}")
            raise Conflict() from e

        if row is None:
            logger.info(f"Project {project.id} was deleted before it could be saved")
            raise NotFound("Project not found", code="PROJECT_NOT_FOUND")

        return _row_to_project(row)

    async def delete_one(self, project_id: str) -> bool:
        if not _is_uuid(project_id):
            return False

        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM projects WHERE id = $1",
                uuid.UUID(project_id)
            )

        # asyncpg returns the command tag, e.g. "DELETE 1"
        return result.endswith(" 1")


class PostgresCredentialSource:
    """Reads the owner's encrypted GitHub token from `users`."""

    def __init__(self, db_pool: asyncpg.Pool, vault: CredentialVault):
        self.db_pool = db_pool
        self.vault = vault

    async def get_github_token(self, user_id: str) -> str:
        """
        Returns:
            The decrypted token, or "" if the user has none or it cannot be
            decrypted (caller should treat the account as not connected).
        """
        if not _is_uuid(user_id):
            return ""

        async with self.db_pool.acquire() as conn:
            blob = await conn.fetchval(
                "SELECT github_access_token FROM users WHERE id = $1",
                uuid.UUID(user_id)
            )

        return self.vault.decrypt(blob)
