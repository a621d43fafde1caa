"""
Webhook Dispatcher

Turns one inbound GitHub delivery into (at most) a redeploy:

1. Non-push events          -> 200, ignored
2. No repository.full_name  -> 400
3. Repository not tracked   -> 404 (same answer whether or not the repo exists)
4. Signature invalid        -> 401
5. No ref                   -> 400
6. Branch != default_branch -> 200, skipped
7. Otherwise                -> redeploy, 200

The dispatcher is stateless. Redelivery of the same push simply triggers
another redeploy; providers deduplicate identical builds.

Several owners may track the same repository, each with their own secret.
The delivery is applied to every project whose secret verifies it.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.errors import AppError, NotFound, ProviderError, SignatureInvalid, ValidationError, public_message
from app.models.deployment import Project
from app.services.project_state_machine import ProjectStateMachine
from app.services.project_store import ProjectStore
from app.services.webhook_verifier import verify_signature

logger = logging.getLogger(__name__)

PUSH_EVENT = "push"
BRANCH_REF_PREFIX = "refs/heads/"

EVENT_IGNORED = "Event ignored"
BRANCH_SKIPPED = "Branch skipped"
REDEPLOY_TRIGGERED = "Redeployment triggered"


@dataclass
class WebhookResult:
    """HTTP-ready outcome of a delivery."""
    status_code: int
    body: Dict[str, Any]
    outcome: str
    project_ids: List[str] = field(default_factory=list)


def log_webhook_event(project_id: Optional[str], event_type: Optional[str], outcome: str) -> None:
    """Audit line for a delivery. Never includes secrets or signatures."""
    logger.info(f"WEBHOOK: project={project_id or '-'} event={event_type or '-'} outcome={outcome}")


def branch_from_ref(ref: str) -> str:
    """'refs/heads/main' -> 'main'. Other refs are returned unchanged."""
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX):]
    return ref


def _success(message: str, outcome: str, project_ids: List[str]) -> WebhookResult:
    return WebhookResult(200, {"success": True, "message": message}, outcome, project_ids)


def _failure(error: AppError, outcome: str, project_ids: Optional[List[str]] = None) -> WebhookResult:
    return WebhookResult(
        error.status_code,
        {"status": "error", "code": error.code, "message": public_message(error)},
        outcome,
        project_ids or [],
    )


class WebhookDispatcher:
    """Verifies push deliveries and hands matching ones to the state machine."""

    def __init__(self, store: ProjectStore, state_machine: ProjectStateMachine):
        self.store = store
        self.state_machine = state_machine

    async def dispatch(
        self,
        event_type: Optional[str],
        signature: Optional[str],
        raw_body: bytes,
    ) -> WebhookResult:
        """
        Handle one delivery.

        Args:
            event_type: X-GitHub-Event header
            signature: X-Hub-Signature-256 header
            raw_body: Request body exactly as received on the wire

        Returns:
            WebhookResult; unexpected errors propagate (rendered as 500)
        """
        if event_type != PUSH_EVENT:
            log_webhook_event(None, event_type, "ignored_event")
            return _success(EVENT_IGNORED, "ignored_event", [])

        payload = self._parse(raw_body)
        repository = payload.get("repository") if payload else None
        repo_full_name = repository.get("full_name") if isinstance(repository, dict) else None

        if not isinstance(repo_full_name, str) or not repo_full_name:
            log_webhook_event(None, event_type, "invalid_payload")
            return _failure(ValidationError("Invalid payload"), "invalid_payload")

        candidates = await self.store.find_many(github_repo=repo_full_name)
        if not candidates:
            log_webhook_event(None, event_type, "not_found")
            return _failure(NotFound(), "not_found")

        # Verify against the raw bytes, never a re-serialization
        projects = [
            project for project in candidates
            if verify_signature(raw_body, signature, project.webhook_secret)
        ]
        if not projects:
            for project in candidates:
                log_webhook_event(project.id, event_type, "invalid_signature")
            return _failure(SignatureInvalid(), "invalid_signature")

        project_ids = [project.id for project in projects]

        ref = payload.get("ref")
        if not isinstance(ref, str) or not ref:
            for project in projects:
                log_webhook_event(project.id, event_type, "invalid_payload")
            return _failure(ValidationError("Missing ref in payload"), "invalid_payload", project_ids)

        branch = branch_from_ref(ref)
        return await self._redeploy_matching(projects, branch, event_type)

    @staticmethod
    def _parse(raw_body: bytes) -> Optional[Dict[str, Any]]:
        if not raw_body:
            return None
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            return None
        return payload if isinstance(payload, dict) else None

    async def _redeploy_matching(
        self,
        projects: List[Project],
        branch: str,
        event_type: str,
    ) -> WebhookResult:
        triggered = []
        skipped = []

        for project in projects:
            if branch != project.default_branch:
                log_webhook_event(project.id, event_type, "skipped_branch")
                skipped.append(project.id)
                continue

            try:
                await self.state_machine.redeploy(project, trigger="webhook")
            except AppError as e:
                outcome = "provider_error" if isinstance(e, ProviderError) else "server_error"
                log_webhook_event(project.id, event_type, outcome)
                return _failure(e, outcome, [project.id])

            log_webhook_event(project.id, event_type, "triggered")
            triggered.append(project.id)

        if triggered:
            return _success(REDEPLOY_TRIGGERED, "triggered", triggered)
        return _success(BRANCH_SKIPPED, "skipped_branch", skipped)
