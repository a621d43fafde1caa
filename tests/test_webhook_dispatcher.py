"""Tests for push delivery handling."""

import json
import logging

import pytest

from app.config import get_settings
from app.errors import INTERNAL_ERROR_MESSAGE, ConfigurationError, ProviderError
from app.models.project import DeploymentProvider, ProjectStatus
from app.services.webhook_dispatcher import branch_from_ref
from app.services.webhook_verifier import sign_payload

from tests.conftest import EARLIER, FIXED_NOW, OTHER_OWNER_ID


def push_body(repo="acme/site", ref="refs/heads/main", **extra) -> bytes:
    payload = {"ref": ref, "repository": {"full_name": repo}}
    payload.update(extra)
    return json.dumps(payload).encode()


@pytest.mark.parametrize(
    "ref,expected",
    [
        ("refs/heads/main", "main"),
        ("refs/heads/feature/login", "feature/login"),
        ("refs/tags/v1.0.0", "refs/tags/v1.0.0"),
        ("main", "main"),
    ],
)
def test_branch_from_ref(ref, expected):
    assert branch_from_ref(ref) == expected


@pytest.mark.asyncio
async def test_push_to_default_branch_triggers_redeploy(dispatcher, make_project, store, cloudflare):
    project = await make_project(status=ProjectStatus.DEPLOYED)
    body = push_body()

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.status_code == 200
    assert result.body == {"success": True, "message": "Redeployment triggered"}
    assert result.outcome == "triggered"
    assert result.project_ids == [project.id]
    assert cloudflare.calls_for("trigger_redeploy") == [("trigger_redeploy", "acme-site")]

    stored = store.projects[project.id]
    assert stored.status == ProjectStatus.DEPLOYING
    assert stored.last_deployment_time == FIXED_NOW


@pytest.mark.asyncio
async def test_invalid_signature_changes_nothing(dispatcher, make_project, store, cloudflare):
    project = await make_project()
    body = push_body()

    result = await dispatcher.dispatch("push", "sha256=deadbeef", body)

    assert result.status_code == 401
    assert result.body["code"] == "WEBHOOK_SIGNATURE_INVALID"
    assert cloudflare.calls == []
    assert store.projects[project.id].status == ProjectStatus.DEPLOYED
    assert store.projects[project.id].last_deployment_time == EARLIER


@pytest.mark.asyncio
async def test_missing_signature_rejected(dispatcher, make_project, cloudflare):
    await make_project()

    result = await dispatcher.dispatch("push", None, push_body())

    assert result.status_code == 401
    assert cloudflare.calls == []


@pytest.mark.asyncio
async def test_other_branch_is_skipped(dispatcher, make_project, store, cloudflare):
    project = await make_project()
    body = push_body(ref="refs/heads/develop")

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.status_code == 200
    assert result.body["message"] == "Branch skipped"
    assert result.outcome == "skipped_branch"
    assert cloudflare.calls == []
    assert store.save_count == 0
    assert store.projects[project.id].status == ProjectStatus.DEPLOYED


@pytest.mark.asyncio
async def test_custom_default_branch(dispatcher, make_project, cloudflare):
    await make_project(default_branch="release")
    body = push_body(ref="refs/heads/release")

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.outcome == "triggered"
    assert len(cloudflare.calls_for("trigger_redeploy")) == 1


@pytest.mark.asyncio
async def test_redelivery_triggers_again(dispatcher, make_project, cloudflare):
    await make_project()
    body = push_body()
    signature = sign_payload(body, "s3cr3t")

    first = await dispatcher.dispatch("push", signature, body)
    second = await dispatcher.dispatch("push", signature, body)

    assert first.status_code == second.status_code == 200
    assert len(cloudflare.calls_for("trigger_redeploy")) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("event", ["ping", "pull_request", "", None])
async def test_non_push_events_are_ignored(dispatcher, make_project, cloudflare, event):
    await make_project()

    result = await dispatcher.dispatch(event, None, b"not even json")

    assert result.status_code == 200
    assert result.body == {"success": True, "message": "Event ignored"}
    assert cloudflare.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"",
        b"{not json",
        b"[]",
        json.dumps({"ref": "refs/heads/main"}).encode(),
        json.dumps({"ref": "refs/heads/main", "repository": {}}).encode(),
        json.dumps({"ref": "refs/heads/main", "repository": "acme/site"}).encode(),
    ],
)
async def test_missing_repository_is_bad_request(dispatcher, make_project, body):
    await make_project()

    result = await dispatcher.dispatch("push", sign_payload(body or b"x", "s3cr3t"), body)

    assert result.status_code == 400
    assert result.body["message"] == "Invalid payload"


@pytest.mark.asyncio
async def test_untracked_repository(dispatcher, make_project, cloudflare):
    await make_project()
    body = push_body(repo="someone/else")

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.status_code == 404
    assert result.body["status"] == "error"
    assert cloudflare.calls == []


@pytest.mark.asyncio
async def test_missing_ref(dispatcher, make_project, cloudflare):
    await make_project()
    body = json.dumps({"repository": {"full_name": "acme/site"}}).encode()

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.status_code == 400
    assert result.body["message"] == "Missing ref in payload"
    assert cloudflare.calls == []


@pytest.mark.asyncio
async def test_signature_checked_against_raw_bytes(dispatcher, make_project, cloudflare):
    await make_project()
    body = b'{\n  "ref" :  "refs/heads/main",\t"repository": { "full_name": "acme/site" }\n}\n'

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.status_code == 200
    assert len(cloudflare.calls_for("trigger_redeploy")) == 1


@pytest.mark.asyncio
async def test_provider_failure_is_reported(dispatcher, make_project, store, cloudflare):
    project = await make_project()
    cloudflare.errors["trigger_redeploy"] = ProviderError("build quota exceeded", provider="cloudflare", upstream_status=429)
    body = push_body()

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.status_code == 502
    assert result.body["code"] == "DEPLOYMENT_FAILED"
    assert "build quota exceeded" in result.body["message"]
    assert store.projects[project.id].status == ProjectStatus.DEPLOYED


@pytest.mark.asyncio
async def test_only_projects_whose_secret_verifies_are_redeployed(dispatcher, make_project, store, cloudflare, netlify):
    mine = await make_project(webhook_secret="s3cr3t")
    theirs = await make_project(
        owner_id=OTHER_OWNER_ID,
        webhook_secret="their-secret",
        deployment_provider=DeploymentProvider.NETLIFY,
        deployment_id="site-1",
    )
    body = push_body()

    result = await dispatcher.dispatch("push", sign_payload(body, "their-secret"), body)

    assert result.project_ids == [theirs.id]
    assert netlify.calls_for("trigger_redeploy") == [("trigger_redeploy", "site-1")]
    assert cloudflare.calls == []
    assert store.projects[mine.id].status == ProjectStatus.DEPLOYED


@pytest.mark.asyncio
async def test_audit_log_never_contains_secret_or_signature(dispatcher, make_project, caplog):
    await make_project()
    body = push_body()
    signature = sign_payload(body, "s3cr3t")

    with caplog.at_level(logging.INFO):
        await dispatcher.dispatch("push", signature, body)
        await dispatcher.dispatch("push", "sha256=deadbeef", body)

    assert "WEBHOOK:" in caplog.text
    assert "outcome=triggered" in caplog.text
    assert "outcome=invalid_signature" in caplog.text
    assert "s3cr3t" not in caplog.text
    assert signature not in caplog.text


@pytest.mark.asyncio
async def test_configuration_failure_is_masked_in_production(dispatcher, make_project, store, cloudflare, monkeypatch):
    monkeypatch.setattr(get_settings(), "ENV", "production")
    project = await make_project()
    cloudflare.errors["trigger_redeploy"] = ConfigurationError("Cloudflare API token/account ID not configured")
    body = push_body()

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.status_code == 500
    assert result.body == {"status": "error", "code": "CONFIGURATION_ERROR", "message": INTERNAL_ERROR_MESSAGE}
    assert result.outcome == "server_error"
    assert result.project_ids == [project.id]
    assert store.projects[project.id].status == ProjectStatus.DEPLOYED


@pytest.mark.asyncio
async def test_configuration_failure_detail_outside_production(dispatcher, make_project, cloudflare):
    await make_project()
    cloudflare.errors["trigger_redeploy"] = ConfigurationError("Cloudflare API token/account ID not configured")
    body = push_body()

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.status_code == 500
    assert result.body["message"] == "Cloudflare API token/account ID not configured"
    assert result.outcome == "server_error"


@pytest.mark.asyncio
async def test_provider_failure_detail_kept_in_production(dispatcher, make_project, cloudflare, monkeypatch):
    monkeypatch.setattr(get_settings(), "ENV", "production")
    await make_project()
    cloudflare.errors["trigger_redeploy"] = ProviderError("build quota exceeded", provider="cloudflare", upstream_status=429)
    body = push_body()

    result = await dispatcher.dispatch("push", sign_payload(body, "s3cr3t"), body)

    assert result.status_code == 502
    assert result.body["message"] == "Deployment failed: build quota exceeded"
    assert result.outcome == "provider_error"
