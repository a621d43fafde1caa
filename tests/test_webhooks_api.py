"""End-to-end tests for POST /webhook/github through the ASGI app."""

import json

import pytest

from app.config import get_settings
from app.main import app
from app.models.project import ProjectStatus
from app.services.webhook_verifier import sign_payload

from tests.conftest import FIXED_NOW


def signed_headers(body: bytes, secret: str = "s3cr3t", event: str = "push"):
    return {
        "X-GitHub-Event": event,
        "X-Hub-Signature-256": sign_payload(body, secret),
        "Content-Type": "application/json",
    }


class DenyAll:
    async def allow(self, client_key):
        return False


class RecordingLimiter:
    def __init__(self):
        self.keys = []

    async def allow(self, client_key):
        self.keys.append(client_key)
        return True


@pytest.mark.asyncio
async def test_signed_push_triggers_redeploy(test_client, make_project, store, cloudflare):
    project = await make_project()
    body = json.dumps({"ref": "refs/heads/main", "repository": {"full_name": "acme/site"}}).encode()

    response = await test_client.post("/webhook/github", content=body, headers=signed_headers(body))

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Redeployment triggered"}
    assert store.projects[project.id].status == ProjectStatus.DEPLOYING
    assert store.projects[project.id].last_deployment_time == FIXED_NOW
    assert len(cloudflare.calls_for("trigger_redeploy")) == 1


@pytest.mark.asyncio
async def test_bad_signature(test_client, make_project, cloudflare):
    await make_project()
    body = json.dumps({"ref": "refs/heads/main", "repository": {"full_name": "acme/site"}}).encode()
    headers = signed_headers(body)
    headers["X-Hub-Signature-256"] = "sha256=deadbeef"

    response = await test_client.post("/webhook/github", content=body, headers=headers)

    assert response.status_code == 401
    assert response.json() == {
        "status": "error",
        "code": "WEBHOOK_SIGNATURE_INVALID",
        "message": "Invalid webhook signature",
    }
    assert cloudflare.calls == []


@pytest.mark.asyncio
async def test_raw_body_with_unusual_formatting_verifies(test_client, make_project, cloudflare):
    await make_project()
    body = b'{"repository":{"full_name":"acme/site"},   "ref":"refs/heads/main"  }\r\n'

    response = await test_client.post("/webhook/github", content=body, headers=signed_headers(body))

    assert response.status_code == 200
    assert len(cloudflare.calls_for("trigger_redeploy")) == 1


@pytest.mark.asyncio
async def test_ping_event_is_ignored(test_client, cloudflare):
    body = b'{"zen": "Keep it logically awesome."}'

    response = await test_client.post("/webhook/github", content=body, headers=signed_headers(body, event="ping"))

    assert response.status_code == 200
    assert response.json()["message"] == "Event ignored"
    assert cloudflare.calls == []


@pytest.mark.asyncio
async def test_untracked_repository(test_client, make_project):
    await make_project()
    body = json.dumps({"ref": "refs/heads/main", "repository": {"full_name": "nobody/nothing"}}).encode()

    response = await test_client.post("/webhook/github", content=body, headers=signed_headers(body))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_rate_limited(test_client, make_project, cloudflare):
    await make_project()
    app.state.rate_limiter = DenyAll()
    body = json.dumps({"ref": "refs/heads/main", "repository": {"full_name": "acme/site"}}).encode()

    response = await test_client.post("/webhook/github", content=body, headers=signed_headers(body))

    assert response.status_code == 429
    assert response.json()["code"] == "TOO_MANY_REQUESTS"
    assert cloudflare.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "trusted_hops,forwarded_for,expected",
    [
        (0, "198.51.100.7", "127.0.0.1"),
        (1, "198.51.100.7", "198.51.100.7"),
        (1, "6.6.6.6, 198.51.100.7", "198.51.100.7"),
        (2, "6.6.6.6, 198.51.100.7, 10.0.0.2", "198.51.100.7"),
        (2, "198.51.100.7", "127.0.0.1"),
    ],
)
async def test_rate_limit_key_honours_trusted_proxies(test_client, monkeypatch, trusted_hops, forwarded_for, expected):
    monkeypatch.setattr(get_settings(), "TRUSTED_PROXY_HOPS", trusted_hops)
    limiter = RecordingLimiter()
    app.state.rate_limiter = limiter

    response = await test_client.post(
        "/webhook/github",
        content=b"{}",
        headers={"X-GitHub-Event": "ping", "X-Forwarded-For": forwarded_for},
    )

    assert response.status_code == 200
    assert limiter.keys == [expected]
