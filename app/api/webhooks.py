"""
GitHub Webhook Handler

Receives push deliveries and triggers redeploys.

Headers:
- X-GitHub-Event: event type (only "push" is acted on)
- X-Hub-Signature-256: sha256=<hex HMAC of the raw body>

The raw body is read before any parsing; the signature is checked against
those exact bytes.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from app.api.dependencies import get_rate_limiter, get_webhook_dispatcher
from app.config import get_settings
from app.errors import RateLimited
from app.services.rate_limiter import WebhookRateLimiter
from app.services.webhook_dispatcher import WebhookDispatcher

router = APIRouter(prefix="/webhook", tags=["webhooks"])


def client_key(request: Request, trusted_hops: int) -> str:
    """
    Address used to key the rate limit bucket.

    With N trusted proxies in front, the client is the Nth X-Forwarded-For
    entry from the right; anything further left is caller-supplied. Without
    trusted proxies the header is ignored.
    """
    if trusted_hops > 0:
        hops = [hop.strip() for hop in request.headers.get("X-Forwarded-For", "").split(",") if hop.strip()]
        if len(hops) >= trusted_hops:
            return hops[-trusted_hops]
    return request.client.host if request.client else "unknown"


@router.post("/github")
async def github_webhook(
    request: Request,
    x_github_event: Optional[str] = Header(None),
    x_hub_signature_256: Optional[str] = Header(None),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    rate_limiter: WebhookRateLimiter = Depends(get_rate_limiter),
):
    """
    Receive a delivery from GitHub.

    Example payload (push):
    {
        "ref": "refs/heads/main",
        "repository": {"full_name": "acme/site"},
        ...
    }

    Responses: 200 handled/ignored, 400 malformed, 401 bad signature,
    404 repository not tracked, 429 rate limited, 502 provider failure.
    """
    if not await rate_limiter.allow(client_key(request, get_settings().TRUSTED_PROXY_HOPS)):
        raise RateLimited("Too many webhook requests")

    raw_body = await request.body()

    result = await dispatcher.dispatch(
        event_type=x_github_event,
        signature=x_hub_signature_256,
        raw_body=raw_body,
    )

    return JSONResponse(status_code=result.status_code, content=result.body)
