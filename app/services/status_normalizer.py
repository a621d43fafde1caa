"""
Status Normalizer

Maps each provider's free-form status vocabulary onto the closed
{deploying, deployed, failed} model, and classifies raw log lines.

Classification is total: anything unrecognized (including non-strings)
normalizes to `deploying`, never `failed`.
"""

from typing import Any, Dict, Tuple

from app.models.deployment import LogLevel
from app.models.project import DeploymentProvider, ProjectStatus

# Checked in order: deployed keywords win over failed keywords.
CLOUDFLARE_KEYWORDS: Tuple[Tuple[ProjectStatus, Tuple[str, ...]], ...] = (
    (ProjectStatus.DEPLOYED, ("success", "active", "ready")),
    (ProjectStatus.FAILED, ("fail", "error")),
)

NETLIFY_KEYWORDS: Tuple[Tuple[ProjectStatus, Tuple[str, ...]], ...] = (
    (ProjectStatus.DEPLOYED, ("current", "ready", "published")),
    (ProjectStatus.FAILED, ("error", "failed")),
)

_KEYWORDS: Dict[DeploymentProvider, Tuple[Tuple[ProjectStatus, Tuple[str, ...]], ...]] = {
    DeploymentProvider.CLOUDFLARE: CLOUDFLARE_KEYWORDS,
    DeploymentProvider.NETLIFY: NETLIFY_KEYWORDS,
}

LOG_LEVELS = ("info", "warn", "error")


def normalize_status(provider: DeploymentProvider, raw: Any) -> ProjectStatus:
    """
    Classify a provider-native status string.

    Args:
        provider: Which provider produced the value
        raw: Raw status value (may be None or a non-string)

    Returns:
        The normalized ProjectStatus
    """
    if not isinstance(raw, str):
        return ProjectStatus.DEPLOYING

    value = raw.lower()
    for status, keywords in _KEYWORDS[provider]:
        if any(keyword in value for keyword in keywords):
            return status

    return ProjectStatus.DEPLOYING


def normalize_cloudflare_status(raw: Any) -> ProjectStatus:
    return normalize_status(DeploymentProvider.CLOUDFLARE, raw)


def normalize_netlify_status(raw: Any) -> ProjectStatus:
    return normalize_status(DeploymentProvider.NETLIFY, raw)


def classify_log_level(message: str, raw_level: Any = None) -> LogLevel:
    """
    Pick a log level for a provider log line.

    A structured level from the provider is kept when it is one of
    info/warn/error; otherwise the message is scanned for "error", then "warn".
    """
    if isinstance(raw_level, str) and raw_level.lower() in LOG_LEVELS:
        return raw_level.lower()

    text = message.lower()
    if "error" in text:
        return "error"
    if "warn" in text:
        return "warn"
    return "info"
