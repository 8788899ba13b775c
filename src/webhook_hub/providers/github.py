"""GitHub webhook provider."""

import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone

from webhook_hub.handlers.issues import IssueOpenedHandler
from webhook_hub.models import WebhookPayload, WebhookRequest
from webhook_hub.webhooks.base import WebhookPayloadError, WebhookProvider
from webhook_hub.webhooks.registry import WebhookRegistry

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"


def compute_signature(secret: str, body: bytes) -> str:
    """The ``sha256=<hex>`` signature GitHub sends for a body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def normalize_event_type(event: str, action: str | None) -> str:
    if not action:
        return event
    return f"{event}.{action}"


class GitHubWebhookProvider(WebhookProvider):
    name = "github"

    def verify_signature(self, request: WebhookRequest, secret: str) -> bool:
        signature = request.header(SIGNATURE_HEADER)
        if not signature:
            logger.warning("No signature found in GitHub webhook request")
            return False
        expected = compute_signature(secret, request.body)
        if hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            logger.debug("GitHub webhook signature verified")
            return True
        logger.warning("GitHub webhook signature verification failed")
        return False

    def parse_payload(self, request: WebhookRequest) -> WebhookPayload:
        body = request.json
        if body is None:
            try:
                body = json.loads(request.body or b"{}")
            except json.JSONDecodeError as e:
                raise WebhookPayloadError(f"Invalid payload: {e}") from e
        if not isinstance(body, dict):
            raise WebhookPayloadError("Invalid payload: expected a JSON object")

        github_event = request.header("X-GitHub-Event")
        if not github_event:
            raise WebhookPayloadError("Invalid payload: missing X-GitHub-Event header")
        delivery = request.header("X-GitHub-Delivery")

        return WebhookPayload(
            id=delivery or str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=normalize_event_type(github_event, body.get("action")),
            source="github",
            data=body,
            extra={
                "githubEvent": github_event,
                "githubDelivery": delivery,
                "action": body.get("action"),
                "repository": body.get("repository"),
                "sender": body.get("sender"),
                "installation": body.get("installation"),
            },
        )

    def get_event_description(self, payload: WebhookPayload) -> str:
        parts = [payload.extra.get("githubEvent") or payload.event]
        if action := payload.extra.get("action"):
            parts.append(action)
        if repo := payload.extra.get("repository"):
            parts.append(f"in {repo.get('full_name')}")
        if sender := payload.extra.get("sender"):
            parts.append(f"by {sender.get('login')}")
        return " ".join(parts)


def register_github_provider(
    registry: WebhookRegistry,
    executor=None,
    github_client=None,
    credentials: dict[str, str] | None = None,
    tagging_timeout: float | None = None,
) -> GitHubWebhookProvider:
    """Register the GitHub provider and its handlers on a registry."""
    provider = GitHubWebhookProvider()
    registry.register_provider(provider)
    if executor is not None:
        registry.register_handler(
            "github",
            IssueOpenedHandler(executor, github_client, credentials, timeout=tagging_timeout),
        )
    logger.info("GitHub webhook provider initialized")
    return provider
