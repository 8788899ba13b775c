"""Per-request webhook pipeline: verify, parse, dispatch, aggregate."""

import logging
from dataclasses import dataclass, field

from webhook_hub.models import HandlerResponse, WebhookContext, WebhookPayload, WebhookRequest
from webhook_hub.webhooks.base import WebhookEventHandler
from webhook_hub.webhooks.registry import WebhookRegistry

logger = logging.getLogger(__name__)


@dataclass
class ProcessorResult:
    status_code: int
    body: dict = field(default_factory=dict)


class WebhookProcessor:
    """Runs one webhook request through its provider and handlers.

    Provider lookup, signature and parse failures end the request. Handler
    failures are recorded per handler and only downgrade the status to 207.
    """

    def __init__(self, registry: WebhookRegistry):
        self.registry = registry

    def process_webhook(
        self,
        request: WebhookRequest,
        provider: str,
        secret: str | None = None,
        skip_signature_verification: bool = False,
    ) -> ProcessorResult:
        impl = self.registry.get_provider(provider)
        if impl is None:
            logger.error("Provider not found: %s", provider)
            return ProcessorResult(404, {"error": "Not found"})

        if not skip_signature_verification and secret:
            if not impl.verify_signature(request, secret):
                logger.warning("Invalid signature for %s webhook", provider)
                return ProcessorResult(401, {"error": "Unauthorized"})

        try:
            payload = impl.parse_payload(request)
        except Exception as e:
            logger.error("Failed to parse %s webhook payload: %s", provider, e)
            return ProcessorResult(500, {"error": str(e) or "Invalid payload"})

        event_type = impl.get_event_type(payload)
        logger.info(
            "Processing webhook: %s (provider=%s, event=%s, id=%s)",
            impl.get_event_description(payload), provider, event_type, payload.id,
        )

        context = WebhookContext(
            provider=provider,
            authenticated=bool(secret) and not skip_signature_verification,
            metadata={
                "eventType": event_type,
                "payloadId": payload.id,
                "timestamp": payload.timestamp,
            },
        )

        handlers = self.registry.get_handlers(provider, event_type)
        if not handlers:
            logger.info("No handlers registered for %s event %s", provider, event_type)
            return ProcessorResult(200, {
                "message": "Webhook received but no handlers registered",
                "event": event_type,
            })

        results = self.execute_handlers(handlers, payload, context)
        status_code = 207 if any(not r.success for r in results) else 200

        return ProcessorResult(status_code, {
            "message": "Webhook processed",
            "event": event_type,
            "handlerCount": len(results),
            "results": [r.to_dict() for r in results],
        })

    def execute_handlers(
        self,
        handlers: list[WebhookEventHandler],
        payload: WebhookPayload,
        context: WebhookContext,
    ) -> list[HandlerResponse]:
        """Run handlers one at a time, in order, isolating each one's failure."""
        results = []
        for handler in handlers:
            name = type(handler).__name__
            try:
                if not handler.can_handle(payload, context):
                    logger.debug("Handler %s skipped by can_handle", name)
                    continue
                result = handler.handle(payload, context)
            except Exception as e:
                logger.exception("Handler %s failed for event %s", name, payload.event)
                result = HandlerResponse(success=False, error=str(e) or "Handler execution failed")
            else:
                logger.info(
                    "Handler %s executed (success=%s, message=%s)",
                    name, result.success, result.message,
                )
            results.append(result)
        return results
