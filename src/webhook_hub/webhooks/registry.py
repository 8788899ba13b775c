"""Registry of webhook providers and their event handlers."""

import logging
import re
import threading

from webhook_hub.webhooks.base import WebhookEventHandler, WebhookProvider

logger = logging.getLogger(__name__)

ALLOWED_WEBHOOK_PROVIDERS = ("github", "claude")


def is_allowed_provider(name: str) -> bool:
    return name in ALLOWED_WEBHOOK_PROVIDERS


def event_matches(pattern: str | re.Pattern, event: str) -> bool:
    """Match an event against a handler pattern: exact, trailing-* prefix, or regex."""
    if isinstance(pattern, str):
        if pattern == event:
            return True
        if pattern.endswith("*"):
            return event.startswith(pattern[:-1])
        return False
    if isinstance(pattern, re.Pattern):
        return pattern.search(event) is not None
    return False


class WebhookRegistry:
    """Holds providers and per-provider handler lists sorted by priority.

    Writes replace the stored handler list instead of mutating it, so
    lookups from request threads always see a consistent snapshot.
    """

    def __init__(self):
        self._providers: dict[str, WebhookProvider] = {}
        self._handlers: dict[str, list[WebhookEventHandler]] = {}
        self._write_lock = threading.Lock()

    def register_provider(self, provider: WebhookProvider) -> None:
        key = provider.name.lower()
        with self._write_lock:
            if key in self._providers:
                logger.warning("Provider %s is already registered. Overwriting.", provider.name)
            self._providers[key] = provider
        logger.info("Registered webhook provider: %s", provider.name)

    def register_handler(self, provider_name: str, handler: WebhookEventHandler) -> None:
        key = provider_name.lower()
        with self._write_lock:
            handlers = list(self._handlers.get(key, []))
            handlers.append(handler)
            # sorted() is stable: equal priorities keep registration order
            handlers = sorted(handlers, key=lambda h: getattr(h, "priority", 0) or 0, reverse=True)
            self._handlers[key] = handlers
        logger.info(
            "Registered handler for %s: %s (priority: %s)",
            provider_name, handler.describe_event(), getattr(handler, "priority", 0) or 0,
        )

    def get_provider(self, name: str) -> WebhookProvider | None:
        return self._providers.get(name.lower())

    def get_all_providers(self) -> list[WebhookProvider]:
        return list(self._providers.values())

    def has_provider(self, name: str) -> bool:
        return name.lower() in self._providers

    def get_handlers(self, provider_name: str, event: str) -> list[WebhookEventHandler]:
        """Handlers of a provider whose pattern matches the event, highest priority first."""
        handlers = self._handlers.get(provider_name.lower(), [])
        return [h for h in handlers if event_matches(h.event, event)]

    def get_handler_count(self, provider_name: str | None = None) -> int:
        if provider_name is not None:
            return len(self._handlers.get(provider_name.lower(), []))
        return sum(len(h) for h in self._handlers.values())

    def clear(self) -> None:
        """Drop every registration. Intended for tests."""
        with self._write_lock:
            self._providers = {}
            self._handlers = {}
        logger.info("Cleared all webhook registrations")
