"""Provider and handler interfaces for the webhook pipeline."""

import re
from abc import ABC, abstractmethod

from webhook_hub.models import HandlerResponse, WebhookContext, WebhookPayload, WebhookRequest


class WebhookPayloadError(ValueError):
    """Raised when a provider cannot turn a request body into a payload."""


class WebhookProvider(ABC):
    """Adapter translating one external webhook format into a WebhookPayload."""

    name: str = ""

    @abstractmethod
    def verify_signature(self, request: WebhookRequest, secret: str) -> bool:
        ...

    @abstractmethod
    def parse_payload(self, request: WebhookRequest) -> WebhookPayload:
        ...

    def get_event_type(self, payload: WebhookPayload) -> str:
        return payload.event

    @abstractmethod
    def get_event_description(self, payload: WebhookPayload) -> str:
        ...


class WebhookEventHandler(ABC):
    """Business logic bound to an event pattern and a priority.

    ``event`` is either a plain string (exact match, or prefix match when it
    ends with ``*``) or a compiled regular expression.
    """

    event: str | re.Pattern = ""
    priority: int = 0

    def can_handle(self, payload: WebhookPayload, context: WebhookContext) -> bool:
        return True

    @abstractmethod
    def handle(self, payload: WebhookPayload, context: WebhookContext) -> HandlerResponse:
        ...

    def describe_event(self) -> str:
        if isinstance(self.event, re.Pattern):
            return f"/{self.event.pattern}/"
        return self.event
