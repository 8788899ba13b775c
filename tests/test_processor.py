"""Tests for the webhook processor."""

from unittest.mock import MagicMock

import pytest

from webhook_hub.models import HandlerResponse, WebhookPayload, WebhookRequest
from webhook_hub.webhooks.base import WebhookEventHandler, WebhookPayloadError, WebhookProvider
from webhook_hub.webhooks.processor import WebhookProcessor
from webhook_hub.webhooks.registry import WebhookRegistry


class StubProvider(WebhookProvider):
    name = "github"

    def __init__(self, valid_signature=True, parse_error=None):
        self.valid_signature = valid_signature
        self.parse_error = parse_error
        self.parsed = 0

    def verify_signature(self, request, secret):
        return self.valid_signature

    def parse_payload(self, request):
        self.parsed += 1
        if self.parse_error:
            raise self.parse_error
        return WebhookPayload(id="p1", timestamp="now", event="issues.opened", source="github", data={})

    def get_event_description(self, payload):
        return payload.event


class RecordingHandler(WebhookEventHandler):
    def __init__(self, priority=0, result=None, error=None, handles=True, log=None):
        self.event = "issues.*"
        self.priority = priority
        self.result = result or HandlerResponse(success=True, message=f"p{priority}")
        self.error = error
        self.handles = handles
        self.log = log if log is not None else []

    def can_handle(self, payload, context):
        return self.handles

    def handle(self, payload, context):
        self.log.append(self.priority)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def registry():
    return WebhookRegistry()


@pytest.fixture
def request_():
    return WebhookRequest(headers={}, body=b"{}", json={})


def _processor(registry, provider=None, handlers=()):
    if provider is not None:
        registry.register_provider(provider)
    for h in handlers:
        registry.register_handler("github", h)
    return WebhookProcessor(registry)


class TestRejections:
    def test_unknown_provider(self, registry, request_):
        result = WebhookProcessor(registry).process_webhook(request_, "github")
        assert result.status_code == 404
        assert result.body == {"error": "Not found"}

    def test_bad_signature_is_not_parsed(self, registry, request_):
        provider = StubProvider(valid_signature=False)
        result = _processor(registry, provider).process_webhook(request_, "github", secret="s3cret")
        assert result.status_code == 401
        assert result.body == {"error": "Unauthorized"}
        assert provider.parsed == 0

    def test_skip_verification(self, registry, request_):
        provider = StubProvider(valid_signature=False)
        result = _processor(registry, provider).process_webhook(
            request_, "github", secret="s3cret", skip_signature_verification=True,
        )
        assert result.status_code == 200

    def test_no_secret_skips_verification(self, registry, request_):
        provider = StubProvider(valid_signature=False)
        result = _processor(registry, provider).process_webhook(request_, "github")
        assert result.status_code == 200

    def test_parse_error(self, registry, request_):
        provider = StubProvider(parse_error=WebhookPayloadError("Invalid payload: missing required type field"))
        result = _processor(registry, provider).process_webhook(request_, "github")
        assert result.status_code == 500
        assert result.body == {"error": "Invalid payload: missing required type field"}


class TestDispatch:
    def test_no_handlers(self, registry, request_):
        result = _processor(registry, StubProvider()).process_webhook(request_, "github")
        assert result.status_code == 200
        assert result.body == {
            "message": "Webhook received but no handlers registered",
            "event": "issues.opened",
        }

    def test_all_succeed(self, registry, request_):
        log = []
        handlers = [RecordingHandler(1, log=log), RecordingHandler(10, log=log)]
        result = _processor(registry, StubProvider(), handlers).process_webhook(request_, "github")
        assert result.status_code == 200
        assert result.body["message"] == "Webhook processed"
        assert result.body["handlerCount"] == 2
        assert [r["message"] for r in result.body["results"]] == ["p10", "p1"]
        assert log == [10, 1]

    def test_failure_gives_207_and_siblings_still_run(self, registry, request_):
        log = []
        handlers = [
            RecordingHandler(10, error=RuntimeError("boom"), log=log),
            RecordingHandler(5, result=HandlerResponse(success=False, error="nope"), log=log),
            RecordingHandler(1, log=log),
        ]
        result = _processor(registry, StubProvider(), handlers).process_webhook(request_, "github")
        assert result.status_code == 207
        assert log == [10, 5, 1]
        results = result.body["results"]
        assert len(results) == result.body["handlerCount"] == 3
        assert results[0] == {"success": False, "error": "boom"}
        assert results[1] == {"success": False, "error": "nope"}
        assert results[2]["success"] is True

    def test_can_handle_false_is_skipped(self, registry, request_):
        handlers = [RecordingHandler(10, handles=False), RecordingHandler(1)]
        result = _processor(registry, StubProvider(), handlers).process_webhook(request_, "github")
        assert result.status_code == 200
        assert result.body["handlerCount"] == 1

    def test_context_passed_to_handler(self, registry, request_):
        handler = RecordingHandler()
        handler.handle = MagicMock(return_value=HandlerResponse(success=True))
        _processor(registry, StubProvider(), [handler]).process_webhook(request_, "github", secret="s")
        payload, context = handler.handle.call_args.args
        assert payload.id == "p1"
        assert context.provider == "github"
        assert context.authenticated is True
        assert context.metadata["eventType"] == "issues.opened"
