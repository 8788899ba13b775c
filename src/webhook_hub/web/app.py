"""HTTP surface: webhook intake, health and read-only session views."""

import json
import logging

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from webhook_hub.config import Config, get_config
from webhook_hub.core.decomposer import TaskDecomposer
from webhook_hub.core.executor import Executor
from webhook_hub.core.sessions import SessionManager
from webhook_hub.integrations.github import GitHubClient
from webhook_hub.models import WebhookRequest
from webhook_hub.providers.claude import register_claude_provider
from webhook_hub.providers.github import register_github_provider
from webhook_hub.webhooks.processor import WebhookProcessor
from webhook_hub.webhooks.registry import WebhookRegistry, is_allowed_provider

logger = logging.getLogger(__name__)


def build_registry(config: Config, manager: SessionManager) -> WebhookRegistry:
    """Registry with every built-in provider and handler registered."""
    registry = WebhookRegistry()
    register_github_provider(
        registry,
        executor=manager.executor,
        github_client=GitHubClient(config.github_token, config.github_api_url),
        credentials=config.credentials(),
        tagging_timeout=config.tagging_timeout,
    )
    register_claude_provider(registry, manager, TaskDecomposer())
    return registry


# ── Handlers ──────────────────────────────────────────────────────────────────


async def receive_webhook(request: Request):
    provider = request.path_params["provider"].lower()
    if not is_allowed_provider(provider):
        logger.warning("Rejected webhook for unknown provider: %s", provider)
        return JSONResponse({"error": "Not found"}, status_code=404)

    state = request.app.state
    config: Config = state.config
    secret = config.webhook_secret(provider)
    skip = config.skip_webhook_verification

    if config.is_production and (not secret or skip):
        logger.warning("Rejected %s webhook: verification is required in production", provider)
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    if not secret and not skip:
        logger.warning("No webhook secret configured for %s, skipping verification", provider)

    body = await request.body()
    try:
        parsed = json.loads(body) if body else None
    except json.JSONDecodeError:
        parsed = None

    webhook_request = WebhookRequest(headers=dict(request.headers), body=body, json=parsed)
    result = await run_in_threadpool(
        state.processor.process_webhook,
        webhook_request,
        provider,
        secret=secret,
        skip_signature_verification=skip,
    )
    return JSONResponse(result.body, status_code=result.status_code)


async def health(request: Request):
    registry: WebhookRegistry = request.app.state.registry
    return JSONResponse({
        "status": "healthy",
        "providers": [
            {"name": p.name, "handlerCount": registry.get_handler_count(p.name)}
            for p in registry.get_all_providers()
        ],
    })


async def api_list_sessions(request: Request):
    manager: SessionManager = request.app.state.manager
    orchestration_id = request.query_params.get("orchestrationId")
    status_filter = request.query_params.get("status")
    if orchestration_id:
        sessions = manager.get_orchestration_sessions(orchestration_id)
    else:
        sessions = manager.get_all_sessions()
    if status_filter:
        sessions = [s for s in sessions if s.status == status_filter]
    return JSONResponse([s.to_dict() for s in sessions])


async def api_get_session(request: Request):
    session = request.app.state.manager.get_session(request.path_params["session_id"])
    if not session:
        return JSONResponse({"error": "Session not found"}, status_code=404)
    return JSONResponse(session.to_dict())


async def not_found(request: Request, exc):
    return JSONResponse({"error": "Not found"}, status_code=404)


async def server_error(request: Request, exc):
    logger.exception("Unhandled error for %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(
    config: Config | None = None,
    registry: WebhookRegistry | None = None,
    manager: SessionManager | None = None,
    executor: Executor | None = None,
) -> Starlette:
    config = config or get_config()
    manager = manager or SessionManager.from_config(config, executor)
    registry = registry or build_registry(config, manager)

    routes = [
        Route("/api/webhooks/health", health, methods=["GET"]),
        Route("/api/webhooks/{provider}", receive_webhook, methods=["POST"]),
        Route("/api/sessions", api_list_sessions, methods=["GET"]),
        Route("/api/sessions/{session_id}", api_get_session, methods=["GET"]),
    ]
    app = Starlette(routes=routes, exception_handlers={404: not_found, 500: server_error})
    app.state.config = config
    app.state.registry = registry
    app.state.manager = manager
    app.state.processor = WebhookProcessor(registry)
    return app


def run_server(host: str = "127.0.0.1", port: int = 3002, config: Config | None = None):
    app = create_app(config)
    uvicorn.run(app, host=host, port=port)
