"""Auto-tagging of newly opened GitHub issues."""

import logging
import re
import time

from webhook_hub.core.executor import Executor, ExecutorError
from webhook_hub.integrations.github import (
    GitHubClient,
    GitHubError,
    get_fallback_labels,
    transform_issue,
    transform_repository,
)
from webhook_hub.models import HandlerResponse, WebhookContext, WebhookPayload
from webhook_hub.webhooks.base import WebhookEventHandler

logger = logging.getLogger(__name__)


def build_tagging_command(issue: dict) -> str:
    number = issue["number"]
    return (
        "Analyze this GitHub issue and apply appropriate labels using GitHub CLI commands.\n\n"
        "Issue Details:\n"
        f"- Title: {issue.get('title', '')}\n"
        f"- Description: {issue.get('body') or 'No description provided'}\n"
        f"- Issue Number: {number}\n\n"
        "Instructions:\n"
        "1. First run 'gh label list' to see what labels are available in this repository\n"
        "2. Analyze the issue content to determine appropriate labels from these categories:\n"
        "   - Priority: critical, high, medium, low\n"
        "   - Type: bug, feature, enhancement, documentation, question, security\n"
        "   - Complexity: trivial, simple, moderate, complex\n"
        "   - Component: api, frontend, backend, database, auth, webhook, docker\n"
        f'3. Apply the labels using: gh issue edit {number} --add-label "label1,label2,label3"\n'
        "4. Do NOT comment on the issue - only apply labels silently\n\n"
        "Complete the auto-tagging task using only GitHub CLI commands."
    )


def _container_name(repo: str, number: int) -> str:
    slug = re.sub(r"[^a-zA-Z0-9_.-]", "-", repo)
    return f"claude-tagging-{slug}-{number}-{int(time.time())}"


class IssueOpenedHandler(WebhookEventHandler):
    """Labels new issues with the agent, falling back to keyword labels."""

    event = "issues.opened"
    priority = 100

    def __init__(
        self,
        executor: Executor,
        github: GitHubClient | None = None,
        credentials: dict[str, str] | None = None,
        timeout: float | None = None,
    ):
        self.executor = executor
        self.github = github
        self.credentials = credentials or {}
        self.timeout = timeout

    def can_handle(self, payload: WebhookPayload, context: WebhookContext) -> bool:
        data = payload.data or {}
        return isinstance(data.get("issue"), dict) and isinstance(data.get("repository"), dict)

    def handle(self, payload: WebhookPayload, context: WebhookContext) -> HandlerResponse:
        issue = transform_issue(payload.data["issue"])
        repo = transform_repository(payload.data["repository"])
        full_name = repo["fullName"]
        number = issue["number"]
        logger.info("Auto-tagging %s#%s: %s", full_name, number, issue["title"])

        env = {
            "REPO_FULL_NAME": full_name,
            "ISSUE_NUMBER": str(number),
            "IS_PULL_REQUEST": "false",
            "BRANCH_NAME": "",
            "OPERATION_TYPE": "auto-tagging",
            "COMMAND": build_tagging_command(issue),
            **{k: v for k, v in self.credentials.items() if v},
        }

        try:
            result = self.executor.run(_container_name(full_name, number), env, timeout=self.timeout)
            output = result.stdout.lower()
            agent_failed = not result.ok or "error" in output or "failed" in output
        except ExecutorError as e:
            logger.warning("Tagging container failed for %s#%s: %s", full_name, number, e)
            agent_failed = True

        fallback: list[str] = []
        if agent_failed:
            logger.warning("Agent tagging may have failed for %s#%s, using fallback labels", full_name, number)
            fallback = get_fallback_labels(issue["title"], issue["body"])
            if fallback and self.github is not None:
                try:
                    self.github.add_labels(repo["owner"], repo["name"], number, fallback)
                except GitHubError as e:
                    return HandlerResponse(success=False, error=f"Failed to apply fallback labels: {e}")

        return HandlerResponse(
            success=True,
            message="Issue auto-tagged successfully",
            data={"repo": full_name, "issue": number, "fallbackLabels": fallback},
        )
