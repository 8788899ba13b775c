"""GitHub REST API client, webhook payload transforms and keyword-based issue labelling."""

import logging
import re

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class GitHubError(Exception):
    """Raised when a GitHub API call fails."""


class GitHubClient:
    """Thin synchronous client for the few endpoints the hub needs."""

    def __init__(
        self,
        token: str | None,
        api_url: str = "https://api.github.com",
        timeout: httpx.Timeout | None = None,
    ):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, json_body: dict | None = None):
        if not self.token:
            raise GitHubError("GitHub not configured: GITHUB_TOKEN not set")
        url = f"{self.api_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.request(method, url, json=json_body, headers=self._headers())
        except httpx.HTTPError as e:
            raise GitHubError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise GitHubError(f"{method} {path} returned {resp.status_code}: {resp.text[:200]}")
        return resp.json() if resp.content else None

    def add_labels(self, owner: str, repo: str, issue_number: int, labels: list[str]) -> list[str]:
        """Add labels to an issue. Returns the label names now on the issue."""
        _validate_repo(owner, repo)
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{int(issue_number)}/labels",
            {"labels": labels},
        )
        logger.info("Added labels %s to %s/%s#%s", labels, owner, repo, issue_number)
        return [label["name"] for label in data or []]


def _validate_repo(owner: str, repo: str):
    if not _NAME_PATTERN.match(owner) or not _NAME_PATTERN.match(repo):
        raise GitHubError("Invalid repository owner or name")


# ── Payload transforms ───────────────────────────────────────────────────────


def transform_repository(repo: dict) -> dict:
    full_name = repo["full_name"]
    owner, _, name = full_name.partition("/")
    return {
        "id": str(repo["id"]) if "id" in repo else None,
        "name": repo.get("name") or name,
        "fullName": full_name,
        "owner": (repo.get("owner") or {}).get("login") or owner,
        "isPrivate": repo.get("private", False),
        "defaultBranch": repo.get("default_branch"),
    }


def transform_user(user: dict | None) -> dict | None:
    if not user:
        return None
    return {
        "id": str(user["id"]),
        "username": user["login"],
        "email": user.get("email"),
        "displayName": user.get("name") or user["login"],
    }


def transform_issue(issue: dict) -> dict:
    return {
        "id": issue.get("id"),
        "number": issue["number"],
        "title": issue.get("title") or "",
        "body": issue.get("body") or "",
        "state": issue.get("state"),
        "author": transform_user(issue.get("user")),
        "labels": [
            label if isinstance(label, str) else label["name"]
            for label in issue.get("labels") or []
        ],
        "createdAt": issue.get("created_at"),
        "updatedAt": issue.get("updated_at"),
    }


# ── Fallback labels ──────────────────────────────────────────────────────────


def get_fallback_labels(title: str, body: str | None) -> list[str]:
    """Pick type, priority and component labels from issue text keywords."""
    content = f"{title} {body or ''}".lower()
    labels = []

    if any(w in content for w in (" doc ", "docs", "readme", "documentation")):
        labels.append("type:documentation")
    elif any(w in content for w in ("bug", "error", "issue", "problem")):
        labels.append("type:bug")
    elif any(w in content for w in ("feature", "add", "new")):
        labels.append("type:feature")
    elif any(w in content for w in ("improve", "enhance", "better")):
        labels.append("type:enhancement")
    elif any(w in content for w in ("question", "help", "how")):
        labels.append("type:question")

    if any(w in content for w in ("critical", "urgent", "security", "down")):
        labels.append("priority:critical")
    elif any(w in content for w in ("important", "high")):
        labels.append("priority:high")
    else:
        labels.append("priority:medium")

    if "api" in content or "endpoint" in content:
        labels.append("component:api")
    elif any(w in content for w in ("ui", "frontend", "interface")):
        labels.append("component:frontend")
    elif "backend" in content or "server" in content:
        labels.append("component:backend")
    elif "database" in content or "db" in content:
        labels.append("component:database")
    elif any(w in content for w in ("auth", "login", "permission")):
        labels.append("component:auth")
    elif "webhook" in content or "github" in content:
        labels.append("component:webhook")
    elif "docker" in content or "container" in content:
        labels.append("component:docker")

    return labels
