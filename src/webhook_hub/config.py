"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    environment: str = "development"
    skip_webhook_verification: bool = False
    webhook_secrets: dict[str, str] = field(default_factory=dict)
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    anthropic_api_key: str | None = None
    container_image: str = "claudecode:latest"
    auth_host_dir: Path = field(default_factory=lambda: Path.home() / ".claude-hub")
    container_memory_limit: str = "2g"
    container_cpu_shares: str = "1024"
    container_pids_limit: str = "256"
    session_timeout: float = 3600.0
    tagging_timeout: float = 300.0
    slack_bot_token: str | None = None
    slack_channel: str | None = None
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 3002

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def webhook_secret(self, provider: str) -> str | None:
        """Secret configured for a provider via <PROVIDER>_WEBHOOK_SECRET."""
        return self.webhook_secrets.get(provider.lower())

    def credentials(self) -> dict[str, str]:
        """Credentials forwarded into agent containers."""
        creds = {"GITHUB_TOKEN": self.github_token, "ANTHROPIC_API_KEY": self.anthropic_api_key}
        return {k: v for k, v in creds.items() if v}

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if env := os.environ.get("HUB_ENV"):
            config.environment = env.lower()

        config.skip_webhook_verification = (
            config.environment == "test"
            or os.environ.get("SKIP_WEBHOOK_VERIFICATION") == "1"
        )

        for key, value in os.environ.items():
            if key.endswith("_WEBHOOK_SECRET") and value:
                provider = key[: -len("_WEBHOOK_SECRET")].lower()
                config.webhook_secrets[provider] = value

        config.github_token = os.environ.get("GITHUB_TOKEN")
        config.anthropic_api_key = os.environ.get("ANTHROPIC_API_KEY")

        if api_url := os.environ.get("GITHUB_API_URL"):
            config.github_api_url = api_url.rstrip("/")

        if image := os.environ.get("CLAUDE_CONTAINER_IMAGE"):
            config.container_image = image

        if auth_dir := os.environ.get("CLAUDE_AUTH_HOST_DIR"):
            config.auth_host_dir = Path(auth_dir).expanduser().resolve()

        if memory := os.environ.get("CLAUDE_CONTAINER_MEMORY_LIMIT"):
            config.container_memory_limit = memory

        if cpu := os.environ.get("CLAUDE_CONTAINER_CPU_SHARES"):
            config.container_cpu_shares = cpu

        if pids := os.environ.get("CLAUDE_CONTAINER_PIDS_LIMIT"):
            config.container_pids_limit = pids

        if timeout := os.environ.get("HUB_SESSION_TIMEOUT"):
            config.session_timeout = float(timeout)

        if tagging := os.environ.get("HUB_TAGGING_TIMEOUT"):
            config.tagging_timeout = float(tagging)

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")
        config.slack_channel = os.environ.get("HUB_SLACK_CHANNEL")

        if level := os.environ.get("LOG_LEVEL"):
            config.log_level = level.upper()

        if host := os.environ.get("HUB_HOST"):
            config.host = host

        if port := os.environ.get("HUB_PORT"):
            config.port = int(port)

        return config


def get_config() -> Config:
    return Config.from_env()
