"""Slack Web API integration for session notifications."""

import logging
from dataclasses import dataclass

from webhook_hub.models import ClaudeSession

logger = logging.getLogger(__name__)


class SlackError(Exception):
    """Raised when a Slack operation fails."""


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


def get_client(token: str | None):
    """Slack WebClient for a bot token, or None when notifications are off."""
    if not token:
        return None
    from slack_sdk import WebClient
    return WebClient(token=token)


def send_message(
    token: str | None,
    channel: str,
    text: str,
    blocks: list[dict] | None = None,
) -> SlackMessage:
    """Post to a channel. Slack API failures surface as SlackError."""
    from slack_sdk.errors import SlackApiError

    client = get_client(token)
    if not client:
        raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")

    try:
        response = client.chat_postMessage(channel=channel, text=text, blocks=blocks)
    except SlackApiError as e:
        raise SlackError(f"chat.postMessage to {channel} failed: {e.response.get('error')}") from e

    return SlackMessage(channel=response["channel"], ts=response["ts"], text=text)


def format_session_notification(session: ClaudeSession) -> list[dict]:
    """Format a finished session as Slack blocks."""
    emoji = ":white_check_mark:" if session.status == "completed" else ":x:"
    text = (
        f"{emoji} *Session {session.status}*\n"
        f"`{session.id}` ({session.type}) on *{session.project.repository}*"
    )
    if session.error:
        text += f"\nError: {session.error[:200]}"
    elif session.output and session.output.summary:
        text += f"\nSummary: {session.output.summary[:200]}"
    if session.output and session.output.artifacts:
        text += f"\nArtifacts: {len(session.output.artifacts)}"

    return [{"type": "section", "text": {"type": "mrkdwn", "text": text}}]


class SlackSessionNotifier:
    """Session notifier that posts terminal sessions to one channel."""

    def __init__(self, token: str | None, channel: str):
        self.token = token
        self.channel = channel

    def __call__(self, session: ClaudeSession) -> None:
        send_message(
            self.token,
            self.channel,
            f"Session {session.id} {session.status}",
            format_session_notification(session),
        )
        logger.info("Slack notification sent for session %s", session.id)
