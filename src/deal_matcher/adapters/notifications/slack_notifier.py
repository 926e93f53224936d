"""Slack notification adapter."""

import logging
import re
from datetime import date
from typing import Optional, Sequence

import httpx

from deal_matcher.adapters.digest import MarkdownDigestGenerator
from deal_matcher.core import DeliveryReport, MatchResult, NotificationSink

logger = logging.getLogger(__name__)


class SlackNotifier(NotificationSink):
    """Send match digests to Slack via webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        generator: Optional[MarkdownDigestGenerator] = None,
    ) -> None:
        """Initialize Slack notifier.

        Args:
            webhook_url: Slack webhook URL. If None, delivery is reported as failed.
            generator: Renders the digest body.
        """
        self.webhook_url = webhook_url
        self.generator = generator or MarkdownDigestGenerator()

    def _convert_markdown_to_mrkdwn(self, text: str) -> str:
        """Convert markdown to Slack mrkdwn format.

        Args:
            text: Markdown text

        Returns:
            Text in Slack mrkdwn format
        """
        # Markdown links [text](url) become <url|text>
        text = re.sub(r'\[([^\]]+)\]\(([^)]+)\)', r'<\2|\1>', text)

        # Bold **text** becomes *text*
        text = re.sub(r'\*\*([^*]+)\*\*', r'*\1*', text)

        # Headings have no mrkdwn equivalent
        text = re.sub(r'^#+\s*(.+)$', r'*\1*', text, flags=re.MULTILINE)

        return text

    async def send_digest(
        self,
        recipient: str,
        matches: Sequence[MatchResult],
        preferences: Sequence[str],
        digest_date: Optional[date] = None,
    ) -> DeliveryReport:
        """Send the match digest for one recipient.

        Args:
            recipient: Who the digest is for; mentioned at the top of the message
            matches: Final matches for the recipient
            preferences: Preference texts used for matching
            digest_date: Date shown in the heading, today by default
        """
        if not self.webhook_url:
            return DeliveryReport(success=False, error="No Slack webhook configured")

        digest = self.generator.generate(matches, preferences, digest_date)
        message = f"📬 *Deal digest for {recipient}*\n\n{self._convert_markdown_to_mrkdwn(digest)}"

        payload = {
            "text": message,
            "mrkdwn": True,
        }

        async with httpx.AsyncClient(timeout=30.0) as client:
            try:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error("Slack delivery for %s failed: %s", recipient, e)
                return DeliveryReport(success=False, error=str(e))

        logger.info("Digest with %d matches sent to Slack for %s", len(matches), recipient)
        return DeliveryReport(success=True)
