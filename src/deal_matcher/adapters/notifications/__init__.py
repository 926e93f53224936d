"""Notification adapters."""

from deal_matcher.adapters.notifications.slack_notifier import SlackNotifier

__all__ = ["SlackNotifier"]
