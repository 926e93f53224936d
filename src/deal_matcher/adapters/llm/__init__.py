"""LLM adapters."""

from deal_matcher.adapters.llm.claude_client import ClaudeClient

__all__ = ["ClaudeClient"]
