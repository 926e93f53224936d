"""Digest rendering."""

from deal_matcher.adapters.digest.markdown_generator import MarkdownDigestGenerator

__all__ = ["MarkdownDigestGenerator"]
