"""Markdown digest generator."""

from datetime import date
from typing import Optional, Sequence

from deal_matcher.core import MatchResult, rank_matches


class MarkdownDigestGenerator:
    """Generate a markdown digest of matched deals."""

    def generate(
        self,
        matches: Sequence[MatchResult],
        preferences: Sequence[str],
        digest_date: Optional[date] = None,
    ) -> str:
        """Generate markdown digest, best matches first."""
        digest_date = digest_date or date.today()
        heading = f"# 🛒 Deals matching your preferences ({digest_date.strftime('%d.%m.%Y')})"

        lines = [heading, ""]
        if preferences:
            lines.append(f"**Your preferences:** {', '.join(preferences)}")
            lines.append("")

        if not matches:
            lines.append("No matching deals found.")
            return "\n".join(lines)

        lines.append(f"Matches found: {len(matches)}")
        lines.append("")

        for match in rank_matches(matches):
            lines.extend(self._format_match(match))

        return "\n".join(lines)

    def _format_match(self, match: MatchResult) -> list[str]:
        """Format single match."""
        deal = match.deal
        title = f"[{deal.product_name}]({deal.product_url})" if deal.product_url else deal.product_name

        lines = [
            f"### {title}",
            "",
            f"**${deal.sale_price:.2f}** (was ${deal.regular_price:.2f}, "
            f"{deal.discount_percentage:.0f}% off)",
            "",
            f"**Match:** {match.confidence:.0f}% - {match.explanation}",
            "",
        ]

        if deal.category:
            lines.append(f"*{deal.category}*")
            lines.append("")

        lines.append("---")
        lines.append("")

        return lines
