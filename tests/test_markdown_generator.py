"""Tests for the markdown digest generator."""

from datetime import date

from deal_matcher.adapters.digest import MarkdownDigestGenerator
from deal_matcher.core import Deal, MatchResult


def test_generate_digest() -> None:
    deal = Deal(product_name="Wild Salmon", sale_price=9.99, regular_price=14.99,
                category="Seafood", product_url="https://shop.example/salmon")
    match = MatchResult(deal_index=2, deal=deal, confidence=91, explanation="Rich in omega-3")

    digest = MarkdownDigestGenerator().generate([match], ["omega-3"], date(2025, 3, 1))

    assert "01.03.2025" in digest
    assert "### [Wild Salmon](https://shop.example/salmon)" in digest
    assert "**$9.99** (was $14.99, 33% off)" in digest
    assert "**Match:** 91% - Rich in omega-3" in digest
    assert "*Seafood*" in digest


def test_generate_empty_digest() -> None:
    digest = MarkdownDigestGenerator().generate([], ["vegan"], date(2025, 3, 1))

    assert "No matching deals found." in digest
    assert "vegan" in digest
