"""Tests for the classification gateway."""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from deal_matcher.core import ClassificationGateway, Deal, GatewayStatus


@pytest.fixture
def deals() -> list[Deal]:
    return [
        Deal(product_name="Bananas", sale_price=0.5, regular_price=0.7, category="Produce"),
        Deal(product_name="Shrimp Salad", product_description="With bay shrimp",
             sale_price=6.0, regular_price=8.0),
        Deal(product_name="Protein Bar", product_description="20g protein",
             sale_price=2.0, regular_price=2.5),
    ]


def make_gateway(reply, **kwargs) -> tuple[ClassificationGateway, AsyncMock]:
    oracle = AsyncMock()
    if isinstance(reply, BaseException) or callable(reply):
        oracle.complete.side_effect = reply
    else:
        oracle.complete.return_value = reply
    return ClassificationGateway(oracle, **kwargs), oracle


@pytest.mark.asyncio
async def test_exclusion_check(deals: list[Deal]) -> None:
    reply = json.dumps({
        "excluded_products": [{"index": 2, "confidence": 95, "reason": "Contains shrimp"}]
    })
    gateway, oracle = make_gateway(reply)

    result = await gateway.check_exclusions(deals, ["shellfish"])

    assert result.status is GatewayStatus.OK
    assert [(v.index, v.reason) for v in result.entries] == [(1, "Contains shrimp")]
    prompt = oracle.complete.call_args.kwargs["prompt"]
    assert "2. Shrimp Salad - With bay shrimp" in prompt
    assert "- shellfish" in prompt


@pytest.mark.asyncio
async def test_low_confidence_exclusion_is_ignored(deals: list[Deal]) -> None:
    reply = json.dumps({
        "excluded_products": [
            {"index": 1, "confidence": 60, "reason": "Might be processed with shellfish"},
            {"index": 2, "reason": "Contains shrimp"},
        ]
    })
    gateway, _ = make_gateway(reply)

    result = await gateway.check_exclusions(deals, ["shellfish"])

    assert result.ok
    assert result.entries == []
    assert result.discarded == 1


@pytest.mark.asyncio
async def test_no_exclusions_skips_oracle(deals: list[Deal]) -> None:
    gateway, oracle = make_gateway("{}")

    result = await gateway.check_exclusions(deals, [])

    assert result.ok
    assert result.entries == []
    oracle.complete.assert_not_called()


@pytest.mark.asyncio
async def test_inclusion_threshold(deals: list[Deal]) -> None:
    reply = json.dumps({
        "matches": [
            {"index": 3, "confidence": 88, "reason": "High protein"},
            {"index": 1, "confidence": 40, "reason": "Bananas have some protein"},
        ]
    })
    gateway, _ = make_gateway(reply)

    result = await gateway.find_matches(deals, ["high protein"])

    assert [(v.index, v.confidence, v.reason) for v in result.entries] == [
        (2, 88.0, "High protein")
    ]


@pytest.mark.asyncio
async def test_stricter_threshold(deals: list[Deal]) -> None:
    reply = json.dumps({"matches": [{"index": 3, "confidence": 65, "reason": "Protein"}]})
    gateway, oracle = make_gateway(reply, acceptance_threshold=70)

    result = await gateway.find_matches(deals, ["high protein"])

    assert result.entries == []
    assert "70%+" in oracle.complete.call_args.kwargs["prompt"]


@pytest.mark.asyncio
async def test_invalid_entries_are_discarded(deals: list[Deal]) -> None:
    reply = json.dumps({
        "matches": [
            {"index": 0, "confidence": 90, "reason": "out of range"},
            {"index": 4, "confidence": 90, "reason": "out of range"},
            {"index": "1", "confidence": 90, "reason": "string index"},
            {"index": True, "confidence": 90, "reason": "bool index"},
            {"index": 1, "confidence": "90", "reason": "string confidence"},
            {"index": 1, "confidence": 150, "reason": "too confident"},
            {"index": 2, "confidence": 90, "reason": "   "},
            {"index": 2, "confidence": 90},
            "not an object",
            {"index": 3, "confidence": 75, "reason": "valid"},
        ]
    })
    gateway, _ = make_gateway(reply)

    result = await gateway.find_matches(deals, ["anything"])

    assert result.status is GatewayStatus.OK
    assert [(v.index, v.reason) for v in result.entries] == [(2, "valid")]
    assert result.discarded == 9


@pytest.mark.asyncio
async def test_duplicate_entries_keep_highest_confidence(deals: list[Deal]) -> None:
    reply = json.dumps({
        "matches": [
            {"index": 3, "confidence": 70, "reason": "first"},
            {"index": 3, "confidence": 92, "reason": "second"},
            {"index": 3, "confidence": 92, "reason": "third"},
        ]
    })
    gateway, _ = make_gateway(reply)

    result = await gateway.find_matches(deals, ["protein"])

    assert [(v.confidence, v.reason) for v in result.entries] == [(92.0, "second")]


@pytest.mark.asyncio
async def test_fenced_reply_with_trailing_comma(deals: list[Deal]) -> None:
    reply = '```json\n{"matches": [{"index": 3, "confidence": 88, "reason": "high protein"},]}\n```'
    gateway, _ = make_gateway(reply)

    result = await gateway.find_matches(deals, ["high protein"])

    assert result.ok
    assert [v.index for v in result.entries] == [2]


@pytest.mark.asyncio
async def test_non_json_reply_is_malformed(deals: list[Deal]) -> None:
    gateway, _ = make_gateway("Sorry, I cannot help with that.")

    result = await gateway.find_matches(deals, ["high protein"])

    assert result.status is GatewayStatus.MALFORMED
    assert result.entries == []


@pytest.mark.asyncio
async def test_unexpected_top_level_is_malformed(deals: list[Deal]) -> None:
    gateway, _ = make_gateway('{"results": [{"index": 1, "confidence": 90, "reason": "x"}]}')

    result = await gateway.find_matches(deals, ["x"])

    assert result.status is GatewayStatus.MALFORMED


@pytest.mark.asyncio
async def test_transport_error_is_unreachable(deals: list[Deal]) -> None:
    gateway, _ = make_gateway(httpx.ConnectError("connection refused"))

    exclusion = await gateway.check_exclusions(deals, ["shellfish"])
    inclusion = await gateway.find_matches(deals, ["protein"])

    assert exclusion.status is GatewayStatus.UNREACHABLE
    assert inclusion.status is GatewayStatus.UNREACHABLE
    assert exclusion.entries == inclusion.entries == []


@pytest.mark.asyncio
async def test_timeout_is_unreachable(deals: list[Deal]) -> None:
    async def slow(prompt: str, system: str) -> str:
        await asyncio.sleep(1)
        return '{"matches": []}'

    gateway, _ = make_gateway(slow, call_timeout=0.01)

    result = await gateway.find_matches(deals, ["protein"])

    assert result.status is GatewayStatus.UNREACHABLE


@pytest.mark.asyncio
async def test_non_text_reply_is_malformed(deals: list[Deal]) -> None:
    gateway, _ = make_gateway(None)

    result = await gateway.find_matches(deals, ["protein"])

    assert result.status is GatewayStatus.MALFORMED
