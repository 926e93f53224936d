"""Tests for use cases."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import AsyncMock, Mock

import pytest

from deal_matcher.adapters.storage import YamlStore
from deal_matcher.core import (
    BatchScheduler,
    ClassificationGateway,
    ClassificationOracle,
    Deal,
    DeliveryReport,
    ExtractionError,
    MatchResult,
    SnapshotCache,
    StoreError,
)
from deal_matcher.use_cases import DealRunService, MatchingService, snapshot_age


class ShoppingOracle(ClassificationOracle):
    """Excludes shrimp products and matches protein bars."""

    def __init__(self) -> None:
        self.calls = 0

    async def complete(self, prompt: str, system: str) -> str:
        self.calls += 1
        lines = [line for line in prompt.splitlines() if line[:1].isdigit()]
        if "excluded_products" in prompt:
            return json.dumps({"excluded_products": [
                {"index": number, "confidence": 95, "reason": "Contains shrimp"}
                for number, line in enumerate(lines, 1)
                if "Shrimp" in line
            ]})
        # Fenced, with a trailing comma
        entries = [
            {"index": number, "confidence": 88, "reason": "20g protein per bar"}
            for number, line in enumerate(lines, 1)
            if "ProteinBar" in line
        ]
        return "```json\n" + json.dumps({"matches": entries})[:-1] + ",}\n```"


def make_deals(*names: str) -> list[Deal]:
    return [Deal(product_name=name, sale_price=1.0, regular_price=2.0) for name in names]


def make_matching_service(oracle: ClassificationOracle, debug_dir=None) -> MatchingService:
    scheduler = BatchScheduler(ClassificationGateway(oracle), batch_size=2, concurrency=2)
    return MatchingService(scheduler, debug_dir=debug_dir)


def make_match(deal: Deal, index: int = 0, confidence: float = 80) -> MatchResult:
    return MatchResult(deal_index=index, deal=deal, confidence=confidence, explanation="fits")


@pytest.mark.asyncio
async def test_matching_service_end_to_end() -> None:
    """Excluded deals never match; unmatched deals are absent."""
    deals = make_deals("Bananas", "ShrimpSalad", "ProteinBar")
    service = make_matching_service(ShoppingOracle())

    matches = await service.match_preferences(deals, ["no shellfish", "high protein"])

    assert [(m.deal.product_name, m.confidence) for m in matches] == [("ProteinBar", 88)]
    assert matches[0].deal_index == 2


@pytest.mark.asyncio
async def test_matching_service_without_preferences_skips_oracle() -> None:
    oracle = ShoppingOracle()
    service = make_matching_service(oracle)

    assert await service.match_preferences(make_deals("ProteinBar"), []) == []
    assert oracle.calls == 0


@pytest.mark.asyncio
async def test_matching_service_saves_debug_file() -> None:
    with TemporaryDirectory() as tmpdir:
        debug_dir = Path(tmpdir) / "debug"
        service = make_matching_service(ShoppingOracle(), debug_dir=debug_dir)

        await service.match_preferences(
            make_deals("ShrimpSalad", "ProteinBar"), ["no shellfish", "high protein"]
        )

        [debug_file] = list(debug_dir.glob("match_results_*.json"))
        data = json.loads(debug_file.read_text(encoding="utf-8"))
        assert data["excluded"][0]["product_name"] == "ShrimpSalad"
        assert data["matches"][0]["product_name"] == "ProteinBar"


def make_run_service(
    tmpdir: str,
    source: AsyncMock,
    matching_service=None,
    sink=None,
) -> tuple[DealRunService, YamlStore]:
    store = YamlStore(Path(tmpdir))
    service = DealRunService(
        source=source,
        snapshot_store=store,
        cache=SnapshotCache(store),
        matching_service=matching_service or make_matching_service(ShoppingOracle()),
        preference_store=store,
        match_store=store,
        notification_sink=sink,
    )
    return service, store


def make_source(deals: list[Deal]) -> AsyncMock:
    source = AsyncMock()
    source.fetch_deals.return_value = deals
    return source


@pytest.mark.asyncio
async def test_run_extracts_matches_saves_and_delivers() -> None:
    deals = make_deals("Bananas", "ShrimpSalad", "ProteinBar")
    sink = AsyncMock()
    sink.send_digest.return_value = DeliveryReport(success=True)

    with TemporaryDirectory() as tmpdir:
        service, store = make_run_service(tmpdir, make_source(deals), sink=sink)
        store.add_preference("alice", "no shellfish")
        store.add_preference("alice", "high protein")

        report = await service.run()

        assert report.successful
        assert not report.from_cache
        assert report.deal_count == 3
        assert report.match_count == 1
        [user] = report.users
        assert user.user_id == "alice"
        assert user.delivery.success
        assert user.error is None

        [row] = store.load_matches(report.snapshot_id, "alice")
        assert row["product_name"] == "ProteinBar"
        sink.send_digest.assert_awaited_once()
        assert sink.send_digest.call_args.args[0] == "alice"


@pytest.mark.asyncio
async def test_run_uses_fresh_snapshot_without_extracting() -> None:
    source = make_source([])

    with TemporaryDirectory() as tmpdir:
        service, store = make_run_service(tmpdir, source)
        cached = store.append_snapshot(successful=True, deals=make_deals("ProteinBar"))
        store.add_preference("bob", "high protein")

        report = await service.run()

        assert report.from_cache
        assert report.snapshot_id == cached.id
        assert report.match_count == 1
        source.fetch_deals.assert_not_called()
        assert len(store.list_snapshots()) == 1


@pytest.mark.asyncio
async def test_run_refreshes_stale_snapshot() -> None:
    source = make_source(make_deals("ProteinBar", "Bananas"))

    with TemporaryDirectory() as tmpdir:
        service, store = make_run_service(tmpdir, source)
        store.append_snapshot(
            successful=True,
            deals=make_deals("Old Stock"),
            taken_at=datetime.now(timezone.utc) - timedelta(hours=30),
        )

        report = await service.run()

        assert not report.from_cache
        assert report.deal_count == 2
        source.fetch_deals.assert_awaited_once()
        assert store.latest_successful().id == report.snapshot_id


@pytest.mark.asyncio
async def test_force_refresh_bypasses_cache() -> None:
    source = make_source(make_deals("ProteinBar"))

    with TemporaryDirectory() as tmpdir:
        service, store = make_run_service(tmpdir, source)
        store.append_snapshot(successful=True, deals=make_deals("Old Stock"))

        report = await service.run(force_refresh=True)

        assert not report.from_cache
        source.fetch_deals.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_extraction_is_recorded() -> None:
    source = AsyncMock()
    source.fetch_deals.side_effect = ExtractionError("Timeout waiting for page")

    with TemporaryDirectory() as tmpdir:
        service, store = make_run_service(tmpdir, source)

        report = await service.run()

        assert not report.successful
        assert report.error == "Failed to extract deals"
        latest = store.latest()
        assert not latest.successful
        assert latest.error_message == "Timeout waiting for page"
        assert store.latest_successful() is None


@pytest.mark.asyncio
async def test_unexpected_source_error_becomes_extraction_error() -> None:
    source = AsyncMock()
    source.fetch_deals.side_effect = RuntimeError("browser crashed")

    with TemporaryDirectory() as tmpdir:
        service, store = make_run_service(tmpdir, source)

        with pytest.raises(ExtractionError, match="browser crashed"):
            await service.refresh_snapshot()

        assert store.latest().error_message == "browser crashed"


@pytest.mark.asyncio
async def test_snapshot_write_failure_does_not_stop_matching() -> None:
    deals = make_deals("ProteinBar")
    snapshot_store = Mock()
    snapshot_store.latest_successful.return_value = None
    snapshot_store.append_snapshot.side_effect = StoreError("disk full")
    preference_store = Mock()
    preference_store.list_users.return_value = ["alice"]
    preference_store.list_preferences.return_value = ["high protein"]

    service = DealRunService(
        source=make_source(deals),
        snapshot_store=snapshot_store,
        cache=SnapshotCache(snapshot_store),
        matching_service=make_matching_service(ShoppingOracle()),
        preference_store=preference_store,
    )

    report = await service.run()

    assert report.successful
    assert report.snapshot_id is None
    assert "disk full" in report.error
    assert report.match_count == 1


@pytest.mark.asyncio
async def test_users_without_preferences_are_skipped() -> None:
    matching_service = AsyncMock()
    matching_service.match_preferences.return_value = []

    with TemporaryDirectory() as tmpdir:
        service, store = make_run_service(
            tmpdir, make_source(make_deals("Bananas")), matching_service=matching_service
        )
        store.add_preference("alice", "vegan")

        report = await service.run(users=["alice", "nobody"])

        assert [user.user_id for user in report.users] == ["alice"]
        matching_service.match_preferences.assert_awaited_once()


@pytest.mark.asyncio
async def test_save_failure_and_delivery_failure_are_reported() -> None:
    deal = make_deals("ProteinBar")[0]
    matching_service = AsyncMock()
    matching_service.match_preferences.return_value = [make_match(deal)]
    preference_store = Mock()
    preference_store.list_users.return_value = ["alice"]
    preference_store.list_preferences.return_value = ["high protein"]
    match_store = Mock()
    match_store.save_matches.side_effect = StoreError("read-only")
    sink = AsyncMock()
    sink.send_digest.side_effect = RuntimeError("smtp down")
    snapshot_store = Mock()
    snapshot_store.append_snapshot.return_value = Mock(id="snap-1")

    service = DealRunService(
        source=make_source([deal]),
        snapshot_store=snapshot_store,
        cache=Mock(lookup=Mock(return_value=Mock(hit=False, reason="empty"))),
        matching_service=matching_service,
        preference_store=preference_store,
        match_store=match_store,
        notification_sink=sink,
    )

    report = await service.run()

    [user] = report.users
    assert user.matches == [make_match(deal)]
    assert "read-only" in user.error
    assert not user.delivery.success
    assert user.delivery.error == "smtp down"


@pytest.mark.asyncio
async def test_no_delivery_without_matches() -> None:
    matching_service = AsyncMock()
    matching_service.match_preferences.return_value = []
    sink = AsyncMock()

    with TemporaryDirectory() as tmpdir:
        service, store = make_run_service(
            tmpdir, make_source(make_deals("Bananas")), matching_service=matching_service, sink=sink
        )
        store.add_preference("alice", "vegan")

        report = await service.run()

        assert report.users[0].delivery is None
        sink.send_digest.assert_not_called()


def test_snapshot_age() -> None:
    now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    snapshot = Mock(taken_at=now - timedelta(hours=6))

    assert snapshot_age(snapshot, now) == 6.0
