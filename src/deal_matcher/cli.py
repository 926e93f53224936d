"""CLI entry point for deal matcher."""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer

from deal_matcher.adapters.llm import ClaudeClient
from deal_matcher.adapters.notifications import SlackNotifier
from deal_matcher.adapters.sources import HttpDealSource, JsonFileDealSource
from deal_matcher.adapters.storage import YamlStore
from deal_matcher.config import Settings, get_settings
from deal_matcher.core import (
    BatchScheduler,
    ClassificationGateway,
    ExtractionError,
    ExtractionSource,
    SnapshotCache,
    classify_preference,
    rank_matches,
)
from deal_matcher.use_cases import DealRunService, MatchingService, snapshot_age

app = typer.Typer(help="Match retail deals against dietary preferences.")
preferences_app = typer.Typer(help="Manage stored preferences.")
app.add_typer(preferences_app, name="preferences")

CONFIG_OPTION = typer.Option(Path("config.yaml"), "--config", help="Path to config.yaml")


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)


def _build_source(settings: Settings, deals_file: Optional[Path]) -> ExtractionSource:
    deals_file = deals_file or settings.source.deals_file
    if deals_file:
        return JsonFileDealSource(deals_file)
    if settings.source.extraction_url:
        return HttpDealSource(settings.source.extraction_url, timeout=settings.source.timeout)
    raise typer.BadParameter(
        "No deal source configured: pass --deals-file or set EXTRACTION_URL"
    )


def _build_matching_service(settings: Settings, debug: bool) -> MatchingService:
    gateway = ClassificationGateway(
        ClaudeClient(settings),
        acceptance_threshold=settings.matching.acceptance_threshold,
        exclusion_confidence=settings.matching.exclusion_confidence,
        call_timeout=settings.matching.call_timeout,
        exclusion_prompt=settings.prompts.exclusion,
        inclusion_prompt=settings.prompts.inclusion,
    )
    scheduler = BatchScheduler(
        gateway,
        batch_size=settings.matching.batch_size,
        concurrency=settings.matching.concurrency,
    )
    return MatchingService(scheduler, debug_dir=settings.debug_dir if debug else None)


def _build_run_service(
    settings: Settings, deals_file: Optional[Path], no_slack: bool, debug: bool
) -> DealRunService:
    store = YamlStore(settings.store_dir)
    notifier = None
    if settings.slack_webhook_url and not no_slack:
        notifier = SlackNotifier(settings.slack_webhook_url)

    return DealRunService(
        source=_build_source(settings, deals_file),
        snapshot_store=store,
        cache=SnapshotCache(store, window=settings.cache_window),
        matching_service=_build_matching_service(settings, debug),
        preference_store=store,
        match_store=store,
        notification_sink=notifier,
    )


@app.command()
def run(
    refresh: bool = typer.Option(False, "--refresh", help="Ignore cached deals"),
    user: Optional[List[str]] = typer.Option(None, "--user", help="Only run for these users"),
    deals_file: Optional[Path] = typer.Option(None, "--deals-file", help="JSON export of deals"),
    no_slack: bool = typer.Option(False, "--no-slack", help="Disable Slack notifications"),
    debug: bool = False,
    config: Path = CONFIG_OPTION,
) -> None:
    """Match current deals for every user with stored preferences."""
    _setup_logging(debug)
    settings = get_settings(config)

    _banner("🛒  DEAL MATCHER")
    print("\n🔑 Credentials:")
    if settings.anthropic_api_key:
        print("  ✓ ANTHROPIC_API_KEY")
    else:
        print("  ✗ ANTHROPIC_API_KEY not found (matching will find nothing)")
    if no_slack:
        print("  ⚠️  SLACK_WEBHOOK_URL disabled by --no-slack")
    elif settings.slack_webhook_url:
        print("  ✓ SLACK_WEBHOOK_URL")
    else:
        print("  ⚠️  SLACK_WEBHOOK_URL not found (notifications disabled)")

    print("\n⚙️  Settings:")
    print(f"  • Batch size: {settings.matching.batch_size}")
    print(f"  • Concurrent batches: {settings.matching.concurrency}")
    print(f"  • Acceptance threshold: {settings.matching.acceptance_threshold:.0f}")
    print(f"  • Cache window: {settings.cache.window_hours:g}h")

    service = _build_run_service(settings, deals_file, no_slack, debug)
    report = asyncio.run(service.run(force_refresh=refresh, users=user or None))

    if not report.successful:
        _banner(f"❌ RUN FAILED: {report.error}")
        raise typer.Exit(code=1)

    _banner("📊 RESULTS")
    source = "cache" if report.from_cache else "fresh extraction"
    print(f"Deals: {report.deal_count} ({source}, snapshot {report.snapshot_id})")
    if report.error:
        print(f"⚠️  {report.error}")

    for result in report.users:
        print(f"\n👤 {result.user_id}: {len(result.matches)} matches")
        for match in rank_matches(result.matches):
            print(f"  [{match.confidence:.0f}] {match.deal.product_name}")
            print(f"     └─ {match.explanation}")
        if result.error:
            print(f"  ⚠️  {result.error}")
        if result.delivery is not None:
            if result.delivery.success:
                print("  ✓ Digest sent")
            else:
                print(f"  ⚠️  Digest not sent: {result.delivery.error}")

    _banner(f"✅ DONE: {report.match_count} matches for {len(report.users)} users")


@app.command()
def extract(
    deals_file: Optional[Path] = typer.Option(None, "--deals-file", help="JSON export of deals"),
    debug: bool = False,
    config: Path = CONFIG_OPTION,
) -> None:
    """Extract deals now and record a new snapshot."""
    _setup_logging(debug)
    settings = get_settings(config)
    store = YamlStore(settings.store_dir)
    service = DealRunService(
        source=_build_source(settings, deals_file),
        snapshot_store=store,
        cache=SnapshotCache(store, window=settings.cache_window),
        matching_service=_build_matching_service(settings, debug),
        preference_store=store,
    )

    try:
        snapshot = asyncio.run(service.refresh_snapshot())
    except ExtractionError as e:
        print(f"❌ Extraction failed: {e.message}")
        raise typer.Exit(code=1)

    print(f"✓ Snapshot {snapshot.id}: {len(snapshot.deals)} deals")


@app.command()
def match(
    preference: List[str] = typer.Option(..., "--preference", "-p", help="Preference text"),
    deals_file: Optional[Path] = typer.Option(None, "--deals-file", help="JSON export of deals"),
    debug: bool = False,
    config: Path = CONFIG_OPTION,
) -> None:
    """Match deals against ad-hoc preferences without saving or sending anything."""
    _setup_logging(debug)
    settings = get_settings(config)

    try:
        deals = asyncio.run(_build_source(settings, deals_file).fetch_deals())
    except ExtractionError as e:
        print(f"❌ Extraction failed: {e.message}")
        raise typer.Exit(code=1)

    matching_service = _build_matching_service(settings, debug)
    matches = asyncio.run(matching_service.match_preferences(deals, preference))

    print(f"\n{len(matches)} of {len(deals)} deals match:")
    for result in rank_matches(matches):
        deal = result.deal
        print(f"  [{result.confidence:.0f}] {deal.product_name} "
              f"${deal.sale_price:.2f} ({deal.discount_percentage:.0f}% off)")
        print(f"     └─ {result.explanation}")


@app.command("cache-status")
def cache_status(config: Path = CONFIG_OPTION) -> None:
    """Show whether cached deals would be reused."""
    settings = get_settings(config)
    cache = SnapshotCache(YamlStore(settings.store_dir), window=settings.cache_window)
    now = datetime.now(timezone.utc)
    lookup = cache.lookup(now)

    if lookup.hit:
        print(f"✓ Cache hit: snapshot {lookup.snapshot.id}, "
              f"{snapshot_age(lookup.snapshot, now):.1f}h old, {len(lookup.snapshot.deals)} deals")
    else:
        print(f"✗ Cache miss: {lookup.reason}")


@preferences_app.command("add")
def preferences_add(user_id: str, text: str, config: Path = CONFIG_OPTION) -> None:
    """Store a preference for a user."""
    store = YamlStore(get_settings(config).store_dir)
    store.add_preference(user_id, text)
    print(f"✓ Added '{text.strip()}' for {user_id}")


@preferences_app.command("list")
def preferences_list(user_id: str, config: Path = CONFIG_OPTION) -> None:
    """List a user's preferences with their derived polarity."""
    store = YamlStore(get_settings(config).store_dir)
    texts = store.list_preferences(user_id)
    if not texts:
        print(f"No preferences for {user_id}")
        return
    for text in texts:
        preference = classify_preference(text)
        print(f"  [{preference.polarity.value}] {preference.term.strip()}")


@preferences_app.command("remove")
def preferences_remove(user_id: str, text: str, config: Path = CONFIG_OPTION) -> None:
    """Remove a stored preference."""
    store = YamlStore(get_settings(config).store_dir)
    if store.remove_preference(user_id, text):
        print(f"✓ Removed '{text.strip()}' for {user_id}")
    else:
        print(f"No preference '{text.strip()}' for {user_id}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
