"""Business logic use cases."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from deal_matcher.core import (
    BatchScheduler,
    Deal,
    DeliveryReport,
    ExtractionError,
    ExtractionSource,
    MatchResult,
    MatchStore,
    NotificationSink,
    PreferenceStore,
    RunReport,
    Snapshot,
    SnapshotCache,
    SnapshotStore,
    UserRunResult,
    compile_preferences,
)

logger = logging.getLogger(__name__)


class MatchingService:
    """Match one deal list against one user's preferences."""

    def __init__(self, scheduler: BatchScheduler, debug_dir: Optional[Path] = None) -> None:
        self.scheduler = scheduler
        self.debug_dir = debug_dir

    async def match_preferences(
        self, deals: Sequence[Deal], preference_texts: Sequence[str]
    ) -> list[MatchResult]:
        """Run the matching pipeline; results come back in input order."""
        compiled = compile_preferences(preference_texts)
        logger.info(
            "Matching %d deals against %d exclusions and %d inclusions",
            len(deals), len(compiled.exclusions), len(compiled.inclusions),
        )

        reconciler = await self.scheduler.run(deals, compiled)
        matches = reconciler.results(deals)

        logger.info(
            "%d deals excluded, %d matched", len(reconciler.excluded), len(matches)
        )

        if self.debug_dir:
            self._save_match_debug(deals, compiled.exclusions, compiled.inclusions,
                                   reconciler.excluded, matches)

        return matches

    def _save_match_debug(
        self,
        deals: Sequence[Deal],
        exclusions: list[str],
        inclusions: list[str],
        excluded: dict[int, str],
        matches: list[MatchResult],
    ) -> None:
        """Save exclusion and match decisions to the debug directory."""
        self.debug_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        output_file = self.debug_dir / f"match_results_{timestamp}.json"

        output_file.write_text(
            json.dumps({
                "deal_count": len(deals),
                "exclusions": exclusions,
                "inclusions": inclusions,
                "excluded": [
                    {"index": index, "product_name": deals[index].product_name, "reason": reason}
                    for index, reason in sorted(excluded.items())
                    if 0 <= index < len(deals)
                ],
                "matches": [
                    {
                        "index": match.deal_index,
                        "product_name": match.deal.product_name,
                        "confidence": match.confidence,
                        "explanation": match.explanation,
                    }
                    for match in matches
                ],
            }, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.debug("Match debug data saved to %s", output_file)


class DealRunService:
    """One full run: effective deals, per-user matching, persistence, delivery."""

    def __init__(
        self,
        source: ExtractionSource,
        snapshot_store: SnapshotStore,
        cache: SnapshotCache,
        matching_service: MatchingService,
        preference_store: PreferenceStore,
        match_store: Optional[MatchStore] = None,
        notification_sink: Optional[NotificationSink] = None,
    ) -> None:
        self.source = source
        self.snapshot_store = snapshot_store
        self.cache = cache
        self.matching_service = matching_service
        self.preference_store = preference_store
        self.match_store = match_store
        self.notification_sink = notification_sink

    async def refresh_snapshot(self) -> Snapshot:
        """Extract fresh deals and append the attempt to the history.

        Raises:
            ExtractionError: if extraction failed (a failed snapshot is recorded)
            StoreError: if the successful snapshot could not be recorded
        """
        deals = await self._extract()
        return self.snapshot_store.append_snapshot(successful=True, deals=deals)

    async def _extract(self) -> list[Deal]:
        try:
            deals = await self.source.fetch_deals()
        except ExtractionError as e:
            self._record_failure(e.message)
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            self._record_failure(message)
            raise ExtractionError(message) from e

        logger.info("Extracted %d deals", len(deals))
        return deals

    def _record_failure(self, message: str) -> None:
        logger.error("Extraction failed: %s", message)
        try:
            self.snapshot_store.append_snapshot(successful=False, error_message=message)
        except Exception as e:
            logger.error("Could not record failed snapshot: %s", e)

    async def resolve_deals(
        self, force_refresh: bool = False
    ) -> tuple[list[Deal], Optional[str], bool, Optional[str]]:
        """Deals for this run.

        Returns:
            Tuple of (deals, snapshot id, served from cache, store error)
        """
        if not force_refresh:
            lookup = self.cache.lookup()
            if lookup.hit:
                logger.info("Using cached snapshot %s", lookup.snapshot.id)
                return lookup.deals, lookup.snapshot.id, True, None
            logger.info("Cache miss: %s", lookup.reason)

        deals = await self._extract()
        try:
            snapshot = self.snapshot_store.append_snapshot(successful=True, deals=deals)
        except Exception as e:
            # Matching can still proceed on the in-memory deals
            logger.error("Could not record snapshot: %s", e)
            return deals, None, False, f"Could not record snapshot: {e}"

        return deals, snapshot.id, False, None

    async def run(
        self, force_refresh: bool = False, users: Optional[Sequence[str]] = None
    ) -> RunReport:
        """Match the effective deal list for every user with preferences."""
        try:
            deals, snapshot_id, from_cache, store_error = await self.resolve_deals(force_refresh)
        except ExtractionError:
            return RunReport(successful=False, error="Failed to extract deals")

        report = RunReport(
            successful=True,
            from_cache=from_cache,
            snapshot_id=snapshot_id,
            deal_count=len(deals),
            error=store_error,
        )

        try:
            user_ids = list(users) if users is not None else self.preference_store.list_users()
        except Exception as e:
            logger.error("Could not load users: %s", e)
            report.successful = False
            report.error = f"Could not load users: {e}"
            return report

        for user_id in user_ids:
            result = await self._run_user(user_id, deals, snapshot_id)
            if result is not None:
                report.users.append(result)

        return report

    async def _run_user(
        self, user_id: str, deals: list[Deal], snapshot_id: Optional[str]
    ) -> Optional[UserRunResult]:
        try:
            preferences = self.preference_store.list_preferences(user_id)
        except Exception as e:
            logger.error("Could not load preferences for %s: %s", user_id, e)
            return UserRunResult(user_id, [], [], error=f"Could not load preferences: {e}")

        if not preferences:
            logger.info("Skipping %s: no preferences", user_id)
            return None

        matches = await self.matching_service.match_preferences(deals, preferences)
        result = UserRunResult(user_id=user_id, preferences=preferences, matches=matches)

        if self.match_store is not None:
            try:
                self.match_store.save_matches(snapshot_id, user_id, matches)
            except Exception as e:
                logger.error("Could not save matches for %s: %s", user_id, e)
                result.error = f"Could not save matches: {e}"

        if matches and self.notification_sink is not None:
            result.delivery = await self._deliver(user_id, matches, preferences)

        return result

    async def _deliver(
        self, user_id: str, matches: list[MatchResult], preferences: list[str]
    ) -> DeliveryReport:
        try:
            return await self.notification_sink.send_digest(user_id, matches, preferences)
        except Exception as e:
            logger.error("Delivery to %s failed: %s", user_id, e)
            return DeliveryReport(success=False, error=str(e))


def snapshot_age(snapshot: Snapshot, now: Optional[datetime] = None) -> float:
    """Age of a snapshot in hours."""
    now = now or datetime.now(timezone.utc)
    return (now - snapshot.taken_at).total_seconds() / 3600
