"""Core domain layer."""

from deal_matcher.core.entities import (
    CompiledPreferences,
    Deal,
    DeliveryReport,
    ExclusionVerdict,
    InclusionVerdict,
    MatchResult,
    Polarity,
    Preference,
    RunReport,
    Snapshot,
    UserRunResult,
)
from deal_matcher.core.errors import DealMatcherError, ExtractionError, StoreError
from deal_matcher.core.gateway import ClassificationGateway, GatewayResult, GatewayStatus
from deal_matcher.core.interfaces import (
    ClassificationOracle,
    ExtractionSource,
    MatchStore,
    NotificationSink,
    PreferenceStore,
    SnapshotStore,
)
from deal_matcher.core.preferences import classify_preference, compile_preferences
from deal_matcher.core.reconciler import BatchOutcome, MatchReconciler, rank_matches
from deal_matcher.core.scheduler import Batch, BatchScheduler, partition
from deal_matcher.core.snapshot_cache import CacheLookup, SnapshotCache, is_fresh

__all__ = [
    "Deal",
    "Polarity",
    "Preference",
    "CompiledPreferences",
    "Snapshot",
    "MatchResult",
    "ExclusionVerdict",
    "InclusionVerdict",
    "DeliveryReport",
    "UserRunResult",
    "RunReport",
    "DealMatcherError",
    "ExtractionError",
    "StoreError",
    "ClassificationGateway",
    "GatewayResult",
    "GatewayStatus",
    "ClassificationOracle",
    "ExtractionSource",
    "MatchStore",
    "NotificationSink",
    "PreferenceStore",
    "SnapshotStore",
    "classify_preference",
    "compile_preferences",
    "BatchOutcome",
    "MatchReconciler",
    "rank_matches",
    "Batch",
    "BatchScheduler",
    "partition",
    "CacheLookup",
    "SnapshotCache",
    "is_fresh",
]
