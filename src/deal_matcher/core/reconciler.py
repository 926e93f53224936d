"""Merge per-batch observations into one result set."""

from dataclasses import dataclass, field
from typing import Sequence

from deal_matcher.core.entities import Deal, MatchResult
from deal_matcher.core.gateway import GatewayStatus


@dataclass
class Observation:
    """Best inclusion judgment seen so far for one deal."""

    confidence: float
    explanation: str


@dataclass
class BatchOutcome:
    """Everything one batch reported, keyed by global deal index."""

    offset: int
    size: int
    exclusions: dict[int, str] = field(default_factory=dict)
    matches: list[tuple[int, float, str]] = field(default_factory=list)
    exclusion_status: GatewayStatus = GatewayStatus.OK
    inclusion_status: GatewayStatus = GatewayStatus.OK


class MatchReconciler:
    """Keep the highest-confidence match per deal; exclusion always wins.

    Exclusions are applied when results are read, after every batch has
    been merged, so a deal excluded by any batch never shows up even if
    another batch matched it strongly. On equal confidence the observation
    recorded first is kept.
    """

    def __init__(self) -> None:
        self._excluded: dict[int, str] = {}
        self._best: dict[int, Observation] = {}

    @property
    def excluded(self) -> dict[int, str]:
        return dict(self._excluded)

    def record_exclusion(self, index: int, reason: str) -> None:
        self._excluded.setdefault(index, reason)

    def record_match(self, index: int, confidence: float, explanation: str) -> None:
        current = self._best.get(index)
        if current is None or confidence > current.confidence:
            self._best[index] = Observation(confidence, explanation)

    def merge(self, outcome: BatchOutcome) -> None:
        for index, reason in outcome.exclusions.items():
            self.record_exclusion(index, reason)
        for index, confidence, explanation in outcome.matches:
            self.record_match(index, confidence, explanation)

    def results(self, deals: Sequence[Deal]) -> list[MatchResult]:
        """Final matches in input order."""
        matched = []
        for index in sorted(self._best):
            if index in self._excluded:
                continue
            if not 0 <= index < len(deals):
                continue
            observation = self._best[index]
            matched.append(
                MatchResult(
                    deal_index=index,
                    deal=deals[index],
                    confidence=observation.confidence,
                    explanation=observation.explanation,
                )
            )
        return matched


def rank_matches(matches: Sequence[MatchResult]) -> list[MatchResult]:
    """Highest confidence first; equal confidence keeps input order."""
    return sorted(matches, key=lambda m: m.confidence, reverse=True)
