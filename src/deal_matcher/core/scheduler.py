"""Batch fan-out to the classification gateway with a concurrency ceiling."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from deal_matcher.core.entities import CompiledPreferences, Deal, MatchResult
from deal_matcher.core.gateway import ClassificationGateway
from deal_matcher.core.reconciler import BatchOutcome, MatchReconciler

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_CONCURRENCY = 3


@dataclass(frozen=True)
class Batch:
    """Consecutive slice of the run's deal list."""

    number: int
    offset: int
    deals: tuple[Deal, ...]


def partition(deals: Sequence[Deal], batch_size: int) -> list[Batch]:
    """Split deals into consecutive fixed-size batches, preserving order."""
    if batch_size < 1:
        raise ValueError("Batch size must be at least 1")

    return [
        Batch(number=number, offset=offset, deals=tuple(deals[offset:offset + batch_size]))
        for number, offset in enumerate(range(0, len(deals), batch_size), 1)
    ]


class BatchScheduler:
    """Run batches in waves of at most ``concurrency`` in flight.

    Inside a batch the exclusion check finishes before the inclusion check
    is issued for the deals it did not exclude. A wave's outcomes are merged
    into the reconciler only after every batch in it has finished.
    """

    def __init__(
        self,
        gateway: ClassificationGateway,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        if batch_size < 1:
            raise ValueError("Batch size must be at least 1")
        if concurrency < 1:
            raise ValueError("Concurrency must be at least 1")
        self.gateway = gateway
        self.batch_size = batch_size
        self.concurrency = concurrency

    async def run(
        self, deals: Sequence[Deal], preferences: CompiledPreferences
    ) -> MatchReconciler:
        """Classify every batch and return the merged observations."""
        reconciler = MatchReconciler()
        # Exclusions alone can never produce a match
        if not deals or not preferences.inclusions:
            return reconciler

        batches = partition(deals, self.batch_size)
        waves = [
            batches[start:start + self.concurrency]
            for start in range(0, len(batches), self.concurrency)
        ]

        for wave_number, wave in enumerate(waves, 1):
            outcomes = await asyncio.gather(
                *(self._process_batch(batch, preferences) for batch in wave),
                return_exceptions=True,
            )
            for batch, outcome in zip(wave, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("Batch %d failed: %s: %s", batch.number, type(outcome).__name__, outcome)
                    continue
                reconciler.merge(outcome)
            logger.debug("Wave %d/%d merged (%d batches)", wave_number, len(waves), len(wave))

        return reconciler

    async def match(
        self, deals: Sequence[Deal], preferences: CompiledPreferences
    ) -> list[MatchResult]:
        reconciler = await self.run(deals, preferences)
        return reconciler.results(deals)

    async def _process_batch(
        self, batch: Batch, preferences: CompiledPreferences
    ) -> BatchOutcome:
        outcome = BatchOutcome(offset=batch.offset, size=len(batch.deals))

        exclusion_result = await self.gateway.check_exclusions(
            batch.deals, preferences.exclusions
        )
        outcome.exclusion_status = exclusion_result.status
        excluded_local: set[int] = set()
        for verdict in exclusion_result.entries:
            excluded_local.add(verdict.index)
            outcome.exclusions[batch.offset + verdict.index] = verdict.reason

        # Batch-local positions of the deals still in play
        remaining = [
            position for position in range(len(batch.deals)) if position not in excluded_local
        ]
        if remaining and preferences.inclusions:
            inclusion_result = await self.gateway.find_matches(
                [batch.deals[position] for position in remaining], preferences.inclusions
            )
            outcome.inclusion_status = inclusion_result.status
            for verdict in inclusion_result.entries:
                global_index = batch.offset + remaining[verdict.index]
                outcome.matches.append((global_index, verdict.confidence, verdict.reason))

        logger.info(
            "Batch %d: %d excluded, %d matched (exclusion=%s, inclusion=%s)",
            batch.number,
            len(outcome.exclusions),
            len(outcome.matches),
            outcome.exclusion_status.value,
            outcome.inclusion_status.value,
        )
        return outcome
