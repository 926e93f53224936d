"""Core interfaces for adapters."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

from deal_matcher.core.entities import Deal, DeliveryReport, MatchResult, Snapshot


class ExtractionSource(ABC):
    """Interface for the external deal extraction service."""

    @abstractmethod
    async def fetch_deals(self) -> list[Deal]:
        """Fetch the current deal list.

        Raises:
            ExtractionError: if the listings could not be extracted
        """
        pass


class ClassificationOracle(ABC):
    """Interface for the external text-classification service."""

    @abstractmethod
    async def complete(self, prompt: str, system: str) -> str:
        """Send one prompt and return the raw text answer."""
        pass


class SnapshotStore(ABC):
    """Append-only history of extraction attempts."""

    @abstractmethod
    def append_snapshot(
        self,
        successful: bool,
        deals: Sequence[Deal] = (),
        error_message: Optional[str] = None,
        taken_at: Optional[datetime] = None,
    ) -> Snapshot:
        """Record one extraction attempt."""
        pass

    @abstractmethod
    def latest_successful(self) -> Optional[Snapshot]:
        """Most recent successful snapshot, or None."""
        pass

    @abstractmethod
    def latest(self) -> Optional[Snapshot]:
        """Most recent snapshot regardless of outcome, or None."""
        pass


class PreferenceStore(ABC):
    """Durable per-user preference rows."""

    @abstractmethod
    def list_users(self) -> list[str]:
        pass

    @abstractmethod
    def list_preferences(self, user_id: str) -> list[str]:
        pass

    @abstractmethod
    def add_preference(self, user_id: str, text: str) -> None:
        pass

    @abstractmethod
    def remove_preference(self, user_id: str, text: str) -> bool:
        pass


class MatchStore(ABC):
    """Durable record of match results for auditing and delivery."""

    @abstractmethod
    def save_matches(
        self, snapshot_id: Optional[str], user_id: str, matches: Sequence[MatchResult]
    ) -> None:
        pass


class NotificationSink(ABC):
    """Interface for delivering a match digest."""

    @abstractmethod
    async def send_digest(
        self, recipient: str, matches: Sequence[MatchResult], preferences: Sequence[str]
    ) -> DeliveryReport:
        """Deliver a digest; failures are reported, not raised."""
        pass
