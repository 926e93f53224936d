"""Persistent store kept as individual YAML artifacts on disk."""

import hashlib
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

import yaml

from deal_matcher.core import (
    Deal,
    MatchResult,
    MatchStore,
    PreferenceStore,
    Snapshot,
    SnapshotStore,
    StoreError,
)

logger = logging.getLogger(__name__)

_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


def _safe_name(value: str) -> str:
    """Filesystem-safe name with a short hash to keep distinct ids distinct."""
    safe = re.sub(r"[^\w\s-]", "", value)
    safe = re.sub(r"[-\s]+", "-", safe).strip("-")[:50]
    digest = hashlib.md5(value.encode()).hexdigest()[:8]
    return f"{safe}_{digest}" if safe else digest


class YamlStore(SnapshotStore, PreferenceStore, MatchStore):
    """Append-only snapshot history, preferences and matches as YAML files.

    Layout::

        <storage_dir>/snapshots/<timestamp>_<hash>.yaml
        <storage_dir>/preferences/<user>.yaml
        <storage_dir>/matches/<snapshot id>/<user>.yaml
    """

    def __init__(self, storage_dir: Path) -> None:
        self.storage_dir = storage_dir
        self.snapshots_dir = storage_dir / "snapshots"
        self.preferences_dir = storage_dir / "preferences"
        self.matches_dir = storage_dir / "matches"
        self._ensure_structure()

    def _ensure_structure(self) -> None:
        """Create directory structure for artifacts."""
        for directory in (self.snapshots_dir, self.preferences_dir, self.matches_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # Snapshots

    def append_snapshot(
        self,
        successful: bool,
        deals: Sequence[Deal] = (),
        error_message: Optional[str] = None,
        taken_at: Optional[datetime] = None,
    ) -> Snapshot:
        taken_at = taken_at or datetime.now(timezone.utc)
        stamp = taken_at.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)
        suffix = hashlib.md5(f"{stamp}{successful}{len(deals)}{error_message}".encode()).hexdigest()[:8]
        snapshot = Snapshot(
            id=f"{stamp}_{suffix}",
            taken_at=taken_at,
            successful=successful,
            deals=tuple(deals) if successful else (),
            error_message=error_message,
        )

        artifact = {
            "id": snapshot.id,
            "taken_at": snapshot.taken_at.isoformat(),
            "successful": snapshot.successful,
            "error_message": snapshot.error_message,
            "deal_count": len(snapshot.deals),
            "deals": [deal.to_dict() for deal in snapshot.deals],
        }

        path = self.snapshots_dir / f"{snapshot.id}.yaml"
        if path.exists():
            raise StoreError(f"Snapshot {snapshot.id} already exists")
        self._write(path, artifact)
        return snapshot

    def latest_successful(self) -> Optional[Snapshot]:
        for path in self._snapshot_paths():
            snapshot = self._load_snapshot(path)
            if snapshot.successful:
                return snapshot
        return None

    def latest(self) -> Optional[Snapshot]:
        paths = self._snapshot_paths()
        return self._load_snapshot(paths[0]) if paths else None

    def list_snapshots(self, limit: int = 20) -> list[Snapshot]:
        """Most recent snapshots first."""
        return [self._load_snapshot(path) for path in self._snapshot_paths()[:limit]]

    def _snapshot_paths(self) -> list[Path]:
        # Names start with a UTC timestamp, so name order is time order
        try:
            return sorted(self.snapshots_dir.glob("*.yaml"), key=lambda p: p.name, reverse=True)
        except OSError as e:
            raise StoreError(f"Could not list snapshots: {e}") from e

    def _load_snapshot(self, path: Path) -> Snapshot:
        data = self._read(path)
        try:
            taken_at = datetime.fromisoformat(data["taken_at"])
            if taken_at.tzinfo is None:
                taken_at = taken_at.replace(tzinfo=timezone.utc)
            return Snapshot(
                id=data.get("id") or path.stem,
                taken_at=taken_at,
                successful=bool(data["successful"]),
                deals=tuple(Deal.from_dict(row) for row in data.get("deals") or []),
                error_message=data.get("error_message"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Corrupt snapshot artifact {path.name}: {e}") from e

    # Preferences

    def list_users(self) -> list[str]:
        users = []
        for path in sorted(self.preferences_dir.glob("*.yaml")):
            data = self._read(path)
            if data.get("user_id") and data.get("preferences"):
                users.append(data["user_id"])
        return users

    def list_preferences(self, user_id: str) -> list[str]:
        path = self._preferences_path(user_id)
        if not path.exists():
            return []
        data = self._read(path)
        return [row["text"] for row in data.get("preferences") or [] if row.get("text")]

    def add_preference(self, user_id: str, text: str) -> None:
        text = text.strip()
        if not text:
            raise ValueError("Preference text cannot be empty")

        path = self._preferences_path(user_id)
        data = self._read(path) if path.exists() else {"user_id": user_id, "preferences": []}
        rows = data.setdefault("preferences", [])
        if any(row.get("text") == text for row in rows):
            return

        rows.append({"text": text, "created_at": datetime.now(timezone.utc).isoformat()})
        self._write(path, data)

    def remove_preference(self, user_id: str, text: str) -> bool:
        path = self._preferences_path(user_id)
        if not path.exists():
            return False

        data = self._read(path)
        rows = data.get("preferences") or []
        kept = [row for row in rows if row.get("text") != text.strip()]
        if len(kept) == len(rows):
            return False

        data["preferences"] = kept
        self._write(path, data)
        return True

    def _preferences_path(self, user_id: str) -> Path:
        return self.preferences_dir / f"{_safe_name(user_id)}.yaml"

    # Matches

    def save_matches(
        self, snapshot_id: Optional[str], user_id: str, matches: Sequence[MatchResult]
    ) -> None:
        directory = self.matches_dir / (snapshot_id or "adhoc")
        artifact = {
            "snapshot_id": snapshot_id,
            "user_id": user_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "matches": [
                {
                    **match.deal.to_dict(),
                    "deal_index": match.deal_index,
                    "confidence_score": match.confidence,
                    "matching_explanation": match.explanation,
                }
                for match in matches
            ],
        }
        self._write(directory / f"{_safe_name(user_id)}.yaml", artifact)

    def load_matches(self, snapshot_id: Optional[str], user_id: str) -> list[dict[str, Any]]:
        path = self.matches_dir / (snapshot_id or "adhoc") / f"{_safe_name(user_id)}.yaml"
        if not path.exists():
            return []
        return self._read(path).get("matches") or []

    # File helpers

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise StoreError(f"Could not read {path}: {e}") from e

        if not isinstance(data, dict):
            raise StoreError(f"Unexpected content in {path}")
        return data

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                yaml.dump(data, f, allow_unicode=True, default_flow_style=False, sort_keys=False)
        except (OSError, yaml.YAMLError) as e:
            raise StoreError(f"Could not write {path}: {e}") from e
        logger.debug("Wrote %s", path)
