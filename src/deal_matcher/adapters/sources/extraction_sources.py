"""Deal sources backed by the external extraction service."""

import json
import logging
from pathlib import Path
from typing import Any

import httpx

from deal_matcher.core import Deal, ExtractionError, ExtractionSource

logger = logging.getLogger(__name__)


def parse_deals(payload: Any) -> list[Deal]:
    """Convert an extraction payload into deals.

    Accepts a bare list of records or an object carrying them under
    ``products`` or ``deals``. Records without a product name are skipped.

    Raises:
        ExtractionError: if the payload has no recognizable deal list
    """
    if isinstance(payload, dict):
        if payload.get("success") is False or payload.get("error"):
            raise ExtractionError(str(payload.get("error") or "Extraction reported failure"))
        records = payload.get("products", payload.get("deals"))
    else:
        records = payload

    if not isinstance(records, list):
        raise ExtractionError("Extraction payload has no deal list")

    deals: list[Deal] = []
    skipped = 0
    for record in records:
        if not isinstance(record, dict):
            skipped += 1
            continue
        try:
            deals.append(Deal.from_dict(record))
        except (TypeError, ValueError) as e:
            skipped += 1
            logger.debug("Skipping unusable deal record %r: %s", record, e)

    if skipped:
        logger.warning("Skipped %d unusable deal records", skipped)

    return deals


class JsonFileDealSource(ExtractionSource):
    """Read deals from a JSON export written by the extraction service."""

    name = "JSON export"

    def __init__(self, path: Path) -> None:
        self.path = path

    async def fetch_deals(self) -> list[Deal]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ExtractionError(f"Could not read {self.path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ExtractionError(f"{self.path} is not valid JSON: {e}") from e

        return parse_deals(payload)


class HttpDealSource(ExtractionSource):
    """Ask the extraction service for the current listings over HTTP."""

    name = "Extraction service"

    def __init__(self, url: str, timeout: float = 300.0) -> None:
        self.url = url
        self.timeout = timeout

    async def fetch_deals(self) -> list[Deal]:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            try:
                response = await client.get(self.url)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise ExtractionError(
                    f"Extraction service returned HTTP {e.response.status_code}"
                ) from e
            except httpx.RequestError as e:
                raise ExtractionError(f"Extraction service unreachable: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise ExtractionError(f"Extraction service returned invalid JSON: {e}") from e

        return parse_deals(payload)
