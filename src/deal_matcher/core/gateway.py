"""Hardened call boundary to the classification oracle.

Every oracle reply is treated as untrusted text. The gateway sanitizes it,
extracts the JSON payload, validates each entry against the batch it was
asked about and returns a tagged result. Malformed replies, transport errors
and timeouts all collapse to an empty contribution; nothing but task
cancellation propagates out of :class:`ClassificationGateway`.
"""

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, Sequence, TypeVar

from deal_matcher.core.entities import Deal, ExclusionVerdict, InclusionVerdict
from deal_matcher.core.interfaces import ClassificationOracle

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ACCEPTANCE_THRESHOLD = 50.0
DEFAULT_EXCLUSION_CONFIDENCE = 90.0
DEFAULT_CALL_TIMEOUT = 60.0

EXCLUSION_PROMPT = {
    "system": (
        "You check food products for ingredients or qualities that must exclude them. "
        "You only respond in valid JSON."
    ),
    "user": """You are checking if food products contain specific ingredients or qualities that should exclude them.

Products to evaluate:
{products}

Items to exclude if found (check each product against ALL items):
{preferences}

Instructions:
- Return ONLY products that DEFINITELY contain excluded items
- Require EXPLICIT evidence (ingredients, descriptions, categories)
- Do NOT exclude based on assumptions
- If unsure, do not exclude
- Return valid JSON only - no explanatory text or markdown

Return Format:
{{
  "excluded_products": [
    {{
      "index": product_number,
      "confidence": confidence_score,
      "reason": "Clear explanation of why this product contains an excluded item"
    }}
  ]
}}

Only return products that you are VERY confident ({min_confidence:.0f}%+) contain excluded items.
Return ONLY the JSON object. No other text, no markdown formatting.""",
}

INCLUSION_PROMPT = {
    "system": (
        "You match food products against dietary preferences. "
        "You only respond in valid JSON."
    ),
    "user": """You are finding food products that match specific dietary preferences.

Products to evaluate:
{products}

Preferences to match (product must match AT LEAST ONE):
{preferences}

Instructions:
- Find products that CLEARLY match at least one preference
- Require clear evidence from product name, description, or category
- Provide confidence score (0-100) for how well it matches
- Only include matches with {min_confidence:.0f}%+ confidence
- Explain exactly why each product matches
- Return valid JSON only - no explanatory text or markdown

Return Format:
{{
  "matches": [
    {{
      "index": product_number,
      "confidence": confidence_score,
      "reason": "Clear explanation of how this product matches a preference"
    }}
  ]
}}

Return ONLY the JSON object. No other text, no markdown formatting.""",
}

_CODE_FENCE = re.compile(r"```[a-zA-Z]*\s*\n?(.*?)\s*```", re.DOTALL)
_CLOSER_AHEAD = re.compile(r"\s*[}\]]")


class GatewayStatus(str, Enum):
    """How an oracle call ended."""

    OK = "ok"
    MALFORMED = "malformed"
    UNREACHABLE = "unreachable"


@dataclass
class GatewayResult(Generic[T]):
    """Validated entries from one oracle call, tagged with its status."""

    status: GatewayStatus
    entries: list[T] = field(default_factory=list)
    discarded: int = 0

    @property
    def ok(self) -> bool:
        return self.status is GatewayStatus.OK


def strip_code_fences(text: str) -> str:
    """Return the body of the first markdown code block, or the text itself."""
    match = _CODE_FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def strip_trailing_commas(text: str) -> str:
    """Remove commas directly before a closing brace or bracket.

    Commas inside string literals are left alone.
    """
    kept: list[str] = []
    in_string = False
    escaped = False

    for position, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "," and _CLOSER_AHEAD.match(text, position + 1):
            continue
        kept.append(char)

    return "".join(kept)


def _balanced_block(text: str, start: int) -> Optional[str]:
    """Return the bracketed block opening at ``start``, honouring strings."""
    closers = {"{": "}", "[": "]"}
    stack: list[str] = []
    in_string = False
    escaped = False

    for position in range(start, len(text)):
        char = text[position]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in closers:
            stack.append(closers[char])
        elif char in "}]":
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return text[start:position + 1]

    return None


def extract_json_block(text: str) -> str:
    """Extract the first balanced JSON object or array embedded in ``text``.

    Objects are preferred over arrays so that prose like "items [1] and [3]"
    does not shadow the payload. Within a kind, candidates are tried in order
    of appearance and the first one that parses wins. Falls back to the input
    when nothing parses.
    """
    for opener in "{[":
        for position, char in enumerate(text):
            if char != opener:
                continue
            block = _balanced_block(text, position)
            if block is None:
                continue
            try:
                json.loads(block)
            except json.JSONDecodeError:
                continue
            return block

    return text


def sanitize_reply(text: str) -> str:
    """Turn a raw oracle reply into text that should parse as JSON."""
    cleaned = strip_code_fences(text)
    cleaned = strip_trailing_commas(cleaned)
    return extract_json_block(cleaned)


def parse_reply(text: str) -> Any:
    """Sanitize and parse an oracle reply.

    Raises:
        ValueError: if no JSON payload can be recovered
    """
    return json.loads(sanitize_reply(text))


def _as_index(value: Any, batch_size: int) -> Optional[int]:
    """Convert a 1-based product number to a batch-local 0-based index."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        return None
    if not 1 <= value <= batch_size:
        return None
    return value - 1


def _as_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or not 0 <= value <= 100:
        return None
    return float(value)


def _as_reason(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def format_products(deals: Sequence[Deal]) -> str:
    """Number the batch for the prompt, starting at 1."""
    lines = []
    for number, deal in enumerate(deals, 1):
        line = f"{number}. {deal.product_name}"
        if deal.product_description:
            line += f" - {deal.product_description}"
        if deal.category:
            line += f" (category: {deal.category})"
        lines.append(line)
    return "\n".join(lines)


def format_preferences(terms: Sequence[str]) -> str:
    return "\n".join(f"- {term}" for term in terms)


class ClassificationGateway:
    """Ask the oracle about one batch at a time and validate the answers."""

    def __init__(
        self,
        oracle: ClassificationOracle,
        acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD,
        exclusion_confidence: float = DEFAULT_EXCLUSION_CONFIDENCE,
        call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT,
        exclusion_prompt: Optional[dict[str, str]] = None,
        inclusion_prompt: Optional[dict[str, str]] = None,
    ) -> None:
        self.oracle = oracle
        self.acceptance_threshold = acceptance_threshold
        self.exclusion_confidence = exclusion_confidence
        self.call_timeout = call_timeout
        self.exclusion_prompt = exclusion_prompt or EXCLUSION_PROMPT
        self.inclusion_prompt = inclusion_prompt or INCLUSION_PROMPT

    async def check_exclusions(
        self, deals: Sequence[Deal], exclusions: Sequence[str]
    ) -> GatewayResult[ExclusionVerdict]:
        """Report deals with explicit evidence of an excluded item.

        Absence of evidence never excludes: an entry below the exclusion
        confidence floor is dropped, and so is an entry without a confidence.
        """
        if not deals or not exclusions:
            return GatewayResult(GatewayStatus.OK)

        status, payload = await self._ask(
            self.exclusion_prompt, deals, exclusions, self.exclusion_confidence, "exclusion"
        )
        if status is not GatewayStatus.OK:
            return GatewayResult(status)

        raw_entries = self._entry_list(payload, "excluded_products")
        if raw_entries is None:
            logger.warning("Exclusion reply has no 'excluded_products' list: %.200r", payload)
            return GatewayResult(GatewayStatus.MALFORMED)

        verdicts: dict[int, ExclusionVerdict] = {}
        discarded = 0
        for raw in raw_entries:
            verdict = self._exclusion_verdict(raw, len(deals))
            if verdict is None:
                discarded += 1
                continue
            if verdict.confidence < self.exclusion_confidence:
                logger.debug(
                    "Ignoring low-confidence exclusion %d (%.0f): %s",
                    verdict.index, verdict.confidence, verdict.reason,
                )
                continue
            verdicts.setdefault(verdict.index, verdict)

        if discarded:
            logger.warning("Discarded %d invalid exclusion entries", discarded)

        return GatewayResult(GatewayStatus.OK, list(verdicts.values()), discarded)

    async def find_matches(
        self, deals: Sequence[Deal], inclusions: Sequence[str]
    ) -> GatewayResult[InclusionVerdict]:
        """Report deals that clearly satisfy at least one preference."""
        if not deals or not inclusions:
            return GatewayResult(GatewayStatus.OK)

        status, payload = await self._ask(
            self.inclusion_prompt, deals, inclusions, self.acceptance_threshold, "inclusion"
        )
        if status is not GatewayStatus.OK:
            return GatewayResult(status)

        raw_entries = self._entry_list(payload, "matches")
        if raw_entries is None:
            logger.warning("Inclusion reply has no 'matches' list: %.200r", payload)
            return GatewayResult(GatewayStatus.MALFORMED)

        verdicts: dict[int, InclusionVerdict] = {}
        discarded = 0
        for raw in raw_entries:
            verdict = self._inclusion_verdict(raw, len(deals))
            if verdict is None:
                discarded += 1
                continue
            if verdict.confidence < self.acceptance_threshold:
                continue
            current = verdicts.get(verdict.index)
            if current is None or verdict.confidence > current.confidence:
                verdicts[verdict.index] = verdict

        if discarded:
            logger.warning("Discarded %d invalid match entries", discarded)

        return GatewayResult(GatewayStatus.OK, list(verdicts.values()), discarded)

    async def _ask(
        self,
        template: dict[str, str],
        deals: Sequence[Deal],
        terms: Sequence[str],
        min_confidence: float,
        mode: str,
    ) -> tuple[GatewayStatus, Any]:
        prompt = template.get("user", "").format(
            products=format_products(deals),
            preferences=format_preferences(terms),
            min_confidence=min_confidence,
        )
        system = template.get("system", "")

        try:
            reply = await asyncio.wait_for(
                self.oracle.complete(prompt=prompt, system=system),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Oracle %s check timed out after %ss", mode, self.call_timeout)
            return GatewayStatus.UNREACHABLE, None
        except Exception as e:
            logger.warning("Oracle %s check failed: %s: %s", mode, type(e).__name__, e)
            return GatewayStatus.UNREACHABLE, None

        if not isinstance(reply, str):
            logger.warning("Oracle %s check returned %s instead of text", mode, type(reply).__name__)
            return GatewayStatus.MALFORMED, None

        try:
            return GatewayStatus.OK, parse_reply(reply)
        except ValueError as e:
            preview = reply if len(reply) <= 300 else f"{reply[:150]}...{reply[-150:]}"
            logger.warning("Oracle %s reply is not valid JSON (%s): %r", mode, e, preview)
            return GatewayStatus.MALFORMED, None

    @staticmethod
    def _entry_list(payload: Any, key: str) -> Optional[list]:
        if not isinstance(payload, dict):
            return None
        entries = payload.get(key)
        if not isinstance(entries, list):
            return None
        return entries

    @staticmethod
    def _exclusion_verdict(raw: Any, batch_size: int) -> Optional[ExclusionVerdict]:
        if not isinstance(raw, dict):
            return None
        index = _as_index(raw.get("index"), batch_size)
        confidence = _as_confidence(raw.get("confidence"))
        reason = _as_reason(raw.get("reason"))
        if index is None or confidence is None or reason is None:
            return None
        return ExclusionVerdict(index=index, reason=reason, confidence=confidence)

    @staticmethod
    def _inclusion_verdict(raw: Any, batch_size: int) -> Optional[InclusionVerdict]:
        if not isinstance(raw, dict):
            return None
        index = _as_index(raw.get("index"), batch_size)
        confidence = _as_confidence(raw.get("confidence"))
        reason = _as_reason(raw.get("reason"))
        if index is None or confidence is None or reason is None:
            return None
        return InclusionVerdict(index=index, confidence=confidence, reason=reason)
