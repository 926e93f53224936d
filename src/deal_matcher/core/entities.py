"""Core domain entities."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Polarity(str, Enum):
    """Polarity of a user preference."""

    INCLUDE = "include"
    EXCLUDE = "exclude"


# Extraction service field names -> store field names
_CAMEL_CASE_KEYS = {
    "name": "product_name",
    "description": "product_description",
    "salePrice": "sale_price",
    "regularPrice": "regular_price",
    "discountPercentage": "discount_percentage",
    "imageUrl": "image_url",
    "productUrl": "product_url",
}


def compute_discount(sale_price: float, regular_price: float) -> float:
    """Percentage saved off the regular price, rounded to one decimal."""
    if regular_price <= 0:
        return 0.0
    return round((regular_price - sale_price) / regular_price * 100, 1)


@dataclass(frozen=True)
class Deal:
    """One extracted product listing."""

    product_name: str
    sale_price: float
    regular_price: float
    product_description: str = ""
    discount_percentage: Optional[float] = None
    category: str = ""
    image_url: str = ""
    product_url: str = ""

    def __post_init__(self) -> None:
        if not self.product_name or not self.product_name.strip():
            raise ValueError("Product name cannot be empty")
        if self.sale_price < 0 or self.regular_price < 0:
            raise ValueError("Prices cannot be negative")
        if self.discount_percentage is None:
            object.__setattr__(
                self,
                "discount_percentage",
                compute_discount(self.sale_price, self.regular_price),
            )

    def recompute_discount(self) -> "Deal":
        """Return a copy with the discount derived from the two prices."""
        return Deal(
            product_name=self.product_name,
            sale_price=self.sale_price,
            regular_price=self.regular_price,
            product_description=self.product_description,
            discount_percentage=compute_discount(self.sale_price, self.regular_price),
            category=self.category,
            image_url=self.image_url,
            product_url=self.product_url,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_name": self.product_name,
            "product_description": self.product_description,
            "sale_price": self.sale_price,
            "regular_price": self.regular_price,
            "discount_percentage": self.discount_percentage,
            "category": self.category,
            "image_url": self.image_url,
            "product_url": self.product_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Deal":
        """Build a deal from a store row or an extraction service record.

        Accepts both snake_case store keys and the camelCase keys emitted by
        the extraction service. A missing discount is recomputed.
        """
        normalized = {_CAMEL_CASE_KEYS.get(key, key): value for key, value in data.items()}
        discount = normalized.get("discount_percentage")
        return cls(
            product_name=str(normalized.get("product_name") or "").strip(),
            product_description=str(normalized.get("product_description") or ""),
            sale_price=float(normalized.get("sale_price") or 0),
            regular_price=float(normalized.get("regular_price") or 0),
            discount_percentage=float(discount) if discount is not None else None,
            category=str(normalized.get("category") or ""),
            image_url=str(normalized.get("image_url") or ""),
            product_url=str(normalized.get("product_url") or ""),
        )


@dataclass(frozen=True)
class Preference:
    """User preference with derived polarity.

    ``term`` is what gets sent to the oracle: the exclusion token is stripped
    for exclusions, inclusions keep their text as entered.
    """

    text: str
    polarity: Polarity
    term: str


@dataclass
class CompiledPreferences:
    """Preferences split by polarity, in the order they were entered."""

    exclusions: list[str] = field(default_factory=list)
    inclusions: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.exclusions and not self.inclusions


@dataclass(frozen=True)
class Snapshot:
    """Immutable record of one extraction attempt."""

    id: str
    taken_at: datetime
    successful: bool
    deals: tuple[Deal, ...] = ()
    error_message: Optional[str] = None

    def __post_init__(self) -> None:
        if self.taken_at.tzinfo is None:
            raise ValueError("Snapshot timestamp must be timezone-aware")


@dataclass
class MatchResult:
    """A deal accepted for a user, with the oracle's justification."""

    deal_index: int
    deal: Deal
    confidence: float
    explanation: str

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValueError("Confidence must be between 0 and 100")


@dataclass(frozen=True)
class ExclusionVerdict:
    """Oracle report that a deal contains an excluded item."""

    index: int
    reason: str
    confidence: float = 100.0


@dataclass(frozen=True)
class InclusionVerdict:
    """Oracle report that a deal satisfies at least one preference."""

    index: int
    confidence: float
    reason: str


@dataclass
class DeliveryReport:
    """Outcome of a notification delivery."""

    success: bool
    error: Optional[str] = None


@dataclass
class UserRunResult:
    """Matches computed for one user in a run."""

    user_id: str
    preferences: list[str]
    matches: list[MatchResult]
    delivery: Optional[DeliveryReport] = None
    error: Optional[str] = None


@dataclass
class RunReport:
    """Summary of one matching run."""

    successful: bool
    from_cache: bool = False
    snapshot_id: Optional[str] = None
    deal_count: int = 0
    users: list[UserRunResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def match_count(self) -> int:
        return sum(len(user.matches) for user in self.users)
