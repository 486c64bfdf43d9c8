"""Record types flowing through collect → normalize → dedup → store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Category(str, Enum):
    """Closed taxonomy for canonical records."""

    LAYER2 = "Layer2"
    DEFI = "DeFi"
    GAMING = "Gaming"
    INFRASTRUCTURE = "Infrastructure"
    SOCIAL = "Social"
    NFT = "NFT"
    DAO = "DAO"
    OTHER = "Other"


class RecordStatus(str, Enum):
    UPCOMING = "upcoming"
    CONFIRMED = "confirmed"
    DISTRIBUTED = "distributed"
    ENDED = "ended"


class PotentialRating(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class MatchType(str, Enum):
    EXACT_NAME = "exact_name"
    SIMILAR_NAME = "similar_name"
    SAME_WEBSITE = "same_website"
    SAME_HANDLE = "same_handle"
    SAME_CONTRACT = "same_contract"
    SIMILAR_CONTENT = "similar_content"


class RecommendedAction(str, Enum):
    SKIP = "skip"
    MERGE = "merge"
    UPDATE_EXISTING = "update_existing"


class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RawRecord:
    """Free-text candidate extracted from a single fetch; never persisted."""

    source_id: str
    name: str
    description: str = ""
    category: str = ""
    chain: str = ""
    website: str = ""
    handle: str = ""
    contract_address: str = ""
    source_url: str = ""


@dataclass(slots=True)
class CanonicalRecord:
    """Normalized incentive-program entry as kept in the record store."""

    name: str
    content_hash: str
    description: str = ""
    category: Category = Category.OTHER
    status: RecordStatus = RecordStatus.UPCOMING
    chain: str = "Ethereum"
    token_symbol: str | None = None
    estimated_value: str | None = None
    eligibility_criteria: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)
    website: str | None = None
    twitter_handle: str | None = None
    discord_link: str | None = None
    telegram_link: str | None = None
    contract_address: str | None = None
    priority: int = 0
    potential_rating: PotentialRating = PotentialRating.LOW
    restricted: bool = False
    featured: bool = False
    source_id: str | None = None
    source_url: str | None = None
    id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("CanonicalRecord.name must be non-empty")

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "status": self.status.value,
            "chain": self.chain,
            "token_symbol": self.token_symbol,
            "estimated_value": self.estimated_value,
            "eligibility_criteria": list(self.eligibility_criteria),
            "requirements": list(self.requirements),
            "website": self.website,
            "twitter_handle": self.twitter_handle,
            "discord_link": self.discord_link,
            "telegram_link": self.telegram_link,
            "contract_address": self.contract_address,
            "priority": self.priority,
            "potential_rating": self.potential_rating.value,
            "restricted": self.restricted,
            "featured": self.featured,
            "content_hash": self.content_hash,
            "source_id": self.source_id,
            "source_url": self.source_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CanonicalRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row.get("description") or "",
            category=Category(row.get("category") or Category.OTHER.value),
            status=RecordStatus(row.get("status") or RecordStatus.UPCOMING.value),
            chain=row.get("chain") or "Ethereum",
            token_symbol=row.get("token_symbol"),
            estimated_value=row.get("estimated_value"),
            eligibility_criteria=list(row.get("eligibility_criteria") or []),
            requirements=list(row.get("requirements") or []),
            website=row.get("website"),
            twitter_handle=row.get("twitter_handle"),
            discord_link=row.get("discord_link"),
            telegram_link=row.get("telegram_link"),
            contract_address=row.get("contract_address"),
            priority=int(row.get("priority") or 0),
            potential_rating=PotentialRating(row.get("potential_rating") or "low"),
            restricted=bool(row.get("restricted")),
            featured=bool(row.get("featured")),
            content_hash=row["content_hash"],
            source_id=row.get("source_id"),
            source_url=row.get("source_url"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


@dataclass(slots=True)
class MatchResult:
    """Best stored candidate for one dedup tier."""

    match_type: MatchType
    similarity: float
    action: RecommendedAction
    record_id: str | None = None
    name: str | None = None


@dataclass(slots=True)
class DeduplicationResult:
    is_duplicate: bool
    confidence: float = 0.0
    action: RecommendedAction = RecommendedAction.SKIP
    match: MatchResult | None = None

    @classmethod
    def unique(cls) -> "DeduplicationResult":
        return cls(is_duplicate=False)

    @classmethod
    def from_match(cls, match: MatchResult) -> "DeduplicationResult":
        return cls(
            is_duplicate=True,
            confidence=match.similarity,
            action=match.action,
            match=match,
        )


@dataclass(slots=True)
class RunLog:
    """One outcome line per source (or per aggregate job) and run."""

    source_id: str
    status: RunStatus
    items_found: int = 0
    records_inserted: int = 0
    duration_seconds: float = 0.0
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None


__all__ = [
    "CanonicalRecord",
    "Category",
    "DeduplicationResult",
    "MatchResult",
    "MatchType",
    "PotentialRating",
    "RawRecord",
    "RecommendedAction",
    "RecordStatus",
    "RunLog",
    "RunStatus",
    "utcnow",
]
