"""Map raw extracted fields onto the canonical taxonomy and fingerprint them."""

from __future__ import annotations

import hashlib
import re

from ..config import SourceConfig
from ..errors import ValidationError
from .records import CanonicalRecord, Category, PotentialRating, RawRecord, RecordStatus

_WHITESPACE = re.compile(r"\s+")

# Ordered: first substring hit wins.
CATEGORY_RULES: tuple[tuple[tuple[str, ...], Category], ...] = (
    (("layer", "l2"), Category.LAYER2),
    (("defi", "finance"), Category.DEFI),
    (("game", "gaming"), Category.GAMING),
    (("social", "community"), Category.SOCIAL),
    (("infra",), Category.INFRASTRUCTURE),
    (("nft",), Category.NFT),
    (("dao",), Category.DAO),
)

# Specific networks come before the generic "eth" rule so "Arbitrum" stays Arbitrum.
CHAIN_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("arbitrum",), "Arbitrum"),
    (("optimism",), "Optimism"),
    (("polygon", "matic"), "Polygon"),
    (("bsc", "bnb"), "BSC"),
    (("avalanche", "avax"), "Avalanche"),
    (("solana",), "Solana"),
    (("zksync", "zk sync"), "zkSync"),
    (("base",), "Base"),
    (("ethereum", "eth"), "Ethereum"),
)
DEFAULT_CHAIN = "Ethereum"
SHORT_NEEDLE_LENGTH = 4
KNOWN_CHAINS = tuple(dict.fromkeys(chain for _, chain in CHAIN_RULES))

_CATEGORY_PRIORITY: dict[Category, int] = {
    Category.LAYER2: 9,
    Category.DEFI: 8,
    Category.INFRASTRUCTURE: 7,
    Category.GAMING: 6,
    Category.SOCIAL: 5,
    Category.NFT: 4,
    Category.DAO: 4,
    Category.OTHER: 3,
}
_CATEGORY_RATING: dict[Category, PotentialRating] = {
    Category.LAYER2: PotentialRating.VERY_HIGH,
    Category.DEFI: PotentialRating.HIGH,
    Category.INFRASTRUCTURE: PotentialRating.HIGH,
    Category.GAMING: PotentialRating.MEDIUM,
    Category.SOCIAL: PotentialRating.MEDIUM,
    Category.NFT: PotentialRating.MEDIUM,
    Category.DAO: PotentialRating.LOW,
    Category.OTHER: PotentialRating.LOW,
}

REQUIREMENT_PATTERN = re.compile(
    r"\b(?:follow|retweet|like|join|connect|hold)\b[^.!?\n]*", re.IGNORECASE
)
DEFAULT_REQUIREMENT = "Check official website for requirements"

ELIGIBILITY_RULES: tuple[tuple[str, str], ...] = (
    ("whitelist", "Whitelist required"),
    ("snapshot", "Snapshot based"),
    ("hold", "Token holding required"),
    ("testnet", "Testnet interaction required"),
)
DEFAULT_CRITERIA = "No specific criteria mentioned"

FINGERPRINT_LENGTH = 16


def clean_text(text: str | None) -> str:
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


def clean_url(url: str | None) -> str:
    """Return an absolute https URL; already-absolute input passes through."""

    url = (url or "").strip()
    if not url:
        return ""
    if url.lower().startswith(("http://", "https://")):
        return url
    if url.startswith("//"):
        return "https:" + url
    return "https://" + url


def normalize_category(text: str | Category | None) -> Category:
    if isinstance(text, Category):
        return text
    if not text:
        return Category.OTHER
    lowered = text.lower()
    for member in Category:
        if lowered == member.value.lower():
            return member
    for needles, category in CATEGORY_RULES:
        if any(needle in lowered for needle in needles):
            return category
    return Category.OTHER


def _chain_pattern(needle: str) -> re.Pattern[str]:
    # Short tickers only count as whole words, so "Coinbase" is not Base.
    escaped = re.escape(needle)
    return re.compile(rf"\b{escaped}\b" if len(needle) <= SHORT_NEEDLE_LENGTH else escaped)


_CHAIN_PATTERNS = tuple(
    (tuple(_chain_pattern(needle) for needle in needles), chain) for needles, chain in CHAIN_RULES
)


def normalize_chain(text: str | None) -> str:
    if not text:
        return DEFAULT_CHAIN
    lowered = clean_text(text).lower()
    for patterns, chain in _CHAIN_PATTERNS:
        if any(pattern.search(lowered) for pattern in patterns):
            return chain
    return DEFAULT_CHAIN


def extract_requirements(text: str | None) -> list[str]:
    if not text:
        return [DEFAULT_REQUIREMENT]
    found = [clean_text(match.group(0)) for match in REQUIREMENT_PATTERN.finditer(text)]
    found = [item for item in found if item]
    return found or [DEFAULT_REQUIREMENT]


def extract_eligibility_criteria(text: str | None) -> list[str]:
    lowered = (text or "").lower()
    criteria = [label for keyword, label in ELIGIBILITY_RULES if keyword in lowered]
    return criteria or [DEFAULT_CRITERIA]


def content_fingerprint(name: str | None, description: str | None = None) -> str:
    """Fixed-length hex digest of the lowercase, whitespace-collapsed name + description."""

    seed = clean_text(f"{name or ''} {description or ''}").lower()
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def priority_for(category: Category) -> int:
    return _CATEGORY_PRIORITY.get(category, 3)


def potential_rating_for(category: Category) -> PotentialRating:
    return _CATEGORY_RATING.get(category, PotentialRating.LOW)


def normalize_handle(handle: str | None) -> str | None:
    handle = clean_text(handle)
    if not handle:
        return None
    return handle if handle.startswith("@") else f"@{handle}"


class Normalizer:
    """Turn a RawRecord into a CanonicalRecord ready for deduplication."""

    def normalize(self, raw: RawRecord, source: SourceConfig) -> CanonicalRecord:
        name = clean_text(raw.name)
        if not name:
            raise ValidationError(f"empty name from source {raw.source_id}")
        description = clean_text(raw.description)
        category = normalize_category(raw.category)
        return CanonicalRecord(
            name=name,
            description=description,
            category=category,
            status=RecordStatus.UPCOMING,
            chain=normalize_chain(raw.chain),
            eligibility_criteria=extract_eligibility_criteria(description),
            requirements=extract_requirements(description),
            website=clean_url(raw.website) or None,
            twitter_handle=normalize_handle(raw.handle),
            contract_address=clean_text(raw.contract_address).lower() or None,
            priority=priority_for(category),
            potential_rating=potential_rating_for(category),
            restricted=source.locale != "zh",
            content_hash=content_fingerprint(name, description),
            source_id=source.source_id,
            source_url=raw.source_url or source.endpoint,
        )


__all__ = [
    "DEFAULT_CHAIN",
    "KNOWN_CHAINS",
    "Normalizer",
    "clean_text",
    "clean_url",
    "content_fingerprint",
    "extract_eligibility_criteria",
    "extract_requirements",
    "normalize_category",
    "normalize_chain",
    "normalize_handle",
    "potential_rating_for",
    "priority_for",
]
