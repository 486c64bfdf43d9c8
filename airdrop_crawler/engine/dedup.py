"""Intra-batch and cross-store duplicate detection for canonical records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable
from urllib.parse import urlparse

import structlog

from .records import (
    CanonicalRecord,
    DeduplicationResult,
    MatchResult,
    MatchType,
    RecommendedAction,
)

if TYPE_CHECKING:
    from ..infra.storage import RecordStore

_NON_WORD = re.compile(r"\s+")

DOMAIN_LEXICON = frozenset(
    {
        "airdrop", "token", "crypto", "blockchain", "ethereum", "bitcoin", "defi",
        "nft", "dao", "web3", "smart", "contract", "wallet", "metamask",
        "claim", "free", "distribution", "reward", "staking", "farming",
        "liquidity", "yield", "governance", "protocol", "dex", "cex",
        "testnet", "mainnet", "snapshot", "whitelist", "bridge", "layer2",
        "rollup", "points", "quest", "validator", "swap", "lending",
    }
)

FUZZY_SKIP_THRESHOLD = 0.9
FUZZY_MERGE_THRESHOLD = 0.8
CONTENT_MERGE_THRESHOLD = 0.7
WEBSITE_CONFIDENCE = 0.9
HANDLE_CONFIDENCE = 0.85


def name_key(name: str | None) -> str:
    """Case- and spacing-insensitive key used for exact name matching."""

    return _NON_WORD.sub("", (name or "").lower())


def website_key(url: str | None) -> str:
    return (url or "").strip().lower().rstrip("/")


def extract_domain(url: str | None) -> str:
    """Registrable host of a URL with any leading ``www.`` removed."""

    text = (url or "").strip().lower()
    if not text:
        return ""
    parsed = urlparse(text if "://" in text else f"https://{text.lstrip('/')}")
    host = parsed.hostname or ""
    if host.startswith("www."):
        host = host[4:]
    return host


def handle_key(handle: str | None) -> str:
    return (handle or "").strip().lower().lstrip("@")


def word_set(text: str | None) -> set[str]:
    return {word for word in (text or "").lower().split() if len(word) > 2}


def keyword_set(text: str | None) -> set[str]:
    words = re.findall(r"[a-z0-9]+", (text or "").lower())
    return {word for word in words if word in DOMAIN_LEXICON}


def jaccard_similarity(first: set[str], second: set[str]) -> float:
    """Jaccard index; two empty sets count as a full match."""

    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0
    return len(first & second) / len(first | second)


def string_similarity(first: str | None, second: str | None) -> float:
    return jaccard_similarity(word_set(first), word_set(second))


@dataclass
class BatchDeduplicator:
    """Run-scoped filter keeping the first occurrence of each name, website and fingerprint."""

    names: set[str] = field(default_factory=set)
    websites: set[str] = field(default_factory=set)
    fingerprints: set[str] = field(default_factory=set)

    def is_duplicate(self, record: CanonicalRecord) -> bool:
        website = website_key(record.website)
        return (
            name_key(record.name) in self.names
            or (bool(website) and website in self.websites)
            or record.content_hash in self.fingerprints
        )

    def admit(self, record: CanonicalRecord) -> bool:
        if self.is_duplicate(record):
            return False
        self.names.add(name_key(record.name))
        website = website_key(record.website)
        if website:
            self.websites.add(website)
        self.fingerprints.add(record.content_hash)
        return True

    def filter(self, records: Iterable[CanonicalRecord]) -> list[CanonicalRecord]:
        return [record for record in records if self.admit(record)]


def _match(
    stored: CanonicalRecord, match_type: MatchType, similarity: float, action: RecommendedAction
) -> MatchResult:
    return MatchResult(
        match_type=match_type,
        similarity=similarity,
        action=action,
        record_id=stored.id,
        name=stored.name,
    )


class StoreDeduplicator:
    """Compare one candidate against the canonical store, tier by tier."""

    def __init__(
        self,
        store: "RecordStore",
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.logger = logger or structlog.get_logger("airdrop_crawler.dedup")
        self._tiers: tuple[Callable[[CanonicalRecord, list[CanonicalRecord]], MatchResult | None], ...] = (
            self.match_exact_name,
            self.match_similar_name,
            self.match_website,
            self.match_handle,
            self.match_contract,
            self.match_content,
        )

    def check(self, candidate: CanonicalRecord) -> DeduplicationResult:
        existing = self.store.select_by_filter()
        for tier in self._tiers:
            match = tier(candidate, existing)
            if match is not None:
                self.logger.debug(
                    "duplicate_detected",
                    name=candidate.name,
                    match_type=match.match_type.value,
                    existing=match.name,
                    similarity=round(match.similarity, 3),
                )
                return DeduplicationResult.from_match(match)
        return DeduplicationResult.unique()

    # ------------------------------------------------------------------
    @staticmethod
    def match_exact_name(candidate: CanonicalRecord, existing: list[CanonicalRecord]) -> MatchResult | None:
        key = name_key(candidate.name)
        if not key:
            return None
        for stored in existing:
            if name_key(stored.name) == key:
                return _match(stored, MatchType.EXACT_NAME, 1.0, RecommendedAction.SKIP)
        return None

    @staticmethod
    def match_similar_name(candidate: CanonicalRecord, existing: list[CanonicalRecord]) -> MatchResult | None:
        words = word_set(candidate.name)
        if not words:
            return None
        best: tuple[float, CanonicalRecord] | None = None
        for stored in existing:
            score = jaccard_similarity(words, word_set(stored.name))
            if best is None or score > best[0]:
                best = (score, stored)
        if best is None:
            return None
        score, stored = best
        if score > FUZZY_SKIP_THRESHOLD:
            return _match(stored, MatchType.SIMILAR_NAME, score, RecommendedAction.SKIP)
        if score > FUZZY_MERGE_THRESHOLD:
            return _match(stored, MatchType.SIMILAR_NAME, score, RecommendedAction.MERGE)
        return None

    @staticmethod
    def match_website(candidate: CanonicalRecord, existing: list[CanonicalRecord]) -> MatchResult | None:
        domain = extract_domain(candidate.website)
        if not domain:
            return None
        for stored in existing:
            if stored.website and domain in stored.website.lower():
                return _match(
                    stored, MatchType.SAME_WEBSITE, WEBSITE_CONFIDENCE, RecommendedAction.UPDATE_EXISTING
                )
        return None

    @staticmethod
    def match_handle(candidate: CanonicalRecord, existing: list[CanonicalRecord]) -> MatchResult | None:
        handle = handle_key(candidate.twitter_handle)
        if not handle:
            return None
        for stored in existing:
            if stored.twitter_handle and handle in stored.twitter_handle.lower():
                return _match(
                    stored, MatchType.SAME_HANDLE, HANDLE_CONFIDENCE, RecommendedAction.UPDATE_EXISTING
                )
        return None

    @staticmethod
    def match_contract(candidate: CanonicalRecord, existing: list[CanonicalRecord]) -> MatchResult | None:
        address = (candidate.contract_address or "").strip().lower()
        if not address:
            return None
        for stored in existing:
            if (stored.contract_address or "").strip().lower() == address:
                return _match(stored, MatchType.SAME_CONTRACT, 1.0, RecommendedAction.SKIP)
        return None

    @staticmethod
    def match_content(candidate: CanonicalRecord, existing: list[CanonicalRecord]) -> MatchResult | None:
        if not (candidate.description or "").strip():
            return None
        # Two keyword-free descriptions score 1.0 and merge.
        keywords = keyword_set(candidate.description)
        best: tuple[float, CanonicalRecord] | None = None
        for stored in existing:
            if not stored.description:
                continue
            score = jaccard_similarity(keywords, keyword_set(stored.description))
            if best is None or score > best[0]:
                best = (score, stored)
        if best is not None and best[0] > CONTENT_MERGE_THRESHOLD:
            score, stored = best
            return _match(stored, MatchType.SIMILAR_CONTENT, score, RecommendedAction.MERGE)
        return None


__all__ = [
    "BatchDeduplicator",
    "DOMAIN_LEXICON",
    "StoreDeduplicator",
    "extract_domain",
    "handle_key",
    "jaccard_similarity",
    "keyword_set",
    "name_key",
    "string_similarity",
    "website_key",
]
