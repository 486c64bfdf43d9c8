"""DOM parsing and rule-based text extraction helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from ..config import ExtractionRules
from ..errors import ExtractionError, ValidationError
from .records import RawRecord

GENERIC_RULES = ExtractionRules(
    container='.airdrop, .airdrop-item, [class*="airdrop"]',
    name="h1, h2, h3, .title, .name",
    description="p, .description, .desc",
    category=".category, .tag, .badge",
    chain=".blockchain, .chain, .network",
    website='a[href*="http"], .website, .link',
)

PLACEHOLDER_PATTERN = re.compile(r"\b(?:test|demo|example|sample|placeholder)\b", re.IGNORECASE)
LEGITIMACY_KEYWORDS = ("airdrop", "token", "crypto", "claim", "free")
MIN_NAME_LENGTH = 4

SOCIAL_LEXICON = (
    "airdrop",
    "claim",
    "free",
    "token",
    "crypto",
    "blockchain",
    "ethereum",
    "btc",
    "solana",
    "arbitrum",
    "optimism",
)
# Leading capitalized phrase followed by a trigger word, e.g. "Blast Network airdrop ...".
SOCIAL_NAME_PATTERN = re.compile(r"^([A-Z][A-Za-z0-9 ]+?)\s+(?i:airdrop|claim|free)\b")
URL_PATTERN = re.compile(r"https?://[^\s]+")
HANDLE_PATTERN = re.compile(r"@(\w{1,30})")
MAX_NAME_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 200


@dataclass(slots=True)
class SocialItem:
    """One search result before airdrop heuristics run."""

    text: str
    author: str = ""
    link: str = ""


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def validate_candidate(name: str, description: str = "") -> None:
    """Raise ValidationError for placeholder or too-thin candidates."""

    name = name or ""
    description = description or ""
    if PLACEHOLDER_PATTERN.search(name) or PLACEHOLDER_PATTERN.search(description):
        raise ValidationError(f"placeholder content: {name!r}")
    haystack = f"{name} {description}".lower()
    has_keyword = any(keyword in haystack for keyword in LEGITIMACY_KEYWORDS)
    if not has_keyword and len(name.strip()) < MIN_NAME_LENGTH:
        raise ValidationError(f"insufficient content: {name!r}")


class Parser:
    """Apply locator rules to listing pages and heuristics to social posts."""

    def has_containers(self, html: str, rules: ExtractionRules | None = None) -> bool:
        selector = self._merge(rules).container
        return bool(selector) and HTMLParser(html).css_first(selector) is not None

    def parse_cards(
        self,
        html: str,
        rules: ExtractionRules | None,
        base_url: str,
        source_id: str,
    ) -> list[RawRecord]:
        """Extract one RawRecord per container node; placeholders are dropped."""

        merged = self._merge(rules)
        # A selector list yields a node once per alternative it matches.
        containers = list({node.mem_id: node for node in HTMLParser(html).css(merged.container)}.values())
        if not containers:
            raise ExtractionError(f"no containers matched {merged.container!r}")
        records: list[RawRecord] = []
        for node in containers:
            name = self._select(node, merged.name)
            if not name:
                continue
            description = self._select(node, merged.description)
            try:
                validate_candidate(name, description)
            except ValidationError:
                continue
            website = self._select(node, merged.website, default_mode="attr:href")
            records.append(
                RawRecord(
                    source_id=source_id,
                    name=name,
                    description=description,
                    category=self._select(node, merged.category),
                    chain=self._select(node, merged.chain),
                    website=urljoin(base_url, website) if website.startswith("/") else website,
                    handle=self._select(node, merged.handle),
                    source_url=base_url,
                )
            )
        return records

    def parse_social_items(self, html: str, base_url: str) -> list[SocialItem]:
        """Read posts out of a rendered search-results page."""

        items: list[SocialItem] = []
        for article in HTMLParser(html).css("article"):
            text_node = article.css_first('[data-testid="tweetText"]')
            user_node = article.css_first('[data-testid="User-Name"]')
            link_node = article.css_first('a[href*="/status/"]')
            text = text_node.text(separator=" ", strip=True) if text_node is not None else ""
            if not text:
                continue
            link = (link_node.attributes.get("href") or "") if link_node is not None else ""
            items.append(
                SocialItem(
                    text=text,
                    author=user_node.text(separator=" ", strip=True) if user_node is not None else "",
                    link=urljoin(base_url, link) if link else "",
                )
            )
        return items

    def record_from_social(self, item: SocialItem, source_id: str) -> RawRecord | None:
        """Apply the keyword, name, URL and handle heuristics to one post."""

        text = item.text.strip()
        lowered = text.lower()
        if not any(keyword in lowered for keyword in SOCIAL_LEXICON):
            return None
        match = SOCIAL_NAME_PATTERN.match(text)
        name = match.group(1).strip() if match else " ".join(text.split()[:3])
        url_match = URL_PATTERN.search(text)
        return RawRecord(
            source_id=source_id,
            name=_truncate(name, MAX_NAME_LENGTH),
            description=_truncate(text, MAX_DESCRIPTION_LENGTH),
            website=url_match.group(0) if url_match else "",
            handle=self.extract_handle(item.author),
            source_url=item.link,
        )

    @staticmethod
    def extract_handle(author: str) -> str:
        author = (author or "").strip()
        if not author:
            return ""
        match = HANDLE_PATTERN.search(author)
        handle = match.group(1) if match else author.split()[0]
        return f"@{handle}"

    # ------------------------------------------------------------------
    @staticmethod
    def _merge(rules: ExtractionRules | None) -> ExtractionRules:
        if rules is None:
            return GENERIC_RULES
        overrides = rules.model_dump(exclude_none=True)
        return GENERIC_RULES.model_copy(update=overrides)

    def _select(self, node: Node, selector: str | None, default_mode: str = "text") -> str:
        if not selector:
            return ""
        css_selector, mode = self._split_selector(selector, default_mode)
        match = node.css_first(css_selector)
        if match is None:
            return ""
        if mode.startswith("attr:"):
            value = match.attributes.get(mode.split(":", 1)[1]) or ""
        else:
            value = match.text(separator=" ", strip=True)
        return " ".join(value.split())

    @staticmethod
    def _split_selector(selector: str, default_mode: str = "text") -> tuple[str, str]:
        if "::" in selector:
            css, mode = selector.split("::", 1)
            return css.strip(), mode.strip().lower()
        return selector.strip(), default_mode


__all__ = [
    "GENERIC_RULES",
    "Parser",
    "SocialItem",
    "validate_candidate",
]
