from __future__ import annotations

import io
import logging
import xml.sax
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterator, Optional, Tuple

import feedparser


logger = logging.getLogger(__name__)

UNTITLED = "Untitled"
PLACEHOLDER_LINK = "https://example.com"

RSS_VERSIONS = frozenset(
    {"rss", "rss090", "rss091n", "rss091u", "rss092", "rss093", "rss094", "rss10", "rss20"}
)
ATOM_VERSIONS = frozenset({"atom", "atom01", "atom02", "atom03", "atom10"})


class FeedError(Exception):
    """A failure that only affects the feed being processed."""


class ParseError(FeedError):
    def __init__(self, reason: str = "parse failed"):
        super().__init__(reason)


# -----------------------------
# Data shapes
# -----------------------------

@dataclass(frozen=True)
class ParsedItem:
    guid: str
    title: str
    link: str
    pub_date: datetime  # UTC
    comments_link: Optional[str] = None


class ParsedFeed:
    """
    A feed document reduced to the fields we store.

    `items` is a generator: it can be consumed exactly once.
    """

    def __init__(self, format: str, title: str, link: str, items: Iterator[ParsedItem]):
        self.format = format
        self.title = title
        self.link = link
        self.items = items

    def __repr__(self) -> str:
        return f"ParsedFeed(format={self.format!r}, title={self.title!r}, link={self.link!r})"


# -----------------------------
# Utilities
# -----------------------------

def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def parse_rfc2822(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    try:
        dt = parsedate_to_datetime(s.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def struct_to_datetime(st: Any) -> Optional[datetime]:
    if not st:
        return None
    return datetime(*st[:6], tzinfo=timezone.utc)


def first_link(links: Any) -> Optional[str]:
    for link in links or []:
        href = link.get("href")
        if href:
            return str(href)
    return None


# -----------------------------
# Parsers
# -----------------------------

class FeedParser:
    """Strict parser for one feed format family."""

    format = ""
    versions: frozenset = frozenset()

    def parse(self, d: Dict[str, Any]) -> ParsedFeed:
        if d.get("bozo") and isinstance(d.get("bozo_exception"), xml.sax.SAXException):
            raise ParseError(f"not well-formed: {d.get('bozo_exception')}")
        if d.get("version") not in self.versions:
            raise ParseError(f"not a {self.format} document")
        self.check(d)

        title, link = self.feed_fields(d.get("feed", {}))
        entries = d.get("entries", [])
        return ParsedFeed(
            format=self.format,
            title=title,
            link=link,
            items=(self.item_fields(e) for e in entries),
        )

    def check(self, d: Dict[str, Any]) -> None:
        pass

    def feed_fields(self, channel: Dict[str, Any]) -> Tuple[str, str]:
        raise NotImplementedError

    def item_fields(self, entry: Dict[str, Any]) -> ParsedItem:
        raise NotImplementedError


class RssParser(FeedParser):
    format = "rss"
    versions = RSS_VERSIONS

    def check(self, d: Dict[str, Any]) -> None:
        if not d.get("feed"):
            raise ParseError("missing channel")

    def feed_fields(self, channel: Dict[str, Any]) -> Tuple[str, str]:
        return str(channel.get("title", "")), str(channel.get("link", ""))

    def item_fields(self, entry: Dict[str, Any]) -> ParsedItem:
        title = entry.get("title")
        link = entry.get("link")
        comments = entry.get("comments")

        pub_date = parse_rfc2822(entry.get("published"))
        if pub_date is None:
            # Unknown dates sort as if published now.
            logger.debug("Missing or invalid pubDate for %r, using current time", entry.get("id"))
            pub_date = utc_now()

        return ParsedItem(
            guid=str(entry.get("id") or ""),
            title=UNTITLED if title is None else str(title),
            link=str(link) if link else PLACEHOLDER_LINK,
            comments_link=str(comments) if comments else None,
            pub_date=pub_date,
        )


class AtomParser(FeedParser):
    format = "atom"
    versions = ATOM_VERSIONS

    def feed_fields(self, channel: Dict[str, Any]) -> Tuple[str, str]:
        return str(channel.get("title", "")), first_link(channel.get("links")) or PLACEHOLDER_LINK

    def item_fields(self, entry: Dict[str, Any]) -> ParsedItem:
        return ParsedItem(
            guid=str(entry.get("id", "")),
            title=str(entry.get("title", "")),
            link=first_link(entry.get("links")) or PLACEHOLDER_LINK,
            comments_link=None,
            pub_date=struct_to_datetime(entry.get("published_parsed")) or utc_now(),
        )


PARSERS: Tuple[FeedParser, ...] = (RssParser(), AtomParser())


def parse_feed(body: bytes) -> ParsedFeed:
    """
    Parse a feed body, trying RSS first and Atom second.

    feedparser reads the body once; each parser then accepts or rejects
    that result.

    Raises ParseError when no parser accepts the document.
    """
    d = feedparser.parse(io.BytesIO(body))
    for parser in PARSERS:
        try:
            return parser.parse(d)
        except ParseError as e:
            logger.debug("%s parser rejected document: %s", parser.format, e)
    raise ParseError()
