from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx

from . import __version__
from .feed import FeedError, parse_feed
from .store import Feed, FeedStore, Item


logger = logging.getLogger(__name__)

USER_AGENT = f"pyrssmail/{__version__}"
TIMEOUT_SECONDS = 30.0


# -----------------------------
# Errors
# -----------------------------

class FetchError(FeedError):
    """The request could not be made or completed (bad URL, DNS, connect, timeout, ...)."""


class NotModified(FeedError):
    def __init__(self) -> None:
        super().__init__("feed not modified")


class UnexpectedStatus(FeedError):
    def __init__(self, status_code: int):
        super().__init__(f"unexpected status code: {status_code}")
        self.status_code = status_code


# -----------------------------
# Data shapes
# -----------------------------

@dataclass(frozen=True)
class FetchResult:
    url: str
    items_seen: int


@dataclass
class FetchSummary:
    feeds_total: int = 0
    feeds_fetched: int = 0
    feeds_not_modified: int = 0
    feeds_failed: int = 0
    items_seen: int = 0


# -----------------------------
# Single feed
# -----------------------------

def build_client(transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    return httpx.Client(
        transport=transport,
        headers={"User-Agent": USER_AGENT},
        timeout=TIMEOUT_SECONDS,
        follow_redirects=True,
    )


def validator(value: Optional[str]) -> Optional[str]:
    # Header values must be ASCII to be sent back; anything else is dropped.
    if not value or not value.isascii():
        return None
    return value


def conditional_headers(feed: Optional[Feed]) -> dict:
    headers = {}
    if feed is not None:
        etag = validator(feed.etag)
        last_modified = validator(feed.last_modified)
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified
    return headers


def fetch_feed(url: str, store: FeedStore, client: httpx.Client) -> FetchResult:
    """
    Fetch one feed with a conditional GET and write it through the store.

    Raises NotModified on 304, UnexpectedStatus on any other non-2xx status,
    FetchError when the request cannot be made or completed and ParseError on unrecognized bodies.
    Store errors propagate unchanged. Nothing is written unless the body parses.
    """
    previous = store.get_feed_by_url(url)

    logger.info("Fetching %s", url)
    try:
        resp = client.get(url, headers=conditional_headers(previous))
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        # ValueError covers unusable URLs and header values httpx cannot encode.
        raise FetchError(f"{type(e).__name__}: {e}") from e

    if resp.status_code == 304:
        raise NotModified()
    if not resp.is_success:
        raise UnexpectedStatus(resp.status_code)

    parsed = parse_feed(resp.content)

    store.upsert_feed(
        Feed(
            url=url,
            link=parsed.link,
            title=parsed.title,
            etag=validator(resp.headers.get("ETag")),
            last_modified=validator(resp.headers.get("Last-Modified")),
        )
    )

    seen = 0
    for entry in parsed.items:
        store.upsert_item(
            Item(
                feed_url=url,
                guid=entry.guid,
                link=entry.link,
                comments_link=entry.comments_link,
                title=entry.title,
                pub_date=entry.pub_date,
            )
        )
        seen += 1

    logger.debug("Stored %d item(s) for %s", seen, url)
    return FetchResult(url=url, items_seen=seen)


# -----------------------------
# Worker pool
# -----------------------------

class FetchCoordinator:
    """
    Drains a shared queue of feed URLs with a fixed number of worker threads.

    Per-feed failures are logged and skipped. Any other exception (store
    failures included) stops all workers from taking new URLs and is
    re-raised from run() once every worker has finished.
    """

    def __init__(self, store: FeedStore, concurrency: int, client: Optional[httpx.Client] = None):
        if concurrency < 1:
            raise ValueError("concurrency must be a positive integer")
        self.store = store
        self.concurrency = concurrency
        self.client = client

        self._queue: "queue.SimpleQueue[str]" = queue.SimpleQueue()
        self._stop = threading.Event()
        self._summary_lock = threading.Lock()
        self._summary = FetchSummary()
        self._fatal: List[Exception] = []

    def run(self, urls: Sequence[str]) -> FetchSummary:
        self._summary = FetchSummary(feeds_total=len(urls))
        self._queue = queue.SimpleQueue()
        self._stop.clear()
        self._fatal = []
        for url in urls:
            self._queue.put(url)

        num_workers = min(self.concurrency, len(urls))
        if num_workers == 0:
            return self._summary

        own_client = self.client is None
        client = build_client() if own_client else self.client
        try:
            workers = [
                threading.Thread(target=self._work, args=(client,), name=f"fetch-{i}")
                for i in range(num_workers)
            ]
            for t in workers:
                t.start()
            for t in workers:
                t.join()
        finally:
            if own_client:
                client.close()

        if self._fatal:
            raise self._fatal[0]
        return self._summary

    def _next_url(self) -> Optional[str]:
        if self._stop.is_set():
            return None
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def _work(self, client: httpx.Client) -> None:
        while True:
            url = self._next_url()
            if url is None:
                return
            try:
                result = fetch_feed(url, self.store, client)
            except NotModified:
                logger.info("Feed not modified: %s", url)
                self._count(feeds_not_modified=1)
            except FeedError as e:
                logger.warning("Failed to fetch feed %s: %s", url, e)
                self._count(feeds_failed=1)
            except Exception as e:
                logger.error("Aborting fetch after fatal error on %s: %s", url, e)
                with self._summary_lock:
                    self._fatal.append(e)
                self._stop.set()
                return
            else:
                self._count(feeds_fetched=1, items_seen=result.items_seen)

    def _count(self, **deltas: int) -> None:
        with self._summary_lock:
            for name, delta in deltas.items():
                setattr(self._summary, name, getattr(self._summary, name) + delta)


def fetch_feeds(
    urls: Sequence[str],
    store: FeedStore,
    concurrency: int,
    client: Optional[httpx.Client] = None,
) -> FetchSummary:
    return FetchCoordinator(store, concurrency, client=client).run(urls)
