from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional


SCHEMA_VERSION = 1


# -----------------------------
# Errors
# -----------------------------

class StoreError(Exception):
    """Any failure of the underlying database. Always fatal for a run."""


class UnknownVersion(StoreError):
    def __init__(self, version: int):
        super().__init__(f"unknown database version: {version}")
        self.version = version


# -----------------------------
# Utilities
# -----------------------------

def to_iso_dt(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def from_iso_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# -----------------------------
# Data shapes
# -----------------------------

@dataclass(frozen=True)
class Feed:
    url: str
    link: str
    title: str
    etag: Optional[str] = None
    last_modified: Optional[str] = None


@dataclass(frozen=True)
class Item:
    feed_url: str
    guid: str
    link: str
    title: str
    pub_date: datetime  # UTC
    comments_link: Optional[str] = None
    is_read: bool = False


# -----------------------------
# SQLite schema
# -----------------------------

SCHEMA_SQL = """
BEGIN;

PRAGMA user_version = 1;

CREATE TABLE feed (
  url           TEXT CHECK(TYPEOF(url) = 'text'),
  link          TEXT CHECK(TYPEOF(link) = 'text'),
  title         TEXT CHECK(TYPEOF(title) = 'text'),
  etag          TEXT CHECK(TYPEOF(etag) = 'text' OR TYPEOF(etag) = 'null'),
  last_modified TEXT CHECK(TYPEOF(last_modified) = 'text' OR TYPEOF(last_modified) = 'null'),

  PRIMARY KEY (url)
);

CREATE TABLE item (
  feed_url      TEXT CHECK(TYPEOF(feed_url) = 'text'),
  guid          TEXT CHECK(TYPEOF(guid) = 'text'),
  link          TEXT CHECK(TYPEOF(link) = 'text'),
  comments_link TEXT CHECK(TYPEOF(comments_link) = 'text' OR TYPEOF(comments_link) = 'null'),
  title         TEXT CHECK(TYPEOF(title) = 'text'),
  pub_date      TEXT CHECK(DATETIME(pub_date) IS NOT NULL),
  is_read       INTEGER CHECK(is_read = 0 OR is_read = 1),

  PRIMARY KEY (feed_url, guid),
  FOREIGN KEY (feed_url) REFERENCES feed(url)
);

CREATE INDEX idx_item_unread ON item(feed_url, is_read, pub_date);

COMMIT;
"""

ITEM_COLUMNS = "feed_url, guid, link, comments_link, title, pub_date, is_read"


# -----------------------------
# SQLite store / API
# -----------------------------

class FeedStore:
    """
    Feeds and items in one SQLite file.

    Safe to share between threads: every public call runs as its own
    statement under a single lock, on a fresh connection.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._init_db()

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                conn = sqlite3.connect(self.db_path)
            except sqlite3.Error as e:
                raise StoreError(f"failed to open database {self.db_path}: {e}") from e
            conn.row_factory = sqlite3.Row
            try:
                conn.execute("PRAGMA foreign_keys = ON;")
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(f"database error: {e}") from e
            finally:
                conn.close()

    def _init_db(self) -> None:
        parent = os.path.dirname(os.path.abspath(self.db_path))
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            raise StoreError(f"failed to create database directory {parent}: {e}") from e

        with self._conn() as conn:
            version = int(conn.execute("PRAGMA user_version").fetchone()[0])
            if version == 0:
                conn.executescript(SCHEMA_SQL)
            elif version != SCHEMA_VERSION:
                raise UnknownVersion(version)

    @property
    def schema_version(self) -> int:
        with self._conn() as conn:
            return int(conn.execute("PRAGMA user_version").fetchone()[0])

    # ---- Feeds ----

    def upsert_feed(self, feed: Feed) -> None:
        # Full replace: a response without caching headers clears them.
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO feed (url, link, title, etag, last_modified)
                VALUES (?,?,?,?,?)
                ON CONFLICT (url) DO UPDATE SET
                  link = excluded.link,
                  title = excluded.title,
                  etag = excluded.etag,
                  last_modified = excluded.last_modified
                """,
                (feed.url, feed.link, feed.title, feed.etag, feed.last_modified),
            )

    def get_feed_by_url(self, url: str) -> Optional[Feed]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT url, link, title, etag, last_modified FROM feed WHERE url = ?",
                (url,),
            ).fetchone()
            if row is None:
                return None
            return self._feed_from_row(row)

    def list_feeds(self) -> List[Feed]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT url, link, title, etag, last_modified FROM feed ORDER BY url"
            ).fetchall()
            return [self._feed_from_row(r) for r in rows]

    @staticmethod
    def _feed_from_row(row: sqlite3.Row) -> Feed:
        return Feed(
            url=str(row["url"]),
            link=str(row["link"]),
            title=str(row["title"]),
            etag=row["etag"],
            last_modified=row["last_modified"],
        )

    # ---- Items ----

    def upsert_item(self, item: Item) -> None:
        # is_read is only written on insert; an existing row keeps its read state.
        with self._conn() as conn:
            conn.execute(
                f"""
                INSERT INTO item ({ITEM_COLUMNS})
                VALUES (?,?,?,?,?,?,0)
                ON CONFLICT (feed_url, guid) DO UPDATE SET
                  link = excluded.link,
                  title = excluded.title,
                  pub_date = excluded.pub_date
                """,
                (
                    item.feed_url,
                    item.guid,
                    item.link,
                    item.comments_link,
                    item.title,
                    to_iso_dt(item.pub_date),
                ),
            )

    def get_unread_items(self, feed_url: str) -> List[Item]:
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT {ITEM_COLUMNS}
                FROM item
                WHERE feed_url = ? AND is_read = 0
                ORDER BY pub_date ASC
                """,
                (feed_url,),
            ).fetchall()
            return [self._item_from_row(r) for r in rows]

    def count_unread(self) -> int:
        with self._conn() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM item WHERE is_read = 0").fetchone()[0])

    def mark_all_items_read(self, feed_urls: Optional[Iterable[str]] = None) -> int:
        """
        Mark items read. With feed_urls=None every stored item is marked,
        including items of feeds no longer configured; otherwise only items
        belonging to the given feeds are touched.
        """
        with self._conn() as conn:
            if feed_urls is None:
                cur = conn.execute("UPDATE item SET is_read = 1 WHERE is_read = 0")
                return int(cur.rowcount)

            changed = 0
            for url in dict.fromkeys(feed_urls):
                cur = conn.execute(
                    "UPDATE item SET is_read = 1 WHERE feed_url = ? AND is_read = 0",
                    (url,),
                )
                changed += int(cur.rowcount)
            return changed

    @staticmethod
    def _item_from_row(row: sqlite3.Row) -> Item:
        return Item(
            feed_url=str(row["feed_url"]),
            guid=str(row["guid"]),
            link=str(row["link"]),
            comments_link=row["comments_link"],
            title=str(row["title"]),
            pub_date=from_iso_dt(str(row["pub_date"])),
            is_read=bool(row["is_read"]),
        )
