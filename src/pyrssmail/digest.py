from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import AppConfig
from .store import Feed, FeedStore, Item


logger = logging.getLogger(__name__)

# The ".html" suffix turns on autoescaping.
MAIL_TEMPLATE_NAME = "mail.html"


class DeliveryError(Exception):
    pass


@dataclass
class FeedDigest:
    feed: Feed
    items: List[Item] = field(default_factory=list)


@dataclass
class Digest:
    subject: str
    feeds: List[FeedDigest] = field(default_factory=list)

    @property
    def item_count(self) -> int:
        return sum(len(f.items) for f in self.feeds)


def default_subject(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"pyrssmail for {now.strftime('%c')}"


def build_digest(store: FeedStore, feed_urls: Sequence[str], subject: str) -> Digest:
    """Pair each configured feed with its unread items, in config order."""
    digest = Digest(subject=subject)
    for url in feed_urls:
        feed = store.get_feed_by_url(url)
        if feed is None:
            # Never fetched successfully.
            logger.debug("Skipping %s: not in database", url)
            continue
        digest.feeds.append(FeedDigest(feed=feed, items=store.get_unread_items(url)))
    return digest


def render_digest(digest: Digest) -> str:
    env = Environment(
        loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
        autoescape=select_autoescape(["html"]),
    )
    template = env.get_template(MAIL_TEMPLATE_NAME)
    return template.render(subject=digest.subject, feeds=digest.feeds)


def build_message(digest: Digest, html: str, from_email: str, to_email: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = digest.subject
    msg["From"] = from_email
    msg["To"] = to_email
    msg.set_content(f"{digest.item_count} unread item(s). View this message as HTML.")
    msg.add_alternative(html, subtype="html")
    return msg


def send_message(message: EmailMessage, sendmail_command: Sequence[str]) -> None:
    try:
        proc = subprocess.run(
            list(sendmail_command),
            input=message.as_bytes(),
            capture_output=True,
            check=False,
        )
    except OSError as e:
        raise DeliveryError(f"sendmail error: {e}") from e
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        raise DeliveryError(f"sendmail error: exit status {proc.returncode}: {stderr}")


def mail_digest(
    store: FeedStore,
    config: AppConfig,
    dry: bool = False,
    subject: Optional[str] = None,
    send: Callable[[EmailMessage, Sequence[str]], None] = send_message,
    out: Callable[[str], None] = print,
) -> Digest:
    """
    Build, render and deliver the digest of unread items.

    Items are marked read only after `send` returns. A dry run prints the
    message instead and leaves every item unread.
    """
    digest = build_digest(store, config.feeds, subject or default_subject())
    html = render_digest(digest)
    message = build_message(digest, html, config.from_email, config.to_email)

    if dry:
        out(message.as_string())
        return digest

    logger.info("Sending mail with %d unread item(s)...", digest.item_count)
    send(message, config.sendmail_command)
    marked = store.mark_all_items_read(config.feeds)
    logger.info("Marked %d item(s) read", marked)
    return digest
