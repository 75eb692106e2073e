from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from .config import AppConfig, ConfigError, load_config, write_example_config
from .digest import DeliveryError, mail_digest
from .fetch import fetch_feeds
from .logging_utils import setup_logging
from .store import FeedStore, StoreError


logger = logging.getLogger(__name__)

DEFAULT_CONFIG = os.path.expanduser("~/.config/pyrssmail/pyrssmail.yaml")
DEFAULT_DATABASE = os.path.expanduser("~/.cache/pyrssmail/pyrssmail.db")


# -----------------------------
# CLI
# -----------------------------

def cmd_fetch(args: argparse.Namespace, config: AppConfig, store: FeedStore) -> int:
    s = fetch_feeds(config.feeds, store, config.concurrency)
    logger.info(
        "Feeds: %d total, %d fetched, %d not modified, %d failed; %d item(s) seen",
        s.feeds_total,
        s.feeds_fetched,
        s.feeds_not_modified,
        s.feeds_failed,
        s.items_seen,
    )
    logger.info("Database holds %d feed(s) with %d unread item(s)", len(store.list_feeds()), store.count_unread())
    # Per-feed failures are only visible in the log.
    return 0


def cmd_mail(args: argparse.Namespace, config: AppConfig, store: FeedStore) -> int:
    mail_digest(store, config, dry=args.dry)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pyrssmail", description="Fetch RSS/Atom feeds and mail the unread items")
    p.add_argument("--config", default=DEFAULT_CONFIG, help=f"Path to YAML config (default: {DEFAULT_CONFIG})")
    p.add_argument("--database", default=DEFAULT_DATABASE, help=f"Path to sqlite DB (default: {DEFAULT_DATABASE})")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = p.add_subparsers(dest="cmd", required=True)

    p_fetch = sub.add_parser("fetch", help="Fetch all configured feeds into the DB")
    p_fetch.set_defaults(func=cmd_fetch)

    p_mail = sub.add_parser("mail", help="Mail unread items and mark them read")
    p_mail.add_argument("--dry", action="store_true", help="Print email instead of sending it")
    p_mail.set_defaults(func=cmd_mail)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if write_example_config(args.config):
            print(f"Wrote example config to {args.config}", file=sys.stderr)
        config = load_config(args.config)
        setup_logging("DEBUG" if args.verbose else config.logging.level)
        store = FeedStore(args.database)
        return args.func(args, config, store)
    except (ConfigError, StoreError, DeliveryError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
