from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from pyrssmail.store import FeedStore  # noqa: E402


RSS_TWO_ITEMS = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0">
  <channel>
    <title>Example Blog</title>
    <link>https://example.org/</link>
    <description>Posts</description>
    <item>
      <title>Second post</title>
      <link>https://example.org/2</link>
      <guid>post-2</guid>
      <comments>https://example.org/2#comments</comments>
      <pubDate>Tue, 02 Jan 2024 10:00:00 +0000</pubDate>
    </item>
    <item>
      <title>First post</title>
      <link>https://example.org/1</link>
      <guid>post-1</guid>
      <pubDate>Mon, 01 Jan 2024 10:00:00 +0000</pubDate>
    </item>
  </channel>
</rss>
"""

ATOM_ONE_ENTRY = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://atom.example.org/"/>
  <id>urn:example:feed</id>
  <updated>2024-01-03T00:00:00Z</updated>
  <entry>
    <title>Entry one</title>
    <id>urn:example:entry:1</id>
    <link href="https://atom.example.org/1"/>
    <link rel="related" href="https://atom.example.org/related"/>
    <published>2024-01-01T12:00:00Z</published>
    <updated>2024-01-02T12:00:00Z</updated>
  </entry>
</feed>
"""


def rss_with_title(title: str) -> bytes:
    return RSS_TWO_ITEMS.replace(b"<title>First post</title>", f"<title>{title}</title>".encode("utf-8"))


@pytest.fixture
def store(tmp_path: Path) -> FeedStore:
    return FeedStore(str(tmp_path / "db" / "pyrssmail.db"))
