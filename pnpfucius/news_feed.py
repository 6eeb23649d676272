"""One-shot RSS/Atom reader for privacy news feeds."""

import re
import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass
from typing import Any

import httpx
from bs4 import BeautifulSoup

from pnpfucius import __version__
from pnpfucius.config import NewsConfig
from pnpfucius.logging import get_logger

log = get_logger(__name__)

_ATOM_NS = "{http://www.w3.org/2005/Atom}"


@dataclass
class NewsItem:
    """A single headline read from a feed."""

    title: str
    link: str = ""
    summary: str = ""
    source: str = ""
    published: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _clean_text(raw: str | None, limit: int = 500) -> str:
    """Strip markup and collapse whitespace."""
    if not raw:
        return ""
    text = BeautifulSoup(raw, "html.parser").get_text(" ")
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > limit:
        text = text[:limit].rstrip() + "..."
    return text


def _child_text(node: ET.Element, *tags: str) -> str:
    for tag in tags:
        child = node.find(tag)
        if child is not None and (child.text or "").strip():
            return child.text.strip()
    return ""


def parse_feed(xml_text: str, source: str = "") -> list[NewsItem]:
    """Parse RSS 2.0 or Atom text into news items.

    Raises:
        ValueError if the document is not well-formed XML
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ValueError(f"Invalid feed XML: {e}")

    items: list[NewsItem] = []
    channel = root.find("channel")
    channel_title = _child_text(channel if channel is not None else root, "title", f"{_ATOM_NS}title")
    feed_source = channel_title or source

    for node in root.iter("item"):
        title = _clean_text(_child_text(node, "title"), limit=300)
        if not title:
            continue
        items.append(
            NewsItem(
                title=title,
                link=_child_text(node, "link"),
                summary=_clean_text(_child_text(node, "description")),
                source=feed_source,
                published=_child_text(node, "pubDate"),
            )
        )

    for node in root.iter(f"{_ATOM_NS}entry"):
        title = _clean_text(_child_text(node, f"{_ATOM_NS}title"), limit=300)
        if not title:
            continue
        link_node = node.find(f"{_ATOM_NS}link")
        items.append(
            NewsItem(
                title=title,
                link=(link_node.get("href", "") if link_node is not None else ""),
                summary=_clean_text(_child_text(node, f"{_ATOM_NS}summary", f"{_ATOM_NS}content")),
                source=feed_source,
                published=_child_text(node, f"{_ATOM_NS}updated", f"{_ATOM_NS}published"),
            )
        )

    return items


class NewsFeedReader:
    """Read the configured feeds once; no polling."""

    def __init__(
        self,
        config: NewsConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.client = httpx.AsyncClient(
            timeout=config.timeout,
            follow_redirects=True,
            headers={"User-Agent": f"Pnpfucius/{__version__} (News Reader)"},
            transport=transport,
        )

    async def fetch(self) -> list[NewsItem]:
        """Fetch every feed, skipping ones that fail, de-duplicated by title."""
        seen: set[str] = set()
        items: list[NewsItem] = []
        for url in self.config.feeds:
            try:
                response = await self.client.get(url)
                response.raise_for_status()
                parsed = parse_feed(response.text, source=url)
            except (httpx.HTTPError, ValueError) as e:
                log.warning("Feed fetch failed", url=url, error=str(e))
                continue

            for item in parsed[: self.config.max_items_per_feed]:
                key = item.title.strip().lower()
                if key in seen:
                    continue
                seen.add(key)
                items.append(item)

        log.info("Fetched news", feeds=len(self.config.feeds), items=len(items))
        return items

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
