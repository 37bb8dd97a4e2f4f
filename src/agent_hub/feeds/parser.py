"""RSS/Atom and HTML listing parsers producing newest-first snapshots."""

from __future__ import annotations

import hashlib
import json
import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from defusedxml import DefusedXmlException, ElementTree

from agent_hub.errors import FeedParseError
from agent_hub.feeds.models import FeedItem, FeedSnapshot

UNKNOWN_PUBLISHED_AT = datetime(1970, 1, 1, tzinfo=UTC)
DEFAULT_LINK_PATTERN = r"/news/"
_URL_DATE_RE = re.compile(r"/(\d{4})/(\d{2})/(\d{2})(?:/|$)")


def parse_feed(raw_xml: str, feed_url: str) -> FeedSnapshot:
    """Parse RSS 2.0 or Atom; a document with zero items is a valid empty snapshot."""

    try:
        root = ElementTree.fromstring(raw_xml)
    except ElementTree.ParseError as error:
        raise FeedParseError(message=f"Invalid RSS/Atom XML from {feed_url}") from error
    except DefusedXmlException as error:
        raise FeedParseError(
            message=f"Feed from {feed_url} uses forbidden XML constructs: {error}",
        ) from error

    root_name = _local_name(root.tag)
    if root_name == "rss":
        return _parse_rss(root, feed_url)
    if root_name == "feed":
        return _parse_atom(root, feed_url)

    # Best effort: some feeds omit top-level conventions.
    channel = root.find(".//channel")
    if channel is not None or root.findall(".//item"):
        return _parse_rss(channel if channel is not None else root, feed_url)
    if any(_local_name(element.tag) == "entry" for element in root.iter()):
        return _parse_atom(root, feed_url)

    raise FeedParseError(
        message=f"Unsupported feed format from {feed_url}",
        code="unsupported_feed_format",
    )


def parse_html_listing(
    html: str,
    *,
    page_url: str,
    link_pattern: str | None = None,
    base_url: str | None = None,
    max_items: int | None = None,
) -> FeedSnapshot:
    """Treat article links on a listing page as feed items, in page order."""

    pattern = re.compile(link_pattern or DEFAULT_LINK_PATTERN)
    soup = BeautifulSoup(html, "html.parser")

    items: list[FeedItem] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        title = " ".join(anchor.get_text(" ").split())
        if not title or not pattern.search(href):
            continue
        url = urljoin(base_url or page_url, href)
        if url in seen:
            continue
        seen.add(url)
        items.append(
            FeedItem(
                identifier=url,
                title=title,
                body="",
                link=url,
                published_at=_date_from_url(href),
            ),
        )
        if max_items is not None and len(items) >= max_items:
            break
    page_title = soup.title.get_text(strip=True) if soup.title is not None else ""
    return FeedSnapshot(title=page_title or None, items=items)


def _parse_rss(root: ElementTree.Element, feed_url: str) -> FeedSnapshot:
    channel = root.find("channel")
    container = channel if channel is not None else root
    items: list[FeedItem] = []
    for item in container:
        if _local_name(item.tag) != "item":
            continue
        title = _child_text(item, "title") or "Untitled"
        link = _child_text(item, "link") or ""
        raw_pub_date = _child_text(item, "pubDate")
        items.append(
            FeedItem(
                identifier=_build_identifier(
                    feed_url,
                    _child_text(item, "guid"),
                    link,
                    title,
                    raw_pub_date,
                ),
                title=title,
                body=_child_text(item, "description") or _child_text(item, "encoded") or "",
                link=link,
                published_at=_parse_datetime(raw_pub_date),
            ),
        )
    return FeedSnapshot(title=_child_text(container, "title"), items=items)


def _parse_atom(root: ElementTree.Element, feed_url: str) -> FeedSnapshot:
    items: list[FeedItem] = []
    for entry in root.iter():
        if _local_name(entry.tag) != "entry":
            continue
        title = _child_text(entry, "title") or "Untitled"
        link = _atom_link(entry) or ""
        raw_published_at = _child_text(entry, "published") or _child_text(entry, "updated")
        items.append(
            FeedItem(
                identifier=_build_identifier(
                    feed_url,
                    _child_text(entry, "id"),
                    link,
                    title,
                    raw_published_at,
                ),
                title=title,
                body=_child_text(entry, "summary") or _child_text(entry, "content") or "",
                link=link,
                published_at=_parse_datetime(raw_published_at),
            ),
        )
    return FeedSnapshot(title=_child_text(root, "title"), items=items)


def _atom_link(entry: ElementTree.Element) -> str | None:
    fallback: str | None = None
    for child in entry:
        if _local_name(child.tag) != "link":
            continue
        href = child.attrib.get("href", "").strip()
        if not href:
            continue
        rel = child.attrib.get("rel", "").strip().lower()
        if not rel or rel == "alternate":
            return href
        fallback = fallback or href
    return fallback


def _child_text(element: ElementTree.Element, name: str) -> str | None:
    target = name.lower()
    for child in element:
        if _local_name(child.tag) != target:
            continue
        if child.text and child.text.strip():
            return child.text.strip()
        full_text = "".join(child.itertext()).strip()
        if full_text:
            return full_text
    return None


def _local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    return tag.lower()


def _parse_datetime(raw_value: str | None) -> datetime:
    if not raw_value:
        return UNKNOWN_PUBLISHED_AT

    try:
        parsed = parsedate_to_datetime(raw_value)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    except (TypeError, ValueError):
        pass

    try:
        iso = datetime.fromisoformat(raw_value)
    except ValueError:
        return UNKNOWN_PUBLISHED_AT
    if iso.tzinfo is None:
        return iso.replace(tzinfo=UTC)
    return iso.astimezone(UTC)


def _date_from_url(url: str) -> datetime:
    match = _URL_DATE_RE.search(url)
    if match is None:
        return UNKNOWN_PUBLISHED_AT
    try:
        return datetime(int(match[1]), int(match[2]), int(match[3]), tzinfo=UTC)
    except ValueError:
        return UNKNOWN_PUBLISHED_AT


def _build_identifier(
    feed_url: str,
    explicit_id: str | None,
    link: str,
    title: str,
    raw_published_at: str | None,
) -> str:
    """Explicit guid/id, else permalink, else a hash stable across fetches."""

    if explicit_id and explicit_id.strip():
        return explicit_id.strip()
    if link:
        return link
    raw = json.dumps(
        {
            "feed_url": feed_url,
            "title": title,
            "raw_published_at": (raw_published_at or "").strip(),
        },
        sort_keys=True,
        ensure_ascii=True,
    )
    digest = hashlib.sha1(raw.encode("utf-8"), usedforsecurity=False).hexdigest()  # noqa: S324
    return f"generated:{digest}"
