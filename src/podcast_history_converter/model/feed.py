from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_feed_url(url: Optional[str]) -> str:
    """Normalize a feed URL for identity comparison.

    Scheme, host and path are lower-cased, the trailing slash of the path is
    stripped and default ports and fragments are dropped. The query string is
    kept verbatim since some hosts serve different feeds per query.

    Example:
        >>> normalize_feed_url("HTTPS://Example.com:443/Feed/?fmt=Rss#top")
        'https://example.com/feed?fmt=Rss'
    """
    if not url:
        return ""

    url = url.strip()
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url.rstrip("/").lower()

    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        port = None
    if port and DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}:{port}"

    path = parts.path.lower().rstrip("/")
    return urlunsplit((scheme, host, path, parts.query, ""))


def normalize_title(title: Optional[str]) -> str:
    """Collapse whitespace and casefold a title for comparison."""
    if not title:
        return ""
    return " ".join(title.split()).casefold()


@dataclass(frozen=True)
class FeedIdentity:
    """Subscription identity as exported in OPML."""

    title: str
    feed_url: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "title", (self.title or "").strip())
        object.__setattr__(self, "feed_url", normalize_feed_url(self.feed_url))

    @property
    def title_key(self) -> str:
        return normalize_title(self.title)

    @property
    def sort_key(self) -> tuple:
        return (self.feed_url, self.title_key, self.title)

    def __lt__(self, other: "FeedIdentity") -> bool:
        return self.sort_key < other.sort_key

    def __str__(self) -> str:
        return f"'{self.title}' ({self.feed_url or 'no url'})"

    def to_dict(self) -> dict:
        return {"title": self.title, "feed_url": self.feed_url}


@dataclass(frozen=True)
class FeedRecord:
    """A feed row in one specific store."""

    identity: FeedIdentity
    native_id: Any
