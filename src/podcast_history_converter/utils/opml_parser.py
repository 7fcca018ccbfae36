import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Iterator, List

from podcast_history_converter.core.errors import OpmlError
from podcast_history_converter.model.feed import FeedIdentity


def iter_feed_outlines(body: ET.Element) -> Iterator[FeedIdentity]:
    """Yield every outline with an xmlUrl, at any nesting depth.

    Podcast apps export either a flat list or feeds grouped under category
    outlines; the category outlines themselves carry no xmlUrl.
    """
    for outline in body.iter("outline"):
        url = outline.get("xmlUrl")
        if url:
            yield FeedIdentity(
                title=outline.get("text") or outline.get("title") or "",
                feed_url=url,
            )


def parse_opml_file(path: Path) -> List[FeedIdentity]:
    """Parse an OPML subscription export.

    Args:
        path: Path to OPML file

    Returns:
        FeedIdentity list in document order

    Raises:
        OpmlError: If the file is missing, unparsable or lists no feeds
    """
    path = Path(path)
    try:
        root = ET.parse(path).getroot()
    except FileNotFoundError as e:
        raise OpmlError(f"OPML file not found: {path}") from e
    except ET.ParseError as e:
        raise OpmlError(f"Invalid OPML in {path}: {e}") from e

    body = root.find("body")
    if body is None:
        raise OpmlError(f"OPML file {path} has no <body>")

    feeds = list(iter_feed_outlines(body))
    if not feeds:
        raise OpmlError(f"No feeds found in OPML file: {path}")
    return feeds
