from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from podcast_history_converter.model.feed import FeedIdentity, FeedRecord
from podcast_history_converter.model.result import Skip


@dataclass(frozen=True)
class MatchedFeedPair:
    source: FeedRecord
    destination: FeedRecord


@dataclass
class FeedMatchResult:
    """Outcome of aligning two OPML feed lists.

    Attributes:
        matched: Pairs resolved in both stores, ordered by source feed URL
        unmatched_source: Source OPML feeds without a usable counterpart
        unmatched_destination: Destination OPML feeds without a usable counterpart
        skips: Feed-level problems (ambiguous titles, feeds missing from a store)
    """

    matched: List[MatchedFeedPair] = field(default_factory=list)
    unmatched_source: Set[FeedIdentity] = field(default_factory=set)
    unmatched_destination: Set[FeedIdentity] = field(default_factory=set)
    skips: List[Skip] = field(default_factory=list)


DUPLICATE_URL_REASON = "OPML lists this feed URL more than once"
SHARED_STORE_FEED_REASON = "several OPML feeds resolve to the same store feed"


def _dedupe(
    feeds: Iterable[FeedIdentity],
) -> Tuple[List[FeedIdentity], List[FeedIdentity]]:
    """Sort feeds and split off repeated URLs, keeping the first by sort order.

    Returns:
        Tuple of the unique feeds and the dropped repeats
    """
    seen_urls = set()
    unique = []
    duplicates = []
    for feed in sorted(feeds):
        if feed.feed_url and feed.feed_url in seen_urls:
            duplicates.append(feed)
            continue
        seen_urls.add(feed.feed_url)
        unique.append(feed)
    return unique, duplicates


def pair_identities(
    source_opml: Sequence[FeedIdentity],
    destination_opml: Sequence[FeedIdentity],
    title_fallback: bool = True,
) -> Tuple[List[Tuple[FeedIdentity, FeedIdentity]], List[Skip]]:
    """Pair OPML entries by normalized URL, then by unique title.

    Returns:
        Tuple of the identity pairs (ordered by source URL) and feed-level skips
        for repeated URLs and for title collisions that were left unmatched.
    """
    sources, source_duplicates = _dedupe(source_opml)
    destinations, destination_duplicates = _dedupe(destination_opml)

    pairs: List[Tuple[FeedIdentity, FeedIdentity]] = []
    skips: List[Skip] = [
        Skip.for_feed(feed, f"source OPML: {DUPLICATE_URL_REASON}")
        for feed in source_duplicates
    ]
    # In single OPML mode both sides share one list; report its repeats once
    if destination_opml is not source_opml:
        skips.extend(
            Skip.for_feed(feed, f"destination OPML: {DUPLICATE_URL_REASON}")
            for feed in destination_duplicates
        )

    # Exact URL match is authoritative
    by_url = {d.feed_url: d for d in destinations if d.feed_url}
    used: Set[FeedIdentity] = set()
    remaining_sources = []
    for source in sources:
        destination = by_url.get(source.feed_url) if source.feed_url else None
        if destination is not None and destination not in used:
            pairs.append((source, destination))
            used.add(destination)
        else:
            remaining_sources.append(source)

    if title_fallback:
        source_titles = Counter(s.title_key for s in sources if s.title_key)
        destination_titles = Counter(d.title_key for d in destinations if d.title_key)
        remaining_by_title = {
            d.title_key: d for d in destinations if d not in used and d.title_key
        }

        for source in remaining_sources:
            key = source.title_key
            if not key or key not in remaining_by_title:
                continue
            if source_titles[key] > 1 or destination_titles[key] > 1:
                skips.append(
                    Skip.for_feed(
                        source,
                        "title matches several feeds and no URL disambiguates it",
                    )
                )
                continue
            destination = remaining_by_title.pop(key)
            pairs.append((source, destination))
            used.add(destination)

    pairs.sort(key=lambda pair: pair[0].sort_key)
    return pairs, skips


class FeedIndex:
    """Lookup of a store's native feed table by normalized URL and unique title."""

    def __init__(self, feeds: Iterable[FeedRecord]):
        self._by_url: Dict[str, List[FeedRecord]] = {}
        self._by_title: Dict[str, List[FeedRecord]] = {}
        for record in feeds:
            if record.identity.feed_url:
                self._by_url.setdefault(record.identity.feed_url, []).append(record)
            if record.identity.title_key:
                self._by_title.setdefault(record.identity.title_key, []).append(record)

    def resolve(self, identity: FeedIdentity) -> Tuple[Optional[FeedRecord], str]:
        """Find the store row for an OPML identity.

        Returns:
            Tuple of the record (None if unresolved) and the reason when unresolved.
        """
        by_url = self._by_url.get(identity.feed_url, []) if identity.feed_url else []
        if len(by_url) == 1:
            return by_url[0], ""
        if len(by_url) > 1:
            return None, "feed URL appears several times in the store"

        by_title = self._by_title.get(identity.title_key, [])
        if len(by_title) == 1:
            return by_title[0], ""
        if len(by_title) > 1:
            return None, "feed title appears several times in the store"
        return None, "feed not found in the store"


def match_feeds(
    source_opml: Sequence[FeedIdentity],
    destination_opml: Sequence[FeedIdentity],
    source_feeds: Iterable[FeedRecord],
    destination_feeds: Iterable[FeedRecord],
    title_fallback: bool = True,
) -> FeedMatchResult:
    """Align source and destination feeds using the OPML lists as ground truth.

    Identity pairs come from the OPML lists alone; each side is then resolved to
    its own store's native feed row. A feed missing from its store is reported
    and left unmatched without affecting the other feeds. Pairs are one to one
    at the store level as well: when several pairs resolve to the same native
    feed on either side, all of them are skipped.

    Args:
        source_opml: Feeds exported from the source app
        destination_opml: Feeds exported from the destination app
        source_feeds: Native feed table of the source store
        destination_feeds: Native feed table of the destination store
        title_fallback: Whether to pair unique titles when URLs differ

    Returns:
        FeedMatchResult, identical for identical inputs in any order
    """
    pairs, skips = pair_identities(source_opml, destination_opml, title_fallback)
    source_index = FeedIndex(source_feeds)
    destination_index = FeedIndex(destination_feeds)

    result = FeedMatchResult(skips=skips)
    resolved: List[MatchedFeedPair] = []

    for source_identity, destination_identity in pairs:
        source_record, source_reason = source_index.resolve(source_identity)
        destination_record, destination_reason = destination_index.resolve(
            destination_identity
        )
        if source_record is None:
            result.skips.append(
                Skip.for_feed(source_identity, f"source store: {source_reason}")
            )
        if destination_record is None:
            result.skips.append(
                Skip.for_feed(
                    destination_identity, f"destination store: {destination_reason}"
                )
            )
        if source_record is None or destination_record is None:
            continue

        resolved.append(
            MatchedFeedPair(
                source=FeedRecord(source_identity, source_record.native_id),
                destination=FeedRecord(
                    destination_identity, destination_record.native_id
                ),
            )
        )

    source_claims = Counter(pair.source.native_id for pair in resolved)
    destination_claims = Counter(pair.destination.native_id for pair in resolved)
    for pair in resolved:
        if source_claims[pair.source.native_id] > 1:
            result.skips.append(
                Skip.for_feed(
                    pair.source.identity, f"source store: {SHARED_STORE_FEED_REASON}"
                )
            )
        elif destination_claims[pair.destination.native_id] > 1:
            result.skips.append(
                Skip.for_feed(
                    pair.destination.identity,
                    f"destination store: {SHARED_STORE_FEED_REASON}",
                )
            )
        else:
            result.matched.append(pair)

    paired_sources = {pair.source.identity for pair in result.matched}
    paired_destinations = {pair.destination.identity for pair in result.matched}
    result.unmatched_source = {
        f for f in _dedupe(source_opml)[0] if f not in paired_sources
    }
    result.unmatched_destination = {
        f for f in _dedupe(destination_opml)[0] if f not in paired_destinations
    }
    return result
