from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from podcast_history_converter.model.episode import EpisodeIdentity, HistoryRecord
from podcast_history_converter.model.feed import FeedIdentity


class SkipLevel(Enum):
    FEED = "feed"
    EPISODE = "episode"


@dataclass(frozen=True)
class Skip:
    """A recoverable problem, recorded with enough identity for manual follow-up."""

    level: SkipLevel
    reason: str
    title: str = ""
    url: str = ""

    @classmethod
    def for_feed(cls, feed: FeedIdentity, reason: str) -> "Skip":
        return cls(SkipLevel.FEED, reason, feed.title, feed.feed_url)

    @classmethod
    def for_episode(cls, episode: EpisodeIdentity, reason: str) -> "Skip":
        return cls(SkipLevel.EPISODE, reason, episode.title, episode.guid_or_url)

    def __str__(self) -> str:
        return f"[{self.level.value}] '{self.title}' ({self.url or 'no url'}): {self.reason}"

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "reason": self.reason,
            "title": self.title,
            "url": self.url,
        }


@dataclass
class ExtractionResult:
    """Records pulled from one feed of a source store."""

    records: List[HistoryRecord] = field(default_factory=list)
    skips: List[Skip] = field(default_factory=list)


@dataclass
class FeedReport:
    """Per-feed outcome of a conversion run."""

    feed: FeedIdentity
    destination_feed: FeedIdentity
    matched_episodes: int = 0
    unmatched_source_episodes: List[EpisodeIdentity] = field(default_factory=list)
    unmatched_destination_episodes: List[EpisodeIdentity] = field(
        default_factory=list
    )
    skips: List[Skip] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "feed": self.feed.to_dict(),
            "destination_feed": self.destination_feed.to_dict(),
            "matched_episodes": self.matched_episodes,
            "unmatched_source_episodes": [
                e.to_dict() for e in self.unmatched_source_episodes
            ],
            "unmatched_destination_episodes": [
                e.to_dict() for e in self.unmatched_destination_episodes
            ],
            "skips": [s.to_dict() for s in self.skips],
        }


@dataclass
class RunReport:
    """Container for the outcome of one conversion run.

    Attributes:
        source_format: Name of the source player format
        destination_format: Name of the destination player format
        created_at: Timestamp of report creation
        matched_feeds: Number of feed pairs matched and resolved in both stores
        unmatched_source_feeds: Source OPML feeds without a destination counterpart
        unmatched_destination_feeds: Destination OPML feeds without a source counterpart
        feed_skips: Feed-level recoverable problems
        per_feed: Episode outcomes per matched feed
        dry_run: Whether the destination store was left untouched
    """

    source_format: str
    destination_format: str
    created_at: str
    matched_feeds: int = 0
    unmatched_source_feeds: List[FeedIdentity] = field(default_factory=list)
    unmatched_destination_feeds: List[FeedIdentity] = field(default_factory=list)
    feed_skips: List[Skip] = field(default_factory=list)
    per_feed: List[FeedReport] = field(default_factory=list)
    dry_run: bool = False

    @property
    def metrics(self) -> Dict[str, int]:
        return {
            "matched_feeds": self.matched_feeds,
            "unmatched_source_feeds": len(self.unmatched_source_feeds),
            "unmatched_destination_feeds": len(self.unmatched_destination_feeds),
            "matched_episodes": sum(f.matched_episodes for f in self.per_feed),
            "unmatched_source_episodes": sum(
                len(f.unmatched_source_episodes) for f in self.per_feed
            ),
            "unmatched_destination_episodes": sum(
                len(f.unmatched_destination_episodes) for f in self.per_feed
            ),
            "skips": len(self.feed_skips)
            + sum(len(f.skips) for f in self.per_feed),
        }

    def feed_report(self, feed_url: str) -> Optional[FeedReport]:
        """Look up the report of a matched feed by its source feed URL."""
        for report in self.per_feed:
            if report.feed.feed_url == feed_url:
                return report
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_format": self.source_format,
            "destination_format": self.destination_format,
            "created_at": self.created_at,
            "dry_run": self.dry_run,
            "matched_feeds": self.matched_feeds,
            "unmatched_source_feeds": [f.to_dict() for f in self.unmatched_source_feeds],
            "unmatched_destination_feeds": [
                f.to_dict() for f in self.unmatched_destination_feeds
            ],
            "feed_skips": [s.to_dict() for s in self.feed_skips],
            "per_feed": [f.to_dict() for f in self.per_feed],
            "metrics": self.metrics,
        }
