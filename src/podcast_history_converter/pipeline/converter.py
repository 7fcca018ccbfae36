from typing import List, Sequence, Tuple

from podcast_history_converter.core.errors import OpmlError
from podcast_history_converter.logging.manager import LoggerManager
from podcast_history_converter.matching.episodes import (
    DEFAULT_DURATION_TOLERANCE,
    match_episodes,
)
from podcast_history_converter.matching.feeds import (
    FeedMatchResult,
    MatchedFeedPair,
    match_feeds,
)
from podcast_history_converter.model.episode import MatchedEpisodePair
from podcast_history_converter.model.feed import FeedIdentity
from podcast_history_converter.model.result import FeedReport, RunReport
from podcast_history_converter.players.base import Player
from podcast_history_converter.utils.datetime_ops import get_utc_now_formatted


class ConverterPipeline:
    """Converts listening history from one player store into another.

    One run goes one way: OPML pairs are matched into feed pairs, each source
    feed is extracted and its episodes are matched against the destination
    feed, and the matched history is translated and injected into the
    destination working copy. Fatal problems (unusable OPML, broken stores) are
    raised before the injector runs; feed and episode problems only end up in
    the report.

    Attributes:
        source: Player the history is read from
        destination: Player whose working copy receives the history
        duration_tolerance: Seconds allowed by the title+duration episode rule
        title_fallback: Whether feeds may be paired by unique title
        dry_run: Match and report without touching the destination
    """

    def __init__(
        self,
        source: Player,
        destination: Player,
        logger_manager: LoggerManager,
        duration_tolerance: int = DEFAULT_DURATION_TOLERANCE,
        title_fallback: bool = True,
        dry_run: bool = False,
    ):
        self.source = source
        self.destination = destination
        self.duration_tolerance = duration_tolerance
        self.title_fallback = title_fallback
        self.dry_run = dry_run
        self.logger = logger_manager.get_logger("pipeline.ConverterPipeline")

    def match_feeds(
        self,
        source_opml: Sequence[FeedIdentity],
        destination_opml: Sequence[FeedIdentity],
    ) -> FeedMatchResult:
        """Pair OPML feeds and resolve them in both stores.

        Raises:
            OpmlError: If either feed list is empty
        """
        if not source_opml:
            raise OpmlError("Source OPML lists no feeds")
        if not destination_opml:
            raise OpmlError("Destination OPML lists no feeds")

        result = match_feeds(
            source_opml,
            destination_opml,
            self.source.list_feeds(),
            self.destination.list_feeds(),
            title_fallback=self.title_fallback,
        )
        self.logger.info(
            f"Matched {len(result.matched)} feeds, "
            f"{len(result.unmatched_source)} source and "
            f"{len(result.unmatched_destination)} destination feeds unmatched"
        )
        for skip in result.skips:
            self.logger.warning(f"Skipping feed: {skip}")
        return result

    def run(
        self,
        source_opml: Sequence[FeedIdentity],
        destination_opml: Sequence[FeedIdentity],
    ) -> RunReport:
        """Execute a full conversion.

        Args:
            source_opml: Feeds exported from the source app
            destination_opml: Feeds exported from the destination app

        Returns:
            RunReport with every matched, unmatched and skipped feed and episode
        """
        feeds = self.match_feeds(source_opml, destination_opml)

        report = RunReport(
            source_format=self.source.name,
            destination_format=self.destination.name,
            created_at=get_utc_now_formatted(),
            unmatched_source_feeds=sorted(feeds.unmatched_source),
            unmatched_destination_feeds=sorted(feeds.unmatched_destination),
            feed_skips=list(feeds.skips),
            dry_run=self.dry_run,
        )

        pairs: List[MatchedEpisodePair] = []
        for feed_pair in feeds.matched:
            feed_report, feed_episode_pairs = self._convert_feed(feed_pair)
            report.per_feed.append(feed_report)
            pairs.extend(feed_episode_pairs)
        report.matched_feeds = len(report.per_feed)

        if self.dry_run:
            self.logger.info(f"Dry run: {len(pairs)} episodes would be updated")
        else:
            self.destination.apply(pairs)

        self.logger.info(f"Conversion finished: {report.metrics}")
        return report

    def _convert_feed(
        self, feed_pair: MatchedFeedPair
    ) -> Tuple[FeedReport, List[MatchedEpisodePair]]:
        source_feed = feed_pair.source
        destination_feed = feed_pair.destination
        self.logger.info(f"Converting {source_feed.identity}")

        extraction = self.source.extract(source_feed.native_id)
        episodes = match_episodes(
            extraction.records,
            self.destination.list_episodes(destination_feed.native_id),
            duration_tolerance=self.duration_tolerance,
        )

        for record in episodes.unmatched_source:
            self.logger.info(f"No destination episode for {record.episode}")

        translated = [
            MatchedEpisodePair(
                source_history=pair.source_history.translated(),
                destination_native_id=pair.destination_native_id,
            )
            for pair in episodes.matched
        ]

        feed_report = FeedReport(
            feed=source_feed.identity,
            destination_feed=destination_feed.identity,
            matched_episodes=len(translated),
            unmatched_source_episodes=[r.episode for r in episodes.unmatched_source],
            unmatched_destination_episodes=[
                e.identity for e in episodes.unmatched_destination
            ],
            skips=list(extraction.skips),
        )
        self.logger.info(
            f"{source_feed.identity}: {feed_report.matched_episodes} matched, "
            f"{len(feed_report.unmatched_source_episodes)} source and "
            f"{len(feed_report.unmatched_destination_episodes)} destination "
            "episodes unmatched"
        )
        return feed_report, translated
