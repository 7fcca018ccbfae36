from abc import ABC, abstractmethod
from pathlib import Path
from types import TracebackType
from typing import Any, Dict, Iterable, List, Optional, Set, Type, Union

from podcast_history_converter.logging.manager import LoggerManager
from podcast_history_converter.model.episode import (
    EpisodeRecord,
    HistoryRecord,
    MatchedEpisodePair,
)
from podcast_history_converter.model.feed import FeedRecord
from podcast_history_converter.model.result import ExtractionResult, Skip


class Player(ABC):
    """Base interface for a podcast player's store format.

    Every format can act as a source (list_feeds, list_episode_history, extract)
    and as a destination (list_feeds, list_episodes, update_history, apply,
    save). Stores are always opened through working copies, so the files given
    to the constructor are never modified.
    """

    #: Human readable format name
    name: str = ""
    #: Name used on the command line
    cli_name: str = ""

    def __init__(self, path: Path, logger_manager: LoggerManager):
        self.path = Path(path)
        self.logger = logger_manager.get_logger(f"players.{self.__class__.__name__}")
        self._extractions: Dict[Any, ExtractionResult] = {}

    def __enter__(self) -> "Player":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()

    @abstractmethod
    def list_feeds(self) -> List[FeedRecord]:
        """Native feed table as FeedRecords."""
        pass

    @abstractmethod
    def list_episode_history(self, feed_native_id: Any) -> List[Dict[str, Any]]:
        """Raw episode rows of one feed in the format's native shape."""
        pass

    @abstractmethod
    def history_from_row(self, row: Dict[str, Any]) -> Union[HistoryRecord, Skip]:
        """Decode one native row into the common model, or explain why not."""
        pass

    @abstractmethod
    def list_episodes(self, feed_native_id: Any) -> List[EpisodeRecord]:
        """Episode rows of one feed with their native ids, for matching."""
        pass

    @abstractmethod
    def update_history(self, episode_native_id: Any, record: HistoryRecord) -> bool:
        """Overwrite the history columns of one episode row.

        Returns:
            bool: Whether anything changed
        """
        pass

    @abstractmethod
    def save(self, output_path: Path) -> None:
        """Persist the working copy to output_path."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def recompute_derived(self, episode_native_ids: Set[Any]) -> None:
        """Bring cached aggregate fields back in line after an update batch."""
        return None

    def extract(self, feed_native_id: Any) -> ExtractionResult:
        """Pull the history of every episode in a feed.

        Rows without any recoverable identity, or with encodings the format
        doesn't define, are returned as episode-level skips. The result is
        cached per feed, so one source can feed several destinations.
        """
        if feed_native_id in self._extractions:
            return self._extractions[feed_native_id]

        result = ExtractionResult()
        for row in self.list_episode_history(feed_native_id):
            decoded = self.history_from_row(row)
            if isinstance(decoded, Skip):
                self.logger.warning(f"Skipping episode row: {decoded}")
                result.skips.append(decoded)
                continue
            if not decoded.episode.is_identifiable:
                skip = Skip.for_episode(
                    decoded.episode, "episode has neither guid/url nor title"
                )
                self.logger.warning(f"Skipping episode row: {skip}")
                result.skips.append(skip)
                continue
            result.records.append(decoded)
        self._extractions[feed_native_id] = result
        return result

    def apply(self, pairs: Iterable[MatchedEpisodePair]) -> "Player":
        """Write matched history into the working copy.

        Only rows named by destination_native_id are touched and no rows are
        created or deleted. Applying the same pairs again is a no-op.
        """
        self._extractions.clear()
        touched = set()
        changed = 0
        for pair in pairs:
            if self.update_history(pair.destination_native_id, pair.source_history):
                changed += 1
            touched.add(pair.destination_native_id)

        if touched:
            self.recompute_derived(touched)
        self.logger.info(f"Updated {changed} of {len(touched)} matched episodes")
        return self
