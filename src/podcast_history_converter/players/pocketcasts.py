from pathlib import Path
from typing import Any, Dict, List, Union

from podcast_history_converter.db.schema import (
    PC_EPISODE_COLUMNS,
    PC_MODIFIED_COLUMNS,
    PC_PODCAST_COLUMNS,
    POCKETCASTS_SCHEMA,
    TABLE_PC_EPISODES,
    TABLE_PC_PODCASTS,
)
from podcast_history_converter.db.sqlite import DatabaseManager
from podcast_history_converter.db.working_copy import WorkingCopy, atomic_output
from podcast_history_converter.logging.manager import LoggerManager
from podcast_history_converter.model.episode import (
    EpisodeIdentity,
    EpisodeRecord,
    HistoryRecord,
    PlayingState,
)
from podcast_history_converter.model.feed import FeedIdentity, FeedRecord
from podcast_history_converter.model.result import Skip
from podcast_history_converter.players.base import Player
from podcast_history_converter.utils.datetime_ops import (
    from_millis,
    get_utc_now_millis,
    to_millis,
)

PLAYING_STATUS = {
    0: PlayingState.UNPLAYED,
    1: PlayingState.IN_PROGRESS,
    2: PlayingState.PLAYED,
}
PLAYING_STATUS_CODES = {state: code for code, state in PLAYING_STATUS.items()}

# episodes.episode_status value for media present on the device
EPISODE_STATUS_DOWNLOADED = 4


class PocketCasts(Player):
    """Pocket Casts database (a single SQLite file).

    Podcasts are keyed by uuid and carry no feed URL, so feeds resolve by title.
    Episodes are keyed by uuid and identified across apps by download_url.
    """

    name = "Pocket Casts"
    cli_name = "pocketcasts"

    def __init__(self, path: Path, logger_manager: LoggerManager):
        super().__init__(path, logger_manager)
        self.working_copy = WorkingCopy.from_file(self.path, suffix=".db")
        try:
            self.db = DatabaseManager(self.working_copy.path)
            self.db.require_schema(POCKETCASTS_SCHEMA)
        except Exception:
            self.working_copy.remove()
            raise
        self.logger.info(f"Opened {self.name} database {self.path}")

    def list_feeds(self) -> List[FeedRecord]:
        rows = self.db.select(TABLE_PC_PODCASTS, PC_PODCAST_COLUMNS)
        return [
            FeedRecord(FeedIdentity(title=title or ""), native_id=uuid)
            for uuid, title in rows
        ]

    def list_episode_history(self, feed_native_id: Any) -> List[Dict[str, Any]]:
        rows = self.db.select(
            TABLE_PC_EPISODES,
            PC_EPISODE_COLUMNS,
            condition="podcast_id = ?",
            params=(feed_native_id,),
        )
        return [dict(zip(PC_EPISODE_COLUMNS, row)) for row in rows]

    def history_from_row(self, row: Dict[str, Any]) -> Union[HistoryRecord, Skip]:
        identity = self._identity_from_row(row)

        state = PLAYING_STATUS.get(row["playing_status"])
        if state is None:
            return Skip.for_episode(
                identity, f"invalid playing status {row['playing_status']!r}"
            )

        position = max(int(row["played_up_to"] or 0), 0)
        if state is PlayingState.IN_PROGRESS and position == 0:
            state = PlayingState.UNPLAYED
        if state is PlayingState.UNPLAYED:
            # Leftover positions of unplayed episodes read as progress elsewhere
            position = 0

        return HistoryRecord(
            episode=identity,
            playback_position_seconds=position,
            state=state,
            is_archived=bool(row["archived"]),
            is_downloaded_locally=row["episode_status"] == EPISODE_STATUS_DOWNLOADED,
            date_added=from_millis(row["added_date"]),
            date_played=from_millis(row["last_playback_interaction_date"]),
        )

    def list_episodes(self, feed_native_id: Any) -> List[EpisodeRecord]:
        return [
            EpisodeRecord(self._identity_from_row(row), native_id=row["uuid"])
            for row in self.list_episode_history(feed_native_id)
        ]

    def update_history(self, episode_native_id: Any, record: HistoryRecord) -> bool:
        now = get_utc_now_millis()
        history_values = {
            "playing_status": PLAYING_STATUS_CODES[record.state],
            "played_up_to": record.playback_position_seconds,
            "archived": int(record.is_archived),
        }

        changed = 0
        for column in PC_MODIFIED_COLUMNS:
            value = history_values[column]
            # Stamp <column>_modified only when the value really changes
            changed += self.db.update_many(
                TABLE_PC_EPISODES,
                columns=[column, f"{column}_modified"],
                values=[(value, now, episode_native_id, value)],
                condition_columns="uuid",
                extra_condition=f"{column} IS NOT ?",
            )

        played_at = to_millis(record.date_played)
        if played_at is not None:
            changed += self.db.update_many(
                TABLE_PC_EPISODES,
                columns=["last_playback_interaction_date"],
                values=[(played_at, episode_native_id, played_at)],
                condition_columns="uuid",
                extra_condition="last_playback_interaction_date IS NOT ?",
            )

        return changed > 0

    def save(self, output_path: Path) -> None:
        with atomic_output(output_path, protected=self.path) as temp_path:
            self.db.backup_to(temp_path)
        self.logger.info(f"Saved {self.name} database to {output_path}")

    def close(self) -> None:
        try:
            self.db.close()
        finally:
            self.working_copy.remove()

    def _identity_from_row(self, row: Dict[str, Any]) -> EpisodeIdentity:
        duration = row["duration"]
        return EpisodeIdentity(
            title=row["title"] or "",
            guid_or_url=row["download_url"] or "",
            published_at=from_millis(row["published_date"]),
            duration_seconds=int(duration) if duration and duration > 0 else None,
        )
