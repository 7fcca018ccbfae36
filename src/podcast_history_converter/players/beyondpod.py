import struct
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

from podcast_history_converter.core.errors import StoreError
from podcast_history_converter.db.schema import (
    BEYONDPOD_SCHEMA,
    BP_DB_MEMBER,
    BP_HISTORY_MEMBER,
    BP_TRACK_COLUMNS,
    TABLE_BP_FEEDS,
    TABLE_BP_TRACKS,
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
from podcast_history_converter.utils.datetime_ops import from_millis

# Item history flags
HISTORY_SEEN = 64
HISTORY_PLAYED = 65

# tracks.playedtime for a track without a resume position
NO_POSITION = -1

_LENGTH = struct.Struct(">H")
_DATA = struct.Struct(">I")

ItemHistory = Dict[str, Dict[str, int]]


def iter_history_tokens(data: bytes) -> Iterator[Tuple[str, int]]:
    """Decode (string, u32) tokens from the item history file.

    Each token is a big-endian u16 byte length, that many UTF-8 bytes and a
    big-endian u32 data word.
    """
    offset = 0
    while offset < len(data):
        if offset + _LENGTH.size > len(data):
            raise StoreError("Truncated item history: incomplete token length")
        (length,) = _LENGTH.unpack_from(data, offset)
        start = offset + _LENGTH.size
        end = start + length
        if end + _DATA.size > len(data):
            raise StoreError("Truncated item history: incomplete token")
        try:
            string = data[start:end].decode("utf-8")
        except UnicodeDecodeError as e:
            raise StoreError(f"Corrupt item history token: {e}") from e
        (value,) = _DATA.unpack_from(data, end)
        offset = end + _DATA.size
        yield string, value


def parse_item_history(data: bytes) -> ItemHistory:
    """Parse the item history into {feed id: {track id: flags}}.

    A feed token carries the number of track tokens that follow it. Order is
    preserved so an unchanged history serializes back to the same bytes.
    """
    history: ItemHistory = {}
    tokens = iter_history_tokens(data)
    for feed_id, count in tokens:
        entries = history.setdefault(feed_id, {})
        for _ in range(count):
            token = next(tokens, None)
            if token is None:
                raise StoreError(
                    f"Truncated item history: feed {feed_id} announces {count} tracks"
                )
            track_id, flags = token
            entries[track_id] = flags
    return history


def _write_token(out: bytearray, string: str, data: int) -> None:
    encoded = string.encode("utf-8")
    out += _LENGTH.pack(len(encoded))
    out += encoded
    out += _DATA.pack(data)


def serialize_item_history(history: ItemHistory) -> bytes:
    out = bytearray()
    for feed_id, entries in history.items():
        _write_token(out, feed_id, len(entries))
        for track_id, flags in entries.items():
            _write_token(out, track_id, flags)
    return bytes(out)


class BeyondPod(Player):
    """BeyondPod backup archive.

    The archive holds the SQLite database and a binary item history. Both
    record whether a track was played; the database also holds the position.
    Tracks are keyed by (parentfeedid, orgrssitemid).
    """

    name = "BeyondPod"
    cli_name = "beyondpod"

    def __init__(self, path: Path, logger_manager: LoggerManager):
        super().__init__(path, logger_manager)
        self.archive = self._open_archive()
        self.working_copy: Optional[WorkingCopy] = None
        try:
            with self.archive.open(BP_DB_MEMBER) as reader:
                self.working_copy = WorkingCopy.from_reader(reader, suffix=".db")
            self.db = DatabaseManager(self.working_copy.path)
            self.db.require_schema(BEYONDPOD_SCHEMA)

            if BP_HISTORY_MEMBER in self.archive.namelist():
                self.history = parse_item_history(self.archive.read(BP_HISTORY_MEMBER))
            else:
                self.logger.warning(f"{self.path} has no item history member")
                self.history = {}
        except Exception:
            self.archive.close()
            if self.working_copy is not None:
                self.working_copy.remove()
            raise
        self.logger.info(f"Opened {self.name} backup {self.path}")

    def _open_archive(self) -> zipfile.ZipFile:
        try:
            archive = zipfile.ZipFile(self.path)
        except FileNotFoundError as e:
            raise StoreError(f"Store file not found: {self.path}") from e
        except zipfile.BadZipFile as e:
            raise StoreError(f"Not a BeyondPod backup archive: {self.path}: {e}") from e

        if BP_DB_MEMBER not in archive.namelist():
            archive.close()
            raise StoreError(f"{self.path} has no {BP_DB_MEMBER} member")
        return archive

    def _history_entries(self, feed_id: str, create: bool = False) -> Optional[Dict[str, int]]:
        # Feed ids are UUIDs; compare them case-insensitively
        for key, entries in self.history.items():
            if key.lower() == feed_id.lower():
                return entries
        if create:
            return self.history.setdefault(feed_id, {})
        return None

    def list_feeds(self) -> List[FeedRecord]:
        rows = self.db.select(TABLE_BP_FEEDS, ["feedid", "name", "url"])
        return [
            FeedRecord(FeedIdentity(title=name or "", feed_url=url or ""), native_id=feedid)
            for feedid, name, url in rows
        ]

    def list_episode_history(self, feed_native_id: Any) -> List[Dict[str, Any]]:
        rows = self.db.select(
            TABLE_BP_TRACKS,
            BP_TRACK_COLUMNS,
            condition="parentfeedid = ?",
            params=(feed_native_id,),
        )
        entries = self._history_entries(feed_native_id) or {}

        episodes = []
        for row in rows:
            episode = dict(zip(BP_TRACK_COLUMNS, row))
            episode["history_flags"] = entries.get(str(episode["orgrssitemid"]))
            episodes.append(episode)
        return episodes

    def history_from_row(self, row: Dict[str, Any]) -> Union[HistoryRecord, Skip]:
        identity = self._identity_from_row(row)

        sql_played = None if row["played"] is None else bool(row["played"])
        history_played = (
            None if row["history_flags"] is None
            else row["history_flags"] == HISTORY_PLAYED
        )

        if sql_played is not None and history_played is not None:
            played = sql_played
            if sql_played != history_played:
                self.logger.warning(
                    f"{identity}: played history mismatch: "
                    f"sql={sql_played}, history={history_played}"
                )
                played = False
        elif sql_played is not None:
            played = sql_played
        else:
            played = bool(history_played)

        played_time = row["playedtime"]
        position = int(played_time) if played_time is not None and played_time > 0 else 0

        return HistoryRecord(
            episode=identity,
            playback_position_seconds=position,
            state=PlayingState.from_flags(played, position),
        )

    def list_episodes(self, feed_native_id: Any) -> List[EpisodeRecord]:
        return [
            EpisodeRecord(
                self._identity_from_row(row),
                native_id=(row["parentfeedid"], row["orgrssitemid"]),
            )
            for row in self.list_episode_history(feed_native_id)
        ]

    def update_history(self, episode_native_id: Any, record: HistoryRecord) -> bool:
        feed_id, track_id = episode_native_id
        exists = self.db.select(
            TABLE_BP_TRACKS,
            ["COUNT(*)"],
            condition="parentfeedid = ? AND orgrssitemid = ?",
            params=(feed_id, track_id),
        )[0][0]
        if not exists:
            self.logger.warning(f"Track {track_id} of feed {feed_id} not in database")
            return False

        played = int(record.state is PlayingState.PLAYED)
        position = record.playback_position_seconds
        if position == 0 and not played:
            position = NO_POSITION
        changed = self.db.update_many(
            TABLE_BP_TRACKS,
            columns=["played", "playedtime"],
            values=[(played, position, feed_id, track_id, played, position)],
            condition_columns=["parentfeedid", "orgrssitemid"],
            extra_condition="played IS NOT ? OR playedtime IS NOT ?",
        )

        entries = self._history_entries(feed_id, create=True)
        flags = HISTORY_PLAYED if played else HISTORY_SEEN
        if entries.get(str(track_id)) != flags:
            entries[str(track_id)] = flags
            changed += 1

        return changed > 0

    def recompute_derived(self, episode_native_ids: Set[Any]) -> None:
        """Recount the unread cache of every feed touched by the batch."""
        for feed_id in sorted({feed_id for feed_id, _ in episode_native_ids}):
            self.db.execute(
                f"UPDATE {TABLE_BP_FEEDS} SET hasunread = "
                f"(SELECT COUNT(*) FROM {TABLE_BP_TRACKS} "
                "WHERE parentfeedid = ? AND played = 0) "
                "WHERE feedid = ?",
                (feed_id, feed_id),
            )
        self.db.commit()

    def save(self, output_path: Path) -> None:
        """Rebuild the archive with the updated database and item history.

        Every other member is copied unchanged with its original metadata.
        """
        with atomic_output(output_path, protected=self.path) as temp_path:
            with tempfile.TemporaryDirectory() as tmp_dir:
                db_snapshot = Path(tmp_dir) / BP_DB_MEMBER
                self.db.backup_to(db_snapshot)

                with zipfile.ZipFile(temp_path, "w") as out:
                    written = set()
                    for info in self.archive.infolist():
                        if info.filename == BP_DB_MEMBER:
                            data = db_snapshot.read_bytes()
                        elif info.filename == BP_HISTORY_MEMBER:
                            data = serialize_item_history(self.history)
                        else:
                            data = self.archive.read(info)
                        out.writestr(info, data)
                        written.add(info.filename)

                    if BP_HISTORY_MEMBER not in written and self.history:
                        out.writestr(
                            BP_HISTORY_MEMBER, serialize_item_history(self.history)
                        )
        self.logger.info(f"Saved {self.name} backup to {output_path}")

    def close(self) -> None:
        try:
            self.db.close()
        finally:
            self.archive.close()
            if self.working_copy is not None:
                self.working_copy.remove()

    def _identity_from_row(self, row: Dict[str, Any]) -> EpisodeIdentity:
        total_time = row["totaltime"]
        return EpisodeIdentity(
            title=row["name"] or "",
            guid_or_url=row["url"] or "",
            published_at=from_millis(row["pubdate"]),
            duration_seconds=int(total_time) if total_time and total_time > 0 else None,
        )
