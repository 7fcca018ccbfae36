import zipfile

import pytest

from podcast_history_converter.core.errors import StoreError
from podcast_history_converter.db.schema import BP_DB_MEMBER, BP_HISTORY_MEMBER
from podcast_history_converter.model.episode import (
    EpisodeIdentity,
    HistoryRecord,
    MatchedEpisodePair,
    PlayingState,
)
from podcast_history_converter.players.beyondpod import (
    HISTORY_PLAYED,
    HISTORY_SEEN,
    NO_POSITION,
    BeyondPod,
    parse_item_history,
    serialize_item_history,
)

FEED_ID = "0A1B2C3D-0000-0000-0000-000000000001"
OTHER_FEED_ID = "0A1B2C3D-0000-0000-0000-000000000002"

FEEDS = [
    {"feedid": FEED_ID, "name": "My Show", "url": "https://x.com/feed", "hasunread": 3},
    {"feedid": OTHER_FEED_ID, "name": "Other", "url": "https://other.com/feed"},
]


def track(item_id, **columns):
    return {
        "orgrssitemid": item_id,
        "parentfeedid": FEED_ID,
        "name": f"Ep {item_id}",
        "url": f"https://x.com/ep{item_id}.mp3",
        **columns,
    }


@pytest.fixture
def backup(make_beyondpod):
    return make_beyondpod(
        FEEDS,
        [
            track(1, played=1, playedtime=1700, totaltime=1800),
            track(2, played=0, playedtime=120),
            track(3, played=1),
            track(4, played=0),
            track(5, played=None),
            {"orgrssitemid": 9, "parentfeedid": OTHER_FEED_ID, "name": "Elsewhere",
             "played": 1},
        ],
        history={
            # lower-case on purpose, ids are compared case-insensitively
            FEED_ID.lower(): {"1": HISTORY_PLAYED, "3": HISTORY_SEEN, "5": HISTORY_PLAYED},
            OTHER_FEED_ID: {"9": HISTORY_PLAYED},
        },
        extra_members={"settings.xml": b"<settings/>"},
    )


def test_history_codec_preserves_order():
    history = {
        "feed-b": {"2": HISTORY_SEEN, "1": HISTORY_PLAYED},
        "feed-a": {},
        "feed-ü": {"10": HISTORY_PLAYED},
    }
    data = serialize_item_history(history)

    assert list(parse_item_history(data).items()) == list(history.items())
    # u16 length + "feed-b" + u32 count
    assert data[:12] == b"\x00\x06feed-b\x00\x00\x00\x02"


def test_truncated_history_raises():
    data = serialize_item_history({"feed": {"1": HISTORY_PLAYED, "2": HISTORY_SEEN}})

    with pytest.raises(StoreError):
        parse_item_history(data[:-3])
    with pytest.raises(StoreError):
        # feed announces two tracks but only one follows
        parse_item_history(data[:-(2 + 1 + 4)])


def test_list_feeds(backup, logger_manager):
    with BeyondPod(backup, logger_manager) as player:
        feeds = {f.native_id: f.identity for f in player.list_feeds()}

    assert feeds[FEED_ID].feed_url == "https://x.com/feed"
    assert feeds[FEED_ID].title == "My Show"


def test_extract_reconciles_played_flags(backup, logger_manager):
    with BeyondPod(backup, logger_manager) as player:
        result = player.extract(FEED_ID)

    records = {r.episode.title: r for r in result.records}

    assert records["Ep 1"].state is PlayingState.PLAYED
    assert records["Ep 1"].playback_position_seconds == 1700
    assert records["Ep 1"].episode.duration_seconds == 1800
    assert records["Ep 2"].state is PlayingState.IN_PROGRESS
    assert records["Ep 2"].playback_position_seconds == 120
    # database says played, history says only seen
    assert records["Ep 3"].state is PlayingState.UNPLAYED
    # no history entry, database wins
    assert records["Ep 4"].state is PlayingState.UNPLAYED
    # no database flag, history wins
    assert records["Ep 5"].state is PlayingState.PLAYED
    assert not result.skips
    logger_manager.get_logger.return_value.warning.assert_called()


def test_apply_updates_tracks_history_and_unread_count(
    backup, logger_manager, read_backup, tmp_dir
):
    pairs = [
        MatchedEpisodePair(
            HistoryRecord(EpisodeIdentity("Ep 2"), 900, PlayingState.PLAYED),
            (FEED_ID, 2),
        ),
        MatchedEpisodePair(
            HistoryRecord(EpisodeIdentity("Ep 4"), 60, PlayingState.IN_PROGRESS),
            (FEED_ID, 4),
        ),
    ]
    output = tmp_dir / "out.zip"

    with BeyondPod(backup, logger_manager) as player:
        player.apply(pairs)
        player.save(output)

    rows = read_backup(
        output,
        "SELECT orgrssitemid, played, playedtime FROM tracks "
        "WHERE parentfeedid = ? ORDER BY orgrssitemid",
        (FEED_ID,),
    )
    assert rows == [
        (1, 1, 1700),
        (2, 1, 900),
        (3, 1, -1),
        (4, 0, 60),
        (5, None, -1),
    ]
    assert read_backup(
        output, "SELECT hasunread FROM feeds WHERE feedid = ?", (FEED_ID,)
    ) == [(1,)]
    # untouched feed keeps its cached value
    assert read_backup(
        output, "SELECT hasunread FROM feeds WHERE feedid = ?", (OTHER_FEED_ID,)
    ) == [(0,)]

    with zipfile.ZipFile(output) as archive:
        history = parse_item_history(archive.read(BP_HISTORY_MEMBER))
        assert archive.read("settings.xml") == b"<settings/>"
        assert set(archive.namelist()) == {BP_DB_MEMBER, BP_HISTORY_MEMBER, "settings.xml"}

    entries = history[FEED_ID.lower()]
    assert entries["2"] == HISTORY_PLAYED
    assert entries["4"] == HISTORY_SEEN
    assert entries["1"] == HISTORY_PLAYED
    assert history[OTHER_FEED_ID] == {"9": HISTORY_PLAYED}


def test_second_update_is_a_noop(backup, logger_manager):
    record = HistoryRecord(EpisodeIdentity("Ep 4"), 60, PlayingState.IN_PROGRESS)

    with BeyondPod(backup, logger_manager) as player:
        assert player.update_history((FEED_ID, 4), record) is True
        assert player.update_history((FEED_ID, 4), record) is False


def test_update_of_unknown_track_changes_nothing(backup, logger_manager):
    record = HistoryRecord(EpisodeIdentity("Ghost"), 0, PlayingState.PLAYED)

    with BeyondPod(backup, logger_manager) as player:
        assert player.update_history((FEED_ID, 99), record) is False
        assert "99" not in player.history[FEED_ID.lower()]


def test_input_archive_is_untouched(backup, logger_manager, tmp_dir):
    before = backup.read_bytes()
    record = HistoryRecord(EpisodeIdentity("Ep 4"), 0, PlayingState.PLAYED)

    with BeyondPod(backup, logger_manager) as player:
        player.apply([MatchedEpisodePair(record, (FEED_ID, 4))])
        player.save(tmp_dir / "out.zip")

    assert backup.read_bytes() == before


def test_missing_history_member_is_tolerated(make_beyondpod, logger_manager):
    path = make_beyondpod(FEEDS, [track(1, played=1)], history=None, name="nohistory.zip")

    with BeyondPod(path, logger_manager) as player:
        result = player.extract(FEED_ID)

    assert result.records[0].state is PlayingState.PLAYED


def test_not_a_zip_raises(tmp_dir, logger_manager):
    path = tmp_dir / "backup.zip"
    path.write_bytes(b"not a zip")

    with pytest.raises(StoreError, match="Not a BeyondPod backup"):
        BeyondPod(path, logger_manager)


def test_archive_without_database_raises(tmp_dir, logger_manager):
    path = tmp_dir / "backup.zip"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("settings.xml", b"<settings/>")

    with pytest.raises(StoreError, match=BP_DB_MEMBER):
        BeyondPod(path, logger_manager)


def test_missing_archive_raises(tmp_dir, logger_manager):
    with pytest.raises(StoreError, match="not found"):
        BeyondPod(tmp_dir / "missing.zip", logger_manager)


def test_unplayed_track_gets_no_position_marker(backup, logger_manager, read_backup, tmp_dir):
    pairs = [
        MatchedEpisodePair(
            HistoryRecord(EpisodeIdentity("Ep 2"), 0, PlayingState.UNPLAYED), (FEED_ID, 2)
        ),
        MatchedEpisodePair(
            HistoryRecord(EpisodeIdentity("Ep 4"), 0, PlayingState.UNPLAYED), (FEED_ID, 4)
        ),
    ]
    output = tmp_dir / "out.zip"

    with BeyondPod(backup, logger_manager) as player:
        player.apply(pairs)
        # the track row already held the marker, only the history entry was new
        assert player.update_history((FEED_ID, 4), pairs[1].source_history) is False
        player.save(output)

    rows = read_backup(
        output,
        "SELECT orgrssitemid, played, playedtime FROM tracks "
        "WHERE parentfeedid = ? AND orgrssitemid IN (2, 4) ORDER BY orgrssitemid",
        (FEED_ID,),
    )
    assert rows == [(2, 0, NO_POSITION), (4, 0, NO_POSITION)]
