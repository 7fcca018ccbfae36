import sqlite3
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest
import yaml

from podcast_history_converter.db.schema import BP_DB_MEMBER, BP_HISTORY_MEMBER
from podcast_history_converter.players.beyondpod import serialize_item_history

POCKETCASTS_DDL = [
    "CREATE TABLE podcasts (uuid TEXT PRIMARY KEY, title TEXT, author TEXT)",
    """CREATE TABLE episodes (
        uuid TEXT PRIMARY KEY,
        podcast_id TEXT,
        title TEXT,
        download_url TEXT,
        published_date INTEGER,
        duration REAL,
        playing_status INTEGER,
        played_up_to REAL,
        playing_status_modified INTEGER,
        played_up_to_modified INTEGER,
        archived INTEGER,
        archived_modified INTEGER,
        episode_status INTEGER,
        added_date INTEGER,
        last_playback_interaction_date INTEGER
    )""",
]

BEYONDPOD_DDL = [
    "CREATE TABLE feeds (feedid TEXT PRIMARY KEY, name TEXT, url TEXT, hasunread INTEGER)",
    """CREATE TABLE tracks (
        orgrssitemid INTEGER,
        parentfeedid TEXT,
        name TEXT,
        url TEXT,
        pubdate INTEGER,
        totaltime INTEGER,
        played INTEGER,
        playedtime INTEGER
    )""",
]

EPISODE_DEFAULTS = {
    "published_date": 0,
    "duration": 0,
    "playing_status": 0,
    "played_up_to": 0,
    "playing_status_modified": 0,
    "played_up_to_modified": 0,
    "archived": 0,
    "archived_modified": 0,
    "episode_status": 0,
    "added_date": 0,
    "last_playback_interaction_date": 0,
}

TRACK_DEFAULTS = {
    "pubdate": 0,
    "totaltime": 0,
    "played": 0,
    "playedtime": -1,
}


def _insert(conn: sqlite3.Connection, table: str, row: Dict) -> None:
    columns = ", ".join(row)
    placeholders = ", ".join("?" * len(row))
    conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(row.values()))


def write_pocketcasts_db(path: Path, podcasts: List[Dict], episodes: List[Dict]) -> Path:
    conn = sqlite3.connect(str(path))
    for ddl in POCKETCASTS_DDL:
        conn.execute(ddl)
    for podcast in podcasts:
        _insert(conn, "podcasts", podcast)
    for episode in episodes:
        _insert(conn, "episodes", {**EPISODE_DEFAULTS, **episode})
    conn.commit()
    conn.close()
    return path


def write_beyondpod_backup(
    path: Path,
    feeds: List[Dict],
    tracks: List[Dict],
    history: Optional[Dict[str, Dict[str, int]]] = None,
    extra_members: Optional[Dict[str, bytes]] = None,
) -> Path:
    with tempfile.TemporaryDirectory() as tmp_dir:
        db_path = Path(tmp_dir) / BP_DB_MEMBER
        conn = sqlite3.connect(str(db_path))
        for ddl in BEYONDPOD_DDL:
            conn.execute(ddl)
        for feed in feeds:
            _insert(conn, "feeds", {"hasunread": 0, **feed})
        for track in tracks:
            _insert(conn, "tracks", {**TRACK_DEFAULTS, **track})
        conn.commit()
        conn.close()

        with zipfile.ZipFile(path, "w") as archive:
            archive.write(db_path, BP_DB_MEMBER)
            if history is not None:
                archive.writestr(BP_HISTORY_MEMBER, serialize_item_history(history))
            for name, data in (extra_members or {}).items():
                archive.writestr(name, data)
    return path


def query_db(path: Path, query: str, params: tuple = ()) -> list:
    conn = sqlite3.connect(str(path))
    try:
        return conn.execute(query, params).fetchall()
    finally:
        conn.close()


def query_backup(path: Path, query: str, params: tuple = ()) -> list:
    with tempfile.TemporaryDirectory() as tmp_dir:
        with zipfile.ZipFile(path) as archive:
            archive.extract(BP_DB_MEMBER, tmp_dir)
        return query_db(Path(tmp_dir) / BP_DB_MEMBER, query, params)


@pytest.fixture
def tmp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def logger_manager() -> MagicMock:
    return MagicMock()


@pytest.fixture
def make_pocketcasts(tmp_dir: Path) -> Callable[..., Path]:
    def _make(podcasts: List[Dict], episodes: List[Dict], name: str = "pocketcasts.db") -> Path:
        return write_pocketcasts_db(tmp_dir / name, podcasts, episodes)

    return _make


@pytest.fixture
def make_beyondpod(tmp_dir: Path) -> Callable[..., Path]:
    def _make(
        feeds: List[Dict],
        tracks: List[Dict],
        history: Optional[Dict[str, Dict[str, int]]] = None,
        extra_members: Optional[Dict[str, bytes]] = None,
        name: str = "beyondpod.zip",
    ) -> Path:
        return write_beyondpod_backup(tmp_dir / name, feeds, tracks, history, extra_members)

    return _make


@pytest.fixture
def write_opml(tmp_dir: Path) -> Callable[..., Path]:
    def _write(feeds: List[tuple], name: str = "feeds.opml") -> Path:
        outlines = "\n".join(
            f'      <outline type="rss" text="{title}" xmlUrl="{url}" />'
            for title, url in feeds
        )
        path = tmp_dir / name
        path.write_text(
            '<?xml version="1.0" encoding="utf-8"?>\n'
            '<opml version="1.0">\n'
            "  <head><title>Subscriptions</title></head>\n"
            "  <body>\n"
            '    <outline text="feeds">\n'
            f"{outlines}\n"
            "    </outline>\n"
            "  </body>\n"
            "</opml>\n"
        )
        return path

    return _write


@pytest.fixture
def settings_file(tmp_dir: Path) -> Path:
    path = tmp_dir / "settings.yaml"
    with open(path, "w") as f:
        yaml.dump(
            {
                "logging": {"level": "WARNING"},
                "matching": {"title_fallback": True, "duration_tolerance_seconds": 2},
            },
            f,
        )
    return path


@pytest.fixture
def read_db() -> Callable[..., list]:
    """Run a query against a plain SQLite store file."""
    return query_db


@pytest.fixture
def read_backup() -> Callable[..., list]:
    """Run a query against the database inside a BeyondPod backup."""
    return query_backup
