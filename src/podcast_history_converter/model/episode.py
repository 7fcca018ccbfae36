from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlsplit

from podcast_history_converter.model.feed import normalize_feed_url, normalize_title


class PlayingState(Enum):
    UNPLAYED = "unplayed"
    IN_PROGRESS = "in_progress"
    PLAYED = "played"

    @classmethod
    def from_flags(cls, played: bool, position_seconds: int) -> "PlayingState":
        """Derive state for formats that only store a played flag and a position."""
        if played:
            return cls.PLAYED
        if position_seconds > 0:
            return cls.IN_PROGRESS
        return cls.UNPLAYED


def normalize_guid_or_url(value: Optional[str]) -> str:
    """Normalize an episode guid or enclosure URL.

    Absolute URLs go through the feed URL normalization, anything else is
    treated as an opaque guid and only stripped.
    """
    if not value:
        return ""
    value = value.strip()
    parts = urlsplit(value)
    if parts.scheme and parts.netloc:
        return normalize_feed_url(value)
    return value


@dataclass(frozen=True)
class EpisodeIdentity:
    """Best-effort identity of an episode; no single field is guaranteed."""

    title: str = ""
    guid_or_url: str = ""
    published_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "title", (self.title or "").strip())
        object.__setattr__(self, "guid_or_url", normalize_guid_or_url(self.guid_or_url))
        if self.published_at is not None:
            object.__setattr__(
                self, "published_at", self.published_at.replace(microsecond=0)
            )

    @property
    def title_key(self) -> str:
        return normalize_title(self.title)

    @property
    def is_identifiable(self) -> bool:
        return bool(self.guid_or_url or self.title_key)

    def __str__(self) -> str:
        return f"'{self.title}' ({self.guid_or_url or 'no guid/url'})"

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "guid_or_url": self.guid_or_url,
            "published_at": (
                self.published_at.isoformat() if self.published_at else None
            ),
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class EpisodeRecord:
    """An episode row in one specific store."""

    identity: EpisodeIdentity
    native_id: Any


@dataclass(frozen=True)
class HistoryRecord:
    """Format-neutral listening history of one episode.

    Attributes:
        episode: Identity used for matching
        playback_position_seconds: Resume position, kept for played episodes too
        state: Playing state
        is_archived: Whether the user archived the episode
        is_downloaded_locally: Whether media exists on the device
        date_added: When the episode entered the library
        date_played: Last playback interaction
    """

    episode: EpisodeIdentity
    playback_position_seconds: int = 0
    state: PlayingState = PlayingState.UNPLAYED
    is_archived: bool = False
    is_downloaded_locally: bool = False
    date_added: Optional[datetime] = None
    date_played: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.playback_position_seconds < 0:
            raise ValueError(
                f"Negative playback position for {self.episode}: "
                f"{self.playback_position_seconds}"
            )
        if (
            self.state is PlayingState.IN_PROGRESS
            and self.playback_position_seconds == 0
        ):
            raise ValueError(f"In-progress episode without position: {self.episode}")

    def translated(self) -> "HistoryRecord":
        """Copy suitable for writing into another store; media is never transferred."""
        return replace(self, is_downloaded_locally=False)


@dataclass(frozen=True)
class MatchedEpisodePair:
    source_history: HistoryRecord
    destination_native_id: Any
