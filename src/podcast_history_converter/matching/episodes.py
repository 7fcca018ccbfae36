from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple

from podcast_history_converter.model.episode import (
    EpisodeIdentity,
    EpisodeRecord,
    HistoryRecord,
    MatchedEpisodePair,
)

DEFAULT_DURATION_TOLERANCE = 2

Rule = Callable[[EpisodeIdentity, EpisodeIdentity], bool]


@dataclass
class EpisodeMatchResult:
    matched: List[MatchedEpisodePair] = field(default_factory=list)
    unmatched_source: List[HistoryRecord] = field(default_factory=list)
    unmatched_destination: List[EpisodeRecord] = field(default_factory=list)


def same_guid_or_url(a: EpisodeIdentity, b: EpisodeIdentity) -> bool:
    return bool(a.guid_or_url) and a.guid_or_url == b.guid_or_url


def same_title_and_date(a: EpisodeIdentity, b: EpisodeIdentity) -> bool:
    return (
        bool(a.title_key)
        and a.published_at is not None
        and a.title_key == b.title_key
        and a.published_at == b.published_at
    )


def same_title(a: EpisodeIdentity, b: EpisodeIdentity) -> bool:
    return bool(a.title_key) and a.title_key == b.title_key


def title_and_duration(tolerance: int) -> Rule:
    def rule(a: EpisodeIdentity, b: EpisodeIdentity) -> bool:
        return (
            same_title(a, b)
            and a.duration_seconds is not None
            and b.duration_seconds is not None
            and abs(a.duration_seconds - b.duration_seconds) <= tolerance
        )

    return rule


def match_rules(duration_tolerance: int = DEFAULT_DURATION_TOLERANCE) -> List[Rule]:
    """Matching predicates in priority order."""
    return [
        same_guid_or_url,
        same_title_and_date,
        same_title,
        title_and_duration(duration_tolerance),
    ]


def _source_sort_key(record: HistoryRecord) -> Tuple:
    episode = record.episode
    return (
        episode.guid_or_url,
        episode.title_key,
        episode.published_at.isoformat() if episode.published_at else "",
        episode.duration_seconds or 0,
    )


def match_episodes(
    source_history: Sequence[HistoryRecord],
    destination_episodes: Sequence[EpisodeRecord],
    duration_tolerance: int = DEFAULT_DURATION_TOLERANCE,
) -> EpisodeMatchResult:
    """Align the episodes of one matched feed pair.

    Each rule runs over every still-unmatched source episode before the next
    rule starts. A pair is accepted only when it is unique in both directions:
    one remaining destination candidate for the source episode and one remaining
    source episode for that candidate. Matched episodes leave the pool at once,
    so no destination row is assigned twice.

    Args:
        source_history: History extracted from the source feed
        destination_episodes: Episode rows of the destination feed
        duration_tolerance: Seconds of duration difference allowed by the last rule

    Returns:
        EpisodeMatchResult with unmatched leftovers on both sides
    """
    remaining_sources = sorted(source_history, key=_source_sort_key)
    pool = sorted(destination_episodes, key=lambda e: str(e.native_id))
    matched: List[MatchedEpisodePair] = []

    for rule in match_rules(duration_tolerance):
        taken = set()
        for index, record in enumerate(remaining_sources):
            candidates = [d for d in pool if rule(record.episode, d.identity)]
            if len(candidates) != 1:
                continue

            candidate = candidates[0]
            has_rival = any(
                rule(other.episode, candidate.identity)
                for other_index, other in enumerate(remaining_sources)
                if other_index != index and other_index not in taken
            )
            if has_rival:
                continue

            matched.append(MatchedEpisodePair(record, candidate.native_id))
            pool = [d for d in pool if d is not candidate]
            taken.add(index)

        remaining_sources = [
            record for index, record in enumerate(remaining_sources)
            if index not in taken
        ]

    return EpisodeMatchResult(
        matched=matched,
        unmatched_source=remaining_sources,
        unmatched_destination=pool,
    )
