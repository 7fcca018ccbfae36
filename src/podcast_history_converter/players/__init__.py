from typing import Dict, Type

from podcast_history_converter.players.base import Player
from podcast_history_converter.players.beyondpod import BeyondPod
from podcast_history_converter.players.pocketcasts import PocketCasts

PLAYER_REGISTRY: Dict[str, Type[Player]] = {
    BeyondPod.cli_name: BeyondPod,
    PocketCasts.cli_name: PocketCasts,
}
