TABLE_PC_PODCASTS = "podcasts"
TABLE_PC_EPISODES = "episodes"

PC_PODCAST_COLUMNS = ["uuid", "title"]
PC_EPISODE_COLUMNS = [
    "uuid",
    "podcast_id",
    "title",
    "download_url",
    "published_date",
    "duration",
    "playing_status",
    "played_up_to",
    "archived",
    "episode_status",
    "added_date",
    "last_playback_interaction_date",
]
# Columns whose changes are stamped in a matching "<column>_modified" column
PC_MODIFIED_COLUMNS = ["playing_status", "played_up_to", "archived"]

POCKETCASTS_SCHEMA = {
    TABLE_PC_PODCASTS: PC_PODCAST_COLUMNS,
    TABLE_PC_EPISODES: PC_EPISODE_COLUMNS
    + [f"{c}_modified" for c in PC_MODIFIED_COLUMNS],
}

TABLE_BP_FEEDS = "feeds"
TABLE_BP_TRACKS = "tracks"

BP_FEED_COLUMNS = ["feedid", "name", "url", "hasunread"]
BP_TRACK_COLUMNS = [
    "orgrssitemid",
    "parentfeedid",
    "name",
    "url",
    "pubdate",
    "totaltime",
    "played",
    "playedtime",
]

BEYONDPOD_SCHEMA = {
    TABLE_BP_FEEDS: BP_FEED_COLUMNS,
    TABLE_BP_TRACKS: BP_TRACK_COLUMNS,
}

# Members of a BeyondPod backup archive
BP_DB_MEMBER = "beyondpod.db.autobak"
BP_HISTORY_MEMBER = "BeyondPodItemHistory.bin.autobak"
