from typing import Any, Dict, List, Optional

import httpx

from .helpers import shuffled
from .log import get_logger

log = get_logger("youtube")

YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"
FEED_SIZE = 2
FALLBACK_THUMBNAIL = (
    "https://via.placeholder.com/320x180?text=Video+Thumbnail"
)

PLACEHOLDER_VIDEOS: List[Dict[str, str]] = [
    {
        "id": "8EVuKfbqMtQ",
        "title": "TIPAC Performance Highlights",
        "thumbnail": "https://img.youtube.com/vi/8EVuKfbqMtQ/maxresdefault.jpg",
        "publishedAt": "2023-06-15T10:00:00Z",
    },
    {
        "id": "dQw4w9WgXcQ",
        "title": "Behind the Scenes at TIPAC",
        "thumbnail": "https://img.youtube.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
        "publishedAt": "2023-05-20T14:30:00Z",
    },
    {
        "id": "DLzxrzFCyOs",
        "title": "TIPAC Cultural Workshop",
        "thumbnail": "https://img.youtube.com/vi/DLzxrzFCyOs/maxresdefault.jpg",
        "publishedAt": "2023-04-10T09:15:00Z",
    },
    {
        "id": "jNQXAC9IVRw",
        "title": "TIPAC Theatre Rehearsal",
        "thumbnail": "https://img.youtube.com/vi/jNQXAC9IVRw/maxresdefault.jpg",
        "publishedAt": "2023-03-22T16:45:00Z",
    },
]


def placeholder_feed() -> List[Dict[str, str]]:
    return shuffled(PLACEHOLDER_VIDEOS, FEED_SIZE)


def _to_video(item: Dict[str, Any]) -> Dict[str, Any]:
    snippet = item.get("snippet") or {}
    thumbs = snippet.get("thumbnails") or {}
    thumb = (
        (thumbs.get("medium") or {}).get("url")
        or (thumbs.get("default") or {}).get("url")
        or FALLBACK_THUMBNAIL
    )
    return {
        "id": (item.get("id") or {}).get("videoId"),
        "title": snippet.get("title"),
        "thumbnail": thumb,
        "publishedAt": snippet.get("publishedAt"),
    }


async def channel_videos(
    http: httpx.AsyncClient, api_key: Optional[str], channel_id: str
) -> List[Dict[str, Any]]:
    """Two recent videos from the channel, or the placeholder pair."""
    if not api_key:
        log.warning("No YOUTUBE_API_KEY found, returning placeholder videos")
        return placeholder_feed()

    params = {
        "key": api_key,
        "channelId": channel_id,
        "part": "snippet",
        "order": "date",
        # more than we need, some may belong to other channels
        "maxResults": "12",
        "type": "video",
    }
    try:
        res = await http.get(f"{YOUTUBE_API_URL}/search", params=params)
    except httpx.HTTPError as e:
        log.error("YouTube API request failed: %r", e)
        return placeholder_feed()
    if res.is_error:
        log.error("YouTube API error: %s", res.status_code)
        return placeholder_feed()

    try:
        body = res.json()
    except ValueError:
        body = None
    items = body.get("items") if isinstance(body, dict) else None
    if not isinstance(items, list):
        log.error("YouTube API returned an unexpected body: %s",
                  res.text[:200])
        return placeholder_feed()

    videos = []
    for item in items:
        if not isinstance(item, dict):
            continue
        item_channel = (item.get("snippet") or {}).get("channelId")
        if item_channel != channel_id:
            log.warning("video from channel %s ignored", item_channel)
            continue
        videos.append(_to_video(item))

    log.info("found %d videos from channel %s", len(videos), channel_id)
    if len(videos) < FEED_SIZE:
        return placeholder_feed()
    return shuffled(videos, FEED_SIZE)
